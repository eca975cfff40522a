"""
mdm_device_action: a one-shot MDM command (lock, wipe, restart, ...) on a device.

- POST /api/v2/mdm/devices/{device}/actions starts the action and returns
  its `_id` and `status`; the action then runs asynchronously.
- GET  /api/v2/mdm/devices/{device}/actions/{action} reports progress.
- Identity is "<device_id>:<action_id>"; the action ID is assigned on create.
- There is no remote delete: deleting only forgets the action locally.
- `timeout` (seconds, default 300) bounds the wait; 0 returns as soon as the
  action is accepted. A per-kind `action_timeout_sec` replaces it, 0 included.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional
from urllib.parse import quote

from ..core.errors import FatalError
from ..core.gateway import RemoteGateway
from ..core.identity import CompositeKey
from ..core.models import RemoteActionTask, State, TaskStatus
from .base import CreateOutcome, FieldRole, FieldSpec, ResourceKind

log = logging.getLogger("drec.kinds")

ACTION_TYPES = frozenset({"lock", "wipe", "restart", "shutdown", "clear_passcode"})


@dataclass
class DeviceActionConfig:
    device_id: str
    action_type: str
    reason: str = ""
    org_id: str = ""
    timeout: int = 300

    def __post_init__(self) -> None:
        if self.action_type not in ACTION_TYPES:
            raise FatalError(
                f"mdm_device_action: action_type must be one of {sorted(ACTION_TYPES)}, got {self.action_type!r}"
            )
        if self.timeout < 0:
            raise FatalError("mdm_device_action: timeout must be >= 0")


class DeviceActionKind(ResourceKind):
    name = "mdm_device_action"
    config_type = DeviceActionConfig
    fields = (
        FieldSpec("action_id", FieldRole.COMPUTED, wire="_id"),
        FieldSpec("device_id", FieldRole.CREATE_ONLY, wire="deviceId"),
        FieldSpec("action_type", FieldRole.CREATE_ONLY, wire="actionType"),
        FieldSpec("reason", FieldRole.CREATE_ONLY),
        FieldSpec("org_id", FieldRole.CREATE_ONLY, wire="orgId"),
        FieldSpec("status", FieldRole.COMPUTED),
        FieldSpec("created", FieldRole.COMPUTED),
        FieldSpec("updated", FieldRole.COMPUTED),
        FieldSpec("timeout", FieldRole.LOCAL),
    )
    identity = CompositeKey(("device_id", "action_id"), assigned=frozenset({"action_id"}))
    asynchronous = True

    def _actions(self, device_id: str) -> str:
        return f"/api/v2/mdm/devices/{quote(device_id, safe='')}/actions"

    def _to_task(self, raw: Mapping[str, Any], device_id: str) -> RemoteActionTask:
        return RemoteActionTask(
            task_id=str(raw.get("_id") or ""),
            target_resource_id=device_id,
            status=TaskStatus.parse(raw.get("status")),
            created_at=str(raw.get("created") or ""),
            message=str(raw.get("message") or raw.get("statusMessage") or ""),
        )

    def create(self, gateway: RemoteGateway, desired: State, key: Mapping[str, str]) -> CreateOutcome:
        body = self.encode(desired, (FieldRole.CREATE_ONLY,))
        if not body.get("reason"):
            body.pop("reason", None)
        if not body.get("orgId"):
            body.pop("orgId", None)
        raw = gateway.json("POST", self._actions(desired["device_id"]), body)
        state = self.decode(raw)
        if not state.get("action_id"):
            raise FatalError("mdm_device_action: action created without ID", body=str(raw)[:200])
        state.setdefault("device_id", desired["device_id"])
        task = None
        if (self.action_timeout(desired) or 0) > 0:
            task = self._to_task(raw, desired["device_id"])
        return CreateOutcome(state=state, task=task)

    def fetch(self, gateway: RemoteGateway, key: Mapping[str, str]) -> Optional[Mapping[str, Any]]:
        return gateway.json("GET", f"{self._actions(key['device_id'])}/{quote(key['action_id'], safe='')}")

    def fetch_task(self, gateway: RemoteGateway, task: RemoteActionTask) -> RemoteActionTask:
        raw = gateway.json("GET", f"{self._actions(task.target_resource_id)}/{quote(task.task_id, safe='')}")
        return self._to_task(raw, task.target_resource_id)

    def delete(self, gateway: RemoteGateway, key: Mapping[str, str]) -> None:
        log.info(
            "mdm_device_action %s on %s cannot be removed remotely; forgetting it locally",
            key.get("action_id"), key.get("device_id"),
        )

    def action_timeout(self, desired: Mapping[str, Any]) -> Optional[float]:
        if self.policy.action_timeout_sec is not None:
            return self.policy.action_timeout_sec
        return float(desired.get("timeout") or 0)
