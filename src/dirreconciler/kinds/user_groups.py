"""
Group kinds.

- user_group: a directory user group (remote-assigned `_id`).
  Update is a full-replace PUT: the service rejects a body without `type`,
  so it is sent unchanged along with the mutable fields. The `_id` travels in
  the path only.
- user_group_membership / system_group_membership: relationship resources
  with no ID of their own; addressed as "<group_id>:<member_id>".

Memberships are added/removed with a single POST to the group's `members`
collection ({"op": "add"|"remove", "type": ..., "id": ...}); the response body
carries nothing useful. Read lists the members and looks for `to.id`.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import quote

from ..core.gateway import RemoteGateway
from ..core.identity import CompositeKey, OpaqueIdentity
from ..core.models import State
from .base import CreateOutcome, FieldRole, FieldSpec, ResourceKind

log = logging.getLogger("drec.kinds")


def _results(payload: Any) -> List[Mapping[str, Any]]:
    """Normalise list endpoints that return either a bare array or {"results": [...]}."""
    if isinstance(payload, dict):
        payload = payload.get("results") or []
    if not isinstance(payload, list):
        return []
    return [x for x in payload if isinstance(x, Mapping)]


# ---------------------------------------------------------------------------
# user_group
# ---------------------------------------------------------------------------

@dataclass
class UserGroupConfig:
    name: str
    description: str = ""
    type: str = "user_group"
    attributes: Dict[str, Any] = field(default_factory=dict)


class UserGroupKind(ResourceKind):
    name = "user_group"
    config_type = UserGroupConfig
    fields = (
        FieldSpec("id", FieldRole.COMPUTED, wire="_id"),
        FieldSpec("name", FieldRole.MUTABLE),
        FieldSpec("description", FieldRole.MUTABLE),
        FieldSpec("type", FieldRole.CREATE_ONLY),
        FieldSpec("attributes", FieldRole.MUTABLE),
        FieldSpec("created", FieldRole.COMPUTED),
    )
    identity = OpaqueIdentity("id")
    precheck = True
    searchable = True

    path = "/api/v2/usergroups"

    def _item(self, key: Mapping[str, str]) -> str:
        return f"{self.path}/{quote(key['id'], safe='')}"

    def create(self, gateway: RemoteGateway, desired: State, key: Mapping[str, str]) -> CreateOutcome:
        body = self.encode(desired, (FieldRole.CREATE_ONLY, FieldRole.MUTABLE))
        raw = gateway.json("POST", self.path, body)
        return CreateOutcome(state=self.decode(raw))

    def fetch(self, gateway: RemoteGateway, key: Mapping[str, str]) -> Optional[Mapping[str, Any]]:
        return gateway.json("GET", self._item(key))

    def update(self, gateway: RemoteGateway, key: Mapping[str, str], desired: State, changes: List[str]) -> None:
        # PUT replaces the object: send every caller-controlled field, not only the changed ones.
        body = self.encode(desired, (FieldRole.CREATE_ONLY, FieldRole.MUTABLE))
        gateway.json("PUT", self._item(key), body)
        return None

    def delete(self, gateway: RemoteGateway, key: Mapping[str, str]) -> None:
        gateway.request("DELETE", self._item(key))

    def search(self, gateway: RemoteGateway, name: str) -> List[Mapping[str, Any]]:
        found = _results(gateway.json("GET", f"{self.path}?filter={quote('name:eq:' + name, safe='')}"))
        # the filter is server-side; keep exact matches only in case it is ignored
        return [item for item in found if item.get("name") == name]

    def exists(self, gateway: RemoteGateway, desired: State, key: Mapping[str, str]) -> bool:
        return bool(self.search(gateway, str(desired.get("name") or "")))


# ---------------------------------------------------------------------------
# memberships
# ---------------------------------------------------------------------------

class MembershipKind(ResourceKind):
    """Shared add/list/remove logic for `<group>/members` relationship endpoints."""

    group_path: str = ""
    member_type: str = ""
    group_field: str = ""
    member_field: str = ""

    def _members_path(self, key: Mapping[str, str]) -> str:
        return f"{self.group_path}/{quote(key[self.group_field], safe='')}/members"

    def _mutate(self, gateway: RemoteGateway, key: Mapping[str, str], op: str) -> None:
        body = {"op": op, "type": self.member_type, "id": key[self.member_field]}
        gateway.request("POST", self._members_path(key), body)

    def create(self, gateway: RemoteGateway, desired: State, key: Mapping[str, str]) -> CreateOutcome:
        self._mutate(gateway, key, "add")
        return CreateOutcome()

    def fetch(self, gateway: RemoteGateway, key: Mapping[str, str]) -> Optional[Mapping[str, Any]]:
        members = _results(gateway.json("GET", self._members_path(key)))
        wanted = key[self.member_field]
        for member in members:
            to = member.get("to") or {}
            if isinstance(to, Mapping) and to.get("id") == wanted:
                return {self.group_field: key[self.group_field], self.member_field: wanted}
        log.debug("%s: %s not listed under %s", self.name, wanted, key[self.group_field])
        return None

    def delete(self, gateway: RemoteGateway, key: Mapping[str, str]) -> None:
        self._mutate(gateway, key, "remove")

    def exists(self, gateway: RemoteGateway, desired: State, key: Mapping[str, str]) -> bool:
        return self.fetch(gateway, key) is not None


@dataclass
class UserGroupMembershipConfig:
    user_group_id: str
    user_id: str


class UserGroupMembershipKind(MembershipKind):
    name = "user_group_membership"
    config_type = UserGroupMembershipConfig
    fields = (
        FieldSpec("user_group_id", FieldRole.CREATE_ONLY),
        FieldSpec("user_id", FieldRole.CREATE_ONLY),
    )
    identity = CompositeKey(("user_group_id", "user_id"))

    group_path = "/api/v2/usergroups"
    member_type = "user"
    group_field = "user_group_id"
    member_field = "user_id"


@dataclass
class SystemGroupMembershipConfig:
    system_group_id: str
    system_id: str


class SystemGroupMembershipKind(MembershipKind):
    name = "system_group_membership"
    config_type = SystemGroupMembershipConfig
    fields = (
        FieldSpec("system_group_id", FieldRole.CREATE_ONLY),
        FieldSpec("system_id", FieldRole.CREATE_ONLY),
    )
    identity = CompositeKey(("system_group_id", "system_id"))

    group_path = "/api/v2/systemgroups"
    member_type = "system"
    group_field = "system_group_id"
    member_field = "system_id"
