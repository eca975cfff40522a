"""
mfa_settings: organisation-wide MFA settings (a singleton).

The settings object always exists remotely. Create and update are the same
PUT; delete has no remote primitive and instead PUTs the reset defaults. The
local instance is then ABSENT while the remote object keeps default content.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from ..core.errors import FatalError
from ..core.gateway import RemoteGateway
from ..core.identity import SingletonIdentity
from ..core.models import State
from .base import CreateOutcome, FieldRole, FieldSpec, ResourceKind

MFA_METHODS = frozenset({"totp", "duo", "push", "sms", "email", "webauthn", "security_questions"})

DEFAULT_RESET = {
    "systemInsightsEnrolled": False,
    "exclusionWindowDays": 0,
    "enabledMethods": [],
}


@dataclass
class MfaSettingsConfig:
    org_id: str = ""
    system_insights_enrolled: bool = False
    exclusion_window_days: int = 0
    enabled_methods: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not 0 <= int(self.exclusion_window_days) <= 30:
            raise FatalError("mfa_settings: exclusion_window_days must be between 0 and 30")
        unknown = sorted(set(self.enabled_methods) - MFA_METHODS)
        if unknown:
            raise FatalError(f"mfa_settings: unknown MFA method(s) {unknown}")


class MfaSettingsKind(ResourceKind):
    name = "mfa_settings"
    config_type = MfaSettingsConfig
    fields = (
        FieldSpec("id", FieldRole.COMPUTED),
        FieldSpec("org_id", FieldRole.CREATE_ONLY, wire="orgId"),
        FieldSpec("system_insights_enrolled", FieldRole.MUTABLE, wire="systemInsightsEnrolled"),
        FieldSpec("exclusion_window_days", FieldRole.MUTABLE, wire="exclusionWindowDays"),
        FieldSpec("enabled_methods", FieldRole.MUTABLE, wire="enabledMethods"),
        FieldSpec("updated", FieldRole.COMPUTED),
    )
    identity = SingletonIdentity("org_id")
    reset_defaults = DEFAULT_RESET

    def _path(self, key: Mapping[str, str]) -> str:
        return f"/api/v2/mfa/settings/{self.identity.format(key)}"

    def _put(self, gateway: RemoteGateway, key: Mapping[str, str], desired: State) -> Dict[str, Any]:
        body = self.encode(desired, (FieldRole.MUTABLE,))
        return gateway.json("PUT", self._path(key), body)

    def create(self, gateway: RemoteGateway, desired: State, key: Mapping[str, str]) -> CreateOutcome:
        raw = self._put(gateway, key, desired)
        return CreateOutcome(state=self.decode(raw) if isinstance(raw, Mapping) else {})

    def fetch(self, gateway: RemoteGateway, key: Mapping[str, str]) -> Optional[Mapping[str, Any]]:
        return gateway.json("GET", self._path(key))

    def update(self, gateway: RemoteGateway, key: Mapping[str, str], desired: State, changes: List[str]) -> None:
        self._put(gateway, key, desired)
        return None

    def delete(self, gateway: RemoteGateway, key: Mapping[str, str]) -> None:
        gateway.json("PUT", self._path(key), dict(self.policy.reset_defaults or {}))
