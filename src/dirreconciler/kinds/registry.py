"""Resource kind registry.

Built once at startup with `build_registry()` and passed to whoever needs it
(CLI, orchestrators). The registry is read-only afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass
from importlib import import_module
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional, Type

from ..core.errors import FatalError
from .base import KindPolicy, ResourceKind


@dataclass(frozen=True)
class KindSpec:
    key: str            # kind name used in config files and on the CLI
    help: str           # one-line description for `drec kinds`
    module: str         # module path
    class_name: str     # class symbol in module

    def load_class(self) -> Type[ResourceKind]:
        mod = import_module(self.module)
        return getattr(mod, self.class_name)


_KINDS: Dict[str, KindSpec] = {
    # Groups
    "user_group": KindSpec(
        key="user_group",
        help="Directory user group",
        module="dirreconciler.kinds.user_groups",
        class_name="UserGroupKind",
    ),
    "user_group_membership": KindSpec(
        key="user_group_membership",
        help="User membership in a user group",
        module="dirreconciler.kinds.user_groups",
        class_name="UserGroupMembershipKind",
    ),
    "system_group_membership": KindSpec(
        key="system_group_membership",
        help="System membership in a system group",
        module="dirreconciler.kinds.user_groups",
        class_name="SystemGroupMembershipKind",
    ),
    # Applications
    "application_group_mapping": KindSpec(
        key="application_group_mapping",
        help="User/system group bound to an application",
        module="dirreconciler.kinds.applications",
        class_name="ApplicationGroupMappingKind",
    ),
    # Credentials
    "api_key": KindSpec(
        key="api_key",
        help="Organisation API key (secret revealed once)",
        module="dirreconciler.kinds.api_keys",
        class_name="ApiKeyKind",
    ),
    # Devices
    "mdm_device_action": KindSpec(
        key="mdm_device_action",
        help="Asynchronous MDM device action (lock, wipe, ...)",
        module="dirreconciler.kinds.mdm",
        class_name="DeviceActionKind",
    ),
    # Settings
    "mfa_settings": KindSpec(
        key="mfa_settings",
        help="Organisation MFA settings (singleton)",
        module="dirreconciler.kinds.mfa",
        class_name="MfaSettingsKind",
    ),
}


def _policy(cls: Type[ResourceKind], overrides: Optional[Mapping[str, Any]]) -> Optional[KindPolicy]:
    if not overrides:
        return None
    unknown = sorted(set(overrides) - {"precheck", "reset_defaults", "action_timeout_sec"})
    if unknown:
        raise FatalError(f"kinds.{cls.name}: unknown policy key(s) {unknown}")
    reset = overrides.get("reset_defaults")
    if reset is not None and not isinstance(reset, Mapping):
        raise FatalError(f"kinds.{cls.name}.reset_defaults must be a mapping")
    timeout = overrides.get("action_timeout_sec")
    if timeout is not None and float(timeout) < 0:
        raise FatalError(f"kinds.{cls.name}.action_timeout_sec must be >= 0")
    return KindPolicy(
        precheck=bool(overrides.get("precheck", cls.precheck)),
        reset_defaults=dict(reset) if reset is not None else None,
        action_timeout_sec=float(timeout) if timeout is not None else None,
    )


class KindRegistry:
    """Immutable name -> ResourceKind mapping."""

    def __init__(self, kinds: Mapping[str, ResourceKind], specs: Mapping[str, KindSpec]) -> None:
        self._kinds = MappingProxyType(dict(kinds))
        self._specs = MappingProxyType(dict(specs))

    def _unknown(self, name: str) -> FatalError:
        return FatalError(f"unknown resource kind '{name}'; known: {', '.join(sorted(self._kinds))}")

    def __getitem__(self, name: str) -> ResourceKind:
        try:
            return self._kinds[name]
        except KeyError:
            raise self._unknown(name) from None

    def __iter__(self) -> Iterator[str]:
        return iter(self._kinds)

    def __len__(self) -> int:
        return len(self._kinds)

    def __contains__(self, name: object) -> bool:
        return name in self._kinds

    def spec(self, name: str) -> KindSpec:
        if name not in self._specs:
            raise self._unknown(name)
        return self._specs[name]

    def names(self) -> List[str]:
        return sorted(self._kinds)


def build_registry(overrides: Optional[Mapping[str, Mapping[str, Any]]] = None) -> KindRegistry:
    """Instantiate every known kind, applying per-kind policy overrides (config `kinds:`)."""
    overrides = overrides or {}
    unknown = sorted(set(overrides) - set(_KINDS))
    if unknown:
        raise FatalError(f"kinds: unknown resource kind(s) {unknown}")
    kinds: Dict[str, ResourceKind] = {}
    for key, spec in _KINDS.items():
        cls = spec.load_class()
        kinds[key] = cls(_policy(cls, overrides.get(key)))
    return KindRegistry(kinds, _KINDS)
