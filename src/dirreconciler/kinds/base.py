"""ResourceKind: typed configuration, wire mapping and endpoint hooks for one resource type.

The reconciler drives create → read → update → delete generically; concrete
kinds only declare their fields and implement the HTTP hooks. Everything else
(identity handling, drift, polling, NotFound recovery) lives in the reconciler.
"""
from __future__ import annotations

import dataclasses
import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Type, Union

from ..core.errors import FatalError
from ..core.gateway import RemoteGateway
from ..core.identity import CompositeKey, OpaqueIdentity, SingletonIdentity
from ..core.models import RemoteActionTask, State

IdentityScheme = Union[OpaqueIdentity, CompositeKey, SingletonIdentity]


class FieldRole(str, enum.Enum):
    CREATE_ONLY = "create_only"  # identity-bearing or otherwise immutable once created
    MUTABLE = "mutable"
    COMPUTED = "computed"        # server-assigned, never drift
    SENSITIVE = "sensitive"      # revealed once on create, never refreshed
    LOCAL = "local"              # engine-side setting, never sent or read


@dataclass(frozen=True)
class FieldSpec:
    name: str
    role: FieldRole = FieldRole.MUTABLE
    wire: str = ""

    @property
    def wire_name(self) -> str:
        return self.wire or self.name


@dataclass
class KindPolicy:
    """Per-kind behaviour that deployments may override from config (`kinds.<name>`)."""

    precheck: bool = False
    reset_defaults: Optional[Dict[str, Any]] = None
    action_timeout_sec: Optional[float] = None


@dataclass
class CreateOutcome:
    """What a create hook learned from the remote side."""

    state: State = field(default_factory=dict)
    task: Optional[RemoteActionTask] = None


class ResourceKind:
    """Base class for all resource kinds.

    Class Attributes:
        name: Registry key (e.g. "user_group").
        config_type: Dataclass holding the desired configuration.
        fields: Field specs, in payload order.
        identity: Identity scheme, fixed per kind.
        precheck: Default for the pre-create existence check.
        searchable: Whether `search` (lookup by display name) is supported.
        asynchronous: Whether create/update may return a task to poll.
        reset_defaults: For kinds whose delete resets content instead of removing it.
    """

    name: str = "resource"
    config_type: Type[Any] = dict
    fields: Tuple[FieldSpec, ...] = ()
    identity: IdentityScheme = OpaqueIdentity()
    precheck: bool = False
    searchable: bool = False
    asynchronous: bool = False
    reset_defaults: Optional[Dict[str, Any]] = None

    def __init__(self, policy: Optional[KindPolicy] = None) -> None:
        defaults = KindPolicy(
            precheck=self.precheck,
            reset_defaults=dict(self.reset_defaults) if self.reset_defaults is not None else None,
        )
        if policy is not None:
            if policy.reset_defaults is not None:
                defaults.reset_defaults = dict(policy.reset_defaults)
            defaults.precheck = policy.precheck
            defaults.action_timeout_sec = policy.action_timeout_sec
        if defaults.precheck and not self.supports_precheck:
            raise FatalError(f"{self.name}: no pre-create existence check available; precheck cannot be enabled")
        self.policy = defaults

    @property
    def supports_precheck(self) -> bool:
        """True when the kind implements `exists`."""
        return type(self).exists is not ResourceKind.exists

    # ----- field roles ----------------------------------------------------
    def names(self, *roles: FieldRole) -> List[str]:
        return [f.name for f in self.fields if f.role in roles]

    @property
    def create_only_fields(self) -> List[str]:
        return self.names(FieldRole.CREATE_ONLY)

    @property
    def mutable_fields(self) -> List[str]:
        return self.names(FieldRole.MUTABLE)

    @property
    def computed_fields(self) -> List[str]:
        return self.names(FieldRole.COMPUTED)

    @property
    def sensitive_fields(self) -> List[str]:
        return self.names(FieldRole.SENSITIVE)

    # ----- typed config <-> state ----------------------------------------
    def build_config(self, data: Mapping[str, Any]) -> Any:
        """Construct the typed config from a plain mapping (e.g. a YAML document)."""
        if isinstance(data, self.config_type):
            return data
        known = {f.name for f in dataclasses.fields(self.config_type)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise FatalError(f"{self.name}: unknown field(s) {unknown}; expected {sorted(known)}")
        try:
            return self.config_type(**dict(data))
        except TypeError as e:
            raise FatalError(f"{self.name}: invalid configuration: {e}") from e

    def desired_state(self, config: Any) -> State:
        """Ordered field -> value mapping of everything the caller controls."""
        if not isinstance(config, self.config_type):
            raise FatalError(
                f"{self.name}: expected {self.config_type.__name__}, got {type(config).__name__}"
            )
        values = dataclasses.asdict(config)
        keep = set(self.names(FieldRole.CREATE_ONLY, FieldRole.MUTABLE, FieldRole.LOCAL))
        return {k: v for k, v in values.items() if k in keep}

    def encode(self, state: Mapping[str, Any], roles: Iterable[FieldRole]) -> Dict[str, Any]:
        """Build a wire payload from the fields with the given roles."""
        wanted = set(roles)
        return {f.wire_name: state[f.name] for f in self.fields if f.role in wanted and f.name in state}

    def decode(self, raw: Mapping[str, Any]) -> State:
        """Map a wire object to field names; fields absent on the wire stay absent."""
        if not isinstance(raw, Mapping):
            raise FatalError(f"{self.name}: expected a JSON object, got {type(raw).__name__}")
        out: State = {}
        for f in self.fields:
            if f.role is FieldRole.LOCAL:
                continue
            if f.wire_name in raw:
                out[f.name] = raw[f.wire_name]
        return out

    def action_timeout(self, desired: Mapping[str, Any]) -> Optional[float]:
        return self.policy.action_timeout_sec

    # ----- hooks to implement --------------------------------------------
    def create(self, gateway: RemoteGateway, desired: State, key: Mapping[str, str]) -> CreateOutcome:
        """Create the remote object. `key` is pre-computed for locally derived identities, else empty."""
        raise NotImplementedError

    def fetch(self, gateway: RemoteGateway, key: Mapping[str, str]) -> Optional[Mapping[str, Any]]:
        """Return the raw remote object, or None when it is missing from a parent listing."""
        raise NotImplementedError

    def update(
        self,
        gateway: RemoteGateway,
        key: Mapping[str, str],
        desired: State,
        changes: List[str],
    ) -> Optional[RemoteActionTask]:
        raise FatalError(f"{self.name}: has no mutable fields; update is not supported")

    def delete(self, gateway: RemoteGateway, key: Mapping[str, str]) -> None:
        raise NotImplementedError

    def exists(self, gateway: RemoteGateway, desired: State, key: Mapping[str, str]) -> bool:
        """Pre-create check for an identity-equivalent remote object."""
        return False

    def search(self, gateway: RemoteGateway, name: str) -> List[Mapping[str, Any]]:
        raise FatalError(f"{self.name}: lookup by name is not supported")

    def fetch_task(self, gateway: RemoteGateway, task: RemoteActionTask) -> RemoteActionTask:
        raise FatalError(f"{self.name}: has no asynchronous actions")
