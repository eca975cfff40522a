"""
application_group_mapping: binds a user group or system group to an application.

Identity: "<application_id>:<type>:<group_id>" with type in {user_group, system_group}.
The collection path depends on the type tag:
    /api/v2/applications/{app}/usergroups      (user_group)
    /api/v2/applications/{app}/systemgroups    (system_group)
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import quote

from ..core.gateway import RemoteGateway
from ..core.identity import CompositeKey
from ..core.models import State
from .base import CreateOutcome, FieldRole, FieldSpec, ResourceKind
from .user_groups import _results

GROUP_TYPES = frozenset({"user_group", "system_group"})
_COLLECTION = {"user_group": "usergroups", "system_group": "systemgroups"}


@dataclass
class ApplicationGroupMappingConfig:
    application_id: str
    group_id: str
    type: str = "user_group"
    attributes: Dict[str, Any] = field(default_factory=dict)


class ApplicationGroupMappingKind(ResourceKind):
    name = "application_group_mapping"
    config_type = ApplicationGroupMappingConfig
    fields = (
        FieldSpec("application_id", FieldRole.CREATE_ONLY, wire="applicationId"),
        FieldSpec("type", FieldRole.CREATE_ONLY),
        FieldSpec("group_id", FieldRole.CREATE_ONLY, wire="groupId"),
        FieldSpec("attributes", FieldRole.MUTABLE),
    )
    identity = CompositeKey(("application_id", "type", "group_id"), {"type": GROUP_TYPES})

    def _collection(self, key: Mapping[str, str]) -> str:
        app = quote(key["application_id"], safe="")
        return f"/api/v2/applications/{app}/{_COLLECTION[key['type']]}"

    def _item(self, key: Mapping[str, str]) -> str:
        return f"{self._collection(key)}/{quote(key['group_id'], safe='')}"

    def _body(self, desired: State, *roles: FieldRole) -> Dict[str, Any]:
        body = self.encode(desired, roles)
        if not body.get("attributes"):
            body.pop("attributes", None)
        return body

    def create(self, gateway: RemoteGateway, desired: State, key: Mapping[str, str]) -> CreateOutcome:
        gateway.request("POST", self._collection(key), self._body(desired, FieldRole.CREATE_ONLY, FieldRole.MUTABLE))
        return CreateOutcome()

    def fetch(self, gateway: RemoteGateway, key: Mapping[str, str]) -> Optional[Mapping[str, Any]]:
        for item in _results(gateway.json("GET", self._collection(key))):
            if item.get("groupId") == key["group_id"]:
                return item
        return None

    def update(self, gateway: RemoteGateway, key: Mapping[str, str], desired: State, changes: List[str]) -> None:
        # the keys travel in the path only
        gateway.request("PUT", self._item(key), self.encode(desired, (FieldRole.MUTABLE,)))
        return None

    def delete(self, gateway: RemoteGateway, key: Mapping[str, str]) -> None:
        gateway.request("DELETE", self._item(key))

    def exists(self, gateway: RemoteGateway, desired: State, key: Mapping[str, str]) -> bool:
        return self.fetch(gateway, key) is not None
