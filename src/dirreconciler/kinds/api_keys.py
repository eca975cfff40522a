"""
api_key: organisation API keys.

The secret `key` value is only present in the create response. It is kept in
observed state from then on and never refreshed (or cleared) by a read.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Mapping, Optional
from urllib.parse import quote

from ..core.errors import FatalError
from ..core.gateway import RemoteGateway
from ..core.identity import OpaqueIdentity
from ..core.models import State
from .base import CreateOutcome, FieldRole, FieldSpec, ResourceKind


@dataclass
class ApiKeyConfig:
    name: str
    description: str = ""
    expires: str = ""

    def __post_init__(self) -> None:
        if not 3 <= len(self.name or "") <= 64:
            raise FatalError(f"api_key: name must be 3-64 characters, got {self.name!r}")
        if len(self.description or "") > 1024:
            raise FatalError("api_key: description must be at most 1024 characters")


class ApiKeyKind(ResourceKind):
    name = "api_key"
    config_type = ApiKeyConfig
    fields = (
        FieldSpec("id", FieldRole.COMPUTED, wire="_id"),
        FieldSpec("name", FieldRole.MUTABLE),
        FieldSpec("description", FieldRole.MUTABLE),
        FieldSpec("expires", FieldRole.MUTABLE),
        FieldSpec("key", FieldRole.SENSITIVE),
        FieldSpec("created", FieldRole.COMPUTED),
        FieldSpec("updated", FieldRole.COMPUTED),
    )
    identity = OpaqueIdentity("id")

    path = "/api/v2/api-keys"

    def _item(self, key: Mapping[str, str]) -> str:
        return f"{self.path}/{quote(key['id'], safe='')}"

    def _body(self, desired: State) -> dict:
        body = self.encode(desired, (FieldRole.MUTABLE,))
        # empty optional strings are omitted, not sent as ""
        return {k: v for k, v in body.items() if v not in ("", None)}

    def create(self, gateway: RemoteGateway, desired: State, key: Mapping[str, str]) -> CreateOutcome:
        raw = gateway.json("POST", self.path, self._body(desired))
        return CreateOutcome(state=self.decode(raw))

    def fetch(self, gateway: RemoteGateway, key: Mapping[str, str]) -> Optional[Mapping[str, Any]]:
        return gateway.json("GET", self._item(key))

    def update(self, gateway: RemoteGateway, key: Mapping[str, str], desired: State, changes: List[str]) -> None:
        gateway.json("PUT", self._item(key), self._body(desired))
        return None

    def delete(self, gateway: RemoteGateway, key: Mapping[str, str]) -> None:
        gateway.request("DELETE", self._item(key))
