"""
Reconciler: drives one resource kind through its lifecycle.

    ABSENT -> CREATING -> PRESENT -> UPDATING -> PRESENT -> DELETING -> ABSENT
                          PRESENT -> ABSENT  (remote object gone during a read)

The reconciler holds no state between calls: every operation takes an
instance (or a bare identity string) and returns a new instance.

Usage:
    kinds = build_registry()
    rec = Reconciler(kinds["user_group_membership"], HttpGateway(...))
    inst = rec.create({"user_group_id": "g1", "user_id": "u1"})
    inst, found = rec.read(inst)
    rec.delete(inst)
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from ..kinds.base import FieldRole, ResourceKind
from .drift import Decision, decide, detect_drift, merge_observed
from .errors import AlreadyExists, FatalError, NotFound, ReplaceRequired
from .gateway import RemoteGateway
from .models import RemoteActionTask, ResourceInstance, State, Status
from .poller import ActionPoller, raise_for_result

InstanceRef = Union[ResourceInstance, str]


class Reconciler:
    def __init__(
        self,
        kind: ResourceKind,
        gateway: RemoteGateway,
        *,
        poller: Optional[ActionPoller] = None,
        poll_gateway: Optional[RemoteGateway] = None,
        logger: Optional[logging.LoggerAdapter] = None,
    ) -> None:
        self.kind = kind
        self.gateway = gateway
        # task status reads; the poller's tick loop is their only retry
        self.poll_gateway = poll_gateway or gateway
        self.log = logger or logging.getLogger("drec.reconciler")
        self.poller = poller or ActionPoller(logger=self.log)

    # ------------------------------------------------------------------ helpers
    def _desired(self, config: Any) -> State:
        if isinstance(config, Mapping):
            config = self.kind.build_config(config)
        return self.kind.desired_state(config)

    def _key(self, identity: str) -> Dict[str, str]:
        return self.kind.identity.parse(identity)

    def _instance(self, ref: InstanceRef) -> ResourceInstance:
        """Accept an instance, or a bare identity string (validated by the codec)."""
        if isinstance(ref, ResourceInstance):
            if ref.kind != self.kind.name:
                raise FatalError(f"instance of kind '{ref.kind}' passed to the '{self.kind.name}' reconciler")
            return ref
        self._key(ref)
        return ResourceInstance(self.kind.name, identity=ref, status=Status.PRESENT)

    def _observe(self, key: Mapping[str, str]) -> Optional[State]:
        raw = self.kind.fetch(self.gateway, key)
        if raw is None:
            return None
        fresh = self.kind.decode(raw)
        # the key is authoritative for the fields it carries
        fresh.update(key)
        return fresh

    def _settle(self, instance: ResourceInstance) -> Tuple[ResourceInstance, bool]:
        """Read the remote object behind `instance` and fold the result in."""
        key = self._key(instance.identity)
        try:
            fresh = self._observe(key)
        except NotFound:
            fresh = None

        drift = detect_drift(
            instance.observed_state,
            fresh,
            instance.desired_state,
            computed=frozenset(self.kind.computed_fields),
            sensitive=frozenset(self.kind.sensitive_fields),
        )
        if fresh is None:
            self.log.info("%s %s not found remotely; marking absent", self.kind.name, instance.identity)
            return instance.transition(Status.ABSENT, identity="", observed_state={}, drift=drift), False

        if drift.changed:
            self.log.info(
                "%s %s drifted: changed=%s removed=%s",
                self.kind.name, instance.identity,
                sorted(drift.changed_fields), sorted(drift.removed_fields),
            )
        observed = merge_observed(
            instance.observed_state, fresh, sensitive=frozenset(self.kind.sensitive_fields)
        )
        return instance.transition(Status.PRESENT, observed_state=observed, drift=drift), True

    def _await(self, task: RemoteActionTask, identity: str, desired: Mapping[str, Any]) -> RemoteActionTask:
        self.log.info("%s %s: waiting for action %s", self.kind.name, identity, task.task_id)
        result = self.poller.wait(
            task,
            lambda t: self.kind.fetch_task(self.poll_gateway, t),
            timeout_sec=self.kind.action_timeout(desired),
        )
        return raise_for_result(result, identity=identity)

    def _adopt(self, instance: ResourceInstance) -> ResourceInstance:
        """Mirror caller-controlled fields from observed state into desired state (import)."""
        roles = (FieldRole.CREATE_ONLY, FieldRole.MUTABLE)
        desired = {
            k: instance.observed_state[k] for k in self.kind.names(*roles) if k in instance.observed_state
        }
        return instance.transition(instance.status, desired_state=desired)

    # --------------------------------------------------------------- lifecycle
    def create(self, config: Any) -> ResourceInstance:
        desired = self._desired(config)
        scheme = self.kind.identity

        identity = ""
        key: Dict[str, str] = {}
        if scheme.local:
            identity = scheme.format(desired)
            key = scheme.parse(identity)

        if self.kind.policy.precheck and self.kind.exists(self.gateway, desired, key):
            raise AlreadyExists(
                f"{self.kind.name}: an equivalent remote object already exists"
                + (f" ({identity})" if identity else ""),
                identity=identity,
            )

        self.log.info("%s: creating %s", self.kind.name, identity or "(id assigned remotely)")
        outcome = self.kind.create(self.gateway, desired, key)
        if not identity:
            identity = scheme.format({**desired, **outcome.state})

        instance = ResourceInstance(
            self.kind.name,
            identity=identity,
            desired_state=desired,
            observed_state=dict(outcome.state),
            status=Status.CREATING,
        )
        if outcome.task is not None:
            self._await(outcome.task, identity, desired)

        instance, found = self._settle(instance)
        if not found:
            raise FatalError(
                f"{self.kind.name} {identity}: created, but not found on the follow-up read",
                identity=identity,
            )
        self.log.info("%s %s: present", self.kind.name, identity)
        return instance

    def read(self, ref: InstanceRef) -> Tuple[ResourceInstance, bool]:
        """Refresh from the remote side. A missing object is reported as (ABSENT instance, False)."""
        instance = self._instance(ref)
        if instance.status is Status.ABSENT:
            return instance, False
        bare = not isinstance(ref, ResourceInstance)
        instance, found = self._settle(instance)
        if found and bare:
            instance = self._adopt(instance)
        return instance, found

    def update(self, instance: ResourceInstance, config: Any) -> ResourceInstance:
        instance = self._instance(instance)
        if instance.status is Status.ABSENT:
            raise FatalError(f"{self.kind.name}: cannot update an absent instance; create it first")

        desired = self._desired(config)
        decision = self._plan(instance, desired)
        if decision.op == "REPLACE":
            raise ReplaceRequired(
                f"{self.kind.name} {instance.identity}: {decision.reason}; delete and re-create instead",
                fields=decision.fields,
                identity=instance.identity,
            )

        if decision.op == "NOOP":
            self.log.debug("%s %s: no mutable field changed; skipping update", self.kind.name, instance.identity)
            instance, _ = self._settle(instance.transition(instance.status, desired_state=desired))
            return instance

        self.log.info("%s %s: updating %s", self.kind.name, instance.identity, list(decision.fields))
        updating = instance.transition(Status.UPDATING, desired_state=desired)
        task = self.kind.update(self.gateway, self._key(instance.identity), desired, list(decision.fields))
        if task is not None:
            self._await(task, instance.identity, desired)
        instance, _ = self._settle(updating)
        return instance

    def delete(self, ref: InstanceRef) -> ResourceInstance:
        """Remove the remote object; an object that is already gone counts as deleted."""
        instance = self._instance(ref)
        if instance.status is Status.ABSENT:
            return instance

        deleting = instance.transition(Status.DELETING)
        try:
            self.kind.delete(self.gateway, self._key(deleting.identity))
        except NotFound:
            self.log.debug("%s %s: already gone", self.kind.name, deleting.identity)
        self.log.info("%s %s: deleted", self.kind.name, deleting.identity)
        return deleting.absent()

    def import_resource(self, external_id: str) -> ResourceInstance:
        """Adopt an existing remote object by identity; a missing object raises NotFound."""
        instance, found = self.read(str(external_id or ""))
        if not found:
            raise NotFound(f"{self.kind.name} {external_id}: not found", identity=str(external_id))
        return instance

    def lookup(self, identity: Optional[str] = None, name: Optional[str] = None) -> ResourceInstance:
        """Find one remote object by identity or, for searchable kinds, by display name."""
        if identity:
            if name:
                self.log.debug("%s: both identity and name given; using identity %s", self.kind.name, identity)
            return self.import_resource(identity)
        if not name:
            raise FatalError(f"{self.kind.name}: lookup needs an identity or a name")
        if not self.kind.searchable:
            raise FatalError(f"{self.kind.name}: lookup by name is not supported")

        matches = self.kind.search(self.gateway, name)
        if not matches:
            raise NotFound(f"{self.kind.name}: no object named {name!r}")
        if len(matches) > 1:
            self.log.warning(
                "%s: %d objects named %r; using the first one returned", self.kind.name, len(matches), name
            )
        return self.import_resource(self.kind.identity.format(self.kind.decode(matches[0])))

    def plan(self, instance: ResourceInstance, config: Any) -> Decision:
        """Decide what `update`/`create` would do, using only already-observed state."""
        return self._plan(self._instance(instance), self._desired(config))

    def _plan(self, instance: ResourceInstance, desired: State) -> Decision:
        if instance.status is Status.ABSENT:
            return decide(desired, None, mutable=(), create_only=())
        return decide(
            desired,
            instance.observed_state,
            mutable=self.kind.mutable_fields,
            create_only=self.kind.create_only_fields,
            previous_desired=instance.desired_state,
        )
