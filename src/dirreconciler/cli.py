"""
Command-line interface for the directory reconciler.

Usage (examples):
  - List resource kinds:
      drec kinds

  - Create, or bring an existing object in line with a desired-state file:
      drec apply --kind user_group --desired ./group.yml
      drec apply --kind user_group --desired ./group.yml --identity 5f1e... --plan

  - Read / delete / import by identity:
      drec read   --kind user_group_membership --identity grp1:usr9
      drec delete --kind application_group_mapping --identity app1:user_group:grp2
      drec import --kind user_group --name "Engineering"

Exit codes: 0 ok, 1 not found, 2 fatal/config error, 3 timed out, 4 transient error.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

import yaml

from .core.config import AppConfig, ConfigError, load_config
from .core.errors import FatalError, NotFound, ReconcileError, TimedOut, TransientError
from .core.gateway import HttpGateway
from .core.logging_setup import build_logger
from .core.models import ResourceInstance
from .core.poller import ActionPoller, PollerConfig
from .core.reconciler import Reconciler
from .kinds.registry import KindRegistry, build_registry

EXIT_OK = 0
EXIT_NOT_FOUND = 1
EXIT_FATAL = 2
EXIT_TIMED_OUT = 3
EXIT_TRANSIENT = 4

_MASK = "***REDACTED***"


def _read_desired(path: str) -> Dict[str, Any]:
    """Desired state from a YAML or JSON mapping (JSON is valid YAML)."""
    p = Path(path)
    if not p.exists():
        raise FatalError(f"Desired-state file not found: {path}")
    try:
        data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise FatalError(f"Invalid desired-state file {path}: {e}") from e
    if not isinstance(data, dict):
        raise FatalError(f"Desired-state file must hold a mapping: {path}")
    return data


def _render(instance: ResourceInstance, *, sensitive: Iterable[str], show_secrets: bool) -> str:
    out = instance.to_dict()
    if not show_secrets:
        for name in sensitive:
            if out["observed_state"].get(name):
                out["observed_state"][name] = _MASK
    return json.dumps(out, indent=2, sort_keys=True, default=str)


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--kind", required=True, help="Resource kind (see `drec kinds`)")
    p.add_argument("--config", default="", help="YAML config file (default: reconciler.yml lookup)")

    # API / HTTP
    p.add_argument("--base-url", default="", help="API base URL")
    p.add_argument("--api-key", default="", help="API key (prefer DREC_API__API_KEY or .env)")
    p.add_argument("--org-id", default="", help="Organisation ID for multi-tenant admins")
    p.add_argument("--verify-tls", default=None, choices=["true", "false"], help="Verify TLS (https)")
    p.add_argument("--timeout-sec", type=float, default=None, help="HTTP timeout seconds")
    p.add_argument("--retries", type=int, default=None, help="HTTP retries (5xx/429/network)")

    # Logging
    p.add_argument("--logs-dir", default="", help="Logs base directory")
    p.add_argument("--console-level", default="", help="Console log level (INFO..CRITICAL)")
    p.add_argument("--file-level", default="", help="File log level (DEBUG..CRITICAL)")

    p.add_argument("--show-secrets", action="store_true", help="Print sensitive values instead of masking them")


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="drec", description="Directory resource reconciler")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("kinds", help="List the registered resource kinds")

    a = sub.add_parser("apply", help="Create or update one resource from a desired-state file")
    _add_common(a)
    a.add_argument("--desired", required=True, help="Desired state (.yml/.yaml/.json mapping)")
    a.add_argument("--identity", default="", help="Identity of an existing instance")
    a.add_argument("--plan", action="store_true", help="Only print the planned operation")

    r = sub.add_parser("read", help="Read one resource by identity")
    _add_common(r)
    r.add_argument("--identity", required=True)

    d = sub.add_parser("delete", help="Delete one resource by identity")
    _add_common(d)
    d.add_argument("--identity", required=True)

    i = sub.add_parser("import", help="Adopt an existing remote object by identity or name")
    _add_common(i)
    i.add_argument("--identity", default="")
    i.add_argument("--name", default="", help="Display name (searchable kinds only)")

    return p


def _cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    api: Dict[str, Any] = {}
    if args.base_url:
        api["base_url"] = args.base_url
    if args.api_key:
        api["api_key"] = args.api_key
    if args.org_id:
        api["org_id"] = args.org_id
    if args.verify_tls is not None:
        api["verify_tls"] = args.verify_tls == "true"
    if args.timeout_sec is not None:
        api["timeout_sec"] = args.timeout_sec
    if args.retries is not None:
        api["retries"] = args.retries

    log: Dict[str, Any] = {}
    if args.logs_dir:
        log["base_dir"] = args.logs_dir
    if args.console_level:
        log["console_level"] = args.console_level
    if args.file_level:
        log["file_level"] = args.file_level
    return {"api": api, "logging": log}


def _load(args: argparse.Namespace) -> AppConfig:
    overrides = _cli_overrides(args)
    if args.config:
        return load_config(overrides, files=(args.config,))
    return load_config(overrides)


def _gateway(cfg: AppConfig, logger: Any, retries: int) -> HttpGateway:
    return HttpGateway(
        cfg.api.base_url,
        cfg.api.api_key,
        org_id=cfg.api.org_id,
        verify_tls=bool(cfg.api.verify_tls),
        timeout_sec=float(cfg.api.timeout_sec),
        retries=retries,
        backoff_base_sec=float(cfg.api.backoff_base_sec),
        logger=logger,
    )


def _reconciler(cfg: AppConfig, registry: KindRegistry, kind_name: str, logger: Any) -> Reconciler:
    kind = registry[kind_name]
    gateway = _gateway(cfg, logger, int(cfg.api.retries))
    # status polls retry on the poller's own ticks only
    poll_gateway = _gateway(cfg, logger, 0) if kind.asynchronous else None
    poller = ActionPoller(
        PollerConfig(interval_sec=cfg.poller.interval_sec, timeout_sec=cfg.poller.timeout_sec),
        logger=logger,
    )
    return Reconciler(kind, gateway, poller=poller, poll_gateway=poll_gateway, logger=logger)


def _kinds_cmd(registry: KindRegistry) -> int:
    for name in registry.names():
        kind = registry[name]
        flags = []
        if kind.asynchronous:
            flags.append("async")
        if kind.searchable:
            flags.append("searchable")
        if kind.policy.precheck:
            flags.append("precheck")
        print(f"{name:<28} {kind.identity.describe():<40} {','.join(flags) or '-':<24} {registry.spec(name).help}")
    return EXIT_OK


def _run(args: argparse.Namespace, rec: Reconciler, logger: Any) -> int:
    show = bool(args.show_secrets)
    sensitive = rec.kind.sensitive_fields

    if args.cmd == "apply":
        desired = _read_desired(args.desired)
        current: Optional[ResourceInstance] = None
        if args.identity:
            current, found = rec.read(args.identity)
            if not found:
                logger.warning("%s %s not found; it will be created", rec.kind.name, args.identity)
        if args.plan:
            base = current or ResourceInstance(rec.kind.name)
            decision = rec.plan(base, desired)
            print(json.dumps({"op": decision.op, "reason": decision.reason, "fields": list(decision.fields)}))
            return EXIT_OK
        if current is None or not current.identity:
            instance = rec.create(desired)
        else:
            instance = rec.update(current, desired)
        print(_render(instance, sensitive=sensitive, show_secrets=show))
        return EXIT_OK

    if args.cmd == "read":
        instance, found = rec.read(args.identity)
        print(_render(instance, sensitive=sensitive, show_secrets=show))
        return EXIT_OK if found else EXIT_NOT_FOUND

    if args.cmd == "delete":
        instance = rec.delete(args.identity)
        print(_render(instance, sensitive=sensitive, show_secrets=show))
        return EXIT_OK

    if args.cmd == "import":
        instance = rec.lookup(identity=args.identity or None, name=args.name or None)
        print(_render(instance, sensitive=sensitive, show_secrets=show))
        return EXIT_OK

    raise FatalError(f"Unknown command '{args.cmd}'")  # pragma: no cover


def main(argv: Iterable[str] | None = None) -> int:
    parser = _build_arg_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    try:
        if args.cmd == "kinds":
            return _kinds_cmd(build_registry())

        cfg = _load(args)
        registry = build_registry(cfg.kinds)
        logger = build_logger(
            run_id=cfg.run_id,
            action=args.cmd,
            base_dir=cfg.logging.base_dir,
            console_level=cfg.logging.console_level,
            file_level=cfg.logging.file_level,
            extra={"kind": args.kind},
        )
        logger.info("Starting drec %s --kind %s", args.cmd, args.kind)
        return _run(args, _reconciler(cfg, registry, args.kind, logger), logger)
    except ConfigError as e:
        print(f"config error: {e}", file=sys.stderr)
        return EXIT_FATAL
    except NotFound as e:
        print(f"not found: {e}", file=sys.stderr)
        return EXIT_NOT_FOUND
    except TimedOut as e:
        print(f"timed out: {e}", file=sys.stderr)
        return EXIT_TIMED_OUT
    except TransientError as e:
        print(f"transient error: {e}", file=sys.stderr)
        return EXIT_TRANSIENT
    except ReconcileError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_FATAL


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
