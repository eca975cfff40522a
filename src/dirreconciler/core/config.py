from __future__ import annotations

import os
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import yaml
from dotenv import find_dotenv, load_dotenv


class ConfigError(Exception):
    """Raised when runtime configuration cannot be resolved."""


# ---------- Typed sections ----------

@dataclass
class AppSection:
    run_id: Optional[str] = None


@dataclass
class ApiSection:
    base_url: str = ""
    api_key: str = ""        # secret – never log in clear text
    org_id: str = ""
    verify_tls: bool = True
    timeout_sec: float = 30
    retries: int = 3
    backoff_base_sec: float = 0.5


@dataclass
class PollerSection:
    interval_sec: float = 5.0
    timeout_sec: float = 300.0


@dataclass
class LoggingSection:
    base_dir: str = "logs"
    console_level: str = "INFO"   # INFO..CRITICAL
    file_level: str = "DEBUG"     # DEBUG..CRITICAL


@dataclass
class AppConfig:
    """Typed configuration object built by `load_config`."""
    app: AppSection
    api: ApiSection
    poller: PollerSection
    logging: LoggingSection
    kinds: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @property
    def run_id(self) -> str:
        """Stable run identifier for this process, generated on first access."""
        if not self.app.run_id:
            self.app.run_id = uuid.uuid4().hex[:12]
        return self.app.run_id


# ---------- Defaults ----------

_DEFAULT_FILES: Tuple[str, ...] = (
    "./reconciler.yml",
    os.path.expanduser("~/.config/dirreconciler/config.yml"),
    "/etc/dirreconciler/config.yml",
)

_DEFAULTS: Dict[str, Any] = {
    "app": {"run_id": None},
    "api": {
        "base_url": "",
        "api_key": "",
        "org_id": "",
        "verify_tls": True,
        "timeout_sec": 30,
        "retries": 3,
        "backoff_base_sec": 0.5,
    },
    "poller": {"interval_sec": 5.0, "timeout_sec": 300.0},
    "logging": {"base_dir": "logs", "console_level": "INFO", "file_level": "DEBUG"},
    "kinds": {},
}

_BOOL_KEYS = {"verify_tls", "precheck"}
_INT_KEYS = {"retries"}
_FLOAT_KEYS = {"timeout_sec", "backoff_base_sec", "interval_sec", "action_timeout_sec"}


# ---------- Utilities ----------

def _deep_merge(base: Dict[str, Any], ext: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Deep-merge for dicts: maps merge recursively, lists/scalars override.
    `ext` wins over `base`. Returns a new dict.
    """
    if not ext:
        return dict(base)
    out: Dict[str, Any] = dict(base)
    for k, v in ext.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _read_yaml_file(path: str) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Top-level YAML must be a mapping: {path}")
    return data


def _load_first_existing(files: Tuple[str, ...]) -> Dict[str, Any]:
    for p in files:
        if os.path.exists(p):
            return _read_yaml_file(p)
    return {}


def _env_to_dict(prefix: str = "DREC_") -> Dict[str, Any]:
    """
    Convert DREC_FOO__BAR=val to {"foo": {"bar": "val"}} (lowercased keys).
    """
    out: Dict[str, Any] = {}
    plen = len(prefix)
    for key, val in os.environ.items():
        if not key.startswith(prefix) or "__" not in key[plen:]:
            continue
        path = key[plen:].lower().split("__")
        cursor = out
        for part in path[:-1]:
            cursor = cursor.setdefault(part, {})
        cursor[path[-1]] = val
    return out


def _interpolate_env(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """
    Replace values like "${VAR}" with os.environ["VAR"] when present.
    """
    def repl(v: Any) -> Any:
        if isinstance(v, str) and v.startswith("${") and v.endswith("}"):
            return os.environ.get(v[2:-1], "")
        return v

    def walk(obj: Any) -> Any:
        if isinstance(obj, dict):
            return {k: walk(repl(v)) for k, v in obj.items()}
        if isinstance(obj, list):
            return [walk(x) for x in obj]
        return repl(obj)

    return walk(cfg)


def _coerce_types(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """
    Type coercion for booleans and numbers in known keys (env values are strings).
    """
    def to_bool(x: Any) -> bool:
        return str(x).strip().lower() in {"1", "true", "yes", "y", "on"}

    def to_number(x: Any, kind: type, path: Tuple[str, ...]) -> Any:
        try:
            return kind(x)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"{'.'.join(path)}: expected {kind.__name__}, got {x!r}") from e

    def walk(obj: Any, key_path: Tuple[str, ...] = ()) -> Any:
        if isinstance(obj, dict):
            return {k: walk(v, key_path + (k,)) for k, v in obj.items()}
        if isinstance(obj, list):
            return [walk(v, key_path) for v in obj]
        # reset_defaults values are payload content, not settings
        if "reset_defaults" in key_path or obj is None:
            return obj
        leaf = key_path[-1] if key_path else ""
        if leaf in _BOOL_KEYS:
            return obj if isinstance(obj, bool) else to_bool(obj)
        if leaf in _INT_KEYS:
            return to_number(obj, int, key_path)
        if leaf in _FLOAT_KEYS:
            return to_number(obj, float, key_path)
        return obj

    return walk(cfg)


def _validate(cfg: Dict[str, Any]) -> None:
    """
    Validate the fields every remote call needs.
    """
    missing = []
    if not cfg.get("api", {}).get("base_url"):
        missing.append("api.base_url")
    if not cfg.get("api", {}).get("api_key"):
        missing.append("api.api_key")
    if missing:
        raise ConfigError(
            "Missing required configuration: " + ", ".join(missing)
            + " (set them in reconciler.yml, a .env file, or DREC_API__BASE_URL / DREC_API__API_KEY)"
        )
    if not isinstance(cfg.get("kinds") or {}, dict):
        raise ConfigError("'kinds' must be a mapping of kind name -> policy overrides")


def _section(cls: type, data: Any, name: str) -> Any:
    if not isinstance(data, dict):
        raise ConfigError(f"'{name}' must be a mapping")
    try:
        return cls(**data)
    except TypeError as e:
        raise ConfigError(f"Invalid '{name}' section: {e}") from e


# ---------- Public API ----------

def load_config(
    cli_overrides: Optional[Dict[str, Any]] = None,
    files: Tuple[str, ...] = _DEFAULT_FILES,
    env_prefix: str = "DREC_",
    validate: bool = True,
) -> AppConfig:
    """
    Build an AppConfig from (in precedence order):
      1) CLI overrides
      2) Environment variables (prefix DREC_, nested via __), including a .env file
      3) YAML file (first existing)
      4) Built-in defaults

    Also performs:
      - ${ENV_VAR} interpolation
      - type coercion (bool/int/float) on known keys
      - validation of required fields when `validate` is set
    """
    # .env never overrides the real environment
    env_path = find_dotenv(usecwd=True)
    if env_path:
        load_dotenv(env_path, override=False)

    file_cfg = _load_first_existing(files)
    env_cfg = _env_to_dict(env_prefix)

    # Combine: defaults <- file <- env <- cli
    merged = _deep_merge(_DEFAULTS, file_cfg)
    merged = _deep_merge(merged, env_cfg)
    merged = _deep_merge(merged, cli_overrides or {})

    merged = _interpolate_env(merged)
    merged = _coerce_types(merged)

    if validate:
        _validate(merged)

    return AppConfig(
        app=_section(AppSection, merged.get("app", {}), "app"),
        api=_section(ApiSection, merged.get("api", {}), "api"),
        poller=_section(PollerSection, merged.get("poller", {}), "poller"),
        logging=_section(LoggingSection, merged.get("logging", {}), "logging"),
        kinds=dict(merged.get("kinds") or {}),
    )
