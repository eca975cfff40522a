"""
Remote gateway: the only component that talks HTTP.

The reconciliation core depends on a single method,

    request(method, path, body=None) -> bytes

which raises NotFound distinctly from every other failure. HttpGateway is the
requests-based implementation:

- Auth via `x-api-key` header (+ optional `x-org-id` for multi-tenant orgs).
- JSON bodies (dict/list are serialised; bytes pass through).
- Retries with exponential backoff on network errors, 5xx and 429.
- No retry on other 4xx.
- Status mapping: 404 / code NOT_FOUND -> NotFound, 409 -> AlreadyExists,
  5xx / 429 / network -> TransientError, other 4xx -> FatalError.

Usage:
    gw = HttpGateway("https://console.example.com/api", api_key="...")
    raw = gw.request("GET", "/api/v2/usergroups/abc")
"""

from __future__ import annotations

import json
import logging
import os
import time
from typing import Any, Dict, Optional

import requests

from .errors import AlreadyExists, FatalError, NotFound, ReconcileError, TransientError

_LOG_PREVIEW = int(os.getenv("DREC_HTTP_PREVIEW", "400"))
_REDACT_KEYS = {"key", "api_key", "apikey", "password", "token", "secret", "x-api-key"}


def _short_json(obj: Any, limit: int = _LOG_PREVIEW) -> str:
    try:
        if isinstance(obj, (dict, list)):
            s = json.dumps(obj, ensure_ascii=False)
        else:
            s = str(obj)
        return s[:limit]
    except (TypeError, ValueError):
        return f"<unserializable:{type(obj).__name__}>"


def _redact(obj: Any) -> Any:
    if isinstance(obj, dict):
        out = {}
        for k, v in obj.items():
            if str(k).lower() in _REDACT_KEYS:
                out[k] = "***REDACTED***"
            else:
                out[k] = _redact(v)
        return out
    if isinstance(obj, list):
        return [_redact(x) for x in obj]
    return obj


def parse_json(raw: bytes) -> Any:
    """Decode a response body; empty bodies decode to {}."""
    if not raw:
        return {}
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise FatalError(f"non-JSON response: {e}", body=raw[:200].decode("utf-8", "replace")) from e


class RemoteGateway:
    """Interface the reconciler consumes. Implementations must be safe to share."""

    def request(self, method: str, path: str, body: Any = None) -> bytes:
        raise NotImplementedError

    def json(self, method: str, path: str, body: Any = None) -> Any:
        return parse_json(self.request(method, path, body))


def _error_message(status: int, text: str) -> Dict[str, str]:
    out = {"message": f"API request failed with status code {status}", "code": ""}
    try:
        data = json.loads(text) if text else {}
    except json.JSONDecodeError:
        return out
    if isinstance(data, dict):
        msg = data.get("message") or data.get("error")
        if isinstance(msg, str) and msg:
            out["message"] = msg
        code = data.get("code")
        if isinstance(code, str):
            out["code"] = code
    return out


def classify(status: int, url: str, text: str) -> ReconcileError:
    """Turn a non-2xx response into the matching error type."""
    info = _error_message(status, text)
    kwargs = {"status": status, "url": url, "body": text[:200]}
    if status == 404 or info["code"] == "NOT_FOUND":
        return NotFound(info["message"], **kwargs)
    if status == 409 or info["code"] == "ALREADY_EXISTS":
        return AlreadyExists(info["message"], **kwargs)
    if status == 429 or status >= 500:
        return TransientError(info["message"], **kwargs)
    return FatalError(info["message"], **kwargs)


class HttpGateway(RemoteGateway):
    """JSON HTTP gateway with retries and timeouts."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        org_id: str = "",
        verify_tls: bool = True,
        timeout_sec: float = 30,
        retries: int = 3,
        backoff_base_sec: float = 0.5,
        session: Optional[requests.Session] = None,
        logger: Optional[logging.LoggerAdapter] = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url is required")
        self.base_url = base_url.rstrip("/")
        self.verify_tls = verify_tls
        self.timeout = float(timeout_sec)
        self.retries = max(0, int(retries))
        self.backoff = float(backoff_base_sec)
        self.log = logger or logging.getLogger("drec.http")

        self.session = session or requests.Session()
        self.session.headers.update({
            "x-api-key": api_key,
            "Accept": "application/json",
            "Content-Type": "application/json",
            "User-Agent": "dirreconciler/HttpGateway",
        })
        if org_id:
            self.session.headers["x-org-id"] = org_id

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def request(self, method: str, path: str, body: Any = None) -> bytes:
        url = self._url(path)
        data: Optional[bytes] = None
        if isinstance(body, (bytes, bytearray)):
            data = bytes(body)
        elif body is not None:
            data = json.dumps(body).encode("utf-8")
            self.log.debug("%s %s payload=%s", method, path, _short_json(_redact(body)))

        attempts = self.retries + 1
        for attempt in range(attempts):
            start = time.monotonic()
            try:
                resp = self.session.request(
                    method=method.upper(),
                    url=url,
                    data=data,
                    timeout=self.timeout,
                    verify=self.verify_tls,
                )
            except requests.RequestException as e:
                err = TransientError(f"{type(e).__name__}: {e}", url=url)
                self.log.warning("%s %s failed (attempt %d/%d): %s", method, path, attempt + 1, attempts, err)
                if attempt < attempts - 1:
                    self._sleep_backoff(attempt)
                    continue
                raise err from e

            elapsed = (time.monotonic() - start) * 1000
            if resp.status_code < 400:
                self.log.debug("%s %s -> %s in %.1fms", method, path, resp.status_code, elapsed)
                return resp.content or b""

            err = classify(resp.status_code, url, resp.text)
            if isinstance(err, NotFound):
                self.log.debug("%s %s -> 404 not found", method, path)
                raise err
            self.log.warning("%s %s -> %s: %s", method, path, resp.status_code, err.message)
            if isinstance(err, TransientError) and attempt < attempts - 1:
                self._sleep_backoff(attempt)
                continue
            raise err

        raise AssertionError("unreachable")  # pragma: no cover

    def _sleep_backoff(self, attempt: int) -> None:
        time.sleep(self.backoff * (2 ** attempt))
