import json
from typing import Any, Dict, List, Tuple

import pytest

from dirreconciler.core.errors import NotFound
from dirreconciler.core.gateway import RemoteGateway
from dirreconciler.core.poller import ActionPoller, PollerConfig


class FakeGateway(RemoteGateway):
    """In-memory gateway: routes (method, path) to canned responses and records every call.

    A response may be a JSON-able object, bytes, None (empty body), an exception
    instance (raised) or a callable taking the request body. Several responses
    for one route are handed out in order; the last one repeats.
    Unrouted requests raise NotFound, like a 404.
    """

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], List[Any]] = {}
        self.calls: List[Tuple[str, str, Any]] = []

    def on(self, method: str, path: str, *responses: Any) -> "FakeGateway":
        self.routes[(method.upper(), path)] = list(responses) or [None]
        return self

    def request(self, method: str, path: str, body: Any = None) -> bytes:
        method = method.upper()
        self.calls.append((method, path, body))
        key = (method, path)
        if key not in self.routes:
            raise NotFound(f"no route for {method} {path}", status=404, url=path)
        queue = self.routes[key]
        resp = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(resp, BaseException):
            raise resp
        if callable(resp):
            resp = resp(body)
        if resp is None:
            return b""
        if isinstance(resp, (bytes, bytearray)):
            return bytes(resp)
        return json.dumps(resp).encode("utf-8")

    def count(self, method: str, path: str = "") -> int:
        return sum(1 for m, p, _ in self.calls if m == method and (not path or p == path))

    def bodies(self, method: str, path: str) -> List[Any]:
        return [b for m, p, b in self.calls if m == method and p == path]


class FakeClock:
    def __init__(self) -> None:
        self.t = 0.0
        self.sleeps: List[float] = []

    def now(self) -> float:
        return self.t

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        if seconds > 0:
            self.t += seconds


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def poller(clock: FakeClock) -> ActionPoller:
    return ActionPoller(PollerConfig(interval_sec=5.0, timeout_sec=300.0), clock=clock)


@pytest.fixture
def poll_gateway() -> FakeGateway:
    return FakeGateway()
