"""
Error taxonomy for the reconciliation engine.

- NotFound: remote object absent (recovered locally by Read/Delete).
- FatalError: non-retryable; AlreadyExists, identity errors, ReplaceRequired
  and ActionFailed derive from it.
- TransientError: network/5xx/429; retried only inside the action poller.
- TimedOut: the action poller gave up waiting (remote work may still run).
"""

from __future__ import annotations

from typing import Any, Optional


class ReconcileError(Exception):
    """Base error with optional HTTP/identity context."""

    def __init__(
        self,
        message: str = "",
        *,
        status: int = 0,
        url: str = "",
        body: str = "",
        identity: str = "",
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.url = url
        self.body = body
        self.identity = identity

    def __str__(self) -> str:
        base = self.message or self.__class__.__name__
        if self.status:
            base += f" (status={self.status}, url={self.url})"
        return base


class NotFound(ReconcileError):
    """The remote object does not exist (HTTP 404 or domain equivalent)."""


class TransientError(ReconcileError):
    """A remote or network failure that may succeed when retried."""


class FatalError(ReconcileError):
    """A failure that retrying will not fix."""


class AlreadyExists(FatalError):
    """A conflicting remote object already exists."""


class IdentityError(FatalError):
    """Base for local identity codec violations."""


class MalformedIdentity(IdentityError):
    """An identity string does not match the kind's key format."""


class InvalidSegment(IdentityError):
    """A composite key segment is empty, contains the delimiter, or is not an allowed tag."""


class ReplaceRequired(FatalError):
    """An update tried to change a create-only field."""

    def __init__(self, message: str = "", *, fields: Any = (), **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.fields = tuple(fields)


class ActionFailed(FatalError):
    """A polled remote action reached the failed state."""

    def __init__(self, message: str = "", *, task: Optional[Any] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.task = task


class TimedOut(ReconcileError):
    """The poll deadline elapsed before the remote action reached a terminal state."""

    def __init__(self, message: str = "", *, task: Optional[Any] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.task = task
