"""Exception taxonomy for the scan engine.

Errors raised before a session starts (``InvalidTarget``, ``ScopeRejected``)
reach the caller directly. Errors raised inside a probe module are contained
by the runner and recorded on that module's run record.
"""

from __future__ import annotations


class ScanError(Exception):
    """Base class for all scan engine errors."""


class InvalidTarget(ScanError):
    """Raw target input is malformed, unresolvable or uses a disallowed scheme."""


class ScopeRejected(ScanError):
    """The safety gate denied the target."""


class ModuleFailed(ScanError):
    """A probe module stopped because of an unexpected internal error."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class ModuleTimedOut(ModuleFailed):
    """A probe module exceeded its timeout."""


class TooManyRedirects(ModuleFailed):
    """The HTTP-header probe followed more redirects than allowed."""

    def __init__(self, url: str, limit: int) -> None:
        super().__init__(f"more than {limit} redirects starting at {url}")
        self.url = url
        self.limit = limit


class TransientNetworkError(ScanError):
    """Connection refused/reset or DNS failure on a single probe attempt."""


class ScanCancelled(ScanError):
    """Raised inside a module when the cancel token fires mid-operation."""


class NotTerminalYet(ScanError):
    """A result was requested for a session that is still in progress."""


class UnknownSession(ScanError, KeyError):
    """No session is registered under the given handle."""
