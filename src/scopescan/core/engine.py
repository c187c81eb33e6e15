"""Scan engine: external interface and process-wide session registry."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta
import logging

from pydantic import BaseModel

from scopescan.core.cancel import CancelReason
from scopescan.core.config import ScanConfig
from scopescan.core.errors import ScopeRejected, UnknownSession
from scopescan.core.result import ModuleKind, ScanResult, SessionState
from scopescan.core.runner import Runner
from scopescan.core.safety import authorize
from scopescan.core.session import ScanSession, SessionStatus
from scopescan.core.target import Resolver, validate
from scopescan.probes import ProbeFactory, default_probe_factories

logger = logging.getLogger(__name__)


class SessionHandle(BaseModel):
    """Opaque reference to a registered session."""

    session_id: str

    def __str__(self) -> str:
        return self.session_id


class CancelAck(BaseModel):
    session_id: str
    accepted: bool
    state: SessionState


class ScanEngine:
    """Owns the session registry for one process.

    Use as an async context manager (or call ``close``) so running scans are
    cancelled and awaited on shutdown. Terminal sessions stay registered until
    discarded or until ``retention_seconds`` after they finished.
    """

    def __init__(
        self,
        probe_factories: Mapping[ModuleKind, ProbeFactory] | None = None,
        resolver: Resolver | None = None,
        retention_seconds: float = 3600.0,
    ) -> None:
        self.probe_factories = dict(probe_factories or default_probe_factories())
        self.resolver = resolver
        self.retention = timedelta(seconds=retention_seconds)
        self._sessions: dict[str, ScanSession] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._closed = False

    async def __aenter__(self) -> ScanEngine:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def __len__(self) -> int:
        return len(self._sessions)

    async def submit_scan(
        self,
        raw_target: str,
        modules: Iterable[ModuleKind | str],
        config: ScanConfig | None = None,
    ) -> SessionHandle:
        """Validate, authorize and start a scan.

        Args:
            raw_target: URL or host/IP literal to scan
            modules: Probe modules to run
            config: Scan configuration; defaults apply when omitted

        Returns:
            Handle for polling, cancelling and fetching the result

        Raises:
            InvalidTarget: Malformed or unresolvable target
            ScopeRejected: Target denied by the safety gate
            ValueError: Empty or unknown module selection
        """
        if self._closed:
            msg = "engine is closed"
            raise RuntimeError(msg)
        self.purge_expired()

        config = config or ScanConfig()
        selection = [ModuleKind(m) for m in modules]
        if not selection:
            msg = "at least one probe module must be selected"
            raise ValueError(msg)
        unknown = [m for m in selection if m not in self.probe_factories]
        if unknown:
            msg = f"no probe module registered for: {', '.join(m.value for m in unknown)}"
            raise ValueError(msg)

        target = await validate(raw_target, ports=config.ports, resolver=self.resolver)
        session = ScanSession(target, selection, config, raw_target=raw_target)
        session.transition(SessionState.AUTHORIZING)
        try:
            authorize(target, config.allow_private_targets, scope=config.scope_allowlist)
        except ScopeRejected:
            session.transition(SessionState.REJECTED)
            logger.warning("Scan of %s rejected by safety gate", target.host)
            raise

        session.transition(SessionState.RUNNING)
        probes = {kind: self.probe_factories[kind]() for kind in session.modules}
        runner = Runner(session, probes)
        runner.schedule()

        self._sessions[session.session_id] = session
        task = asyncio.create_task(runner.run(), name=f"scan-{session.session_id}")
        self._tasks[session.session_id] = task
        task.add_done_callback(lambda t, sid=session.session_id: self._on_done(sid, t))

        logger.info(
            "Started scan %s of %s with modules: %s",
            session.session_id,
            target.host,
            ", ".join(m.value for m in session.modules),
        )
        return SessionHandle(session_id=session.session_id)

    def _on_done(self, session_id: str, task: asyncio.Task) -> None:
        self._tasks.pop(session_id, None)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Runner for scan %s crashed",
                session_id,
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    def _get(self, handle: SessionHandle | str) -> ScanSession:
        session_id = handle.session_id if isinstance(handle, SessionHandle) else str(handle)
        try:
            return self._sessions[session_id]
        except KeyError:
            msg = f"unknown session: {session_id}"
            raise UnknownSession(msg) from None

    def cancel_scan(self, handle: SessionHandle | str) -> CancelAck:
        """Broadcast cancellation to a running scan."""
        session = self._get(handle)
        accepted = False
        if not session.is_terminal:
            accepted = session.cancel_token.cancel(CancelReason.OPERATOR)
            if accepted:
                logger.info("Cancellation requested for scan %s", session.session_id)
        return CancelAck(session_id=session.session_id, accepted=accepted, state=session.state)

    def get_status(self, handle: SessionHandle | str) -> SessionStatus:
        self.purge_expired()
        return self._get(handle).status()

    def get_result(self, handle: SessionHandle | str) -> ScanResult:
        """Return the result of a terminal session.

        Raises:
            NotTerminalYet: If the session is still running
        """
        self.purge_expired()
        return self._get(handle).result()

    async def wait(self, handle: SessionHandle | str, timeout: float | None = None) -> ScanResult:
        """Wait for a session to reach a terminal state and return its result."""
        session = self._get(handle)
        task = self._tasks.get(session.session_id)
        if task is not None:
            await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        return session.result()

    def discard(self, handle: SessionHandle | str) -> None:
        """Remove a session from the registry, cancelling it if still running."""
        session = self._get(handle)
        if not session.is_terminal:
            session.cancel_token.cancel(CancelReason.OPERATOR)
        del self._sessions[session.session_id]

    def purge_expired(self, now: datetime | None = None) -> int:
        """Drop terminal sessions older than the retention period."""
        now = now or datetime.now()
        expired = [
            sid
            for sid, session in self._sessions.items()
            if session.is_terminal
            and session.ended_at is not None
            and now - session.ended_at > self.retention
        ]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.debug("Purged %d expired sessions", len(expired))
        return len(expired)

    async def close(self) -> None:
        """Cancel every running scan and wait for the runners to finish."""
        self._closed = True
        for session in self._sessions.values():
            if not session.is_terminal:
                session.cancel_token.cancel(CancelReason.SHUTDOWN)
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
