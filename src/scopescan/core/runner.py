"""Scheduler/runner: concurrent, time-bounded, cancellable probe execution."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING

from scopescan.core.cancel import CancelReason
from scopescan.core.errors import ModuleFailed, ModuleTimedOut, ScanCancelled
from scopescan.core.result import Finding, ModuleKind, ModuleStatus, SessionState

if TYPE_CHECKING:
    from scopescan.core.session import ScanSession
    from scopescan.probes.base import ProbeModule

logger = logging.getLogger(__name__)


class ConcurrencyBudget:
    """Global ceiling on the summed concurrency weight of running modules.

    ``None`` means unlimited. A module heavier than the ceiling is clamped to
    the ceiling so it can still run on its own.
    """

    def __init__(self, ceiling: int | None = None) -> None:
        self.ceiling = ceiling
        self.in_use = 0
        self._released = asyncio.Event()

    def _clamp(self, weight: int) -> int:
        if self.ceiling is None:
            return weight
        return min(weight, self.ceiling)

    async def acquire(self, weight: int) -> int:
        weight = self._clamp(weight)
        if self.ceiling is not None:
            while self.in_use + weight > self.ceiling:
                self._released.clear()
                await self._released.wait()
        self.in_use += weight
        return weight

    def release(self, weight: int) -> None:
        self.in_use -= weight
        self._released.set()


@dataclass
class _Update:
    module: ModuleKind
    finding: Finding | None = None
    status: ModuleStatus | None = None
    reason: str | None = None


class Runner:
    """Runs a session's probe modules concurrently.

    Every finding and status change is put on one queue and applied to the
    session by a single writer task, so modules never touch the session
    directly.
    """

    def __init__(self, session: ScanSession, probes: dict[ModuleKind, ProbeModule]) -> None:
        missing = set(session.modules) - set(probes)
        if missing:
            msg = f"no probe module for: {', '.join(sorted(m.value for m in missing))}"
            raise ValueError(msg)
        self.session = session
        self.probes = {kind: probes[kind] for kind in session.modules}
        self.budget = ConcurrencyBudget(session.config.global_concurrency_ceiling)
        self._queue: asyncio.Queue[_Update | None] = asyncio.Queue()
        self._stragglers: set[asyncio.Task] = set()

    def schedule(self) -> None:
        """Create pending run records for every selected module."""
        if not self.session.records:
            self.session.create_records()

    async def run(self) -> SessionState:
        """Run all modules to a terminal state and finish the session."""
        if self.session.state != SessionState.RUNNING:
            msg = f"session must be running, not {self.session.state.value}"
            raise RuntimeError(msg)
        self.schedule()

        writer = asyncio.create_task(self._write(), name=f"writer-{self.session.session_id}")
        tasks = {
            kind: asyncio.create_task(self._run_module(kind, probe), name=f"probe-{kind.value}")
            for kind, probe in self.probes.items()
        }
        try:
            await self._supervise(tasks)
        finally:
            self._queue.put_nowait(None)
            await writer
        return self.session.finish()

    async def _supervise(self, tasks: dict[ModuleKind, asyncio.Task]) -> None:
        config = self.session.config
        cancel = self.session.cancel_token
        loop = asyncio.get_running_loop()
        deadline = loop.time() + config.overall_timeout if config.overall_timeout else None

        pending: set[asyncio.Task] = set(tasks.values())
        cancel_wait = asyncio.ensure_future(cancel.wait())
        try:
            while pending and not cancel.cancelled:
                timeout = None if deadline is None else deadline - loop.time()
                if timeout is not None and timeout <= 0:
                    logger.warning(
                        "Scan %s exceeded overall timeout of %ss",
                        self.session.session_id,
                        config.overall_timeout,
                    )
                    cancel.cancel(CancelReason.TIMEOUT)
                    break
                _done, still = await asyncio.wait(
                    pending | {cancel_wait},
                    timeout=timeout,
                    return_when=asyncio.FIRST_COMPLETED,
                )
                pending = {t for t in still if t is not cancel_wait}
        finally:
            cancel_wait.cancel()

        if not pending:
            return

        logger.info(
            "Cancelling %d running modules (grace period %ss)",
            len(pending),
            config.grace_period,
        )
        if config.grace_period > 0:
            _done, pending = await asyncio.wait(pending, timeout=config.grace_period)
        for kind, task in tasks.items():
            if task in pending:
                logger.warning("Module %s did not stop within the grace period", kind.value)
                self._queue.put_nowait(
                    _Update(kind, status=ModuleStatus.CANCELLED, reason="forced after grace period")
                )
                task.cancel()
                self._stragglers.add(task)
                task.add_done_callback(self._stragglers.discard)

    async def _write(self) -> None:
        """Single writer applying queued updates to the session."""
        while True:
            update = await self._queue.get()
            if update is None:
                return
            if update.finding is not None:
                self.session.append_finding(update.finding)
            elif update.status is not None:
                changed = self.session.update_record(update.module, update.status, update.reason)
                if changed and update.status.is_terminal:
                    record = self.session.records[update.module]
                    logger.info(
                        "Module %s %s (%d findings)%s",
                        update.module.value,
                        update.status.value,
                        record.finding_count,
                        f": {update.reason}" if update.reason else "",
                    )

    def _set_status(self, kind: ModuleKind, status: ModuleStatus, reason: str | None = None) -> None:
        self._queue.put_nowait(_Update(kind, status=status, reason=reason))

    async def _run_module(self, kind: ModuleKind, probe: ProbeModule) -> None:
        cancel = self.session.cancel_token
        descriptor = probe.descriptor
        timeout = self.session.config.module_timeouts.get(kind, descriptor.default_timeout)

        try:
            weight = await cancel.guard(self.budget.acquire(descriptor.concurrency_weight))
        except ScanCancelled:
            self._set_status(kind, ModuleStatus.CANCELLED, "cancelled before start")
            return

        try:
            self._set_status(kind, ModuleStatus.RUNNING)
            drain = asyncio.ensure_future(self._drain(kind, probe))
            try:
                done, _ = await asyncio.wait({drain}, timeout=timeout)
            except asyncio.CancelledError:
                drain.cancel()
                raise

            if not done:
                timed_out = ModuleTimedOut(f"timed out after {timeout}s")
                logger.warning("Module %s %s", kind.value, timed_out.reason)
                self._set_status(kind, ModuleStatus.TIMED_OUT, timed_out.reason)
                drain.cancel()
                if self.session.config.grace_period > 0:
                    await asyncio.wait({drain}, timeout=self.session.config.grace_period)
                return

            if drain.cancelled():
                self._set_status(kind, ModuleStatus.CANCELLED, "module task cancelled")
                return
            exc = drain.exception()
            if exc is None:
                if cancel.cancelled:
                    self._set_status(kind, ModuleStatus.CANCELLED, cancel.reason.value)
                else:
                    self._set_status(kind, ModuleStatus.SUCCEEDED)
            elif isinstance(exc, ScanCancelled):
                self._set_status(kind, ModuleStatus.CANCELLED, str(exc))
            elif isinstance(exc, ModuleTimedOut):
                self._set_status(kind, ModuleStatus.TIMED_OUT, exc.reason)
            elif isinstance(exc, ModuleFailed):
                logger.warning("Module %s failed: %s", kind.value, exc.reason)
                self._set_status(kind, ModuleStatus.FAILED, exc.reason)
            else:
                logger.error(
                    "Module %s raised an unexpected error",
                    kind.value,
                    exc_info=(type(exc), exc, exc.__traceback__),
                )
                self._set_status(kind, ModuleStatus.FAILED, f"{exc.__class__.__name__}: {exc}")
        finally:
            self.budget.release(weight)

    async def _drain(self, kind: ModuleKind, probe: ProbeModule) -> None:
        """Forward findings as the module produces them."""
        cancel = self.session.cancel_token
        stream = probe.run(self.session.target, self.session.config, cancel)
        try:
            async for finding in stream:
                if finding.module != kind:
                    finding = finding.model_copy(update={"module": kind})
                self._queue.put_nowait(_Update(kind, finding=finding))
                if cancel.cancelled:
                    break
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()
