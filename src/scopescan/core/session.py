"""Scan session: lifecycle state machine and ownership of results."""

from __future__ import annotations

from datetime import datetime
import logging
from uuid import uuid4

from pydantic import BaseModel, Field

from scopescan.core.aggregator import ResultAggregator
from scopescan.core.cancel import CancelToken
from scopescan.core.config import ScanConfig
from scopescan.core.errors import NotTerminalYet
from scopescan.core.result import (
    Finding,
    ModuleKind,
    ModuleRunRecord,
    ModuleStatus,
    ScanResult,
    SessionState,
    Summary,
)
from scopescan.core.target import Target

logger = logging.getLogger(__name__)

_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.CREATED: frozenset({SessionState.AUTHORIZING}),
    SessionState.AUTHORIZING: frozenset({SessionState.RUNNING, SessionState.REJECTED}),
    SessionState.RUNNING: frozenset(
        {
            SessionState.COMPLETED,
            SessionState.PARTIALLY_FAILED,
            SessionState.FAILED,
            SessionState.CANCELLED,
        }
    ),
}


class SessionStatus(BaseModel):
    """Point-in-time view of a session, safe to poll while running."""

    session_id: str
    target: str
    state: SessionState
    modules: list[ModuleRunRecord] = Field(default_factory=list)
    finding_count: int = 0
    cancel_requested: bool = False


class ScanSession:
    """One end-to-end scan run against one target.

    The session exclusively owns its findings and module run records. The
    runner mutates them only through ``append_finding`` and ``update_record``,
    both called from a single writer task.
    """

    def __init__(
        self,
        target: Target,
        modules: list[ModuleKind] | tuple[ModuleKind, ...],
        config: ScanConfig,
        raw_target: str | None = None,
    ) -> None:
        self.session_id = str(uuid4())
        self.target = target
        self.raw_target = raw_target or target.base_url
        # declaration order is fixed here; it does not order findings
        self.modules: tuple[ModuleKind, ...] = tuple(dict.fromkeys(modules))
        self.config = config
        self.state = SessionState.CREATED
        self.records: dict[ModuleKind, ModuleRunRecord] = {}
        self.aggregator = ResultAggregator(dedup_window=config.dedup_window)
        self.cancel_token = CancelToken()
        self.created_at = datetime.now()
        self.started_at: datetime | None = None
        self.ended_at: datetime | None = None

    def __repr__(self) -> str:
        return f"<ScanSession {self.session_id} {self.target.host} {self.state.value}>"

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def transition(self, new_state: SessionState) -> None:
        """Move to ``new_state``.

        Raises:
            RuntimeError: If the transition is not allowed from the current state
        """
        allowed = _TRANSITIONS.get(self.state, frozenset())
        if new_state not in allowed:
            msg = f"illegal session transition {self.state.value} -> {new_state.value}"
            raise RuntimeError(msg)
        logger.debug("Session %s: %s -> %s", self.session_id, self.state.value, new_state.value)
        self.state = new_state
        if new_state == SessionState.RUNNING:
            self.started_at = datetime.now()
        if new_state.is_terminal:
            self.ended_at = datetime.now()
            self.aggregator.freeze()

    def create_records(self) -> None:
        """Create one pending run record per selected module."""
        for kind in self.modules:
            self.records[kind] = ModuleRunRecord(module=kind)

    def update_record(
        self, kind: ModuleKind, status: ModuleStatus, reason: str | None = None
    ) -> bool:
        """Single status-update path. Terminal records are never changed."""
        record = self.records[kind]
        if record.status.is_terminal:
            return False
        now = datetime.now()
        if status == ModuleStatus.RUNNING:
            record.started_at = now
        elif status.is_terminal:
            record.ended_at = now
            if record.started_at is None:
                record.started_at = now
        record.status = status
        record.reason = reason
        return True

    def append_finding(self, finding: Finding) -> bool:
        """Single append path; findings from terminal modules are dropped."""
        record = self.records.get(finding.module)
        if record is None or record.status.is_terminal or self.aggregator.frozen:
            logger.debug("Dropping late finding from %s", finding.module.value)
            return False
        appended = self.aggregator.append(finding)
        if appended:
            record.finding_count += 1
        return appended

    def finish(self) -> SessionState:
        """Compute and enter the terminal state from the run records."""
        statuses = [record.status for record in self.records.values()]
        if self.cancel_token.cancelled and ModuleStatus.CANCELLED in statuses:
            state = SessionState.CANCELLED
        elif all(s == ModuleStatus.SUCCEEDED for s in statuses):
            state = SessionState.COMPLETED
        elif ModuleStatus.SUCCEEDED in statuses:
            state = SessionState.PARTIALLY_FAILED
        else:
            state = SessionState.FAILED
        self.transition(state)
        logger.info(
            "Scan %s finished: %s with %d findings",
            self.session_id,
            state.value,
            len(self.aggregator),
        )
        return state

    def summarize(self) -> Summary:
        return self.aggregator.summarize(self.records)

    def status(self) -> SessionStatus:
        return SessionStatus(
            session_id=self.session_id,
            target=self.raw_target,
            state=self.state,
            modules=[record.model_copy() for record in self.records.values()],
            finding_count=len(self.aggregator),
            cancel_requested=self.cancel_token.cancelled,
        )

    def result(self) -> ScanResult:
        """Full findings sequence and summary.

        Raises:
            NotTerminalYet: If the session is still in progress
        """
        if not self.is_terminal:
            msg = f"session {self.session_id} is {self.state.value}"
            raise NotTerminalYet(msg)
        start = self.started_at or self.created_at
        duration = (self.ended_at - start).total_seconds() if self.ended_at else None
        return ScanResult(
            session_id=self.session_id,
            target=self.raw_target,
            state=self.state,
            findings=list(self.aggregator.snapshot()),
            summary=self.summarize(),
            modules=[record.model_copy() for record in self.records.values()],
            start_time=start,
            end_time=self.ended_at,
            scan_duration=duration,
        )
