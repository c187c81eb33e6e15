"""Result aggregation: ordered, deduplicated findings and summaries."""

from __future__ import annotations

from collections import deque
import logging

from scopescan.core.result import (
    Finding,
    ModuleKind,
    ModuleRunRecord,
    ModuleStatus,
    Severity,
    Summary,
)

logger = logging.getLogger(__name__)


class ResultAggregator:
    """Folds findings into one arrival-ordered sequence.

    A finding structurally identical (kind, target, evidence) to one of the
    last ``dedup_window`` appended findings is dropped. Once frozen the
    sequence no longer accepts appends.
    """

    def __init__(self, dedup_window: int = 50) -> None:
        self._findings: list[Finding] = []
        self._recent: deque[tuple[str, str, str]] = deque(maxlen=dedup_window)
        self._frozen = False
        self.duplicates_dropped = 0

    @property
    def frozen(self) -> bool:
        return self._frozen

    def __len__(self) -> int:
        return len(self._findings)

    def append(self, finding: Finding) -> bool:
        """Append a finding. Returns False if it was a duplicate.

        Raises:
            RuntimeError: If the aggregator has been frozen
        """
        if self._frozen:
            msg = "cannot append findings after the session reached a terminal state"
            raise RuntimeError(msg)
        key = finding.dedup_key
        if key in self._recent:
            self.duplicates_dropped += 1
            logger.debug("Dropping duplicate finding %s", key)
            return False
        self._recent.append(key)
        self._findings.append(finding)
        return True

    def freeze(self) -> None:
        self._frozen = True

    def snapshot(self) -> tuple[Finding, ...]:
        return tuple(self._findings)

    def summarize(self, records: dict[ModuleKind, ModuleRunRecord] | None = None) -> Summary:
        """Compute counts from a consistent snapshot of findings and records."""
        findings = self.snapshot()
        records = dict(records or {})

        by_severity = {severity: 0 for severity in Severity}
        for finding in findings:
            by_severity[finding.severity] += 1

        by_status = {status: 0 for status in ModuleStatus}
        modules: dict[ModuleKind, ModuleStatus] = {}
        for kind, record in records.items():
            by_status[record.status] += 1
            modules[kind] = record.status

        return Summary(
            total=len(findings),
            by_severity=by_severity,
            by_module_status=by_status,
            modules=modules,
        )
