"""Data models for findings, module run records and scan results."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Severity(str, Enum):
    """Finding severity levels."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


class Confidence(str, Enum):
    HIGH = "high"
    LOW = "low"


class FindingKind(str, Enum):
    """Category of a discovered fact."""

    HEADER_MISCONFIGURATION = "header-misconfiguration"
    TLS_CERTIFICATE = "tls-certificate"
    OPEN_PORT = "open-port"
    DISCOVERED_PATH = "discovered-path"
    NETWORK_ERROR = "network-error"


class ModuleKind(str, Enum):
    """Probe module variants that can be selected for a scan."""

    HTTP_HEADERS = "http-headers"
    PORTS = "ports"
    DIRECTORIES = "directories"


class ModuleStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed-out"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self not in (ModuleStatus.PENDING, ModuleStatus.RUNNING)


class SessionState(str, Enum):
    """Scan session lifecycle states."""

    CREATED = "created"
    AUTHORIZING = "authorizing"
    RUNNING = "running"
    COMPLETED = "completed"
    PARTIALLY_FAILED = "partially-failed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset(
    {
        SessionState.COMPLETED,
        SessionState.PARTIALLY_FAILED,
        SessionState.FAILED,
        SessionState.CANCELLED,
        SessionState.REJECTED,
    }
)


class Finding(BaseModel):
    """One discovered security-relevant fact. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    kind: FindingKind = Field(..., description="Category of the finding")
    module: ModuleKind = Field(..., description="Probe module that produced it")
    target: str = Field(..., description="Host the finding applies to")
    severity: Severity = Field(..., description="Severity level")
    title: str = Field(..., min_length=1, description="Short headline")
    description: str = Field(..., description="Human-readable description")
    evidence: str = Field(..., description="Raw evidence (header value, status, banner)")
    confidence: Confidence = Confidence.HIGH
    port: int | None = Field(None, ge=0, le=65535)
    path: str | None = None
    remediation: str | None = None
    cwe_id: str | None = Field(None, description="Common Weakness Enumeration ID")
    timestamp: datetime = Field(default_factory=datetime.now)

    @property
    def dedup_key(self) -> tuple[str, str, str]:
        """Structural identity used for deduplication."""
        return (self.kind.value, self.target, self.evidence)


class ModuleRunRecord(BaseModel):
    """Per-module execution state within a session."""

    module: ModuleKind
    status: ModuleStatus = ModuleStatus.PENDING
    reason: str | None = None
    started_at: datetime | None = None
    ended_at: datetime | None = None
    finding_count: int = 0

    @property
    def duration(self) -> float | None:
        if self.started_at is None or self.ended_at is None:
            return None
        return (self.ended_at - self.started_at).total_seconds()


class Summary(BaseModel):
    """Counts computed from a frozen snapshot of a session."""

    total: int = 0
    by_severity: dict[Severity, int] = Field(default_factory=dict)
    by_module_status: dict[ModuleStatus, int] = Field(default_factory=dict)
    modules: dict[ModuleKind, ModuleStatus] = Field(default_factory=dict)


class ScanResult(BaseModel):
    """Terminal findings sequence plus summary, handed to report generators."""

    session_id: str = Field(..., description="Unique scan identifier")
    target: str = Field(..., description="Scanned target as submitted")
    state: SessionState
    findings: list[Finding] = Field(default_factory=list)
    summary: Summary
    modules: list[ModuleRunRecord] = Field(default_factory=list)
    start_time: datetime
    end_time: datetime | None = None
    scan_duration: float | None = None
    scanner_version: str = "0.1.0"

    def get_by_severity(self, severity: Severity) -> list[Finding]:
        """Filter findings by severity level."""
        return [f for f in self.findings if f.severity == severity]

    def get_by_kind(self, kind: FindingKind) -> list[Finding]:
        return [f for f in self.findings if f.kind == kind]
