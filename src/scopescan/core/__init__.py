"""Core scan orchestration components."""

from scopescan.core.config import ScanConfig
from scopescan.core.engine import CancelAck, ScanEngine, SessionHandle
from scopescan.core.result import Finding, ModuleKind, ScanResult, SessionState, Severity
from scopescan.core.session import ScanSession, SessionStatus

__all__ = [
    "CancelAck",
    "Finding",
    "ModuleKind",
    "ScanConfig",
    "ScanEngine",
    "ScanResult",
    "ScanSession",
    "SessionHandle",
    "SessionState",
    "SessionStatus",
    "Severity",
]
