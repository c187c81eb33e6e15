"""ScopeScan - local vulnerability-assessment scanner.

Concurrently probes a single target's HTTP security headers, open TCP ports
and hidden directory paths, and aggregates the findings into one result.
"""

__version__ = "0.1.0"
__author__ = "ScopeScan Team"

from scopescan.core.config import ScanConfig
from scopescan.core.engine import ScanEngine
from scopescan.core.result import Finding, ModuleKind, ScanResult, Severity

__all__ = ["Finding", "ModuleKind", "ScanConfig", "ScanEngine", "ScanResult", "Severity"]
