"""Probe module contract.

A probe module is any object exposing a ``descriptor`` and an async-generator
``run`` method. New kinds are added by implementing this protocol; there is
no base class to inherit from.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from enum import Enum
from typing import TYPE_CHECKING, Protocol

from pydantic import BaseModel, ConfigDict, Field

from scopescan.core.result import ModuleKind

if TYPE_CHECKING:
    from scopescan.core.cancel import CancelToken
    from scopescan.core.config import ScanConfig
    from scopescan.core.result import Finding
    from scopescan.core.target import Target


class Capability(str, Enum):
    """Declared side effects, shown to the operator. Not enforced."""

    NETWORK_READ_ONLY = "network-read-only"
    FILESYSTEM_NONE = "filesystem-none"


class ProbeDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: ModuleKind
    name: str = Field(..., min_length=1)
    default_timeout: float = Field(..., gt=0, description="Seconds before the module times out")
    concurrency_weight: int = Field(default=1, ge=1, description="Cost units in the global budget")
    capability: tuple[Capability, ...] = (Capability.NETWORK_READ_ONLY, Capability.FILESYSTEM_NONE)


class ProbeModule(Protocol):
    descriptor: ProbeDescriptor

    def run(
        self, target: Target, config: ScanConfig, cancel: CancelToken
    ) -> AsyncIterator[Finding]:  # pragma: no cover - thin protocol
        """Yield findings for ``target``; finite and not restartable."""
        ...
