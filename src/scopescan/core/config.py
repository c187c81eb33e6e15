"""Operator-supplied scan configuration."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from scopescan.core.result import ModuleKind
from scopescan.core.target import parse_port_range


class ScanConfig(BaseModel):
    """Configuration for a scan session."""

    # Probe inputs
    port_range: str = Field(default="1-1000", description="Ports to probe, e.g. '1-1000,8080'")
    http_timeout: float = Field(default=10.0, gt=0, le=120, description="Per-request deadline")
    dir_wordlist: list[str] | None = Field(
        default=None, description="Path segments for directory brute-forcing"
    )
    dir_rate_limit: float = Field(default=10.0, gt=0, le=1000, description="Requests per second")
    dir_concurrency: int = Field(default=10, ge=1, le=100)
    dir_similarity_threshold: float = Field(default=90.0, ge=0, le=100)
    max_redirects: int = Field(default=5, ge=0, le=20)
    port_connect_timeout: float = Field(default=0.3, gt=0, le=10)
    port_concurrency: int = Field(default=100, ge=1, le=1000)
    banner_grab: bool = True
    banner_bytes: int = Field(default=256, ge=1, le=4096)
    banner_timeout: float = Field(default=0.5, gt=0, le=10)
    user_agent: str = "ScopeScan/0.1.0"
    verify_tls: bool = True

    # Scheduling
    global_concurrency_ceiling: int | None = Field(
        default=None, ge=1, description="Max simultaneous weighted work; None is unlimited"
    )
    module_timeouts: dict[ModuleKind, float] = Field(default_factory=dict)
    grace_period: float = Field(default=2.0, ge=0, le=60)
    overall_timeout: float | None = Field(default=None, gt=0)
    dedup_window: int = Field(default=50, ge=1, le=10_000)

    # Safety
    allow_private_targets: bool = False
    scope_allowlist: list[str] = Field(default_factory=list)

    @field_validator("port_range")
    @classmethod
    def validate_port_range(cls, v: str) -> str:
        parse_port_range(v)
        return v

    @field_validator("module_timeouts")
    @classmethod
    def validate_module_timeouts(cls, v: dict[ModuleKind, float]) -> dict[ModuleKind, float]:
        for kind, seconds in v.items():
            if seconds <= 0:
                msg = f"timeout for {kind.value} must be positive"
                raise ValueError(msg)
        return v

    @property
    def ports(self) -> tuple[int, ...]:
        return parse_port_range(self.port_range)
