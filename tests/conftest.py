"""Test configuration and fixtures for ScopeScan."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from scopescan.core.cancel import CancelToken
from scopescan.core.config import ScanConfig
from scopescan.core.result import Finding, FindingKind, ModuleKind, Severity
from scopescan.core.target import Scheme, StaticResolver, Target
from scopescan.http import MockClient, SimpleResponse
from scopescan.probes.base import ProbeDescriptor

PUBLIC_IP = "93.184.216.34"


class FakeProbe:
    """Scriptable probe module for runner and engine tests."""

    def __init__(
        self,
        kind: ModuleKind,
        findings: list[Finding] | None = None,
        delay: float = 0.0,
        error: Exception | None = None,
        hang: bool = False,
        ignore_cancel: bool = False,
        weight: int = 1,
        timeout: float = 5.0,
    ) -> None:
        self.descriptor = ProbeDescriptor(
            kind=kind,
            name=f"fake {kind.value}",
            default_timeout=timeout,
            concurrency_weight=weight,
        )
        self.findings = list(findings or [])
        self.delay = delay
        self.error = error
        self.hang = hang
        self.ignore_cancel = ignore_cancel
        self.started = False

    async def run(self, target, config, cancel):
        self.started = True
        for finding in self.findings:
            if self.delay:
                await cancel.guard(asyncio.sleep(self.delay))
            yield finding
        if self.error is not None:
            raise self.error
        if self.hang:
            if self.ignore_cancel:
                await asyncio.sleep(3600)
            else:
                await cancel.guard(asyncio.sleep(3600))


class FakeConnector:
    """Connector treating ``open_ports`` as listening; everything else refuses."""

    def __init__(
        self,
        open_ports: dict[int, bytes] | set[int],
        hang: bool = False,
        errors: dict[int, Exception] | None = None,
    ) -> None:
        if isinstance(open_ports, set):
            open_ports = {port: b"" for port in open_ports}
        self.open_ports = open_ports
        self.hang = hang
        self.errors = errors or {}
        self.attempts: list[int] = []

    async def open(self, host: str, port: int, timeout: float):
        self.attempts.append(port)
        if self.hang:
            await asyncio.sleep(3600)
        if port in self.errors:
            raise self.errors[port]
        if port not in self.open_ports:
            raise ConnectionRefusedError(111, "Connection refused")
        reader = asyncio.StreamReader()
        banner = self.open_ports[port]
        if banner:
            reader.feed_data(banner)
        reader.feed_eof()
        writer = MagicMock()
        writer.wait_closed = AsyncMock()
        return reader, writer


@pytest.fixture
def make_probe():
    """Return a factory for scriptable probe modules."""
    return FakeProbe


@pytest.fixture
def make_connector():
    """Return a factory for connectors with scripted listening ports."""
    return FakeConnector


@pytest.fixture
def resolver() -> StaticResolver:
    return StaticResolver(
        {
            "example.test": [PUBLIC_IP],
            "intranet.test": ["10.0.0.5"],
            "mixed.test": [PUBLIC_IP, "192.168.1.10"],
        }
    )


@pytest.fixture
def public_target() -> Target:
    return Target(
        host="example.test",
        addresses=(PUBLIC_IP,),
        scheme=Scheme.HTTP,
        ports=tuple(range(1, 101)),
    )


@pytest.fixture
def https_target() -> Target:
    return Target(host="example.test", addresses=(PUBLIC_IP,), scheme=Scheme.HTTPS)


@pytest.fixture
def config() -> ScanConfig:
    return ScanConfig(
        port_range="1-100",
        grace_period=0.5,
        dir_rate_limit=1000,
        banner_timeout=0.05,
    )


@pytest.fixture
def cancel_token() -> CancelToken:
    return CancelToken()


@pytest.fixture
def finding_factory():
    """Return a factory to create Findings easily in tests."""

    def _factory(
        evidence: str = "evidence",
        severity: Severity = Severity.INFO,
        kind: FindingKind = FindingKind.HEADER_MISCONFIGURATION,
        module: ModuleKind = ModuleKind.HTTP_HEADERS,
        target: str = "example.test",
    ) -> Finding:
        return Finding(
            kind=kind,
            module=module,
            target=target,
            severity=severity,
            title="Test finding",
            description="Test finding",
            evidence=evidence,
        )

    return _factory


@pytest.fixture
def simple_response_factory():
    """Return a factory to create SimpleResponse easily in tests."""

    def _factory(
        status: int = 200, headers: dict | None = None, body: str = "", cookies: dict | None = None
    ):
        return SimpleResponse(
            status=status, headers=headers or {}, body=body, cookies=cookies or {}
        )

    return _factory


@pytest.fixture
def mock_client_factory():
    """Return a factory that builds a MockClient from a mapping easily."""

    def _factory(mapping: dict | None = None, **kwargs) -> MockClient:
        return MockClient(mapping or {}, **kwargs)

    return _factory


@pytest.fixture
def collect():
    """Drain a probe's async generator into a list."""

    async def _collect(stream) -> list[Finding]:
        return [finding async for finding in stream]

    return _collect
