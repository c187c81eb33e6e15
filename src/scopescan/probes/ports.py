"""TCP connect port probe with optional banner capture."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
import logging
import time
from typing import TYPE_CHECKING, ClassVar, Protocol

from pydantic import BaseModel

from scopescan.core.errors import ScanCancelled, TransientNetworkError
from scopescan.core.result import Finding, FindingKind, ModuleKind, Severity
from scopescan.probes.base import ProbeDescriptor

if TYPE_CHECKING:
    from scopescan.core.cancel import CancelToken
    from scopescan.core.config import ScanConfig
    from scopescan.core.target import Target

logger = logging.getLogger(__name__)

WELL_KNOWN_SERVICES: dict[int, str] = {
    21: "ftp",
    22: "ssh",
    23: "telnet",
    25: "smtp",
    53: "dns",
    80: "http",
    110: "pop3",
    111: "rpcbind",
    135: "msrpc",
    139: "netbios-ssn",
    143: "imap",
    443: "https",
    445: "microsoft-ds",
    465: "smtps",
    587: "submission",
    993: "imaps",
    995: "pop3s",
    1433: "mssql",
    1521: "oracle",
    2375: "docker",
    3306: "mysql",
    3389: "rdp",
    5432: "postgresql",
    5900: "vnc",
    6379: "redis",
    8080: "http-proxy",
    8443: "https-alt",
    9200: "elasticsearch",
    11211: "memcached",
    27017: "mongodb",
}

# Banner prefixes checked before falling back to the port table
BANNER_SIGNATURES: tuple[tuple[str, str], ...] = (
    ("SSH-", "ssh"),
    ("HTTP/", "http"),
    ("220 ", "ftp/smtp"),
    ("* OK", "imap"),
    ("+OK", "pop3"),
    ("RFB ", "vnc"),
    ("-ERR", "redis"),
)

# Cleartext or administrative services that should not face the internet
RISKY_SERVICES: dict[str, Severity] = {
    "telnet": Severity.HIGH,
    "ftp": Severity.MEDIUM,
    "ftp/smtp": Severity.MEDIUM,
    "rdp": Severity.MEDIUM,
    "vnc": Severity.HIGH,
    "microsoft-ds": Severity.HIGH,
    "netbios-ssn": Severity.MEDIUM,
    "msrpc": Severity.MEDIUM,
    "docker": Severity.CRITICAL,
    "redis": Severity.HIGH,
    "memcached": Severity.HIGH,
    "mongodb": Severity.HIGH,
    "elasticsearch": Severity.HIGH,
    "mysql": Severity.MEDIUM,
    "postgresql": Severity.MEDIUM,
    "mssql": Severity.MEDIUM,
    "oracle": Severity.MEDIUM,
}


class PortState(BaseModel):
    """Outcome of one connect attempt."""

    port: int
    state: str
    note: str = ""
    banner: str = ""
    duration_ms: int = 0


class Connector(Protocol):
    async def open(
        self, host: str, port: int, timeout: float
    ) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:  # pragma: no cover - thin protocol
        ...


class TCPConnector:
    """Opens real TCP connections with asyncio streams."""

    async def open(
        self, host: str, port: int, timeout: float
    ) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        return await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)


async def read_banner(reader: asyncio.StreamReader, timeout: float, max_bytes: int) -> str:
    """Read at most ``max_bytes`` until the peer goes idle for ``timeout`` seconds."""
    collected = bytearray()
    deadline = time.monotonic() + timeout
    while len(collected) < max_bytes:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break
        try:
            chunk = await asyncio.wait_for(reader.read(max_bytes - len(collected)), remaining)
        except (asyncio.TimeoutError, OSError):
            break
        if not chunk:
            break
        collected.extend(chunk)
    return collected.decode("utf-8", errors="replace").strip()


def classify_service(port: int, banner: str) -> str:
    for prefix, service in BANNER_SIGNATURES:
        if banner.startswith(prefix):
            return service
    return WELL_KNOWN_SERVICES.get(port, "unknown")


class PortProbe:
    """Connects to every port of the target's range under a connect sub-budget.

    Open ports are reported in ascending order. Refused and timed-out
    connects are treated as negative evidence; any other socket error is
    summarized into a single informational finding.
    """

    descriptor = ProbeDescriptor(
        kind=ModuleKind.PORTS,
        name="TCP port scan",
        default_timeout=120.0,
        concurrency_weight=2,
    )

    NEGATIVE_ERRORS: ClassVar[tuple[type[BaseException], ...]] = (
        ConnectionRefusedError,
        asyncio.TimeoutError,
    )

    def __init__(self, connector: Connector | None = None) -> None:
        self.connector = connector or TCPConnector()

    async def run(
        self, target: Target, config: ScanConfig, cancel: CancelToken
    ) -> AsyncIterator[Finding]:
        semaphore = asyncio.Semaphore(config.port_concurrency)
        ports = sorted(target.ports)
        host = target.address
        errors: list[PortState] = []

        async def probe_one(port: int) -> PortState:
            async with semaphore:
                if cancel.cancelled:
                    return PortState(port=port, state="skipped")
                return await self._connect(host, port, config, cancel)

        logger.info("Probing %d ports on %s", len(ports), host)
        tasks = [asyncio.ensure_future(probe_one(port)) for port in ports]
        try:
            for task in tasks:
                try:
                    result = await cancel.guard(task)
                except ScanCancelled:
                    return
                if result.state == "open":
                    yield self._open_port(target, result)
                elif result.state == "error":
                    errors.append(result)
            if errors:
                yield self._network_errors(target, errors)
        finally:
            for task in tasks:
                task.cancel()

    async def _connect(
        self, host: str, port: int, config: ScanConfig, cancel: CancelToken
    ) -> PortState:
        start = time.perf_counter()
        try:
            reader, writer = await cancel.guard(
                self.connector.open(host, port, config.port_connect_timeout)
            )
        except ScanCancelled:
            return PortState(port=port, state="skipped")
        except self.NEGATIVE_ERRORS as exc:
            state = "closed" if isinstance(exc, ConnectionRefusedError) else "filtered"
            return PortState(port=port, state=state, duration_ms=_elapsed_ms(start))
        except (OSError, TransientNetworkError) as exc:
            return PortState(
                port=port,
                state="error",
                note=getattr(exc, "strerror", None) or str(exc) or exc.__class__.__name__,
                duration_ms=_elapsed_ms(start),
            )

        banner = ""
        try:
            if config.banner_grab:
                banner = await read_banner(reader, config.banner_timeout, config.banner_bytes)
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                logger.debug("Error closing connection to %s:%s", host, port)

        return PortState(port=port, state="open", banner=banner, duration_ms=_elapsed_ms(start))

    def _open_port(self, target: Target, result: PortState) -> Finding:
        service = classify_service(result.port, result.banner)
        severity = RISKY_SERVICES.get(service, Severity.INFO)
        evidence = f"Open port {result.port}/tcp service={service}"
        if result.banner:
            evidence += f" banner={result.banner[:120]!r}"
        description = f"TCP port {result.port} accepts connections ({service})."
        if severity != Severity.INFO:
            description += " This service is commonly targeted when exposed."
        return Finding(
            kind=FindingKind.OPEN_PORT,
            module=ModuleKind.PORTS,
            target=target.host,
            severity=severity,
            title=f"Open port {result.port}/tcp ({service})",
            description=description,
            evidence=evidence,
            port=result.port,
            remediation="Review exposed services and restrict access with a firewall.",
        )

    @staticmethod
    def _network_errors(target: Target, errors: list[PortState]) -> Finding:
        sample = ", ".join(f"{e.port}: {e.note}" for e in errors[:5])
        return Finding(
            kind=FindingKind.NETWORK_ERROR,
            module=ModuleKind.PORTS,
            target=target.host,
            severity=Severity.INFO,
            title="Socket errors during port scan",
            description=f"{len(errors)} connect attempts failed with network errors.",
            evidence=f"{len(errors)} socket errors ({sample})",
        )


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)
