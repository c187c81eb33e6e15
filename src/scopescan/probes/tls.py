"""TLS certificate inspection used by the HTTP-header probe."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import logging
import ssl
from typing import Protocol

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class CertificateReport(BaseModel):
    """Result of one TLS handshake against the target."""

    host: str
    port: int
    valid: bool
    error: str | None = None
    subject: str | None = None
    issuer: str | None = None
    not_after: datetime | None = None

    def days_remaining(self, now: datetime | None = None) -> float | None:
        if self.not_after is None:
            return None
        now = now or datetime.now(timezone.utc)
        return (self.not_after - now).total_seconds() / 86400


class TLSInspector(Protocol):
    async def inspect(
        self, host: str, port: int, timeout: float
    ) -> CertificateReport:  # pragma: no cover - thin protocol
        ...


def _flatten_name(name: tuple) -> str:
    parts = []
    for rdn in name:
        for key, value in rdn:
            parts.append(f"{key}={value}")
    return ", ".join(parts)


class SSLCertificateInspector:
    """Performs a verifying handshake with the system trust store."""

    async def inspect(self, host: str, port: int, timeout: float) -> CertificateReport:
        context = ssl.create_default_context()
        try:
            _reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port, ssl=context, server_hostname=host),
                timeout=timeout,
            )
        except ssl.SSLCertVerificationError as exc:
            logger.debug("Certificate verification failed for %s:%s: %s", host, port, exc)
            return CertificateReport(
                host=host, port=port, valid=False, error=exc.verify_message or str(exc)
            )

        try:
            cert = writer.get_extra_info("peercert") or {}
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except (ssl.SSLError, OSError):
                logger.debug("Error closing TLS connection to %s:%s", host, port)

        not_after = None
        if cert.get("notAfter"):
            not_after = datetime.fromtimestamp(
                ssl.cert_time_to_seconds(cert["notAfter"]), tz=timezone.utc
            )
        return CertificateReport(
            host=host,
            port=port,
            valid=True,
            subject=_flatten_name(cert.get("subject", ())),
            issuer=_flatten_name(cert.get("issuer", ())),
            not_after=not_after,
        )


class StaticTLSInspector:
    """Returns a canned report; for tests."""

    def __init__(self, report: CertificateReport | Exception) -> None:
        self._report = report
        self.calls: list[tuple[str, int]] = []

    async def inspect(self, host: str, port: int, timeout: float) -> CertificateReport:
        self.calls.append((host, port))
        if isinstance(self._report, Exception):
            raise self._report
        return self._report
