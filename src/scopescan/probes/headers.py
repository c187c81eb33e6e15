"""HTTP security header probe with Pydantic-validated checklist."""

from __future__ import annotations

from collections.abc import AsyncIterator
import logging
import re
from typing import TYPE_CHECKING, ClassVar
from urllib.parse import urljoin, urlsplit

from pydantic import BaseModel, Field

from scopescan.core.errors import TooManyRedirects
from scopescan.core.result import Finding, FindingKind, ModuleKind, Severity
from scopescan.core.target import Scheme
from scopescan.http import NETWORK_ERRORS, AiohttpAdapter, HTTPClientProtocol, SimpleResponse, open_session
from scopescan.probes.base import ProbeDescriptor
from scopescan.probes.tls import CertificateReport, SSLCertificateInspector, TLSInspector

if TYPE_CHECKING:
    from scopescan.core.cancel import CancelToken
    from scopescan.core.config import ScanConfig
    from scopescan.core.target import Target

logger = logging.getLogger(__name__)

REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})
CERT_EXPIRY_WARNING_DAYS = 14
_VERSION_PATTERN = re.compile(r"\d+(\.\d+)+|/\s*\d")


def _same_host(url: str, host: str) -> bool:
    hostname = urlsplit(url).hostname or ""
    return hostname.rstrip(".") == host.lower().rstrip(".")


class SecurityHeader(BaseModel):
    """Pydantic model for security header configuration."""

    name: str = Field(..., min_length=1, description="Header name")
    recommended_value: str | None = Field(None, description="Recommended header value")
    required_value: str | None = Field(None, description="Exact value the header must carry")
    severity_if_missing: Severity = Field(default=Severity.MEDIUM)
    description: str = Field(..., description="What this header protects against")
    cwe_id: str = "CWE-693"


class HeaderProbe:
    """Fetches the base URL once and checks response headers against a checklist."""

    descriptor = ProbeDescriptor(
        kind=ModuleKind.HTTP_HEADERS,
        name="HTTP security headers",
        default_timeout=30.0,
        concurrency_weight=1,
    )

    SECURITY_HEADERS: ClassVar[list[SecurityHeader]] = [
        SecurityHeader(
            name="Strict-Transport-Security",
            recommended_value="max-age=31536000; includeSubDomains",
            severity_if_missing=Severity.MEDIUM,
            description="Enforces HTTPS and prevents SSL-stripping attacks",
            cwe_id="CWE-523",
        ),
        SecurityHeader(
            name="Content-Security-Policy",
            recommended_value="default-src 'self'",
            severity_if_missing=Severity.MEDIUM,
            description="Mitigates XSS and data injection attacks",
        ),
        SecurityHeader(
            name="X-Frame-Options",
            recommended_value="DENY",
            severity_if_missing=Severity.MEDIUM,
            description="Prevents clickjacking attacks by controlling iframe embedding",
            cwe_id="CWE-1021",
        ),
        SecurityHeader(
            name="X-Content-Type-Options",
            recommended_value="nosniff",
            required_value="nosniff",
            severity_if_missing=Severity.LOW,
            description="Prevents MIME-sniffing attacks",
        ),
        SecurityHeader(
            name="Referrer-Policy",
            recommended_value="strict-origin-when-cross-origin",
            severity_if_missing=Severity.LOW,
            description="Controls referrer information leakage",
            cwe_id="CWE-200",
        ),
    ]

    # Headers whose presence discloses implementation details
    DISCLOSURE_HEADERS: ClassVar[tuple[str, ...]] = ("X-Powered-By", "X-AspNet-Version")

    def __init__(
        self,
        client: HTTPClientProtocol | None = None,
        tls_inspector: TLSInspector | None = None,
    ) -> None:
        self.client = client
        self.tls_inspector = tls_inspector or SSLCertificateInspector()

    async def run(
        self, target: Target, config: ScanConfig, cancel: CancelToken
    ) -> AsyncIterator[Finding]:
        if self.client is not None:
            async for finding in self._probe(target, config, cancel, self.client):
                yield finding
            return
        async with open_session(config) as session:
            async for finding in self._probe(target, config, cancel, AiohttpAdapter(session)):
                yield finding

    async def _probe(
        self,
        target: Target,
        config: ScanConfig,
        cancel: CancelToken,
        client: HTTPClientProtocol,
    ) -> AsyncIterator[Finding]:
        url = target.base_url + "/"
        try:
            response = await self._fetch(url, target, client, config, cancel)
        except NETWORK_ERRORS as exc:
            logger.info("Header probe could not reach %s: %s", url, exc)
            yield self._network_error(target, url, exc)
            return

        if response.status in REDIRECT_STATUSES and response.header("Location"):
            yield self._off_target_redirect(target, response)
        for finding in self.check_headers(target, response):
            yield finding

        endpoint = self._tls_endpoint(target, response)
        if endpoint is not None and config.verify_tls and not cancel.cancelled:
            host, port = endpoint
            try:
                report = await cancel.guard(
                    self.tls_inspector.inspect(host, port, config.http_timeout)
                )
            except NETWORK_ERRORS as exc:
                logger.info("TLS inspection of %s:%s failed: %s", host, port, exc)
                yield self._network_error(target, f"https://{host}:{port}", exc)
                return
            for finding in self.check_certificate(target, report):
                yield finding

    async def _fetch(
        self,
        url: str,
        target: Target,
        client: HTTPClientProtocol,
        config: ScanConfig,
        cancel: CancelToken,
    ) -> SimpleResponse:
        """GET ``url`` following at most ``config.max_redirects`` redirects.

        Only redirects that stay on the target host are followed. A redirect
        to another host is returned as-is so it is never requested.

        Raises:
            TooManyRedirects: If the redirect chain is longer than allowed
        """
        current = url
        for hop in range(config.max_redirects + 1):
            response = await cancel.guard(client.get(current, allow_redirects=False))
            if not response.url:
                response.url = current
            location = response.header("Location")
            if response.status not in REDIRECT_STATUSES or not location:
                return response
            next_url = urljoin(current, location)
            if not _same_host(next_url, target.host):
                logger.info("Not following off-target redirect from %s to %s", current, next_url)
                return response
            if hop == config.max_redirects:
                break
            current = next_url
            logger.debug("Following redirect %d to %s", hop + 1, current)
        raise TooManyRedirects(url, config.max_redirects)

    @staticmethod
    def _tls_endpoint(target: Target, response: SimpleResponse) -> tuple[str, int] | None:
        """Return the (host, port) whose certificate should be verified, if any."""
        if target.scheme == Scheme.HTTPS:
            return target.host, target.port or 443
        final = urlsplit(response.url)
        if final.scheme == "https" and _same_host(response.url, target.host):
            return target.host, final.port or 443
        return None

    def check_headers(self, target: Target, response: SimpleResponse) -> list[Finding]:
        """Return one finding per checklist violation."""
        findings: list[Finding] = []
        csp = response.header("Content-Security-Policy") or ""

        for sec_header in self.SECURITY_HEADERS:
            value = response.header(sec_header.name)
            if sec_header.name == "X-Frame-Options" and "frame-ancestors" in csp.lower():
                continue
            if value is None:
                findings.append(self._missing_header(target, sec_header))
            elif (
                sec_header.required_value
                and value.strip().lower() != sec_header.required_value
            ):
                findings.append(self._invalid_header(target, sec_header, value))

        server = response.header("Server")
        if server and _VERSION_PATTERN.search(server):
            findings.append(
                self._disclosure(
                    target,
                    "Server",
                    server,
                    "The Server header reveals the server software version.",
                )
            )
        for name in self.DISCLOSURE_HEADERS:
            value = response.header(name)
            if value:
                findings.append(
                    self._disclosure(
                        target, name, value, f"The {name} header reveals the framework in use."
                    )
                )

        findings.extend(self._check_cookies(target, response))
        return findings

    def _check_cookies(self, target: Target, response: SimpleResponse) -> list[Finding]:
        findings: list[Finding] = []
        https = urlsplit(response.url).scheme == "https" or target.scheme.value == "https"
        for name, attrs in (response.cookies or {}).items():
            flags = {k.lower() for k, v in attrs.items() if v and k.lower() != "value"}
            missing: list[tuple[str, Severity]] = []
            if https and "secure" not in flags:
                missing.append(("Secure", Severity.MEDIUM))
            if "httponly" not in flags:
                missing.append(("HttpOnly", Severity.LOW))
            if "samesite" not in flags:
                missing.append(("SameSite", Severity.LOW))
            for flag, severity in missing:
                findings.append(
                    Finding(
                        kind=FindingKind.HEADER_MISCONFIGURATION,
                        module=ModuleKind.HTTP_HEADERS,
                        target=target.host,
                        severity=severity,
                        title=f"Cookie without {flag} flag",
                        description=f"Cookie '{name}' is set without the {flag} attribute.",
                        evidence=f"Set-Cookie {name}: missing {flag}",
                        remediation=f"Set the {flag} attribute on the '{name}' cookie.",
                        cwe_id="CWE-614" if flag == "Secure" else "CWE-1004",
                    )
                )
        return findings

    def check_certificate(self, target: Target, report: CertificateReport) -> list[Finding]:
        if not report.valid:
            return [
                Finding(
                    kind=FindingKind.TLS_CERTIFICATE,
                    module=ModuleKind.HTTP_HEADERS,
                    target=target.host,
                    severity=Severity.CRITICAL,
                    title="Invalid TLS certificate",
                    description=(
                        f"The certificate presented on port {report.port} failed verification."
                    ),
                    evidence=f"TLS {report.host}:{report.port}: {report.error}",
                    port=report.port,
                    remediation="Install a certificate issued by a trusted CA matching the hostname.",
                    cwe_id="CWE-295",
                )
            ]

        days = report.days_remaining()
        if days is None:
            return []
        if days < 0:
            severity, title = Severity.CRITICAL, "Expired TLS certificate"
        elif days < CERT_EXPIRY_WARNING_DAYS:
            severity, title = Severity.MEDIUM, "TLS certificate expiring soon"
        else:
            return []
        return [
            Finding(
                kind=FindingKind.TLS_CERTIFICATE,
                module=ModuleKind.HTTP_HEADERS,
                target=target.host,
                severity=severity,
                title=title,
                description=f"The certificate on port {report.port} expires {report.not_after}.",
                evidence=f"TLS {report.host}:{report.port}: notAfter={report.not_after}",
                port=report.port,
                remediation="Renew the certificate and automate renewal.",
                cwe_id="CWE-298",
            )
        ]

    def _missing_header(self, target: Target, header: SecurityHeader) -> Finding:
        return Finding(
            kind=FindingKind.HEADER_MISCONFIGURATION,
            module=ModuleKind.HTTP_HEADERS,
            target=target.host,
            severity=header.severity_if_missing,
            title=f"Missing {header.name} header",
            description=f"The security header '{header.name}' is missing. {header.description}.",
            evidence=f"{header.name}: <absent>",
            remediation=f"Add '{header.name}: {header.recommended_value or '<appropriate-value>'}' header to all responses.",
            cwe_id=header.cwe_id,
        )

    def _invalid_header(self, target: Target, header: SecurityHeader, value: str) -> Finding:
        return Finding(
            kind=FindingKind.HEADER_MISCONFIGURATION,
            module=ModuleKind.HTTP_HEADERS,
            target=target.host,
            severity=header.severity_if_missing,
            title=f"Invalid {header.name} header",
            description=f"'{header.name}' is set to '{value}', expected '{header.required_value}'.",
            evidence=f"{header.name}: {value}",
            remediation=f"Set '{header.name}: {header.required_value}'.",
            cwe_id=header.cwe_id,
        )

    def _disclosure(self, target: Target, name: str, value: str, description: str) -> Finding:
        return Finding(
            kind=FindingKind.HEADER_MISCONFIGURATION,
            module=ModuleKind.HTTP_HEADERS,
            target=target.host,
            severity=Severity.LOW,
            title=f"Information disclosure via {name}",
            description=f"{description} This information can aid attackers in targeting specific vulnerabilities.",
            evidence=f"{name}: {value}",
            remediation=f"Remove or obscure the '{name}' header.",
            cwe_id="CWE-200",
        )

    @staticmethod
    def _off_target_redirect(target: Target, response: SimpleResponse) -> Finding:
        location = response.header("Location") or ""
        return Finding(
            kind=FindingKind.HEADER_MISCONFIGURATION,
            module=ModuleKind.HTTP_HEADERS,
            target=target.host,
            severity=Severity.INFO,
            title="Redirect to another host not followed",
            description=(
                f"{response.url} redirects outside the authorized target; "
                "headers were assessed on the redirect response."
            ),
            evidence=f"HTTP {response.status} Location: {location}",
        )

    @staticmethod
    def _network_error(target: Target, url: str, exc: BaseException) -> Finding:
        return Finding(
            kind=FindingKind.NETWORK_ERROR,
            module=ModuleKind.HTTP_HEADERS,
            target=target.host,
            severity=Severity.INFO,
            title="Target not reachable over HTTP",
            description=f"Request to {url} failed: {exc.__class__.__name__}.",
            evidence=f"{url}: {exc.__class__.__name__}: {exc}",
        )
