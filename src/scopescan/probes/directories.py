"""Directory brute-force probe with soft-404 baseline detection."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
import hashlib
import logging
from typing import TYPE_CHECKING, ClassVar
from urllib.parse import quote, urljoin, urlsplit
from uuid import uuid4

from bs4 import BeautifulSoup
from pydantic import BaseModel, Field
from rapidfuzz import fuzz

from scopescan.core.errors import ScanCancelled
from scopescan.core.result import Confidence, Finding, FindingKind, ModuleKind, Severity
from scopescan.http import NETWORK_ERRORS, AiohttpAdapter, HTTPClientProtocol, SimpleResponse, open_session
from scopescan.probes.base import ProbeDescriptor
from scopescan.probes.wordlist import DEFAULT_WORDLIST, normalize
from scopescan.ratelimit import RateLimiter

if TYPE_CHECKING:
    from scopescan.core.cancel import CancelToken
    from scopescan.core.config import ScanConfig
    from scopescan.core.target import Target

logger = logging.getLogger(__name__)

INTERESTING_STATUSES = frozenset({200, 301, 302, 401, 403})
REDIRECT_STATUSES = frozenset({301, 302})
_PLACEHOLDER = "{path}"
_SIMILARITY_SAMPLE = 5000


def _digest(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8", errors="replace")).hexdigest()


class ResponseFingerprint(BaseModel):
    """Comparable shape of a response.

    Length and digest are kept both for the raw body and for the body with the
    requested path blanked out, so pages that echo the path still compare equal.
    """

    path: str
    status: int
    length: int = 0
    digest: str = ""
    norm_length: int = 0
    norm_digest: str = ""
    location: str | None = None
    sample: str = ""
    title: str | None = None
    error: str | None = Field(None, description="Set when the request failed")

    @classmethod
    def from_response(cls, path: str, response: SimpleResponse) -> ResponseFingerprint:
        body = response.body
        normalized = body.replace(path, _PLACEHOLDER)
        location = response.header("Location")
        if location:
            location = location.replace(quote(path, safe="/"), _PLACEHOLDER).replace(
                path, _PLACEHOLDER
            )
        return cls(
            path=path,
            status=response.status,
            length=len(body),
            digest=_digest(body),
            norm_length=len(normalized),
            norm_digest=_digest(normalized),
            location=location,
            sample=normalized[:_SIMILARITY_SAMPLE],
            title=_page_title(body),
        )

    def matches(self, other: ResponseFingerprint) -> bool:
        """True when ``self`` is indistinguishable from the baseline ``other``."""
        if self.status != other.status:
            return False
        if self.status in REDIRECT_STATUSES:
            return self.location == other.location
        return (
            self.digest == other.digest
            or self.norm_digest == other.norm_digest
            or self.length == other.length
            or self.norm_length == other.norm_length
        )


def _page_title(body: str) -> str | None:
    if "<title" not in body.lower():
        return None
    soup = BeautifulSoup(body, "html.parser")
    if soup.title and soup.title.string:
        return soup.title.string.strip()[:120] or None
    return None


class DirectoryProbe:
    """Requests each wordlist entry and reports responses unlike the not-found page.

    A baseline request for a random nonexistent path is made first. Responses
    that match it are treated as not-found; 200 responses that closely resemble
    it are reported with low confidence instead of being dropped.
    """

    descriptor = ProbeDescriptor(
        kind=ModuleKind.DIRECTORIES,
        name="Directory brute-force",
        default_timeout=300.0,
        concurrency_weight=1,
    )

    # Substring -> severity when the path is publicly readable (HTTP 200)
    SENSITIVE_PATHS: ClassVar[tuple[tuple[str, Severity], ...]] = (
        (".git", Severity.HIGH),
        (".env", Severity.HIGH),
        (".sql", Severity.HIGH),
        ("backup", Severity.MEDIUM),
        (".htaccess", Severity.MEDIUM),
        ("phpmyadmin", Severity.MEDIUM),
        ("server-status", Severity.MEDIUM),
        ("actuator", Severity.MEDIUM),
        ("console", Severity.MEDIUM),
        ("debug", Severity.MEDIUM),
        ("admin", Severity.LOW),
        (".DS_Store", Severity.LOW),
    )

    def __init__(
        self,
        client: HTTPClientProtocol | None = None,
        wordlist: list[str] | None = None,
    ) -> None:
        self.client = client
        self.wordlist = wordlist

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

    def _words(self, config: ScanConfig) -> list[str]:
        if self.wordlist is not None:
            return normalize(self.wordlist)
        if config.dir_wordlist is not None:
            return normalize(config.dir_wordlist)
        return list(DEFAULT_WORDLIST)

    async def _probe(
        self,
        target: Target,
        config: ScanConfig,
        cancel: CancelToken,
        client: HTTPClientProtocol,
    ) -> AsyncIterator[Finding]:
        base = target.base_url + "/"
        limiter = RateLimiter(config.dir_rate_limit)
        semaphore = asyncio.Semaphore(config.dir_concurrency)
        words = self._words(config)

        async def fetch(path: str) -> ResponseFingerprint:
            await limiter.wait()
            async with semaphore:
                cancel.raise_if_cancelled()
                url = urljoin(base, quote(path, safe="/.-_~"))
                try:
                    response = await cancel.guard(client.get(url, allow_redirects=False))
                except NETWORK_ERRORS as exc:
                    return ResponseFingerprint(
                        path=path, status=0, error=f"{exc.__class__.__name__}: {exc}"
                    )
                return ResponseFingerprint.from_response(path, response)

        baseline_path = f"{uuid4().hex}-scopescan-404"
        try:
            baseline = await fetch(baseline_path)
        except ScanCancelled:
            return
        if baseline.error:
            logger.info("Baseline request to %s failed: %s", base, baseline.error)
            yield self._network_error(target, base, f"baseline: {baseline.error}")
            baseline_fp = None
        else:
            baseline_fp = baseline
            logger.debug(
                "Soft-404 baseline for %s: status=%s length=%s",
                base,
                baseline.status,
                baseline.length,
            )

        logger.info("Brute-forcing %d paths on %s", len(words), base)
        tasks = [asyncio.ensure_future(fetch(word)) for word in words]
        failures: list[ResponseFingerprint] = []
        try:
            for task in tasks:
                try:
                    fingerprint = await cancel.guard(task)
                except ScanCancelled:
                    return
                if fingerprint.error:
                    failures.append(fingerprint)
                    continue
                finding = self.evaluate(target, fingerprint, baseline_fp, config)
                if finding is not None:
                    yield finding
            if failures:
                sample = ", ".join(f"/{f.path}" for f in failures[:5])
                yield self._network_error(
                    target, base, f"{len(failures)} requests failed ({sample})"
                )
        finally:
            for task in tasks:
                task.cancel()

    def evaluate(
        self,
        target: Target,
        fingerprint: ResponseFingerprint,
        baseline: ResponseFingerprint | None,
        config: ScanConfig,
    ) -> Finding | None:
        """Decide whether a response is worth reporting."""
        if fingerprint.status not in INTERESTING_STATUSES:
            return None

        confidence = Confidence.HIGH
        if baseline is not None:
            if fingerprint.matches(baseline):
                return None
            if (
                fingerprint.status == 200
                and baseline.status == 200
                and fuzz.ratio(fingerprint.sample, baseline.sample)
                >= config.dir_similarity_threshold
            ):
                confidence = Confidence.LOW

        return self._discovered(target, fingerprint, confidence)

    def _severity_for(self, path: str, status: int) -> Severity:
        if status != 200:
            return Severity.INFO
        lowered = path.lower()
        for needle, severity in self.SENSITIVE_PATHS:
            if needle.lower() in lowered:
                return severity
        return Severity.INFO

    def _discovered(
        self, target: Target, fp: ResponseFingerprint, confidence: Confidence
    ) -> Finding:
        severity = Severity.INFO if confidence == Confidence.LOW else self._severity_for(fp.path, fp.status)
        evidence = f"HTTP {fp.status} /{fp.path} length={fp.length}"
        if fp.location:
            evidence += f" location={fp.location.replace(_PLACEHOLDER, fp.path)}"
        if fp.title:
            evidence += f" title={fp.title!r}"

        if confidence == Confidence.LOW:
            title = f"Possible path /{fp.path} (resembles not-found page)"
            description = (
                f"/{fp.path} returned {fp.status} with content close to the site's "
                "not-found page; it may be a soft-404."
            )
        else:
            title = f"Discovered path /{fp.path} ({fp.status})"
            description = f"/{fp.path} responded with HTTP {fp.status}."
            if fp.status in (401, 403):
                description += " The resource exists but access is restricted."
        return Finding(
            kind=FindingKind.DISCOVERED_PATH,
            module=ModuleKind.DIRECTORIES,
            target=target.host,
            severity=severity,
            title=title,
            description=description,
            evidence=evidence,
            confidence=confidence,
            path="/" + fp.path,
            remediation="Remove the resource or restrict access if it is not meant to be public.",
            cwe_id="CWE-538" if severity != Severity.INFO else None,
        )

    @staticmethod
    def _network_error(target: Target, url: str, detail: str) -> Finding:
        return Finding(
            kind=FindingKind.NETWORK_ERROR,
            module=ModuleKind.DIRECTORIES,
            target=target.host,
            severity=Severity.INFO,
            title="Requests failed during directory brute-force",
            description=f"Some requests to {urlsplit(url).netloc} failed.",
            evidence=f"{url}: {detail}",
        )
