"""Small HTTP client protocol and adapters to make probes easier to test.

Provides:
- SimpleResponse: small container for status, headers, body
- HTTPClientProtocol: typing.Protocol for client implementations
- AiohttpAdapter: adapter for an aiohttp.ClientSession for production
- MockClient: simple mapping-based mock for tests
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

import aiohttp
from multidict import CIMultiDict

from scopescan.core.errors import TransientNetworkError

if TYPE_CHECKING:
    from scopescan.core.config import ScanConfig

# Errors a single request may raise that count as transient network failures.
NETWORK_ERRORS: tuple[type[BaseException], ...] = (
    aiohttp.ClientError,
    asyncio.TimeoutError,
    OSError,
    TransientNetworkError,
)


def open_session(config: ScanConfig) -> aiohttp.ClientSession:
    """Create the aiohttp session a probe uses for its lifetime.

    Certificate verification is left to the TLS inspector so that headers
    can still be checked on hosts with broken certificates.
    """
    return aiohttp.ClientSession(
        timeout=aiohttp.ClientTimeout(total=config.http_timeout),
        headers={"User-Agent": config.user_agent},
        connector=aiohttp.TCPConnector(ssl=False, limit=config.dir_concurrency + 2),
    )


@dataclass
class SimpleResponse:
    status: int
    headers: CIMultiDict[str] | dict[str, str]
    body: str
    cookies: dict[str, dict[str, str]] | None = None
    url: str = ""

    def header(self, name: str) -> str | None:
        """Case-insensitive header lookup."""
        if isinstance(self.headers, CIMultiDict):
            return self.headers.get(name)
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None


class HTTPClientProtocol(Protocol):
    async def get(
        self, url: str, **kwargs: Any
    ) -> SimpleResponse:  # pragma: no cover - thin protocol
        ...


class AiohttpAdapter:
    """Adapter that wraps an aiohttp.ClientSession and returns SimpleResponse objects."""

    def __init__(self, session: aiohttp.ClientSession, max_body: int = 512_000) -> None:
        self._session = session
        self._max_body = max_body

    async def get(self, url: str, **kwargs: Any) -> SimpleResponse:
        kwargs.setdefault("allow_redirects", False)
        async with self._session.get(url, **kwargs) as resp:
            raw = await resp.content.read(self._max_body)
            try:
                body = raw.decode(resp.charset or "utf-8", errors="replace")
            except LookupError:
                body = raw.decode("utf-8", errors="replace")
            # Extract cookies into a simple mapping: name -> dict(attributes)
            cookies: dict[str, dict[str, str]] = {}
            for name, morsel in resp.cookies.items():
                attrs = {k: str(v) for k, v in morsel.items() if v}
                cookies[name] = {"value": morsel.value, **attrs}

            return SimpleResponse(
                status=resp.status,
                headers=CIMultiDict(resp.headers),
                body=body,
                cookies=cookies,
                url=str(resp.url),
            )


@dataclass
class MockClient:
    """Very small mock client for tests. Provide a mapping of url -> SimpleResponse.

    A mapped value may also be an exception instance, which is raised instead.
    Unmapped URLs return ``default`` (an empty 200 unless given).

    Example:
        client = MockClient({"https://example.com/robots.txt": SimpleResponse(200, {}, "User-agent: *")})
    """

    mapping: dict[str, SimpleResponse | Exception] = field(default_factory=dict)
    default: SimpleResponse | Exception | None = None
    prefix_match: bool = True
    delay: float = 0.0
    requests: list[str] = field(default_factory=list)

    async def get(self, url: str, **kwargs: Any) -> SimpleResponse:
        self.requests.append(url)
        if self.delay:
            await asyncio.sleep(self.delay)

        resp = self._lookup(url)
        if isinstance(resp, Exception):
            raise resp
        return SimpleResponse(
            status=resp.status,
            headers=resp.headers,
            body=resp.body,
            cookies=resp.cookies,
            url=resp.url or url,
        )

    def _lookup(self, url: str) -> SimpleResponse | Exception:
        # Exact match first
        if url in self._normalized:
            return self._normalized[url]
        if self.prefix_match:
            for key, resp in self._normalized.items():
                if url.startswith(key):
                    return resp
        if self.default is not None:
            return self.default
        # default safe empty response
        return SimpleResponse(status=200, headers={}, body="", cookies={})

    @property
    def _normalized(self) -> dict[str, SimpleResponse | Exception]:
        # tolerate mappings keyed with or without a trailing slash on the root
        out: dict[str, SimpleResponse | Exception] = {}
        for key, resp in self.mapping.items():
            out[key] = resp
            if key.count("/") == 2:
                out.setdefault(key + "/", resp)
        return out
