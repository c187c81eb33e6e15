"""Target model: validation, DNS resolution and address classification."""

from __future__ import annotations

import asyncio
from enum import Enum
import ipaddress
import logging
import re
import socket
from typing import Any, Protocol
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, model_validator

from scopescan.core.errors import InvalidTarget

logger = logging.getLogger(__name__)

_HOSTNAME_LABEL = re.compile(r"^(?!-)[A-Za-z0-9-]{1,63}(?<!-)$")

DEFAULT_PORTS: tuple[int, ...] = tuple(range(1, 1001))


class Scheme(str, Enum):
    HTTP = "http"
    HTTPS = "https"
    NONE = "none"


class Classification(str, Enum):
    """Address-space classification used by the safety gate."""

    PUBLIC = "public"
    PRIVATE = "private"
    LOOPBACK = "loopback"
    RESERVED = "reserved"


# Least public first; a multi-address target takes the first match.
_PRECEDENCE = (Classification.LOOPBACK, Classification.PRIVATE, Classification.RESERVED)


def classify_address(address: str) -> Classification:
    """Classify a single IP literal."""
    ip = ipaddress.ip_address(address)
    if ip.is_loopback:
        return Classification.LOOPBACK
    if (
        ip.is_link_local
        or ip.is_multicast
        or ip.is_unspecified
        or ip.is_reserved
    ):
        return Classification.RESERVED
    if ip.is_private:
        return Classification.PRIVATE
    if not ip.is_global:
        return Classification.RESERVED
    return Classification.PUBLIC


def classify_addresses(addresses: tuple[str, ...] | list[str]) -> Classification:
    if not addresses:
        msg = "cannot classify a target without addresses"
        raise ValueError(msg)
    found = {classify_address(a) for a in addresses}
    for classification in _PRECEDENCE:
        if classification in found:
            return classification
    return Classification.PUBLIC


class Target(BaseModel):
    """Immutable, validated scan subject."""

    model_config = ConfigDict(frozen=True)

    host: str = Field(..., min_length=1, description="Hostname or IP literal")
    addresses: tuple[str, ...] = Field(..., min_length=1, description="Resolved IP addresses")
    scheme: Scheme = Scheme.NONE
    port: int | None = Field(None, ge=1, le=65535, description="Explicit URL port")
    ports: tuple[int, ...] = Field(default=DEFAULT_PORTS, description="Ports to probe")
    classification: Classification

    @model_validator(mode="before")
    @classmethod
    def _compute_classification(cls, data: Any) -> Any:
        # Always derived from the addresses; a caller-supplied value is ignored.
        if isinstance(data, dict) and data.get("addresses"):
            data = dict(data)
            data["classification"] = classify_addresses(tuple(data["addresses"]))
        return data

    @property
    def address(self) -> str:
        """Primary address used for socket connections."""
        return self.addresses[0]

    @property
    def base_url(self) -> str:
        scheme = "http" if self.scheme == Scheme.NONE else self.scheme.value
        host = f"[{self.host}]" if ":" in self.host else self.host
        if self.port is not None:
            return f"{scheme}://{host}:{self.port}"
        return f"{scheme}://{host}"

    def __str__(self) -> str:
        return self.host


class Resolver(Protocol):
    async def resolve(self, host: str) -> list[str]:  # pragma: no cover - thin protocol
        ...


class SystemResolver:
    """Resolve hostnames through the event loop's getaddrinfo."""

    async def resolve(self, host: str) -> list[str]:
        loop = asyncio.get_running_loop()
        infos = await loop.getaddrinfo(host, None, type=socket.SOCK_STREAM)
        addresses: list[str] = []
        for _family, _type, _proto, _canon, sockaddr in infos:
            addr = str(sockaddr[0])
            if addr not in addresses:
                addresses.append(addr)
        return addresses


class StaticResolver:
    """Mapping-based resolver for tests and offline use.

    Example:
        resolver = StaticResolver({"example.test": ["93.184.216.34"]})
    """

    def __init__(self, mapping: dict[str, list[str]] | None = None) -> None:
        self._mapping = {k.lower(): list(v) for k, v in (mapping or {}).items()}

    async def resolve(self, host: str) -> list[str]:
        try:
            return list(self._mapping[host.lower()])
        except KeyError:
            msg = f"[Errno -2] Name or service not known: {host}"
            raise socket.gaierror(socket.EAI_NONAME, msg) from None


def parse_port_range(spec: str) -> tuple[int, ...]:
    """Parse ``"1-1000"``, ``"22,80,443"`` or ``"1-100,8080"`` into sorted ports."""
    ports: set[int] = set()
    for part in spec.split(","):
        part = part.strip()
        if not part:
            continue
        if "-" in part:
            low_s, _, high_s = part.partition("-")
            if not (low_s.strip().isdigit() and high_s.strip().isdigit()):
                msg = f"invalid port range: {part!r}"
                raise ValueError(msg)
            low, high = int(low_s), int(high_s)
            if low > high:
                msg = f"port range start exceeds end: {part!r}"
                raise ValueError(msg)
            ports.update(range(low, high + 1))
        else:
            if not part.isdigit():
                msg = f"invalid port: {part!r}"
                raise ValueError(msg)
            ports.add(int(part))
    if not ports:
        msg = "port range is empty"
        raise ValueError(msg)
    if min(ports) < 1 or max(ports) > 65535:
        msg = "ports must be between 1 and 65535"
        raise ValueError(msg)
    return tuple(sorted(ports))


def _is_valid_hostname(host: str) -> bool:
    if len(host) > 253:
        return False
    labels = host.rstrip(".").split(".")
    return all(_HOSTNAME_LABEL.match(label) for label in labels)


async def validate(
    raw_input: str,
    *,
    ports: tuple[int, ...] | None = None,
    resolver: Resolver | None = None,
) -> Target:
    """Turn raw operator input into a validated Target.

    Args:
        raw_input: URL (``http``/``https``) or bare hostname / IP literal
        ports: Ports the port probe should cover (default 1-1000)
        resolver: DNS resolver, defaults to the system resolver

    Returns:
        Target with resolved addresses and classification

    Raises:
        InvalidTarget: On malformed input, disallowed scheme or DNS failure
    """
    raw = (raw_input or "").strip()
    if not raw:
        msg = "target is empty"
        raise InvalidTarget(msg)

    if "://" in raw:
        parsed = urlsplit(raw)
        scheme_name = parsed.scheme.lower()
        if scheme_name not in (Scheme.HTTP.value, Scheme.HTTPS.value):
            msg = f"scheme not allowed: {parsed.scheme!r}"
            raise InvalidTarget(msg)
        scheme = Scheme(scheme_name)
        host = parsed.hostname or ""
        try:
            port = parsed.port
        except ValueError as exc:
            msg = f"invalid port in {raw!r}"
            raise InvalidTarget(msg) from exc
    else:
        scheme = Scheme.NONE
        host = raw.strip("[]")
        port = None
        if "/" in host or "@" in host:
            msg = f"malformed host: {raw!r}"
            raise InvalidTarget(msg)

    if not host:
        msg = f"no host in {raw!r}"
        raise InvalidTarget(msg)

    try:
        literal = ipaddress.ip_address(host)
    except ValueError:
        literal = None

    if literal is not None:
        addresses = [str(literal)]
    else:
        if not _is_valid_hostname(host):
            msg = f"malformed hostname: {host!r}"
            raise InvalidTarget(msg)
        resolver = resolver or SystemResolver()
        try:
            addresses = await resolver.resolve(host)
        except (socket.gaierror, OSError) as exc:
            msg = f"cannot resolve {host}: {exc}"
            raise InvalidTarget(msg) from exc
        if not addresses:
            msg = f"{host} resolved to no addresses"
            raise InvalidTarget(msg)

    target = Target(
        host=host.lower(),
        addresses=tuple(addresses),
        scheme=scheme,
        port=port,
        ports=ports or DEFAULT_PORTS,
    )
    logger.debug(
        "Validated target %s -> %s (%s)",
        target.host,
        ", ".join(target.addresses),
        target.classification.value,
    )
    return target


def classify(target: Target) -> Classification:
    """Classify a target from its resolved addresses."""
    return classify_addresses(target.addresses)
