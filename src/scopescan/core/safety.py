"""Safety gate: pre-flight scope policy consulted once per session."""

from __future__ import annotations

import ipaddress
import logging

from pydantic import BaseModel

from scopescan.core.errors import ScopeRejected
from scopescan.core.target import Classification, Target

logger = logging.getLogger(__name__)


class Authorization(BaseModel):
    """Outcome of a successful authorization."""

    target: str
    classification: Classification
    override_used: bool = False


def _in_scope(target: Target, scope: list[str]) -> bool:
    for entry in scope:
        entry = entry.strip().lower()
        if not entry:
            continue
        try:
            network = ipaddress.ip_network(entry, strict=False)
        except ValueError:
            if target.host == entry or target.host.endswith("." + entry):
                return True
            continue
        if all(ipaddress.ip_address(a) in network for a in target.addresses):
            return True
    return False


def authorize(
    target: Target, operator_override: bool, *, scope: list[str] | None = None
) -> Authorization:
    """Decide whether a target may be scanned.

    Public targets are always allowed unless a scope allowlist excludes them.
    Private, loopback and reserved targets require an explicit operator override.

    Raises:
        ScopeRejected: If the target is out of scope or needs an override
    """
    if scope and not _in_scope(target, scope):
        msg = f"{target.host} is outside the configured scope"
        raise ScopeRejected(msg)

    if target.classification == Classification.PUBLIC:
        return Authorization(target=target.host, classification=target.classification)

    if not operator_override:
        msg = (
            f"{target.host} resolves to a {target.classification.value} address "
            f"({', '.join(target.addresses)}); operator override required"
        )
        raise ScopeRejected(msg)

    logger.warning(
        "Scanning %s target %s with operator override",
        target.classification.value,
        target.host,
    )
    return Authorization(
        target=target.host, classification=target.classification, override_used=True
    )
