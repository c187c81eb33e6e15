"""Tests for target validation, classification and the safety gate."""

import pytest
from pydantic import ValidationError

from scopescan.core.config import ScanConfig
from scopescan.core.errors import InvalidTarget, ScopeRejected
from scopescan.core.safety import authorize
from scopescan.core.target import (
    Classification,
    Scheme,
    Target,
    classify,
    classify_address,
    parse_port_range,
    validate,
)


@pytest.mark.asyncio
async def test_validate_url_target(resolver):
    target = await validate("http://Example.test:8080/some/path", resolver=resolver)

    assert target.host == "example.test"
    assert target.scheme == Scheme.HTTP
    assert target.port == 8080
    assert target.addresses == ("93.184.216.34",)
    assert target.classification == Classification.PUBLIC
    assert target.base_url == "http://example.test:8080"


@pytest.mark.asyncio
async def test_validate_bare_ip_is_not_resolved():
    # No resolver entry needed for IP literals
    target = await validate("127.0.0.1", ports=(22, 80))

    assert target.scheme == Scheme.NONE
    assert target.classification == Classification.LOOPBACK
    assert target.ports == (22, 80)
    assert target.base_url == "http://127.0.0.1"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "raw",
    ["", "   ", "ftp://example.test", "file:///etc/passwd", "http://", "bad_host!.test", "a/b"],
)
async def test_validate_rejects_malformed_input(raw, resolver):
    with pytest.raises(InvalidTarget):
        await validate(raw, resolver=resolver)


@pytest.mark.asyncio
async def test_validate_rejects_unresolvable_host(resolver):
    with pytest.raises(InvalidTarget, match="cannot resolve"):
        await validate("https://nowhere.test", resolver=resolver)


@pytest.mark.parametrize(
    ("address", "expected"),
    [
        ("93.184.216.34", Classification.PUBLIC),
        ("10.1.2.3", Classification.PRIVATE),
        ("172.16.0.1", Classification.PRIVATE),
        ("192.168.0.1", Classification.PRIVATE),
        ("127.0.0.1", Classification.LOOPBACK),
        ("::1", Classification.LOOPBACK),
        ("169.254.10.10", Classification.RESERVED),
        ("224.0.0.1", Classification.RESERVED),
        ("0.0.0.0", Classification.RESERVED),
        ("2606:4700:4700::1111", Classification.PUBLIC),
    ],
)
def test_classify_address(address, expected):
    assert classify_address(address) == expected


@pytest.mark.asyncio
async def test_least_public_address_wins(resolver):
    target = await validate("mixed.test", resolver=resolver)

    assert target.classification == Classification.PRIVATE
    assert classify(target) == Classification.PRIVATE


def test_classification_is_derived_from_addresses():
    target = Target(
        host="example.test",
        addresses=("10.0.0.1",),
        classification=Classification.PUBLIC,
    )
    assert target.classification == Classification.PRIVATE

    with pytest.raises(ValidationError):
        target.classification = Classification.PUBLIC


def test_authorize_public_target(public_target):
    decision = authorize(public_target, operator_override=False)

    assert decision.classification == Classification.PUBLIC
    assert decision.override_used is False


@pytest.mark.asyncio
async def test_authorize_private_requires_override(resolver):
    target = await validate("intranet.test", resolver=resolver)

    with pytest.raises(ScopeRejected, match="operator override required"):
        authorize(target, operator_override=False)

    decision = authorize(target, operator_override=True)
    assert decision.override_used is True


def test_authorize_scope_allowlist(public_target):
    assert authorize(public_target, False, scope=["example.test"])
    assert authorize(public_target, False, scope=["93.184.216.0/24"])

    with pytest.raises(ScopeRejected, match="outside the configured scope"):
        authorize(public_target, False, scope=["other.test", "10.0.0.0/8"])


def test_parse_port_range():
    assert parse_port_range("22,80,443") == (22, 80, 443)
    assert parse_port_range("1-5,3,8080") == (1, 2, 3, 4, 5, 8080)
    assert len(parse_port_range("1-1000")) == 1000

    for bad in ["", "0-10", "10-1", "http", "1-70000"]:
        with pytest.raises(ValueError):
            parse_port_range(bad)


def test_config_validation():
    config = ScanConfig(port_range="22,80")
    assert config.ports == (22, 80)
    assert config.max_redirects == 5
    assert config.dir_rate_limit == 10.0
    assert config.global_concurrency_ceiling is None

    with pytest.raises(ValidationError):
        ScanConfig(port_range="abc")
    with pytest.raises(ValidationError):
        ScanConfig(dir_rate_limit=0)
    with pytest.raises(ValidationError):
        ScanConfig(module_timeouts={"ports": -1})
