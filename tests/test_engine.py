"""Tests for the scan engine interface and session registry."""

import asyncio
from datetime import datetime, timedelta
import time

import pytest

from scopescan.core.cancel import CancelReason
from scopescan.core.config import ScanConfig
from scopescan.core.engine import ScanEngine
from scopescan.core.errors import InvalidTarget, NotTerminalYet, ScopeRejected, UnknownSession
from scopescan.core.result import ModuleKind, ModuleStatus, SessionState, Severity


@pytest.fixture
def engine_factory(resolver):
    """Build an engine whose factories hand out the given probe instances."""

    def _factory(*probes, **kwargs) -> ScanEngine:
        factories = {probe.descriptor.kind: (lambda p=probe: p) for probe in probes}
        return ScanEngine(probe_factories=factories, resolver=resolver, **kwargs)

    return _factory


@pytest.mark.asyncio
async def test_submit_and_wait_for_result(engine_factory, make_probe, finding_factory, config):
    probe = make_probe(
        ModuleKind.HTTP_HEADERS,
        findings=[finding_factory(evidence="a", severity=Severity.MEDIUM)],
        delay=0.01,
    )
    async with engine_factory(probe) as engine:
        handle = await engine.submit_scan("http://example.test", ["http-headers"], config)
        result = await engine.wait(handle, timeout=2)

    assert probe.started
    assert result.state == SessionState.COMPLETED
    assert result.target == "http://example.test"
    assert result.summary.total == len(result.findings) == 1
    assert result.summary.by_severity[Severity.MEDIUM] == 1
    assert result.scan_duration is not None


@pytest.mark.asyncio
async def test_private_target_rejected_without_starting_probes(engine_factory, make_probe, config):
    probe = make_probe(ModuleKind.PORTS)
    engine = engine_factory(probe)

    with pytest.raises(ScopeRejected):
        await engine.submit_scan("intranet.test", [ModuleKind.PORTS], config)

    assert not probe.started
    assert len(engine) == 0


@pytest.mark.asyncio
async def test_private_target_allowed_with_override(engine_factory, make_probe, config):
    probe = make_probe(ModuleKind.PORTS)
    engine = engine_factory(probe)
    config = config.model_copy(update={"allow_private_targets": True})

    handle = await engine.submit_scan("intranet.test", [ModuleKind.PORTS], config)
    result = await engine.wait(handle, timeout=2)

    assert probe.started
    assert result.state == SessionState.COMPLETED


@pytest.mark.asyncio
async def test_scope_allowlist_is_enforced(engine_factory, make_probe, config):
    engine = engine_factory(make_probe(ModuleKind.PORTS))
    config = config.model_copy(update={"scope_allowlist": ["other.test"]})

    with pytest.raises(ScopeRejected, match="outside the configured scope"):
        await engine.submit_scan("example.test", [ModuleKind.PORTS], config)


@pytest.mark.asyncio
async def test_invalid_target_surfaces_immediately(engine_factory, make_probe, config):
    engine = engine_factory(make_probe(ModuleKind.PORTS))

    with pytest.raises(InvalidTarget):
        await engine.submit_scan("gopher://example.test", [ModuleKind.PORTS], config)
    with pytest.raises(InvalidTarget):
        await engine.submit_scan("nowhere.test", [ModuleKind.PORTS], config)

    assert len(engine) == 0


@pytest.mark.asyncio
async def test_module_selection_is_validated(engine_factory, make_probe, config):
    engine = engine_factory(make_probe(ModuleKind.HTTP_HEADERS))

    with pytest.raises(ValueError, match="at least one"):
        await engine.submit_scan("example.test", [], config)
    with pytest.raises(ValueError, match="no probe module registered for: ports"):
        await engine.submit_scan("example.test", [ModuleKind.PORTS], config)
    with pytest.raises(ValueError):
        await engine.submit_scan("example.test", ["smtp-relay"], config)


@pytest.mark.asyncio
async def test_cancel_reaches_terminal_state_within_grace(engine_factory, make_probe, config):
    config = config.model_copy(update={"grace_period": 0.3})
    cooperative = make_probe(ModuleKind.HTTP_HEADERS, hang=True)
    stubborn = make_probe(ModuleKind.PORTS, hang=True, ignore_cancel=True)
    engine = engine_factory(cooperative, stubborn)

    handle = await engine.submit_scan(
        "example.test", [ModuleKind.HTTP_HEADERS, ModuleKind.PORTS], config
    )
    await asyncio.sleep(0.05)
    status = engine.get_status(handle)
    assert status.state == SessionState.RUNNING
    with pytest.raises(NotTerminalYet):
        engine.get_result(handle)

    start = time.monotonic()
    ack = engine.cancel_scan(handle)
    result = await engine.wait(handle, timeout=2)

    assert ack.accepted
    assert time.monotonic() - start < config.grace_period + 0.5
    assert result.state == SessionState.CANCELLED
    assert {r.status for r in result.modules} == {ModuleStatus.CANCELLED}
    # a second request is a no-op
    assert engine.cancel_scan(handle).accepted is False
    assert engine.get_status(handle).cancel_requested


@pytest.mark.asyncio
async def test_cancel_after_completion_is_ignored(engine_factory, make_probe, config):
    engine = engine_factory(make_probe(ModuleKind.HTTP_HEADERS))

    handle = await engine.submit_scan("example.test", [ModuleKind.HTTP_HEADERS], config)
    await engine.wait(handle, timeout=2)
    ack = engine.cancel_scan(handle)

    assert ack.accepted is False
    assert ack.state == SessionState.COMPLETED


@pytest.mark.asyncio
async def test_timeout_and_success_give_partial_failure(
    engine_factory, make_probe, finding_factory, config
):
    config = config.model_copy(update={"module_timeouts": {ModuleKind.PORTS: 0.1}})
    headers = make_probe(
        ModuleKind.HTTP_HEADERS,
        findings=[finding_factory(evidence="1"), finding_factory(evidence="2")],
    )
    engine = engine_factory(headers, make_probe(ModuleKind.PORTS, hang=True))

    handle = await engine.submit_scan(
        "example.test", [ModuleKind.HTTP_HEADERS, ModuleKind.PORTS], config
    )
    result = await engine.wait(handle, timeout=2)

    assert result.state == SessionState.PARTIALLY_FAILED
    assert result.summary.modules == {
        ModuleKind.HTTP_HEADERS: ModuleStatus.SUCCEEDED,
        ModuleKind.PORTS: ModuleStatus.TIMED_OUT,
    }
    assert len(result.findings) == 2


@pytest.mark.asyncio
async def test_unknown_session(engine_factory, make_probe):
    engine = engine_factory(make_probe(ModuleKind.PORTS))

    with pytest.raises(UnknownSession):
        engine.get_status("does-not-exist")
    with pytest.raises(KeyError):
        engine.cancel_scan("does-not-exist")


@pytest.mark.asyncio
async def test_discard_and_purge(engine_factory, make_probe, config):
    engine = engine_factory(make_probe(ModuleKind.HTTP_HEADERS), retention_seconds=60)

    first = await engine.submit_scan("example.test", [ModuleKind.HTTP_HEADERS], config)
    second = await engine.submit_scan("example.test", [ModuleKind.HTTP_HEADERS], config)
    await engine.wait(first, timeout=2)
    await engine.wait(second, timeout=2)
    assert len(engine) == 2

    engine.discard(first)
    with pytest.raises(UnknownSession):
        engine.get_result(first)

    assert engine.purge_expired() == 0
    assert engine.purge_expired(now=datetime.now() + timedelta(minutes=5)) == 1
    assert len(engine) == 0


@pytest.mark.asyncio
async def test_polling_purges_expired_sessions(engine_factory, make_probe, config):
    engine = engine_factory(make_probe(ModuleKind.HTTP_HEADERS), retention_seconds=0.01)

    finished = await engine.submit_scan("example.test", [ModuleKind.HTTP_HEADERS], config)
    await engine.wait(finished, timeout=2)
    await asyncio.sleep(0.05)

    with pytest.raises(UnknownSession):
        engine.get_status(finished)
    assert len(engine) == 0

    other = await engine.submit_scan("example.test", [ModuleKind.HTTP_HEADERS], config)
    await engine.wait(other, timeout=2)
    await asyncio.sleep(0.05)

    with pytest.raises(UnknownSession):
        engine.get_result(other)


@pytest.mark.asyncio
async def test_close_cancels_running_scans(engine_factory, make_probe, config):
    engine = engine_factory(make_probe(ModuleKind.DIRECTORIES, hang=True))

    handle = await engine.submit_scan("example.test", [ModuleKind.DIRECTORIES], config)
    await asyncio.sleep(0.02)
    await asyncio.wait_for(engine.close(), 2)

    result = engine.get_result(handle)
    assert result.state == SessionState.CANCELLED
    assert engine._get(handle).cancel_token.reason == CancelReason.SHUTDOWN
    with pytest.raises(RuntimeError, match="closed"):
        await engine.submit_scan("example.test", [ModuleKind.DIRECTORIES], config)


@pytest.mark.asyncio
async def test_default_config_is_used_when_omitted(engine_factory, make_probe):
    engine = engine_factory(make_probe(ModuleKind.PORTS))

    handle = await engine.submit_scan("example.test", [ModuleKind.PORTS])
    result = await engine.wait(handle, timeout=2)

    assert result.state == SessionState.COMPLETED
    assert engine._get(handle).target.ports == ScanConfig().ports
