import asyncio
import logging
import random
from concurrent.futures import ThreadPoolExecutor

import pytest

from coin_server.core.errors import InvariantBreach, ProtocolViolation
from coin_server.core.registry import ConnectionRegistry
from coin_server.protocol.events import INCREMENT, QUERY_TOTAL, TOTAL_UPDATE


def _sum_local(registry):
    return sum(registry.local_count(cid) for cid in registry.active_ids())


@pytest.mark.asyncio
async def test_connect_starts_with_zero_count(registry, engine):
    session = await registry.on_connect("a")
    assert session.local_count == 0
    assert registry.local_count("a") == 0
    assert registry.is_active("a")
    assert engine.total() == 0


@pytest.mark.asyncio
async def test_disconnect_without_events(registry, engine):
    await registry.on_connect("a")
    await registry.on_disconnect("a")
    assert engine.total() == 0
    assert not registry.is_active("a")


@pytest.mark.asyncio
async def test_no_double_count_on_disconnect(registry, engine):
    await registry.on_connect("a")
    for _ in range(3):
        await registry.on_message("a", INCREMENT)
    assert engine.total() == 3
    session = await registry.on_disconnect("a")
    assert session.local_count == 3
    assert engine.total() == 0


@pytest.mark.asyncio
async def test_end_to_end_scenario(registry, engine, sender):
    await registry.on_connect("A")
    await registry.on_message("A", INCREMENT)
    await registry.on_message("A", INCREMENT)
    await registry.on_connect("B")
    await registry.on_message("B", INCREMENT)
    await registry.on_message("B", QUERY_TOTAL)
    assert sender.to("B") == [(TOTAL_UPDATE, 3)]

    await registry.on_disconnect("A")
    assert engine.total() == 1
    await registry.on_disconnect("B")
    assert engine.total() == 0


@pytest.mark.asyncio
async def test_query_reply_goes_only_to_asker(registry, sender):
    for cid in ("A", "B", "C"):
        await registry.on_connect(cid)

    async def spam():
        for _ in range(50):
            await registry.on_message("A", INCREMENT)
            await asyncio.sleep(0)

    async def ask():
        for _ in range(5):
            await registry.on_message("B", QUERY_TOTAL)
            await asyncio.sleep(0)

    await asyncio.gather(spam(), ask())
    assert {cid for cid, _, _ in sender.sent} == {"B"}
    assert len(sender.to("B")) == 5
    assert all(event == TOTAL_UPDATE for event, _ in sender.to("B"))


@pytest.mark.asyncio
async def test_duplicate_disconnect_is_rejected(registry, engine, metrics):
    await registry.on_connect("a")
    await registry.on_message("a", INCREMENT)
    await registry.on_connect("b")
    await registry.on_message("b", INCREMENT)
    await registry.on_disconnect("a")

    with pytest.raises(ProtocolViolation) as info:
        await registry.on_disconnect("a")
    assert info.value.connection_id == "a"
    assert info.value.signal == "disconnect"
    assert engine.total() == 1
    assert (
        metrics.registry.get_sample_value(
            "coin_protocol_violations_total", {"signal": "disconnect"}
        )
        == 1
    )


@pytest.mark.asyncio
async def test_increment_after_disconnect_is_rejected(registry, engine):
    await registry.on_connect("a")
    await registry.on_disconnect("a")
    with pytest.raises(ProtocolViolation):
        await registry.on_message("a", INCREMENT)
    assert engine.total() == 0
    assert not registry.is_active("a")


@pytest.mark.asyncio
async def test_query_for_unknown_connection_gets_no_reply(registry, sender):
    with pytest.raises(ProtocolViolation):
        await registry.on_message("ghost", QUERY_TOTAL)
    assert sender.sent == []


@pytest.mark.asyncio
async def test_duplicate_connect_is_rejected(registry):
    await registry.on_connect("a")
    await registry.on_message("a", INCREMENT)
    with pytest.raises(ProtocolViolation):
        await registry.on_connect("a")
    assert registry.local_count("a") == 1
    assert registry.stats().total == 1


@pytest.mark.asyncio
async def test_unknown_event_is_rejected(registry, engine, sender):
    await registry.on_connect("a")
    with pytest.raises(ProtocolViolation):
        await registry.on_message("a", "decrement")
    assert engine.total() == 0
    assert sender.sent == []


@pytest.mark.asyncio
async def test_stats_and_gauges(registry, metrics):
    await registry.on_connect("a")
    await registry.on_connect("b")
    await registry.on_disconnect("a")
    stats = registry.stats()
    assert stats.active == 1
    assert stats.total == 2
    assert metrics.registry.get_sample_value("ws_active_connections") == 1
    assert metrics.registry.get_sample_value("ws_connections_total") == 2


@pytest.mark.asyncio
async def test_concurrent_sessions_lose_no_increments(registry, engine):
    sessions, per_session = 20, 25

    async def client(i):
        cid = f"c{i}"
        await registry.on_connect(cid)
        for _ in range(per_session):
            await registry.on_message(cid, INCREMENT)
            await asyncio.sleep(0)

    await asyncio.gather(*(client(i) for i in range(sessions)))
    assert engine.total() == sessions * per_session
    assert registry.check_consistency().consistent


@pytest.mark.asyncio
async def test_invariant_holds_with_random_disconnects(registry, engine):
    rng = random.Random(7)

    async def client(i):
        cid = f"c{i}"
        await registry.on_connect(cid)
        for _ in range(rng.randint(0, 15)):
            await registry.on_message(cid, INCREMENT)
            await asyncio.sleep(0)
        if i % 3 == 0:
            await registry.on_disconnect(cid)

    await asyncio.gather(*(client(i) for i in range(30)))
    assert engine.total() == _sum_local(registry)
    assert len(registry.active_ids()) == 20


def test_registry_is_safe_across_threads(engine, sender, metrics):
    registry = ConnectionRegistry(engine, sender, metrics)
    sessions, per_session = 12, 200

    async def client(i):
        cid = f"t{i}"
        await registry.on_connect(cid)
        for _ in range(per_session):
            await registry.on_message(cid, INCREMENT)
        if i % 2:
            await registry.on_disconnect(cid)

    with ThreadPoolExecutor(max_workers=sessions) as pool:
        futures = [pool.submit(asyncio.run, client(i)) for i in range(sessions)]
        for f in futures:
            f.result()

    assert engine.total() == (sessions // 2) * per_session
    assert engine.total() == _sum_local(registry)


@pytest.mark.asyncio
async def test_check_consistency_reports_drift(registry, engine, metrics, caplog):
    await registry.on_connect("a")
    await registry.on_message("a", INCREMENT)
    assert registry.check_consistency().consistent

    engine.increment(4)  # bypasses the registry
    report = registry.check_consistency()
    assert not report.consistent
    assert (report.total, report.expected, report.sessions) == (5, 1, 1)
    assert engine.total() == 5
    assert metrics.registry.get_sample_value("coin_invariant_breaches_total") == 1
    assert "drift" in caplog.text


@pytest.mark.asyncio
async def test_unknown_event_names_share_one_violation_series(registry, metrics):
    await registry.on_connect("a")
    for i in range(50):
        with pytest.raises(ProtocolViolation) as info:
            await registry.on_message("a", f"evt-{i}")
        assert "evt-" in str(info.value)

    series = [
        sample
        for family in metrics.registry.collect()
        if family.name == "coin_protocol_violations"
        for sample in family.samples
        if sample.name == "coin_protocol_violations_total"
    ]
    assert len(series) == 1
    assert series[0].labels == {"signal": "unknown-event"}
    assert series[0].value == 50


@pytest.mark.asyncio
async def test_legacy_query_is_answered_with_legacy_event(registry, sender):
    await registry.on_connect("old")
    await registry.on_message("old", "I clicked a coin")
    await registry.on_message("old", "How many coins")
    await registry.on_message("old", QUERY_TOTAL)
    assert sender.to("old") == [("Update coins", 1), (TOTAL_UPDATE, 1)]


@pytest.mark.asyncio
async def test_failed_disconnect_keeps_session_and_logs_outside_lock(registry, engine, metrics):
    await registry.on_connect("a")
    await registry.on_message("a", INCREMENT)
    await registry.on_message("a", INCREMENT)
    engine.decrement(2)  # coins vanish behind the registry's back

    seen = []

    class LockWatcher(logging.Handler):
        def emit(self, record):
            if record.levelno >= logging.ERROR:
                seen.append(registry._lock.locked())

    handler = LockWatcher()
    registry_logger = logging.getLogger("coin_server.core.registry")
    registry_logger.addHandler(handler)
    try:
        with pytest.raises(InvariantBreach):
            await registry.on_disconnect("a")
    finally:
        registry_logger.removeHandler(handler)

    assert seen == [False]
    assert engine.total() == 0
    assert registry.is_active("a")
    assert registry.local_count("a") == 2
    assert metrics.registry.get_sample_value("coin_invariant_breaches_total") == 1
    assert not registry.check_consistency().consistent
