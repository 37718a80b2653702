"""Tests for ingestion.live_feed."""
import asyncio

import pytest

from helpers import BONK, fixed_clock
from ingestion.live_feed import StreamIngestor, classify_event, stream_event_to_record
from shared.schemas import EventKind, LegStatus, StreamEvent, TradeLeg


def _trade_payload(**kw):
    payload = {
        "id": "t-1",
        "side": "BUY",
        "tokenSymbol": "BONK",
        "tokenAddress": BONK,
        "amount": 100,
        "entryPrice": 0.01,
        "timestamp": 1_735_689_600,
    }
    payload.update(kw)
    return payload


@pytest.mark.parametrize("tag,kind", [
    ("new_trade", EventKind.TRADE),
    ("trade_updated", EventKind.TRADE),
    ("trade_close", EventKind.TRADE),
    ("signals_detected", EventKind.SIGNAL),
    ("status", EventKind.AGENT_STATUS),
    ("balance_update", EventKind.BALANCE),
    ("position", EventKind.POSITION),
    ("error", EventKind.ERROR),
])
def test_classify_known_tags(tag, kind):
    event = classify_event({"event": tag, "data": {}}, "agent-1")
    assert event.kind == kind.value
    assert event.original_event == tag
    assert event.agent_id == "agent-1"


def test_classify_unknown_tag_passes_through():
    event = classify_event({"event": "heartbeat", "data": {"n": 1}}, "agent-1")
    assert event.kind == "heartbeat"
    assert event.payload == {"n": 1}


def test_classify_unwraps_nested_trade():
    event = classify_event({"event": "trade_opened", "data": {"trade": _trade_payload()}}, "a")
    assert event.kind == EventKind.TRADE.value
    assert event.payload["id"] == "t-1"


def test_classify_legacy_flat_message():
    event = classify_event({"type": "trade", **_trade_payload()}, "a")
    assert event.kind == EventKind.TRADE.value
    assert event.payload["tokenSymbol"] == "BONK"


def test_trade_closed_implies_closed_status():
    event = StreamEvent(kind="trade", original_event="trade_closed", agent_id="a",
                        payload=_trade_payload())
    record = stream_event_to_record(event)
    assert record["status"] == "CLOSED"
    assert record["agentId"] == "a"
    assert record["sourceFormat"] == "live_feed"

    event.payload["status"] = "FAILED"
    assert stream_event_to_record(event)["status"] == "FAILED"


async def _run_briefly(ingestor):
    task = asyncio.create_task(ingestor.start())
    await asyncio.sleep(0.3)
    ingestor.stop()
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


@pytest.mark.asyncio
async def test_ingestor_routes_trades_and_events():
    messages, legs, events = asyncio.Queue(), asyncio.Queue(), asyncio.Queue()
    ingestor = StreamIngestor(messages, legs, events, "agent-1", clock=fixed_clock,
                              poll_timeout=0.05)

    await messages.put({"event": "new_trade", "data": _trade_payload()})
    await messages.put({"event": "balance_update", "data": {"sol": 3.2}})
    await messages.put({"event": "trade_closed", "data": {"trade": _trade_payload(
        id="t-2", side="SELL", exitPrice=0.02, linkedBuyTradeId="t-1")}})

    await _run_briefly(ingestor)

    assert legs.qsize() == 2
    first = await legs.get()
    second = await legs.get()
    assert isinstance(first, TradeLeg)
    assert first.id == "t-1"
    assert first.status == LegStatus.OPEN
    assert first.agent_id == "agent-1"
    assert second.status == LegStatus.CLOSED
    assert second.linked_leg_id == "t-1"

    event = await events.get()
    assert event.kind == EventKind.BALANCE.value
    assert events.empty()


@pytest.mark.asyncio
async def test_ingestor_reports_rejected_trades():
    messages, legs, events = asyncio.Queue(), asyncio.Queue(), asyncio.Queue()
    ingestor = StreamIngestor(messages, legs, events, "agent-1", clock=fixed_clock,
                              poll_timeout=0.05)

    await messages.put({"event": "new_trade", "data": _trade_payload(amount=0)})
    await messages.put("garbage")

    await _run_briefly(ingestor)

    assert legs.empty()
    assert ingestor.rejected == 1
    error = await events.get()
    assert error.kind == EventKind.ERROR.value
    assert error.original_event == "new_trade"
    assert error.payload["leg_id"] == "t-1"
    assert error.payload["reasons"] == ["Invalid quantity"]
    assert error.payload["record"]["amount"] == 0
    assert events.empty()
