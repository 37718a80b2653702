"""Classify live agent feed messages and turn trade events into legs."""
import asyncio
import logging
from typing import Any, Mapping, Optional

from normalizer.coercion import Clock
from normalizer.trade_normalizer import check_leg, normalize_record
from shared.schemas import EventKind, StreamEvent, TradeLeg

logger = logging.getLogger(__name__)

# Agents send either {"event": "new_trade", "data": {...}} or the older
# flat {"type": "trade", ...} shape
EVENT_KINDS: dict[str, EventKind] = {
    "new_trade": EventKind.TRADE,
    "trade_opened": EventKind.TRADE,
    "trade_update": EventKind.TRADE,
    "trade_updated": EventKind.TRADE,
    "trade_closed": EventKind.TRADE,
    "trade_close": EventKind.TRADE,
    "trade": EventKind.TRADE,
    "signals_detected": EventKind.SIGNAL,
    "signal_detected": EventKind.SIGNAL,
    "signal": EventKind.SIGNAL,
    "status_update": EventKind.AGENT_STATUS,
    "agent_status": EventKind.AGENT_STATUS,
    "status": EventKind.AGENT_STATUS,
    "balance_update": EventKind.BALANCE,
    "balance": EventKind.BALANCE,
    "position_update": EventKind.POSITION,
    "position": EventKind.POSITION,
    "error": EventKind.ERROR,
}

_CLOSING_EVENTS = {"trade_closed", "trade_close"}


def classify_event(message: Mapping[str, Any], agent_id: str) -> StreamEvent:
    """Map a raw feed message to a StreamEvent. Unknown tags pass through."""
    event_type = str(message.get("event") or message.get("type") or "unknown")

    payload = message.get("data")
    if payload is None:
        payload = message
    if isinstance(payload, Mapping) and isinstance(payload.get("trade"), Mapping):
        payload = payload["trade"]
    if not isinstance(payload, Mapping):
        payload = {"value": payload}

    kind = EVENT_KINDS.get(event_type)
    return StreamEvent(
        kind=kind.value if kind else event_type,
        original_event=event_type,
        agent_id=agent_id,
        payload=dict(payload),
    )


def stream_event_to_record(event: StreamEvent) -> dict[str, Any]:
    """Raw record for the normalizer from a trade event."""
    record = dict(event.payload)
    if event.original_event in _CLOSING_EVENTS and not record.get("status"):
        record["status"] = "CLOSED"
    record.setdefault("agentId", event.agent_id)
    record.setdefault("sourceFormat", "live_feed")
    return record


class StreamIngestor:
    """Consumes raw agent messages, emits accepted legs and other events.

    A trade that fails acceptance is reported on the event queue as an
    ``error`` event carrying the reasons and the original payload.
    """

    def __init__(
        self,
        message_queue: asyncio.Queue,
        leg_queue: asyncio.Queue,
        event_queue: asyncio.Queue,
        agent_id: str,
        clock: Optional[Clock] = None,
        poll_timeout: float = 5.0,
    ):
        self.message_queue = message_queue
        self.leg_queue = leg_queue
        self.event_queue = event_queue
        self.agent_id = agent_id
        self.clock = clock
        self.poll_timeout = poll_timeout
        self.rejected = 0
        self._running = False

    async def start(self):
        """Consume messages until stop() is called."""
        self._running = True
        while self._running:
            try:
                message = await asyncio.wait_for(
                    self.message_queue.get(), timeout=self.poll_timeout
                )
            except asyncio.TimeoutError:
                continue
            await self.handle(message)

    async def handle(self, message: Any) -> Optional[TradeLeg]:
        if not isinstance(message, Mapping):
            logger.warning(
                "Ignoring non-object feed message",
                extra={"agent_id": self.agent_id, "message_type": type(message).__name__},
            )
            return None

        event = classify_event(message, self.agent_id)
        if event.kind != EventKind.TRADE.value:
            await self.event_queue.put(event)
            return None

        leg = normalize_record(
            stream_event_to_record(event), agent_id=self.agent_id, clock=self.clock
        )
        reasons = check_leg(leg)
        if reasons:
            self.rejected += 1
            logger.warning(
                "Rejected feed trade",
                extra={
                    "agent_id": self.agent_id,
                    "leg_id": leg.id,
                    "reasons": reasons,
                },
            )
            await self.event_queue.put(
                StreamEvent(
                    kind=EventKind.ERROR.value,
                    original_event=event.original_event,
                    agent_id=self.agent_id,
                    payload={"leg_id": leg.id, "reasons": reasons, "record": event.payload},
                )
            )
            return None

        await self.leg_queue.put(leg)
        logger.debug(
            "Feed trade accepted",
            extra={
                "agent_id": self.agent_id,
                "leg_id": leg.id,
                "event": event.original_event,
            },
        )
        return leg

    def stop(self):
        self._running = False
