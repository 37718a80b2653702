"""Stable leg identity and re-delivery detection.

Repeated file imports and repeated webhook deliveries must not create new
trades. When a source supplies no id, one is derived from the fields that
identify the logical event, so the same event always gets the same id.
The resolver keeps no memory of its own: callers pass the ids they
already hold.
"""
import logging
from typing import Iterable

from shared.schemas import DedupResult, TradeLeg

logger = logging.getLogger(__name__)


def synthesize_leg_id(token: str, timestamp_ms: int, entry_price: float) -> str:
    """Deterministic id from token, normalized time and micro-price."""
    return f"{token or 'X'}-{int(timestamp_ms)}-{round(entry_price * 1_000_000)}"


def is_duplicate(leg_id: str, known_ids: Iterable[str]) -> bool:
    known = known_ids if isinstance(known_ids, (set, frozenset)) else set(known_ids)
    return leg_id in known


def partition_known(legs: list[TradeLeg], known_ids: Iterable[str] = ()) -> DedupResult:
    """Split legs into fresh ones and re-deliveries of already-known ids.

    A leg repeated inside the same batch counts as a duplicate after its
    first occurrence.
    """
    seen = set(known_ids)
    result = DedupResult()
    for leg in legs:
        if leg.id in seen:
            result.duplicates.append(leg)
            continue
        seen.add(leg.id)
        result.fresh.append(leg)

    if result.duplicates:
        logger.info(
            "Duplicate legs skipped",
            extra={
                "fresh": len(result.fresh),
                "duplicates": len(result.duplicates),
            },
        )
    return result
