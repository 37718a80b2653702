"""Map any known raw trade shape onto a canonical TradeLeg."""
import logging
import re
from typing import Any, Iterable, Mapping, Optional

from normalizer.aliases import FIELD_ALIASES, resolve
from normalizer.coercion import (
    Clock,
    clean_str,
    is_empty,
    normalize_side,
    normalize_status,
    normalize_timestamp,
    optional_float,
    safe_float,
)
from normalizer.identity import synthesize_leg_id
from shared.schemas import LegStatus, NormalizeResult, RecordError, Side, TradeLeg

logger = logging.getLogger(__name__)

PLACEHOLDER_TOKEN = "UNKNOWN"
DEXSCREENER_URL = "https://dexscreener.com/solana/{address}"

_MINT_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")
_MAX_SYMBOL_LEN = 14


def is_mint_address(value: Any) -> bool:
    """True for a base58 string of 32-44 chars (a Solana mint)."""
    return isinstance(value, str) and bool(_MINT_RE.match(value.strip()))


def _format_symbol(value: str) -> str:
    return value.upper() if len(value) <= _MAX_SYMBOL_LEN else value


def resolve_token(raw: Mapping[str, Any]) -> tuple[str, Optional[str]]:
    """Return (symbol, address) from whichever token fields are present.

    A token field that looks like a mint is an address, not a symbol.
    """
    address = clean_str(resolve(raw, "token_address"))
    symbol: Optional[str] = None
    for alias in FIELD_ALIASES["token"]:
        value = clean_str(raw.get(alias))
        if value is None:
            continue
        if is_mint_address(value):
            address = address or value
        elif symbol is None:
            symbol = _format_symbol(value)
    return symbol or PLACEHOLDER_TOKEN, address


def normalize_record(
    raw: Mapping[str, Any],
    agent_id: str = "unknown",
    clock: Optional[Clock] = None,
) -> TradeLeg:
    """Build a TradeLeg from one raw record. Pure; bad values become defaults."""
    token_symbol, token_address = resolve_token(raw)

    side = normalize_side(resolve(raw, "side")) or normalize_side(raw.get("type"))
    status = normalize_status(resolve(raw, "status"))

    entry_price = safe_float(resolve(raw, "entry_price"))
    reported_exit = optional_float(resolve(raw, "exit_price"))
    exit_price = reported_exit if reported_exit else entry_price

    total_fees = optional_float(resolve(raw, "total_fees"))
    if total_fees is None:
        total_fees = safe_float(resolve(raw, "entry_fee")) + safe_float(resolve(raw, "exit_fee"))

    timestamp = normalize_timestamp(resolve(raw, "timestamp"), clock)
    raw_exit_time = resolve(raw, "exit_time")
    exit_time = None if is_empty(raw_exit_time) else normalize_timestamp(raw_exit_time, clock)
    exit_position = optional_float(resolve(raw, "exit_position"))

    leg_id = clean_str(resolve(raw, "id")) or synthesize_leg_id(
        clean_str(resolve(raw, "token")) or token_address or token_symbol,
        timestamp,
        entry_price,
    )

    dex_screener_url = clean_str(resolve(raw, "dex_screener_url"))
    if dex_screener_url is None and token_address:
        dex_screener_url = DEXSCREENER_URL.format(address=token_address)

    return TradeLeg(
        id=leg_id,
        side=side or Side.BUY,
        status=status,
        token_symbol=token_symbol,
        token_address=token_address,
        quantity=safe_float(resolve(raw, "quantity")),
        entry_price=entry_price,
        exit_price=exit_price,
        has_exit=(
            reported_exit is not None
            or exit_position is not None
            or exit_time is not None
        ),
        position_size_base=safe_float(resolve(raw, "position_size")),
        exit_position_base=exit_position,
        pnl=optional_float(resolve(raw, "pnl")),
        pnl_base=optional_float(resolve(raw, "pnl_base")),
        pnl_percent=optional_float(resolve(raw, "pnl_percent")),
        fees=total_fees,
        timestamp=timestamp,
        exit_time=exit_time,
        agent_id=clean_str(resolve(raw, "agent_id")) or agent_id,
        linked_leg_id=clean_str(resolve(raw, "linked_leg_id")),
        error_type=clean_str(resolve(raw, "error_type")),
        error_message=clean_str(resolve(raw, "error_message")),
        dex=clean_str(resolve(raw, "dex")),
        tx_signature=clean_str(resolve(raw, "tx_signature")),
        dex_screener_url=dex_screener_url,
        live_price=optional_float(resolve(raw, "live_price")),
        source_format=clean_str(resolve(raw, "source_format")) or "unknown",
    )


def check_leg(leg: TradeLeg) -> list[str]:
    """Acceptance violations for a leg; empty means accepted.

    Legs the source already marked as failed are accepted as-is so the
    failure reaches the ledger.
    """
    if leg.is_errored or leg.status == LegStatus.CANCELLED:
        return []
    reasons = []
    if leg.quantity <= 0:
        reasons.append("Invalid quantity")
    if leg.entry_price <= 0:
        reasons.append("Invalid entry price")
    return reasons


def normalize_records(
    raws: Iterable[Any],
    agent_id: str = "unknown",
    clock: Optional[Clock] = None,
) -> NormalizeResult:
    """Normalize a sequence of raw records, collecting rejected ones."""
    result = NormalizeResult()
    for position, raw in enumerate(raws, start=1):
        if not isinstance(raw, Mapping):
            result.errors.append(
                RecordError(index=position, reasons=["Record is not an object"])
            )
            continue

        index = raw.get("line") if isinstance(raw.get("line"), int) else position
        leg = normalize_record(raw, agent_id=agent_id, clock=clock)
        reasons = check_leg(leg)
        if reasons:
            result.errors.append(
                RecordError(index=index, reasons=reasons, record=dict(raw))
            )
            continue
        result.legs.append(leg)

    if result.errors:
        logger.warning(
            "Legs rejected during normalization",
            extra={"accepted": len(result.legs), "rejected": len(result.errors)},
        )
    return result
