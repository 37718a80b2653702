"""Webhook signals pushed by external agents: gate, parse, validate."""
from typing import Any, Mapping, Optional

from normalizer.coercion import Clock, clean_str, now_ms, safe_float
from normalizer.trade_normalizer import PLACEHOLDER_TOKEN, is_mint_address
from shared.schemas import Side, WebhookSignal

MAX_SLIPPAGE = 50.0
DEFAULT_AMOUNT = 0.1
DEFAULT_AMOUNT_TYPE = "SOL"
DEFAULT_SLIPPAGE = 1.0


class SignalError(ValueError):
    """The webhook payload cannot be turned into a signal."""


def webhook_gate(settings: Optional[Mapping[str, Any]]) -> Optional[str]:
    """Return why deliveries are refused, or None when they are accepted.

    Only an explicit ``False`` disables; missing flags mean enabled.
    """
    settings = settings or {}
    if settings.get("enabled") is False:
        return "bot_disabled"
    if settings.get("webhookEnabled") is False:
        return "webhook_disabled"
    return None


def _first(payload: Mapping[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = clean_str(payload.get(key))
        if value is not None:
            return value
    return None


def parse_signal(
    payload: Any,
    received_at: Optional[int] = None,
    clock: Optional[Clock] = None,
) -> WebhookSignal:
    """Build a WebhookSignal from a raw delivery.

    Raises SignalError for a non-object payload, a missing or unknown
    action, or a missing token address. Optional fields fall back to
    defaults; zero or unparseable numbers count as missing.
    """
    if not isinstance(payload, Mapping) or not payload:
        raise SignalError("Empty payload")

    action = str(payload.get("action") or "").strip().upper()
    if action not in (Side.BUY.value, Side.SELL.value):
        raise SignalError("Invalid action: must be BUY or SELL")

    token_address = _first(payload, "tokenAddress", "token_address", "mint")
    if token_address is None:
        raise SignalError("Missing tokenAddress")

    received_at = received_at if received_at is not None else (clock or now_ms)()
    metadata = payload.get("metadata")

    return WebhookSignal(
        id=_first(payload, "id") or f"sig_{received_at}",
        action=Side(action),
        token_address=token_address,
        token_symbol=_first(payload, "tokenSymbol", "token_symbol", "symbol")
        or PLACEHOLDER_TOKEN,
        amount=safe_float(payload.get("amount")) or DEFAULT_AMOUNT,
        amount_type=_first(payload, "amountType", "amount_type") or DEFAULT_AMOUNT_TYPE,
        slippage=safe_float(payload.get("slippage")) or DEFAULT_SLIPPAGE,
        price=safe_float(payload.get("price")) or None,
        metadata=dict(metadata) if isinstance(metadata, Mapping) else {},
        timestamp=payload.get("timestamp") or received_at,
    )


def validate_signal(signal: WebhookSignal) -> list[str]:
    """Problems with a parsed signal; empty means valid."""
    errors = []
    if not is_mint_address(signal.token_address):
        errors.append("Invalid tokenAddress format")
    if signal.amount <= 0:
        errors.append("Amount must be positive")
    if not 0 <= signal.slippage <= MAX_SLIPPAGE:
        errors.append(f"Slippage must be between 0 and {MAX_SLIPPAGE:g}")
    return errors


def signal_to_record(signal: WebhookSignal) -> dict[str, Any]:
    """Raw record for the normalizer. A signal is a pending execution."""
    return {
        "id": signal.id,
        "side": signal.action.value,
        "status": "PENDING",
        "tokenSymbol": signal.token_symbol,
        "tokenAddress": signal.token_address,
        "entryPrice": signal.price,
        "amount": signal.amount,
        "positionSize": signal.amount if signal.amount_type.upper() == "SOL" else None,
        "timestamp": signal.timestamp,
        "sourceFormat": "webhook",
    }
