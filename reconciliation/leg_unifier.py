"""Pair BUY and SELL legs into unified trades.

Every input leg ends up in exactly one output trade:
- A BUY with a linked or inferred SELL becomes ``closed`` (or ``failed``
  when either leg failed)
- A BUY with no exit becomes ``open``, or ``closed`` when it carries its
  own exit data
- A SELL nothing claimed becomes ``orphan_exit`` (or ``failed``)

Explicit links always win. Timestamp matching per token is a fallback
and the trade's ``pairing`` field says which path was taken.
"""
import logging
from typing import Iterable, Mapping, Optional

from shared.schemas import LegStatus, PairingMethod, Side, TradeKind, TradeLeg, UnifiedTrade

logger = logging.getLogger(__name__)

DEFAULT_DISPLAY_RATE = 200.0


def _is_failed(leg: TradeLeg) -> bool:
    return leg.is_errored or leg.status == LegStatus.CANCELLED


def _same_token(a: TradeLeg, b: TradeLeg) -> bool:
    if a.token_address and b.token_address:
        return a.token_address == b.token_address
    return a.token_symbol == b.token_symbol


def _percent(entry: float, exit_: float) -> float:
    return (exit_ - entry) / entry * 100 if entry > 0 else 0.0


def find_exit(
    buy: TradeLeg,
    sells: list[TradeLeg],
    consumed: set[int],
    buy_ids: set[str],
) -> tuple[Optional[int], PairingMethod]:
    """Locate the SELL closing ``buy``: explicit link first, then by time.

    Returns the position of the SELL in ``sells``. ``consumed`` holds
    positions, not ids, since two legs may share an id.
    """
    for i, sell in enumerate(sells):
        if i not in consumed and sell.linked_leg_id == buy.id:
            return i, PairingMethod.LINKED

    if buy.status != LegStatus.CLOSED:
        return None, PairingMethod.NONE

    candidates = [
        i for i, sell in enumerate(sells)
        if i not in consumed
        and _same_token(buy, sell)
        and sell.timestamp >= buy.timestamp
        and not (
            sell.linked_leg_id
            and sell.linked_leg_id != buy.id
            and sell.linked_leg_id in buy_ids
        )
    ]
    if not candidates:
        return None, PairingMethod.NONE
    # Nearest in time after the entry
    return min(candidates, key=lambda i: sells[i].timestamp), PairingMethod.INFERRED


def _base_trade(buy: TradeLeg, **fields) -> UnifiedTrade:
    values = dict(
        id=buy.id,
        agent_id=buy.agent_id,
        token_symbol=buy.token_symbol,
        token_address=buy.token_address,
        quantity=buy.quantity,
        entry_price=buy.entry_price,
        entry_time=buy.timestamp,
        entry_position_base=buy.position_size_base,
        entry_tx_signature=buy.tx_signature,
        entry_dex=buy.dex,
        fees=buy.fees,
        buy_leg_id=buy.id,
        timestamp=buy.timestamp,
    )
    values.update(fields)
    return UnifiedTrade(**values)


def _embedded_pnl(buy: TradeLeg, display_rate: float) -> tuple[float, float, float]:
    """(pnl, pnl_base, pnl_percent) from exit figures the source computed."""
    pnl_base = buy.pnl_base
    if pnl_base is None:
        pnl_base = buy.exit_position_base - buy.position_size_base
    pnl = buy.pnl if buy.pnl is not None else pnl_base * display_rate
    return pnl, pnl_base, buy.pnl_percent


def _closed_pair(
    buy: TradeLeg, sell: TradeLeg, pairing: PairingMethod, display_rate: float
) -> UnifiedTrade:
    exit_price = sell.exit_price or sell.entry_price
    exit_time = sell.exit_time or sell.timestamp
    quantity = sell.quantity or buy.quantity

    if buy.has_embedded_exit:
        pnl, pnl_base, pnl_percent = _embedded_pnl(buy, display_rate)
        exit_position = buy.exit_position_base
    else:
        pnl = (exit_price - buy.entry_price) * quantity
        pnl_percent = _percent(buy.entry_price, exit_price)
        exit_position = sell.exit_position_base or sell.position_size_base
        pnl_base = (
            exit_position - buy.position_size_base
            if buy.position_size_base > 0 and exit_position
            else 0.0
        )

    return _base_trade(
        buy,
        kind=TradeKind.CLOSED,
        status=LegStatus.CLOSED,
        quantity=quantity,
        exit_price=exit_price,
        exit_time=exit_time,
        exit_position_base=exit_position,
        exit_tx_signature=sell.tx_signature,
        exit_dex=sell.dex,
        pnl=pnl,
        pnl_base=pnl_base,
        pnl_display=pnl_base * display_rate,
        pnl_percent=pnl_percent,
        fees=buy.fees + sell.fees,
        hold_time_ms=exit_time - buy.timestamp,
        sell_leg_id=sell.id,
        pairing=pairing,
    )


def _failed_pair(buy: TradeLeg, sell: TradeLeg, pairing: PairingMethod) -> UnifiedTrade:
    culprit = buy if _is_failed(buy) else sell
    return _base_trade(
        buy,
        kind=TradeKind.FAILED,
        status=LegStatus.FAILED,
        exit_tx_signature=sell.tx_signature,
        exit_dex=sell.dex,
        fees=buy.fees + sell.fees,
        sell_leg_id=sell.id,
        pairing=pairing,
        error_type=culprit.error_type or (
            "cancelled" if culprit.status == LegStatus.CANCELLED else None
        ),
        error_message=culprit.error_message,
    )


def _live_price(leg: TradeLeg, live_prices: Mapping[str, float]) -> float:
    for key in (leg.token_address, leg.token_symbol):
        if key and live_prices.get(key):
            return float(live_prices[key])
    return leg.live_price or leg.entry_price


def _open_trade(
    buy: TradeLeg, live_prices: Mapping[str, float], display_rate: float
) -> UnifiedTrade:
    current = _live_price(buy, live_prices)
    pnl_percent = _percent(buy.entry_price, current)
    pnl_base = buy.position_size_base * pnl_percent / 100
    return _base_trade(
        buy,
        kind=TradeKind.OPEN,
        status=buy.status if buy.status == LegStatus.PENDING else LegStatus.OPEN,
        current_price=current,
        pnl=(current - buy.entry_price) * buy.quantity,
        pnl_base=pnl_base,
        pnl_display=pnl_base * display_rate,
        pnl_percent=pnl_percent,
        unrealized=True,
    )


def _self_contained(buy: TradeLeg, display_rate: float) -> UnifiedTrade:
    if buy.has_embedded_exit:
        pnl, pnl_base, pnl_percent = _embedded_pnl(buy, display_rate)
    else:
        formula = (buy.exit_price - buy.entry_price) * buy.quantity
        pnl = buy.pnl if buy.pnl is not None else formula
        pnl_base = buy.pnl_base or 0.0
        pnl_percent = (
            buy.pnl_percent
            if buy.pnl_percent is not None
            else _percent(buy.entry_price, buy.exit_price)
        )
    return _base_trade(
        buy,
        kind=TradeKind.CLOSED,
        status=LegStatus.CLOSED,
        exit_price=buy.exit_price,
        exit_time=buy.exit_time,
        exit_position_base=buy.exit_position_base,
        pnl=pnl,
        pnl_base=pnl_base,
        pnl_display=pnl_base * display_rate,
        pnl_percent=pnl_percent,
        hold_time_ms=buy.exit_time - buy.timestamp if buy.exit_time else None,
        pairing=PairingMethod.SELF_CONTAINED,
    )


def _failed_single(leg: TradeLeg) -> UnifiedTrade:
    error_type = leg.error_type
    if error_type is None and leg.status == LegStatus.CANCELLED:
        error_type = "cancelled"
    ref = {"buy_leg_id": leg.id} if leg.side == Side.BUY else {
        "buy_leg_id": None,
        "sell_leg_id": leg.id,
        "entry_price": None,
        "entry_time": None,
        "entry_position_base": 0.0,
        "entry_tx_signature": None,
        "entry_dex": None,
        "exit_tx_signature": leg.tx_signature,
        "exit_dex": leg.dex,
    }
    return _base_trade(
        leg,
        kind=TradeKind.FAILED,
        status=LegStatus.FAILED,
        error_type=error_type,
        error_message=leg.error_message,
        **ref,
    )


def _orphan_exit(sell: TradeLeg, display_rate: float) -> UnifiedTrade:
    if sell.pnl is not None:
        pnl = sell.pnl
    elif sell.has_exit:
        pnl = (sell.exit_price - sell.entry_price) * sell.quantity
    else:
        pnl = 0.0
    pnl_base = sell.pnl_base or 0.0
    exit_time = sell.exit_time or sell.timestamp
    return UnifiedTrade(
        id=sell.id,
        kind=TradeKind.ORPHAN_EXIT,
        status=LegStatus.CLOSED,
        agent_id=sell.agent_id,
        token_symbol=sell.token_symbol,
        token_address=sell.token_address,
        quantity=sell.quantity,
        exit_price=sell.exit_price or sell.entry_price,
        exit_time=exit_time,
        exit_position_base=sell.exit_position_base or sell.position_size_base,
        exit_tx_signature=sell.tx_signature,
        exit_dex=sell.dex,
        pnl=pnl,
        pnl_base=pnl_base,
        pnl_display=pnl_base * display_rate,
        pnl_percent=sell.pnl_percent or 0.0,
        fees=sell.fees,
        sell_leg_id=sell.id,
        timestamp=sell.timestamp,
    )


def unify_legs(
    legs: Iterable[TradeLeg],
    live_prices: Optional[Mapping[str, float]] = None,
    display_rate: float = DEFAULT_DISPLAY_RATE,
) -> list[UnifiedTrade]:
    """Reconcile a leg set into unified trades, newest first.

    ``live_prices`` maps token address (or symbol) to a current price and
    only feeds the unrealized P&L of open trades. ``display_rate`` converts
    quote-currency P&L into the display currency.
    """
    live_prices = live_prices or {}
    ordered = sorted(legs, key=lambda leg: leg.timestamp, reverse=True)
    buys = [leg for leg in ordered if leg.side == Side.BUY]
    sells = [leg for leg in ordered if leg.side == Side.SELL]
    buy_ids = {buy.id for buy in buys}
    consumed: set[int] = set()
    trades: list[UnifiedTrade] = []

    for buy in buys:
        position, pairing = find_exit(buy, sells, consumed, buy_ids)
        if position is not None:
            consumed.add(position)
            sell = sells[position]
            if _is_failed(buy) or _is_failed(sell):
                trades.append(_failed_pair(buy, sell, pairing))
            else:
                trades.append(_closed_pair(buy, sell, pairing, display_rate))
        elif _is_failed(buy):
            trades.append(_failed_single(buy))
        elif buy.status in (LegStatus.OPEN, LegStatus.PENDING):
            trades.append(_open_trade(buy, live_prices, display_rate))
        elif buy.has_exit or buy.has_embedded_exit:
            trades.append(_self_contained(buy, display_rate))
        else:
            # CLOSED with nothing to close it against
            trades.append(_open_trade(buy, live_prices, display_rate))

    for position, sell in enumerate(sells):
        if position in consumed:
            continue
        if _is_failed(sell):
            trades.append(_failed_single(sell))
        else:
            trades.append(_orphan_exit(sell, display_rate))

    trades.sort(key=lambda t: t.timestamp, reverse=True)
    logger.info(
        "Legs unified",
        extra={
            "legs": len(ordered),
            "trades": len(trades),
            "paired": len(consumed),
        },
    )
    return trades


def filter_failed(trades: Iterable[UnifiedTrade]) -> list[UnifiedTrade]:
    return [t for t in trades if t.kind != TradeKind.FAILED]
