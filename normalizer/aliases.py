"""Ordered source aliases for every canonical TradeLeg field.

The first alias holding a non-empty value wins, so order encodes priority:
canonical camelCase names first, then snake_case exports, then the
webhook/agent-feed spellings.
"""
from typing import Any, Mapping, Optional

from normalizer.coercion import is_empty

FIELD_ALIASES: dict[str, list[str]] = {
    "id": ["id", "tradeId", "trade_id", "legId"],
    "agent_id": ["agentId", "agent_id", "agent"],
    "token": ["tokenSymbol", "token_symbol", "token", "symbol", "asset", "coin"],
    "token_address": ["tokenAddress", "token_address", "mint", "address"],
    "side": ["side", "action", "direction"],
    "status": ["status", "state"],
    "entry_price": [
        "entryPrice", "entry_price", "executionPrice", "signalPrice",
        "purchase_price", "buy_price", "price",
    ],
    "exit_price": ["exitPrice", "exit_price", "sell_price", "salePrice"],
    "quantity": ["amount", "quantity", "tokenAmount", "entryQuantity", "size"],
    "position_size": [
        "entryPositionSol", "positionSize", "position_size", "positionSizeBase",
    ],
    "exit_position": ["exitPositionSol", "exit_position_sol", "exitPositionBase"],
    "pnl": ["pnl", "profit", "profit_loss"],
    "pnl_base": ["pnlSol", "pnl_sol", "pnlBase"],
    "pnl_percent": [
        "pnlPercent", "pnl_percent", "profit_percent", "change_percent",
        "return_percent",
    ],
    "total_fees": ["totalFees", "total_fees", "fees", "fee", "commission"],
    "entry_fee": ["entryFeeSol", "feeSol", "entryFee", "entry_fee"],
    "exit_fee": ["exitFeeSol", "exitFee", "exit_fee"],
    "timestamp": [
        "timestamp", "created_at", "createdAt", "openTime", "open_time",
        "tradeExecutedAt", "entryTime", "entry_time", "date", "time",
    ],
    "exit_time": ["exitTime", "exit_time", "closeTime", "close_time"],
    "linked_leg_id": [
        "linkedLegId", "linkedBuyTradeId", "linked_buy_trade_id",
        "linked_leg_id", "buyTradeId",
    ],
    "error_type": ["errorType", "error_type"],
    "error_message": ["errorMessage", "error_message", "error"],
    "dex": ["dex", "exchange", "entryDex"],
    "tx_signature": ["txSignature", "tx_signature", "signature", "entryTxSignature"],
    "dex_screener_url": ["dexScreenerUrl", "dex_screener_url"],
    "live_price": ["livePrice", "currentPrice", "current_price"],
    "source_format": ["sourceFormat", "source_format", "source"],
}


def resolve(raw: Mapping[str, Any], field: str) -> Optional[Any]:
    """Return the first non-empty value among the aliases of ``field``."""
    for alias in FIELD_ALIASES[field]:
        value = raw.get(alias)
        if not is_empty(value):
            return value
    return None
