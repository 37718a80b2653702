"""Known export dialects for batch imports and their detection.

A dialect maps normalized header names onto near-canonical record fields.
Header names are compared after ``normalize_header`` so "Token Symbol",
"token_symbol" and "token-symbol" are the same column.
"""
import re
from typing import Any, Iterable, Mapping, Optional

NEXGENT = "nexgent"
GENERIC = "generic"

_SEPARATORS_RE = re.compile(r"[_\s\-/().]")


def normalize_header(name: str) -> str:
    return _SEPARATORS_RE.sub("", str(name).strip().lower())


# Aliases are listed in their normalized form.
DIALECTS: dict[str, dict[str, list[str]]] = {
    # Nexgent exports: snake_case API dump and the "Trade History" download
    NEXGENT: {
        "id": ["id", "tradeid"],
        "token": ["tokensymbol", "symbol"],
        "tokenAddress": ["tokenaddress", "mint"],
        "quantity": ["amount", "quantity", "size"],
        "entryPrice": [
            "purchaseprice", "averagepurchasepriceusd", "buyprice",
        ],
        "exitPrice": ["sellprice", "salepriceusd", "exitprice"],
        "pnl": ["profitloss", "profitlossusd", "pnl", "profit", "p&l"],
        "pnlPercent": ["changepercent", "change%", "pnlpercent"],
        "timestamp": ["createdat", "timestamp", "time", "date"],
        "fees": ["fees", "fee", "commission", "gas"],
        "status": ["status", "deactivationreason", "state"],
        "agentId": ["agentid", "agent"],
        "signalId": ["signalid"],
    },
    GENERIC: {
        "id": ["id", "tradeid"],
        "token": ["token", "tokensymbol", "symbol", "asset", "coin", "pair"],
        "tokenAddress": ["tokenaddress", "mint", "address"],
        "side": ["side", "type", "action", "direction"],
        "quantity": ["quantity", "amount", "size", "volume"],
        "entryPrice": ["entryprice", "entry", "buyprice", "purchaseprice", "price"],
        "exitPrice": ["exitprice", "exit", "sellprice", "saleprice"],
        "pnl": ["pnl", "p&l", "profit", "profitloss"],
        "pnlPercent": ["pnl%", "pnlpercent", "change%", "return%"],
        "timestamp": ["date", "timestamp", "time", "datetime", "createdat"],
        "fees": ["fees", "fee", "commission"],
        "status": ["status", "state"],
        "agentId": ["agentid", "agent"],
        "linkedLegId": ["linkedlegid", "linkedbuytradeid"],
    },
}

# Every family must be present at once. One shared header such as
# "symbol" is not enough to claim a specific dialect.
DIALECT_SIGNATURES: dict[str, list[set[str]]] = {
    NEXGENT: [
        {"tokensymbol"},
        {"purchaseprice", "averagepurchasepriceusd"},
        {"profitloss", "profitlossusd"},
    ],
}


def detect_dialect(headers: Iterable[str]) -> str:
    normalized = {normalize_header(h) for h in headers}
    for name, families in DIALECT_SIGNATURES.items():
        if all(family & normalized for family in families):
            return name
    return GENERIC


def find_value(
    row: Mapping[str, Any], aliases: list[str], index: Mapping[str, str]
) -> Optional[Any]:
    """Look up a row value by alias; ``index`` maps normalized -> original header."""
    for alias in aliases:
        header = index.get(alias)
        if header is not None:
            value = row.get(header)
            if value is not None and str(value).strip() != "":
                return value
    return None


def header_index(headers: Iterable[str]) -> dict[str, str]:
    index: dict[str, str] = {}
    for header in headers:
        index.setdefault(normalize_header(header), header)
    return index
