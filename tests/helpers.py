"""Test helpers shared across test files."""
from shared.schemas import LegStatus, Side, TradeLeg

# 2025-01-01T00:00:00Z
FIXED_NOW = 1_735_689_600_000

BONK = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"
WIF = "EKpQGSJtjMFqKZ9KQanSqYXRcF8fBopzLHYxdM65zcjm"


def fixed_clock() -> int:
    return FIXED_NOW


def leg(id, side=Side.BUY, status=LegStatus.CLOSED, token="BONK", ts=FIXED_NOW, **kw):
    """Build a TradeLeg with sane defaults. Short for compact test code."""
    fields = dict(
        id=id,
        side=side,
        status=status,
        token_symbol=token,
        quantity=100.0,
        entry_price=0.01,
        exit_price=kw.get("entry_price", 0.01),
        timestamp=ts,
        agent_id="agent-1",
    )
    fields.update(kw)
    return TradeLeg(**fields)


def buy(id, **kw):
    return leg(id, side=Side.BUY, **kw)


def sell(id, **kw):
    return leg(id, side=Side.SELL, **kw)
