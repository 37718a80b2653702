"""Pydantic models for all data flowing through the ledger pipeline."""
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class Side(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class LegStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    PENDING = "PENDING"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


class TradeKind(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    FAILED = "failed"
    ORPHAN_EXIT = "orphan_exit"


class PairingMethod(str, Enum):
    """How the exit of a unified trade was found."""
    LINKED = "linked"
    INFERRED = "inferred"
    SELF_CONTAINED = "self_contained"
    NONE = "none"


class EventKind(str, Enum):
    TRADE = "trade"
    SIGNAL = "signal"
    AGENT_STATUS = "agent_status"
    BALANCE = "balance"
    POSITION = "position"
    ERROR = "error"


class TradeLeg(BaseModel):
    """One observed execution (a buy or a sell) before reconciliation."""
    model_config = ConfigDict(frozen=True)

    id: str
    side: Side
    status: LegStatus
    token_symbol: str
    token_address: Optional[str] = None
    quantity: float = 0.0
    entry_price: float = 0.0
    exit_price: float = 0.0
    has_exit: bool = False
    position_size_base: float = 0.0
    exit_position_base: Optional[float] = None
    pnl: Optional[float] = None
    pnl_base: Optional[float] = None
    pnl_percent: Optional[float] = None
    fees: float = 0.0
    timestamp: int
    exit_time: Optional[int] = None
    agent_id: str = "unknown"
    linked_leg_id: Optional[str] = None
    error_type: Optional[str] = None
    error_message: Optional[str] = None
    dex: Optional[str] = None
    tx_signature: Optional[str] = None
    dex_screener_url: Optional[str] = None
    live_price: Optional[float] = None
    source_format: str = "unknown"

    @property
    def token_key(self) -> str:
        return self.token_address or self.token_symbol

    @property
    def has_embedded_exit(self) -> bool:
        # The source computed the exit itself (fees, partial exits included)
        return self.exit_position_base is not None and self.pnl_percent is not None

    @property
    def is_errored(self) -> bool:
        return (
            self.status == LegStatus.FAILED
            or bool(self.error_type)
            or bool(self.error_message)
        )


class UnifiedTrade(BaseModel):
    """A reconciled position lifecycle: entry plus optional exit."""
    id: str
    kind: TradeKind
    status: LegStatus
    agent_id: str
    token_symbol: str
    token_address: Optional[str] = None
    quantity: float = 0.0
    entry_price: Optional[float] = None
    exit_price: Optional[float] = None
    current_price: Optional[float] = None
    entry_time: Optional[int] = None
    exit_time: Optional[int] = None
    entry_position_base: float = 0.0
    exit_position_base: Optional[float] = None
    pnl: float = 0.0
    pnl_base: float = 0.0
    pnl_display: float = 0.0
    pnl_percent: float = 0.0
    fees: float = 0.0
    unrealized: bool = False
    hold_time_ms: Optional[int] = None
    entry_tx_signature: Optional[str] = None
    exit_tx_signature: Optional[str] = None
    entry_dex: Optional[str] = None
    exit_dex: Optional[str] = None
    buy_leg_id: Optional[str] = None
    sell_leg_id: Optional[str] = None
    pairing: PairingMethod = PairingMethod.NONE
    error_type: Optional[str] = None
    error_message: Optional[str] = None
    timestamp: int

    @property
    def leg_ids(self) -> list[str]:
        return [i for i in (self.buy_leg_id, self.sell_leg_id) if i is not None]

    @property
    def token_key(self) -> str:
        return self.token_address or self.token_symbol


class RecordError(BaseModel):
    """Per-record problem; index is the 1-based line or item number."""
    index: int
    reasons: list[str]
    record: Optional[dict[str, Any]] = None


class ImportBatch(BaseModel):
    """Near-canonical records parsed from one CSV/JSON upload."""
    records: list[dict[str, Any]] = Field(default_factory=list)
    detected_dialect: str
    errors: list[RecordError] = Field(default_factory=list)
    total_records: int = 0

    @property
    def error_count(self) -> int:
        return len(self.errors)


class ValidationResult(BaseModel):
    valid: list[dict[str, Any]] = Field(default_factory=list)
    errors: list[RecordError] = Field(default_factory=list)
    total_processed: int = 0

    @property
    def valid_count(self) -> int:
        return len(self.valid)

    @property
    def error_count(self) -> int:
        return len(self.errors)


class NormalizeResult(BaseModel):
    legs: list[TradeLeg] = Field(default_factory=list)
    errors: list[RecordError] = Field(default_factory=list)


class DedupResult(BaseModel):
    fresh: list[TradeLeg] = Field(default_factory=list)
    duplicates: list[TradeLeg] = Field(default_factory=list)


class TradeSummary(BaseModel):
    """Headline statistics over a set of unified trades."""
    total_trades: int = 0
    total_pnl: float = 0.0
    wins: int = 0
    losses: int = 0
    win_rate: float = 0.0
    unique_token_count: int = 0
    open_trades: int = 0
    failed_trades: int = 0
    unrealized_pnl: float = 0.0
    tokens: list[str] = Field(default_factory=list)


class PerformanceMetrics(BaseModel):
    profit_factor: float = 0.0
    avg_win: float = 0.0
    avg_loss: float = 0.0
    largest_win: float = 0.0
    largest_loss: float = 0.0
    total_fees: float = 0.0
    max_drawdown: float = 0.0
    max_drawdown_percent: float = 0.0
    ending_balance: float = 0.0
    sharpe_ratio: float = 0.0
    sortino_ratio: float = 0.0


class WebhookSignal(BaseModel):
    """A trade signal pushed by an external agent."""
    id: str
    action: Side
    token_address: str
    token_symbol: str = "UNKNOWN"
    amount: float = 0.1
    amount_type: str = "SOL"
    slippage: float = 1.0
    price: Optional[float] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    timestamp: Any = None


class StreamEvent(BaseModel):
    """One message from a connected agent's live feed."""
    kind: str
    original_event: str
    agent_id: str
    payload: dict[str, Any] = Field(default_factory=dict)


class ImportReport(BaseModel):
    """Outcome of one batch import: new legs, re-deliveries and rejects."""
    dialect: str
    legs: list[TradeLeg] = Field(default_factory=list)
    duplicates: list[TradeLeg] = Field(default_factory=list)
    errors: list[RecordError] = Field(default_factory=list)
    total_records: int = 0

    @property
    def valid_count(self) -> int:
        return len(self.legs) + len(self.duplicates)

    @property
    def error_count(self) -> int:
        return len(self.errors)


class WebhookReport(BaseModel):
    accepted: bool
    reason: Optional[str] = None
    signal: Optional[WebhookSignal] = None
    leg: Optional[TradeLeg] = None
    errors: list[str] = Field(default_factory=list)


class ReconcileReport(BaseModel):
    trades: list[UnifiedTrade] = Field(default_factory=list)
    summary: TradeSummary
    metrics: PerformanceMetrics
