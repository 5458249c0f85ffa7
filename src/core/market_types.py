"""
Plain value types exchanged between the exchange client and the trading core.
Candles, positions and order acknowledgments are immutable snapshots of exchange state.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class Candle:
    """One OHLCV bar. Series are ordered oldest first for analysis."""
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float

    @property
    def is_green(self) -> bool:
        return self.close > self.open

    @property
    def is_red(self) -> bool:
        return self.close < self.open


@dataclass(frozen=True)
class Position:
    """Exchange position snapshot for one symbol."""
    symbol: str
    side: str
    size: float
    entry_price: float = 0.0
    mark_price: float = 0.0
    unrealised_pnl: float = 0.0
    updated_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.size > 0


@dataclass
class OrderAck:
    """Exchange acknowledgment for an order request (place, cancel or query)."""
    success: bool
    exchange_order_id: str = ""
    status: str = ""
    order_link_id: str = ""
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)
