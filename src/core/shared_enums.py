"""
Shared enumerations for the breakout trading system.
Provides single source of truth for enum values used across database, exchange and application layers.
"""

from enum import Enum


class OrderSide(Enum):
    """Exchange order side. Buy opens a long, Sell opens a short."""
    BUY = "Buy"
    SELL = "Sell"


class OrderResult(Enum):
    """Business outcome of a trade, independent of the exchange order status."""
    PENDING = "Pending"   # Placed, no position observed yet
    PROFIT = "Profit"
    LOSS = "Loss"
    DONE = "Done"         # Position observed or order closed out


class TradeDirection(Enum):
    """Breakout direction decided by the signal detector."""
    LONG = "long"
    SHORT = "short"

    @property
    def side(self) -> OrderSide:
        return OrderSide.BUY if self is TradeDirection.LONG else OrderSide.SELL


class PlacementStrategyType(Enum):
    """How an entry order is submitted to the exchange."""
    MARKET = "market"            # Market IOC, immediate execution
    CONDITIONAL = "conditional"  # Limit order armed by a trigger price
    STOP_LIMIT = "stop_limit"    # Trigger plus a limit price offset beyond it


class ExchangeEnvironment(Enum):
    """Exchange deployment the client talks to."""
    TESTNET = "testnet"
    MAINNET = "mainnet"
