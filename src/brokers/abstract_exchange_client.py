from abc import ABC, abstractmethod
from typing import List

from src.core.market_types import Candle, Position, OrderAck
from src.core.shared_enums import TradeDirection


class ExchangeClient(ABC):
    """
    Abstract base class defining the capabilities the trading core needs from an exchange.
    Implementations talk to a real venue (Bybit) or script responses for tests.
    """

    @abstractmethod
    def fetch_recent_candles(self, symbol: str, timeframe: str, count: int) -> List[Candle]:
        """
        Fetch the most recent candles for a symbol.

        Args:
            symbol: Trading symbol (e.g., 'DOGEUSDT')
            timeframe: Kline interval in exchange notation (e.g., '1', '60', 'D')
            count: Number of candles wanted

        Returns:
            List[Candle]: Candles ordered oldest first. The last element may still be forming.
        """
        pass

    @abstractmethod
    def get_active_positions(self, symbol: str) -> List[Position]:
        """
        Get open positions for a symbol.

        Returns:
            List[Position]: Only positions with a size greater than zero
        """
        pass

    @abstractmethod
    def get_available_balance(self, quote_asset: str) -> float:
        """Get the balance of quote_asset available for sizing a new position."""
        pass

    @abstractmethod
    def place_order(self, symbol: str, direction: TradeDirection, trigger_or_market_price: float,
                    quantity: float, stop_loss: float, take_profit: float) -> OrderAck:
        """
        Submit an entry order with attached take-profit and stop-loss.

        Returns:
            OrderAck: success False when the exchange rejected the request
        """
        pass

    @abstractmethod
    def cancel_order(self, symbol: str, order_id: str) -> OrderAck:
        """Cancel an open order by exchange order id."""
        pass

    @abstractmethod
    def get_order_status(self, symbol: str, order_id: str) -> str:
        """Get the exchange status string (e.g., 'New', 'Filled') of an order."""
        pass
