"""
Entry order builders for the Bybit v5 order/create endpoint.
Each strategy turns a sized, priced trade into a request body and names the status a fresh ack starts in.
"""

import math
from typing import Any, Dict

from src.core.shared_enums import TradeDirection, PlacementStrategyType

CATEGORY_LINEAR = "linear"
# DOGEUSDT tick size is 0.00001
DEFAULT_PRICE_DECIMALS = 5


def _format_price(value: float, decimals: int) -> str:
    return f"{value:.{decimals}f}"


def _format_quantity(quantity: float) -> str:
    return str(int(math.floor(quantity)))


class PlacementStrategy:
    """Base request builder shared by the concrete strategies."""

    strategy_type: PlacementStrategyType = PlacementStrategyType.MARKET
    initial_status = "New"

    def __init__(self, price_decimals: int = DEFAULT_PRICE_DECIMALS):
        self.price_decimals = price_decimals

    def build_order_request(self, symbol: str, direction: TradeDirection, price: float,
                            quantity: float, stop_loss: float, take_profit: float) -> Dict[str, Any]:
        body = {
            "category": CATEGORY_LINEAR,
            "symbol": symbol,
            "side": direction.side.value,
            "qty": _format_quantity(quantity),
            "positionIdx": 0,
            "tpslMode": "Full",
            "takeProfit": _format_price(take_profit, self.price_decimals),
            "stopLoss": _format_price(stop_loss, self.price_decimals),
        }
        body.update(self._entry_fields(direction, price))
        return body

    def _entry_fields(self, direction: TradeDirection, price: float) -> Dict[str, Any]:
        raise NotImplementedError


class MarketPlacement(PlacementStrategy):
    """Immediate Market IOC entry."""

    strategy_type = PlacementStrategyType.MARKET
    initial_status = "New"

    def _entry_fields(self, direction: TradeDirection, price: float) -> Dict[str, Any]:
        return {"orderType": "Market", "timeInForce": "IOC"}


class ConditionalPlacement(PlacementStrategy):
    """Limit order armed at the trigger price; fires when price crosses it in the trade direction."""

    strategy_type = PlacementStrategyType.CONDITIONAL
    initial_status = "Untriggered"

    def _limit_price(self, direction: TradeDirection, trigger_price: float) -> float:
        return trigger_price

    def _entry_fields(self, direction: TradeDirection, price: float) -> Dict[str, Any]:
        # 1: triggered when price rises to triggerPrice, 2: when it falls to it
        trigger_direction = 1 if direction is TradeDirection.LONG else 2
        return {
            "orderType": "Limit",
            "price": _format_price(self._limit_price(direction, price), self.price_decimals),
            "triggerPrice": _format_price(price, self.price_decimals),
            "triggerDirection": trigger_direction,
            "triggerBy": "LastPrice",
            "timeInForce": "GTC",
        }


class StopLimitPlacement(ConditionalPlacement):
    """Conditional entry whose limit price sits a fixed offset beyond the trigger."""

    strategy_type = PlacementStrategyType.STOP_LIMIT

    def __init__(self, price_decimals: int = DEFAULT_PRICE_DECIMALS, limit_offset_pct: float = 0.002):
        super().__init__(price_decimals)
        self.limit_offset_pct = limit_offset_pct

    def _limit_price(self, direction: TradeDirection, trigger_price: float) -> float:
        if direction is TradeDirection.LONG:
            return trigger_price * (1 + self.limit_offset_pct)
        return trigger_price * (1 - self.limit_offset_pct)


def create_placement_strategy(strategy_name: str, price_decimals: int = DEFAULT_PRICE_DECIMALS,
                              limit_offset_pct: float = 0.002) -> PlacementStrategy:
    """Build the strategy named in configuration ('market', 'conditional' or 'stop_limit')."""
    strategy_type = PlacementStrategyType(strategy_name)
    if strategy_type is PlacementStrategyType.MARKET:
        return MarketPlacement(price_decimals)
    if strategy_type is PlacementStrategyType.CONDITIONAL:
        return ConditionalPlacement(price_decimals)
    return StopLimitPlacement(price_decimals, limit_offset_pct)
