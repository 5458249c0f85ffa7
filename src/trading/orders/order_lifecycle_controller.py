"""
Order lifecycle controller: owns the single-flight rule and drives order placement.
Sizes the trade from the available balance, attaches fixed TP/SL offsets, places with bounded
retry and records the acknowledged order through the audited order service.
"""

import math
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from src.brokers.abstract_exchange_client import ExchangeClient
from src.core.context_aware_logger import get_context_logger, TradingEventType
from src.core.market_types import OrderAck, Position
from src.core.shared_enums import TradeDirection
from src.core.trading_errors import (ExchangeError, OrderUnrecordedError, OrderValidationError,
                                     TradingSystemError)
from src.services.order_service import OrderService, validate_order_fields
from src.trading.execution.retry_policy import run_with_retry, RetryStatus
from src.trading.orders.order_status_mapper import map_exchange_status

context_logger = get_context_logger()


class PlacementStatus(Enum):
    PLACED = "placed"
    REJECTED = "rejected"          # Pre-flight check failed, nothing sent
    EXHAUSTED = "exhausted"        # Every attempt failed, nothing recorded
    CANCELLED = "cancelled"        # Cancellation observed between attempts
    UNRECORDED = "unrecorded"      # On the exchange but not in the local store


@dataclass
class PlacementOutcome:
    status: PlacementStatus
    direction: TradeDirection
    reference_price: float
    exchange_order_id: Optional[str] = None
    quantity: int = 0
    take_profit: Optional[float] = None
    stop_loss: Optional[float] = None
    attempts: int = 0
    error: Optional[BaseException] = None

    @property
    def placed_on_exchange(self) -> bool:
        return self.status in (PlacementStatus.PLACED, PlacementStatus.UNRECORDED)


class OrderLifecycleController:
    """Single-flight order placement for one symbol."""

    def __init__(self,
                 exchange: ExchangeClient,
                 order_service: OrderService,
                 symbol: str,
                 quote_asset: str = 'USDT',
                 take_profit_pct: float = 0.03,
                 stop_loss_pct: float = 0.008,
                 max_attempts: int = 3,
                 retry_delay_seconds: float = 1.0,
                 cancel_event: Optional[threading.Event] = None,
                 sleep=None):
        self.exchange = exchange
        self.order_service = order_service
        self.symbol = symbol
        self.quote_asset = quote_asset
        self.take_profit_pct = take_profit_pct
        self.stop_loss_pct = stop_loss_pct
        self.max_attempts = max_attempts
        self.retry_delay_seconds = retry_delay_seconds
        self.cancel_event = cancel_event or threading.Event()
        self._sleep = sleep

    @classmethod
    def from_config(cls, config: Dict[str, Any], exchange: ExchangeClient, order_service: OrderService,
                    cancel_event: Optional[threading.Event] = None, sleep=None) -> 'OrderLifecycleController':
        return cls(
            exchange=exchange,
            order_service=order_service,
            symbol=config['strategy']['symbol'],
            quote_asset=config['strategy']['quote_asset'],
            take_profit_pct=float(config['order_policy']['take_profit_pct']),
            stop_loss_pct=float(config['order_policy']['stop_loss_pct']),
            max_attempts=config['retry']['max_attempts'],
            retry_delay_seconds=float(config['retry']['delay_seconds']),
            cancel_event=cancel_event,
            sleep=sleep,
        )

    # <Single-Flight Check - Begin>
    def has_active_order_or_position(self, positions: Optional[List[Position]] = None) -> bool:
        """
        True when a local Pending order exists or the exchange reports an open position.
        Evaluated from fresh queries; pass positions to reuse a snapshot taken this cycle.
        """
        pending = self.order_service.get_pending_order(self.symbol)
        if pending is not None:
            context_logger.log_event(
                TradingEventType.EXECUTION_DECISION,
                "Pending order exists, new placement blocked",
                symbol=self.symbol,
                context_provider={'order_id': pending.order_id},
                decision_reason="PENDING_ORDER_ACTIVE"
            )
            return True

        if positions is None:
            positions = self.exchange.get_active_positions(self.symbol)
        if any(position.is_active for position in positions):
            context_logger.log_event(
                TradingEventType.EXECUTION_DECISION,
                "Exchange position open, new placement blocked",
                symbol=self.symbol,
                context_provider={'count': len(positions)},
                decision_reason="POSITION_ACTIVE"
            )
            return True
        return False
    # <Single-Flight Check - End>

    def compute_protection_prices(self, direction: TradeDirection, reference_price: float) -> tuple[float, float]:
        """Return (take_profit, stop_loss) as fixed percentage offsets from reference_price."""
        if direction is TradeDirection.LONG:
            return (reference_price * (1 + self.take_profit_pct),
                    reference_price * (1 - self.stop_loss_pct))
        return (reference_price * (1 - self.take_profit_pct),
                reference_price * (1 + self.stop_loss_pct))

    def place_directional_order(self, direction: TradeDirection, reference_price: float) -> PlacementOutcome:
        """Size, validate, place with retry and record one entry order."""
        outcome = PlacementOutcome(status=PlacementStatus.REJECTED, direction=direction,
                                   reference_price=reference_price)

        # <Sizing And Pre-flight - Begin>
        if reference_price is None or reference_price <= 0:
            outcome.error = OrderValidationError(f"Reference price must be positive, got {reference_price}")
            return self._rejected(outcome)

        balance = self.exchange.get_available_balance(self.quote_asset)
        quantity = math.floor(balance / reference_price) if balance > 0 else 0
        outcome.quantity = quantity
        if quantity <= 0:
            outcome.error = OrderValidationError(
                f"Quantity {quantity} from balance {balance} at price {reference_price} is not tradable")
            return self._rejected(outcome)

        take_profit, stop_loss = self.compute_protection_prices(direction, reference_price)
        outcome.take_profit = take_profit
        outcome.stop_loss = stop_loss
        try:
            validate_order_fields(direction.side, reference_price, quantity, take_profit, stop_loss)
        except OrderValidationError as e:
            outcome.error = e
            return self._rejected(outcome)
        # <Sizing And Pre-flight - End>

        context_logger.log_event(
            TradingEventType.EXECUTION_DECISION,
            f"Placing {direction.value} order",
            symbol=self.symbol,
            context_provider={
                'direction': direction.value,
                'price': reference_price,
                'quantity': quantity,
                'balance': balance,
                'take_profit': take_profit,
                'stop_loss': stop_loss,
            },
            decision_reason="ORDER_PLACEMENT_START"
        )

        retry_kwargs = {'sleep': self._sleep} if self._sleep is not None else {}
        retry = run_with_retry(
            lambda attempt: self.exchange.place_order(
                self.symbol, direction, reference_price, quantity, stop_loss, take_profit),
            max_attempts=self.max_attempts,
            delay_seconds=self.retry_delay_seconds,
            retry_on=(ExchangeError,),
            is_success=lambda ack: ack is not None and ack.success and bool(ack.exchange_order_id),
            cancel_event=self.cancel_event,
            description="Order placement",
            **retry_kwargs
        )
        outcome.attempts = retry.attempts

        if retry.status is RetryStatus.CANCELLED:
            outcome.status = PlacementStatus.CANCELLED
            return outcome

        if retry.status is RetryStatus.EXHAUSTED:
            outcome.status = PlacementStatus.EXHAUSTED
            outcome.error = retry.final_error or ExchangeError(self._ack_error(retry.value))
            context_logger.log_event(
                TradingEventType.EXECUTION_DECISION,
                f"Order placement failed after {retry.attempts} attempts",
                symbol=self.symbol,
                context_provider={'attempt': retry.attempts, 'error': str(outcome.error)},
                decision_reason="ORDER_PLACEMENT_EXHAUSTED"
            )
            return outcome

        ack: OrderAck = retry.value
        outcome.exchange_order_id = ack.exchange_order_id
        return self._record_placed_order(outcome, ack)

    def _record_placed_order(self, outcome: PlacementOutcome, ack: OrderAck) -> PlacementOutcome:
        """Persist an acknowledged order; a failure leaves it on the exchange and is surfaced."""
        status_name = map_exchange_status(ack.status or "New", self.symbol)
        try:
            self.order_service.create_order(
                order_id=ack.exchange_order_id,
                symbol=self.symbol,
                side=outcome.direction.side,
                order_price=outcome.reference_price,
                quantity=outcome.quantity,
                take_profit_price=outcome.take_profit,
                stop_loss_price=outcome.stop_loss,
                status_name=status_name,
            )
        except Exception as e:
            outcome.status = PlacementStatus.UNRECORDED
            outcome.error = OrderUnrecordedError(ack.exchange_order_id, e)
            context_logger.log_event(
                TradingEventType.POSITION_MANAGEMENT,
                f"Order {ack.exchange_order_id} placed on exchange but UNRECORDED locally",
                symbol=self.symbol,
                context_provider={
                    'exchange_order_id': ack.exchange_order_id,
                    'error': str(e),
                    'error_type': type(e).__name__,
                },
                decision_reason="ORDER_UNRECORDED"
            )
            return outcome

        outcome.status = PlacementStatus.PLACED
        context_logger.log_event(
            TradingEventType.POSITION_MANAGEMENT,
            f"{outcome.direction.value.capitalize()} order placed and recorded",
            symbol=self.symbol,
            context_provider={
                'exchange_order_id': ack.exchange_order_id,
                'quantity': outcome.quantity,
                'price': outcome.reference_price,
                'status': status_name,
                'attempt': outcome.attempts,
            },
            decision_reason="ORDER_PLACED"
        )
        return outcome

    def _rejected(self, outcome: PlacementOutcome) -> PlacementOutcome:
        outcome.status = PlacementStatus.REJECTED
        context_logger.log_event(
            TradingEventType.ORDER_VALIDATION,
            "Order rejected before placement",
            symbol=self.symbol,
            context_provider={
                'direction': outcome.direction.value,
                'price': outcome.reference_price,
                'quantity': outcome.quantity,
                'error': str(outcome.error),
            },
            decision_reason="ORDER_PREFLIGHT_REJECTED"
        )
        return outcome

    @staticmethod
    def _ack_error(ack: Optional[OrderAck]) -> str:
        if ack is None:
            return "Order placement returned no acknowledgment"
        return f"Order placement rejected: {ack.error_message or 'no order id'} (code {ack.error_code})"
