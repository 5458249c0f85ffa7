"""
Reconciles the local Pending order against the exchange's open positions.
An open position settles the Pending order (result Done); a position with no Pending order
is treated as settled by an earlier cycle. Stale order cleanup is not done here.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from src.brokers.abstract_exchange_client import ExchangeClient
from src.core.context_aware_logger import get_context_logger, TradingEventType
from src.core.market_types import Position
from src.core.shared_enums import OrderResult
from src.services.order_service import OrderService

context_logger = get_context_logger()


class ReconciliationAction(Enum):
    SETTLED = "settled"                  # Pending order advanced to Done this cycle
    ALREADY_SETTLED = "already_settled"  # Position open, nothing pending locally
    NO_POSITION = "no_position"


@dataclass
class ReconciliationResult:
    position_active: bool
    action: ReconciliationAction
    positions: List[Position] = field(default_factory=list)
    settled_order_id: Optional[str] = None


class PositionReconciler:
    """Settles the local order once the exchange shows the position it opened."""

    def __init__(self, exchange: ExchangeClient, order_service: OrderService, symbol: str):
        self.exchange = exchange
        self.order_service = order_service
        self.symbol = symbol

    def reconcile(self) -> ReconciliationResult:
        positions = [p for p in self.exchange.get_active_positions(self.symbol) if p.is_active]

        if not positions:
            context_logger.log_event(
                TradingEventType.RECONCILIATION,
                "No open position on exchange",
                symbol=self.symbol,
                decision_reason="NO_POSITION"
            )
            return ReconciliationResult(position_active=False, action=ReconciliationAction.NO_POSITION)

        pending = self.order_service.get_pending_order(self.symbol)
        if pending is None:
            context_logger.log_event(
                TradingEventType.RECONCILIATION,
                "Position open with no pending order, already settled",
                symbol=self.symbol,
                context_provider={
                    'count': len(positions),
                    'size': lambda: positions[0].size,
                    'side': lambda: positions[0].side,
                },
                decision_reason="POSITION_ALREADY_SETTLED"
            )
            return ReconciliationResult(position_active=True, action=ReconciliationAction.ALREADY_SETTLED,
                                        positions=positions)

        self.order_service.update_order_result(pending.order_id, OrderResult.DONE)
        context_logger.log_event(
            TradingEventType.RECONCILIATION,
            "Position observed, pending order settled",
            symbol=self.symbol,
            context_provider={
                'order_id': pending.order_id,
                'size': lambda: positions[0].size,
                'entry_price': lambda: positions[0].entry_price,
                'result': OrderResult.DONE.value,
            },
            decision_reason="PENDING_ORDER_SETTLED"
        )
        return ReconciliationResult(position_active=True, action=ReconciliationAction.SETTLED,
                                    positions=positions, settled_order_id=pending.order_id)
