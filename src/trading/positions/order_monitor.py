"""
Pending order monitor, run as its own scheduled job outside the trading cycle.
Syncs the Pending order's exchange status, cancels stale unfilled orders, closes out orders
the exchange has finished with and refreshes PnL of the open trade.
"""

import datetime
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from src.brokers.abstract_exchange_client import ExchangeClient
from src.core.context_aware_logger import get_context_logger, TradingEventType
from src.core.models import OrderDB
from src.core.shared_enums import OrderResult
from src.core.trading_errors import ExchangeError
from src.services.order_service import OrderService
from src.trading.orders.order_status_mapper import (ExchangeOrderStatus, map_exchange_status,
                                                     TERMINAL_UNFILLED_STATUSES, WAITING_STATUSES)

context_logger = get_context_logger()


class MonitorAction(Enum):
    STATUS_SYNCED = "status_synced"
    STALE_CANCELLED = "stale_cancelled"
    REMAINDER_CANCELLED = "remainder_cancelled"
    CLOSED_OUT = "closed_out"
    PNL_REFRESHED = "pnl_refreshed"


@dataclass
class MonitorReport:
    pending_order_id: Optional[str] = None
    exchange_status: Optional[str] = None
    actions: List[MonitorAction] = field(default_factory=list)
    error: Optional[BaseException] = None


class PendingOrderMonitor:
    """Keeps the Pending order in step with the exchange between trading cycles."""

    def __init__(self,
                 exchange: ExchangeClient,
                 order_service: OrderService,
                 symbol: str,
                 stale_after_minutes: float = 5,
                 clock: Callable[[], datetime.datetime] = datetime.datetime.now):
        self.exchange = exchange
        self.order_service = order_service
        self.symbol = symbol
        self.stale_after = datetime.timedelta(minutes=stale_after_minutes)
        self.clock = clock

    @classmethod
    def from_config(cls, config: Dict[str, Any], exchange: ExchangeClient,
                    order_service: OrderService) -> 'PendingOrderMonitor':
        return cls(
            exchange=exchange,
            order_service=order_service,
            symbol=config['strategy']['symbol'],
            stale_after_minutes=config['order_monitor']['stale_after_minutes'],
        )

    def run_once(self) -> MonitorReport:
        report = MonitorReport()
        try:
            pending = self.order_service.get_pending_order(self.symbol)
            if pending is not None:
                self._check_pending_order(pending, report)
            self._refresh_pnl(report)
        except ExchangeError as e:
            report.error = e
            context_logger.log_event(
                TradingEventType.EXCHANGE_API,
                "Order monitor exchange call failed",
                symbol=self.symbol,
                context_provider={'order_id': report.pending_order_id, 'error': str(e)},
                decision_reason="MONITOR_EXCHANGE_ERROR"
            )
        return report

    def _check_pending_order(self, pending: OrderDB, report: MonitorReport) -> None:
        order_id = pending.order_id
        report.pending_order_id = order_id

        raw_status = self.exchange.get_order_status(self.symbol, order_id)
        report.exchange_status = raw_status
        status = ExchangeOrderStatus.parse(raw_status)
        if self.order_service.update_order_status(order_id, map_exchange_status(raw_status, self.symbol)):
            report.actions.append(MonitorAction.STATUS_SYNCED)

        is_stale = self.clock() - pending.created_at >= self.stale_after

        if status in WAITING_STATUSES and is_stale:
            if self._cancel(order_id, "Stale unfilled order"):
                self.order_service.update_order_status(order_id, ExchangeOrderStatus.CANCELLED.value)
                self.order_service.update_order_result(order_id, OrderResult.DONE)
                report.actions.append(MonitorAction.STALE_CANCELLED)

        elif status is ExchangeOrderStatus.PARTIALLY_FILLED and is_stale:
            # The filled part becomes a position; the reconciler settles it
            if self._cancel(order_id, "Stale partially filled order"):
                report.actions.append(MonitorAction.REMAINDER_CANCELLED)

        elif status in TERMINAL_UNFILLED_STATUSES:
            self.order_service.update_order_result(order_id, OrderResult.DONE)
            report.actions.append(MonitorAction.CLOSED_OUT)
            context_logger.log_event(
                TradingEventType.STATE_TRANSITION,
                f"Order closed out after exchange status {raw_status}",
                symbol=self.symbol,
                context_provider={'order_id': order_id, 'status': raw_status},
                decision_reason="ORDER_CLOSED_OUT"
            )

    def _cancel(self, order_id: str, reason: str) -> bool:
        ack = self.exchange.cancel_order(self.symbol, order_id)
        context_logger.log_event(
            TradingEventType.POSITION_MANAGEMENT,
            f"{reason} cancelled" if ack.success else f"{reason} cancel failed",
            symbol=self.symbol,
            context_provider={
                'order_id': order_id,
                'error': ack.error_message,
                'stale_after_minutes': self.stale_after.total_seconds() / 60,
            },
            decision_reason="STALE_ORDER_CANCELLED" if ack.success else "STALE_ORDER_CANCEL_FAILED"
        )
        return ack.success

    def _refresh_pnl(self, report: MonitorReport) -> None:
        positions = [p for p in self.exchange.get_active_positions(self.symbol) if p.is_active]
        if not positions or positions[0].mark_price <= 0:
            return

        order = self.order_service.get_latest_settled_order(self.symbol)
        if order is None:
            return

        pnl, pnl_percentage = self.order_service.update_order_pnl(order.order_id, positions[0].mark_price)
        report.actions.append(MonitorAction.PNL_REFRESHED)
        context_logger.log_event(
            TradingEventType.POSITION_MANAGEMENT,
            "Open trade PnL refreshed",
            symbol=self.symbol,
            context_provider={
                'order_id': order.order_id,
                'price': positions[0].mark_price,
                'pnl': pnl,
                'pnl_percentage': pnl_percentage,
            },
            decision_reason="PNL_REFRESHED"
        )
