"""
Service for all order persistence operations.
Validates order fields, routes every mutation through the audit recorder and exposes
PnL, statistics, soft delete and audit retention on top of the repositories.
"""

import datetime
from dataclasses import dataclass
from typing import List, Optional, Tuple

from sqlalchemy import func, case
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.core.context_aware_logger import get_context_logger, TradingEventType
from src.core.database import get_db_session
from src.core.models import OrderDB, OrderAuditDB
from src.core.shared_enums import OrderSide, OrderResult
from src.core.trading_errors import OrderValidationError, OrderPersistenceError
from src.trading.orders.audit_recorder import AuditRecorder
from src.trading.orders.order_repository import OrderRepository, OrderStatusRepository, OrderAuditRepository

context_logger = get_context_logger()


@dataclass(frozen=True)
class TradingStats:
    total_orders: int = 0
    profitable_orders: int = 0
    losing_orders: int = 0
    pending_orders: int = 0
    done_orders: int = 0
    avg_pnl: float = 0.0
    avg_pnl_percentage: float = 0.0
    total_pnl: float = 0.0
    win_rate: float = 0.0


@dataclass(frozen=True)
class PnLStats:
    total_pnl: float = 0.0
    avg_pnl: float = 0.0
    max_pnl: float = 0.0
    min_pnl: float = 0.0
    total_pnl_percentage: float = 0.0
    avg_pnl_percentage: float = 0.0
    max_pnl_percentage: float = 0.0
    min_pnl_percentage: float = 0.0


def validate_order_fields(side: OrderSide, order_price: float, quantity: float,
                          take_profit_price: Optional[float] = None,
                          stop_loss_price: Optional[float] = None) -> None:
    """
    Check price, quantity, side and TP/SL geometry.
    Long: TP > price > SL. Short: TP < price < SL.

    Raises:
        OrderValidationError: describing the first violated rule
    """
    if not isinstance(side, OrderSide):
        raise OrderValidationError(f"Side must be Buy or Sell, got {side!r}")
    if order_price is None or order_price <= 0:
        raise OrderValidationError(f"Order price must be positive, got {order_price}")
    if quantity is None or quantity <= 0:
        raise OrderValidationError(f"Quantity must be positive, got {quantity}")

    if take_profit_price is not None:
        if take_profit_price <= 0:
            raise OrderValidationError(f"Take profit must be positive, got {take_profit_price}")
        if side is OrderSide.BUY and take_profit_price <= order_price:
            raise OrderValidationError("Take profit must be above the order price for a long")
        if side is OrderSide.SELL and take_profit_price >= order_price:
            raise OrderValidationError("Take profit must be below the order price for a short")

    if stop_loss_price is not None:
        if stop_loss_price <= 0:
            raise OrderValidationError(f"Stop loss must be positive, got {stop_loss_price}")
        if side is OrderSide.BUY and stop_loss_price >= order_price:
            raise OrderValidationError("Stop loss must be below the order price for a long")
        if side is OrderSide.SELL and stop_loss_price <= order_price:
            raise OrderValidationError("Stop loss must be above the order price for a short")


class OrderService:
    """Gateway between trading logic and the order tables."""

    def __init__(self, db_session: Optional[Session] = None, changed_by: str = 'system'):
        self.db_session = db_session or get_db_session()
        self.changed_by = changed_by
        self.orders = OrderRepository(self.db_session)
        self.statuses = OrderStatusRepository(self.db_session)
        self.audits = OrderAuditRepository(self.db_session)

    def _recorder(self) -> AuditRecorder:
        return AuditRecorder(self.db_session, self.changed_by)

    # <Order Creation - Begin>
    def create_order(self, order_id: str, symbol: str, side: OrderSide, order_price: float, quantity: float,
                     take_profit_price: Optional[float] = None, stop_loss_price: Optional[float] = None,
                     status_name: str = "New") -> OrderDB:
        """Validate and insert an order with result Pending plus its 'created' audit row."""
        validate_order_fields(side, order_price, quantity, take_profit_price, stop_loss_price)
        if not order_id:
            raise OrderValidationError("Exchange order id is required")

        recorder = self._recorder()
        with recorder.transaction():
            status = self.statuses.get_by_name(status_name)
            order = OrderDB(
                order_id=order_id,
                symbol=symbol,
                side=side,
                order_price=float(order_price),
                quantity=float(quantity),
                take_profit_price=take_profit_price,
                stop_loss_price=stop_loss_price,
                order_status_id=status.id,
                result=OrderResult.PENDING,
                pnl=0.0,
                pnl_percentage=0.0,
            )
            recorder.record_creation(order)

        context_logger.log_event(
            TradingEventType.DATABASE_STATE,
            "Order recorded",
            symbol=symbol,
            context_provider={
                'order_id': order_id,
                'side': side.value,
                'price': order_price,
                'quantity': quantity,
                'take_profit': take_profit_price,
                'stop_loss': stop_loss_price,
                'status': status_name,
            },
            decision_reason="ORDER_RECORDED"
        )
        return order
    # <Order Creation - End>

    # <Order Mutation - Begin>
    def update_order(self, order_id: str, order_price: Optional[float] = None, quantity: Optional[float] = None,
                     take_profit_price: Optional[float] = None,
                     stop_loss_price: Optional[float] = None) -> List[str]:
        """Update trading facts; the merged order must still validate. Returns changed field names."""
        order = self.orders.get_required(order_id)
        changes = {}
        if order_price is not None:
            changes['order_price'] = float(order_price)
        if quantity is not None:
            changes['quantity'] = float(quantity)
        if take_profit_price is not None:
            changes['take_profit_price'] = float(take_profit_price)
        if stop_loss_price is not None:
            changes['stop_loss_price'] = float(stop_loss_price)

        validate_order_fields(
            order.side,
            changes.get('order_price', order.order_price),
            changes.get('quantity', order.quantity),
            changes.get('take_profit_price', order.take_profit_price),
            changes.get('stop_loss_price', order.stop_loss_price),
        )
        return self._apply(order, changes)

    def update_order_status(self, order_id: str, status_name: str) -> bool:
        """Point the order at another status. Returns False when it already had that status."""
        order = self.orders.get_required(order_id)
        status = self.statuses.get_by_name(status_name)
        return bool(self._apply(order, {'order_status_id': status.id}))

    def update_order_result(self, order_id: str, result: OrderResult) -> bool:
        """Advance the business result. Reverting to Pending raises; re-applying is a no-op."""
        order = self.orders.get_required(order_id)
        changed = self._apply(order, {'result': result})
        if changed:
            context_logger.log_event(
                TradingEventType.STATE_TRANSITION,
                f"Order result set to {result.value}",
                symbol=order.symbol,
                context_provider={'order_id': order_id, 'result': result.value},
                decision_reason="ORDER_RESULT_TRANSITION"
            )
        return bool(changed)

    def update_order_pnl(self, order_id: str, current_price: float) -> Tuple[float, float]:
        """Recompute PnL from current_price and store it with a pnl_update audit row."""
        order = self.orders.get_required(order_id)
        pnl, pnl_percentage = order.calculate_pnl(current_price)

        recorder = self._recorder()
        with recorder.transaction():
            recorder.record_pnl(order, pnl, pnl_percentage)
        return pnl, pnl_percentage

    def soft_delete_order(self, order_id: str) -> None:
        """Hide the order from every query; the row and its audit trail stay."""
        order = self.orders.get_required(order_id)
        recorder = self._recorder()
        with recorder.transaction():
            recorder.record_soft_delete(order)

        context_logger.log_event(
            TradingEventType.DATABASE_STATE,
            "Order soft deleted",
            symbol=order.symbol,
            context_provider={'order_id': order_id},
            decision_reason="ORDER_SOFT_DELETED"
        )

    def _apply(self, order: OrderDB, changes: dict) -> List[str]:
        recorder = self._recorder()
        with recorder.transaction():
            return recorder.apply_changes(order, changes)
    # <Order Mutation - End>

    # <Order Queries - Begin>
    def get_order(self, order_id: str) -> Optional[OrderDB]:
        return self.orders.get_by_order_id(order_id)

    def get_order_with_audit(self, order_id: str) -> Tuple[OrderDB, List[OrderAuditDB]]:
        order = self.orders.get_required(order_id)
        return order, self.audits.for_order(order_id)

    def get_orders_by_result(self, result: OrderResult, symbol: Optional[str] = None) -> List[OrderDB]:
        return self.orders.find(symbol=symbol, result=result)

    def get_orders_by_status(self, status_name: str, symbol: Optional[str] = None) -> List[OrderDB]:
        status = self.statuses.get_by_name(status_name)
        return self.orders.find(symbol=symbol, status_id=status.id)

    def get_pending_order(self, symbol: str) -> Optional[OrderDB]:
        return self.orders.get_pending(symbol)

    def get_latest_settled_order(self, symbol: str) -> Optional[OrderDB]:
        return self.orders.get_latest_settled(symbol)

    def get_status_name(self, order: OrderDB) -> str:
        status = self.statuses.get_by_id(order.order_status_id)
        return status.status_name if status else ""
    # <Order Queries - End>

    # <Statistics - Begin>
    def get_trading_statistics(self, symbol: Optional[str] = None) -> TradingStats:
        query = self.db_session.query(
            func.count(OrderDB.id),
            func.sum(case((OrderDB.result == OrderResult.PROFIT, 1), else_=0)),
            func.sum(case((OrderDB.result == OrderResult.LOSS, 1), else_=0)),
            func.sum(case((OrderDB.result == OrderResult.PENDING, 1), else_=0)),
            func.sum(case((OrderDB.result == OrderResult.DONE, 1), else_=0)),
            func.avg(OrderDB.pnl),
            func.avg(OrderDB.pnl_percentage),
            func.sum(OrderDB.pnl),
        ).filter(OrderDB.deleted_at.is_(None))
        if symbol:
            query = query.filter(OrderDB.symbol == symbol)

        total, profitable, losing, pending, done, avg_pnl, avg_pct, total_pnl = query.one()
        total = total or 0
        profitable = int(profitable or 0)
        return TradingStats(
            total_orders=total,
            profitable_orders=profitable,
            losing_orders=int(losing or 0),
            pending_orders=int(pending or 0),
            done_orders=int(done or 0),
            avg_pnl=float(avg_pnl or 0.0),
            avg_pnl_percentage=float(avg_pct or 0.0),
            total_pnl=float(total_pnl or 0.0),
            win_rate=(profitable / total * 100) if total else 0.0,
        )

    def get_pnl_statistics(self, symbol: Optional[str] = None) -> PnLStats:
        query = self.db_session.query(
            func.sum(OrderDB.pnl), func.avg(OrderDB.pnl), func.max(OrderDB.pnl), func.min(OrderDB.pnl),
            func.sum(OrderDB.pnl_percentage), func.avg(OrderDB.pnl_percentage),
            func.max(OrderDB.pnl_percentage), func.min(OrderDB.pnl_percentage),
        ).filter(OrderDB.deleted_at.is_(None))
        if symbol:
            query = query.filter(OrderDB.symbol == symbol)

        values = [float(value or 0.0) for value in query.one()]
        return PnLStats(*values)
    # <Statistics - End>

    def purge_audit_records(self, retention_days: int) -> int:
        """Delete audit rows older than retention_days. Returns the number of rows removed."""
        if retention_days <= 0:
            raise ValueError(f"retention_days must be positive, got {retention_days}")
        cutoff = datetime.datetime.now() - datetime.timedelta(days=retention_days)
        try:
            removed = self.audits.purge_older_than(cutoff)
            self.db_session.commit()
        except SQLAlchemyError as e:
            self.db_session.rollback()
            raise OrderPersistenceError(f"Audit purge failed: {e}") from e

        context_logger.log_event(
            TradingEventType.AUDIT_TRAIL,
            f"Purged {removed} audit records older than {retention_days} days",
            context_provider={'count': removed, 'cutoff': cutoff.isoformat()},
            decision_reason="AUDIT_RETENTION_PURGE"
        )
        return removed
