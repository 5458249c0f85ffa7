"""
Transactional order mutation with a field-level audit trail.
Every permitted field change writes one before/after row in the same transaction as the change;
a failed audit write rolls the whole mutation back.
"""

import datetime
from contextlib import contextmanager
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from src.core.context_aware_logger import get_context_logger, TradingEventType
from src.core.models import OrderDB
from src.core.shared_enums import OrderResult
from src.core.trading_errors import (AuditWriteError, DuplicateOrderError, InvalidResultTransitionError,
                                     OrderPersistenceError)
from src.trading.orders.order_repository import OrderRepository, OrderAuditRepository

context_logger = get_context_logger()

# Order fields whose changes are audited, in audit row order
AUDITED_FIELDS = (
    'order_price',
    'quantity',
    'take_profit_price',
    'stop_loss_price',
    'order_status_id',
    'result',
)
FLOAT_FIELDS = frozenset({'order_price', 'quantity', 'take_profit_price', 'stop_loss_price'})

CREATED_FIELD = 'created'
DELETED_FIELD = 'deleted'
PNL_FIELD = 'pnl_update'


def format_audit_value(field_name: str, value: Any) -> Optional[str]:
    """String form stored in the audit table: floats as %.8f, enums by value, ids as text."""
    if value is None:
        return None
    if isinstance(value, Enum):
        return str(value.value)
    if field_name in FLOAT_FIELDS or isinstance(value, float):
        return f"{float(value):.8f}"
    return str(value)


def format_pnl(pnl: Optional[float], pnl_percentage: Optional[float]) -> str:
    return f"PnL: {pnl or 0.0:.8f}, PnL%: {pnl_percentage or 0.0:.4f}"


class AuditRecorder:
    """Wraps order mutations in a transaction that also appends audit rows."""

    def __init__(self, db_session: Session, changed_by: str = 'system'):
        self.db_session = db_session
        self.changed_by = changed_by
        self.orders = OrderRepository(db_session)
        self.audits = OrderAuditRepository(db_session)

    @contextmanager
    def transaction(self) -> Iterator['AuditRecorder']:
        """Commit on success; roll back and re-raise on any failure."""
        try:
            yield self
            self.db_session.commit()
        except SQLAlchemyError as e:
            self.db_session.rollback()
            context_logger.log_event(
                TradingEventType.DATABASE_STATE,
                "Order transaction failed and was rolled back",
                context_provider={'error': str(e), 'error_type': type(e).__name__},
                decision_reason="TRANSACTION_ROLLED_BACK"
            )
            raise OrderPersistenceError(f"Order transaction failed: {e}") from e
        except Exception as e:
            self.db_session.rollback()
            context_logger.log_event(
                TradingEventType.DATABASE_STATE,
                "Order transaction failed and was rolled back",
                context_provider={'error': str(e), 'error_type': type(e).__name__},
                decision_reason="TRANSACTION_ROLLED_BACK"
            )
            raise

    def write_audit(self, order_id: str, field_name: str, old_value: Optional[str],
                    new_value: Optional[str]) -> None:
        try:
            self.audits.append(order_id, field_name, old_value, new_value, self.changed_by)
            self.db_session.flush()
        except SQLAlchemyError as e:
            raise AuditWriteError(f"Failed to write audit row for {order_id}.{field_name}: {e}") from e

        context_logger.log_event(
            TradingEventType.AUDIT_TRAIL,
            f"Audit row written for {field_name}",
            context_provider={
                'order_id': order_id,
                'field_name': field_name,
                'old_value': old_value,
                'new_value': new_value,
            },
            decision_reason="AUDIT_ROW_WRITTEN"
        )

    def record_creation(self, order: OrderDB) -> OrderDB:
        """Insert the order and its 'created' audit row. Must run inside transaction()."""
        if self.orders.exists_including_deleted(order.order_id):
            raise DuplicateOrderError(f"Order already recorded: {order.order_id}")
        try:
            self.orders.add(order)
        except IntegrityError as e:
            raise OrderPersistenceError(f"Order {order.order_id} violates table constraints: {e.orig}") from e
        self.write_audit(order.order_id, CREATED_FIELD, None, "Order created")
        return order

    def apply_changes(self, order: OrderDB, changes: Dict[str, Any]) -> List[str]:
        """
        Set each changed field and audit it. Unchanged fields are skipped.
        Must run inside transaction(). Returns the names of fields that changed.
        """
        unknown = set(changes) - set(AUDITED_FIELDS)
        if unknown:
            raise OrderPersistenceError(f"Fields are not mutable through the audit path: {sorted(unknown)}")

        changed = []
        for field_name in AUDITED_FIELDS:
            if field_name not in changes:
                continue
            new_value = changes[field_name]
            old_value = getattr(order, field_name)

            if field_name == 'result':
                self._check_result_transition(order, old_value, new_value)

            old_text = format_audit_value(field_name, old_value)
            new_text = format_audit_value(field_name, new_value)
            if old_text == new_text:
                continue

            setattr(order, field_name, new_value)
            self.write_audit(order.order_id, field_name, old_text, new_text)
            changed.append(field_name)

        if changed:
            order.updated_at = datetime.datetime.now()
        return changed

    def record_pnl(self, order: OrderDB, pnl: float, pnl_percentage: float) -> bool:
        """Update PnL fields with a single pnl_update row. Returns False when nothing changed."""
        old_text = format_pnl(order.pnl, order.pnl_percentage)
        new_text = format_pnl(pnl, pnl_percentage)
        if old_text == new_text:
            return False

        order.pnl = pnl
        order.pnl_percentage = pnl_percentage
        order.updated_at = datetime.datetime.now()
        self.write_audit(order.order_id, PNL_FIELD, old_text, new_text)
        return True

    def record_soft_delete(self, order: OrderDB) -> None:
        deleted_at = datetime.datetime.now()
        order.deleted_at = deleted_at
        self.write_audit(order.order_id, DELETED_FIELD, None, f"Order deleted at {deleted_at.isoformat()}")

    @staticmethod
    def _check_result_transition(order: OrderDB, old_value: Any, new_value: Any) -> None:
        if not isinstance(new_value, OrderResult):
            raise InvalidResultTransitionError(f"Result must be an OrderResult, got {new_value!r}")
        if new_value is OrderResult.PENDING and old_value is not None and old_value is not OrderResult.PENDING:
            raise InvalidResultTransitionError(
                f"Order {order.order_id} cannot move from {old_value.value} back to Pending")
