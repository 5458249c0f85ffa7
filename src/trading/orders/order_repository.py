"""
Data access for orders, order statuses and the order audit trail.
Repositories only stage changes on the session; transactions are owned by the audit recorder.
"""

import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from src.core.models import OrderDB, OrderStatusDB, OrderAuditDB
from src.core.shared_enums import OrderResult
from src.core.trading_errors import OrderNotFoundError


class OrderStatusRepository:
    """Read-only lookups over the seeded order_statuses table."""

    def __init__(self, db_session: Session):
        self.db_session = db_session

    def get_by_name(self, status_name: str) -> OrderStatusDB:
        status = self.db_session.query(OrderStatusDB).filter_by(status_name=status_name).first()
        if status is None:
            raise OrderNotFoundError(f"Order status not found: {status_name}")
        return status

    def get_by_id(self, status_id: int) -> Optional[OrderStatusDB]:
        return self.db_session.get(OrderStatusDB, status_id)

    def list_active(self) -> List[OrderStatusDB]:
        return (self.db_session.query(OrderStatusDB)
                .filter(OrderStatusDB.is_active.is_(True))
                .order_by(OrderStatusDB.id)
                .all())


class OrderRepository:
    """Queries over live (not soft-deleted) orders."""

    def __init__(self, db_session: Session):
        self.db_session = db_session

    def _live(self):
        return self.db_session.query(OrderDB).filter(OrderDB.deleted_at.is_(None))

    def add(self, order: OrderDB) -> OrderDB:
        self.db_session.add(order)
        self.db_session.flush()
        return order

    def get_by_id(self, order_pk: int) -> Optional[OrderDB]:
        return self._live().filter(OrderDB.id == order_pk).first()

    def get_by_order_id(self, order_id: str) -> Optional[OrderDB]:
        return self._live().filter(OrderDB.order_id == order_id).first()

    def exists_including_deleted(self, order_id: str) -> bool:
        return self.db_session.query(OrderDB.id).filter(OrderDB.order_id == order_id).first() is not None

    def get_required(self, order_id: str) -> OrderDB:
        order = self.get_by_order_id(order_id)
        if order is None:
            raise OrderNotFoundError(f"Order not found: {order_id}")
        return order

    def find(self, symbol: Optional[str] = None, result: Optional[OrderResult] = None,
             status_id: Optional[int] = None) -> List[OrderDB]:
        query = self._live()
        if symbol:
            query = query.filter(OrderDB.symbol == symbol)
        if result is not None:
            query = query.filter(OrderDB.result == result)
        if status_id is not None:
            query = query.filter(OrderDB.order_status_id == status_id)
        return query.order_by(OrderDB.created_at.desc(), OrderDB.id.desc()).all()

    def get_pending(self, symbol: str) -> Optional[OrderDB]:
        """Most recent Pending order for the symbol; the single-flight rule allows at most one."""
        return (self._live()
                .filter(OrderDB.symbol == symbol, OrderDB.result == OrderResult.PENDING)
                .order_by(OrderDB.created_at.desc(), OrderDB.id.desc())
                .first())

    def get_latest_settled(self, symbol: str) -> Optional[OrderDB]:
        return (self._live()
                .filter(OrderDB.symbol == symbol, OrderDB.result != OrderResult.PENDING)
                .order_by(OrderDB.created_at.desc(), OrderDB.id.desc())
                .first())


class OrderAuditRepository:
    """Append-only access to order_audit rows."""

    def __init__(self, db_session: Session):
        self.db_session = db_session

    def append(self, order_id: str, field_name: str, old_value: Optional[str], new_value: Optional[str],
               changed_by: str = 'system') -> OrderAuditDB:
        record = OrderAuditDB(
            order_id=order_id,
            field_name=field_name,
            old_value=old_value,
            new_value=new_value,
            changed_by=changed_by,
            changed_at=datetime.datetime.now(),
        )
        self.db_session.add(record)
        return record

    def for_order(self, order_id: str) -> List[OrderAuditDB]:
        return (self.db_session.query(OrderAuditDB)
                .filter(OrderAuditDB.order_id == order_id)
                .order_by(OrderAuditDB.id)
                .all())

    def purge_older_than(self, cutoff: datetime.datetime) -> int:
        """Bulk delete rows older than cutoff; the only path that removes audit rows."""
        return (self.db_session.query(OrderAuditDB)
                .filter(OrderAuditDB.changed_at < cutoff)
                .delete(synchronize_session=False))
