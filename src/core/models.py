"""
SQLAlchemy ORM models defining the database schema for the breakout trading system.
Contains the order status lookup table, the orders table and the append-only order audit trail.
"""

from sqlalchemy import (Column, Integer, String, Float, DateTime, ForeignKey, Text, Boolean, Enum,
                        CheckConstraint, Index)
from sqlalchemy.orm import declarative_base, relationship
import datetime
from typing import Tuple

from src.core.shared_enums import OrderSide, OrderResult

Base = declarative_base()


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class OrderStatusDB(Base):
    """Lookup table for exchange order statuses (New, Filled, Untriggered, ...)."""
    __tablename__ = 'order_statuses'

    id = Column(Integer, primary_key=True)
    status_name = Column(String(50), unique=True, nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.datetime.now)

    orders = relationship("OrderDB", back_populates="order_status")

    def __repr__(self):
        return f"<OrderStatusDB(id={self.id}, status_name='{self.status_name}')>"


class OrderDB(Base):
    """One row per trade attempt acknowledged by the exchange."""
    __tablename__ = 'orders'
    __table_args__ = (
        CheckConstraint('order_price > 0 AND quantity > 0', name='chk_positive_price_quantity'),
        CheckConstraint('take_profit_price IS NULL OR take_profit_price > 0', name='chk_positive_take_profit'),
        CheckConstraint('stop_loss_price IS NULL OR stop_loss_price > 0', name='chk_positive_stop_loss'),
        CheckConstraint(
            "take_profit_price IS NULL OR "
            "(side = 'Buy' AND take_profit_price > order_price) OR "
            "(side = 'Sell' AND take_profit_price < order_price)",
            name='chk_take_profit_side'),
        CheckConstraint(
            "stop_loss_price IS NULL OR "
            "(side = 'Buy' AND stop_loss_price < order_price) OR "
            "(side = 'Sell' AND stop_loss_price > order_price)",
            name='chk_stop_loss_side'),
        Index('idx_symbol_status', 'symbol', 'order_status_id'),
        Index('idx_symbol_result', 'symbol', 'result'),
        Index('idx_created_status', 'created_at', 'order_status_id'),
        Index('idx_orders_compound', 'symbol', 'side', 'result', 'created_at'),
    )

    id = Column(Integer, primary_key=True)
    order_id = Column(String(64), unique=True, nullable=False)

    symbol = Column(String(20), nullable=False)
    side = Column(Enum(OrderSide, name='order_side_enum', native_enum=False,
                       values_callable=_enum_values, create_constraint=True),
                  nullable=False)
    order_price = Column(Float, nullable=False)
    quantity = Column(Float, nullable=False)
    take_profit_price = Column(Float, nullable=True)
    stop_loss_price = Column(Float, nullable=True)

    order_status_id = Column(Integer, ForeignKey('order_statuses.id'), nullable=False)
    result = Column(Enum(OrderResult, name='order_result_enum', native_enum=False,
                         values_callable=_enum_values, create_constraint=True),
                    default=OrderResult.PENDING, nullable=False)

    pnl = Column(Float, default=0.0)
    pnl_percentage = Column(Float, default=0.0)

    created_at = Column(DateTime, default=datetime.datetime.now)
    updated_at = Column(DateTime, default=datetime.datetime.now, onupdate=datetime.datetime.now)
    deleted_at = Column(DateTime, nullable=True)

    order_status = relationship("OrderStatusDB", back_populates="orders")
    audit_records = relationship("OrderAuditDB", back_populates="order",
                                 order_by="OrderAuditDB.id")

    @property
    def is_long(self) -> bool:
        return self.side == OrderSide.BUY

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def calculate_pnl(self, current_price: float) -> Tuple[float, float]:
        """Return (pnl, pnl_percentage) at current_price without mutating the row."""
        if not self.order_price:
            return 0.0, 0.0
        if self.is_long:
            pnl = (current_price - self.order_price) * self.quantity
            pnl_percentage = (current_price - self.order_price) / self.order_price * 100
        else:
            pnl = (self.order_price - current_price) * self.quantity
            pnl_percentage = (self.order_price - current_price) / self.order_price * 100
        return pnl, pnl_percentage

    def __repr__(self):
        result = self.result.value if self.result else None
        return f"<OrderDB(id={self.id}, order_id='{self.order_id}', symbol='{self.symbol}', result='{result}')>"


class OrderAuditDB(Base):
    """Append-only before/after record of a single order field change."""
    __tablename__ = 'order_audit'
    __table_args__ = (
        Index('idx_audit_order_field', 'order_id', 'field_name'),
        Index('idx_audit_changed_at', 'changed_at'),
    )

    id = Column(Integer, primary_key=True)
    order_id = Column(String(64), ForeignKey('orders.order_id'), nullable=False)
    field_name = Column(String(50), nullable=False)
    old_value = Column(Text, nullable=True)
    new_value = Column(Text, nullable=True)
    changed_by = Column(String(50), nullable=False, default='system')
    changed_at = Column(DateTime, default=datetime.datetime.now)

    order = relationship("OrderDB", back_populates="audit_records")

    def __repr__(self):
        return (f"<OrderAuditDB(order_id='{self.order_id}', field='{self.field_name}', "
                f"old={self.old_value!r}, new={self.new_value!r})>")
