"""
Tests for transactional order mutation and the field-level audit trail.
"""

import pytest
from unittest.mock import patch
from sqlalchemy.exc import OperationalError

from src.core.models import OrderDB, OrderAuditDB
from src.core.shared_enums import OrderSide, OrderResult
from src.core.trading_errors import AuditWriteError, InvalidResultTransitionError, OrderPersistenceError
from src.trading.orders.audit_recorder import AuditRecorder, format_audit_value, format_pnl
from src.trading.orders.order_repository import OrderAuditRepository


def create_long_order(order_service, order_id="ex-1"):
    return order_service.create_order(order_id=order_id, symbol="DOGEUSDT", side=OrderSide.BUY,
                                      order_price=105.0, quantity=9, take_profit_price=108.15,
                                      stop_loss_price=104.16)


def audit_rows(db_session, order_id):
    return db_session.query(OrderAuditDB).filter_by(order_id=order_id).order_by(OrderAuditDB.id).all()


class TestAuditValueFormatting:
    """Test suite for audit value string forms."""

    def test_float_uses_eight_decimals(self):
        assert format_audit_value('order_price', 105.0) == "105.00000000"

    def test_integer_quantity_is_formatted_as_float(self):
        assert format_audit_value('quantity', 9) == "9.00000000"

    def test_enum_uses_value(self):
        assert format_audit_value('result', OrderResult.DONE) == "Done"

    def test_status_id_is_plain_text(self):
        assert format_audit_value('order_status_id', 3) == "3"

    def test_none_stays_null(self):
        assert format_audit_value('take_profit_price', None) is None

    def test_pnl_format(self):
        assert format_pnl(1.5, 2.25) == "PnL: 1.50000000, PnL%: 2.2500"


class TestAuditRecorder:
    """Test suite for AuditRecorder."""

    def test_creation_writes_created_row(self, order_service, db_session):
        """The insert and its 'created' row land in the same commit."""
        create_long_order(order_service)

        rows = audit_rows(db_session, "ex-1")
        assert len(rows) == 1
        assert rows[0].field_name == "created"
        assert rows[0].old_value is None
        assert rows[0].new_value == "Order created"
        assert rows[0].changed_by == "system"

    def test_only_changed_fields_are_audited(self, order_service, db_session):
        """Unchanged values in the change set produce no rows."""
        order = create_long_order(order_service)
        recorder = AuditRecorder(db_session)

        with recorder.transaction():
            changed = recorder.apply_changes(order, {'order_price': 105.0, 'quantity': 10.0})

        assert changed == ['quantity']
        rows = audit_rows(db_session, "ex-1")
        assert [row.field_name for row in rows] == ["created", "quantity"]
        assert rows[1].old_value == "9.00000000"
        assert rows[1].new_value == "10.00000000"

    def test_status_change_records_status_ids(self, order_service, db_session):
        """Status references are audited by id."""
        order = create_long_order(order_service)
        old_status_id = order.order_status_id

        order_service.update_order_status("ex-1", "Filled")

        row = audit_rows(db_session, "ex-1")[-1]
        assert row.field_name == "order_status_id"
        assert row.old_value == str(old_status_id)
        assert row.new_value == str(order.order_status_id)
        assert row.new_value != row.old_value

    def test_audit_failure_rolls_back_mutation(self, order_service, db_session):
        """A failed audit write leaves the order untouched."""
        create_long_order(order_service)

        with patch.object(OrderAuditRepository, 'append',
                          side_effect=OperationalError("INSERT", {}, Exception("disk I/O error"))):
            with pytest.raises(AuditWriteError):
                order_service.update_order_result("ex-1", OrderResult.DONE)

        order = db_session.query(OrderDB).filter_by(order_id="ex-1").one()
        assert order.result is OrderResult.PENDING
        assert [row.field_name for row in audit_rows(db_session, "ex-1")] == ["created"]

    def test_audit_failure_on_creation_leaves_no_order(self, order_service, db_session):
        """The insert is rolled back with its failed 'created' row."""
        with patch.object(OrderAuditRepository, 'append',
                          side_effect=OperationalError("INSERT", {}, Exception("disk I/O error"))):
            with pytest.raises(AuditWriteError):
                create_long_order(order_service)

        assert db_session.query(OrderDB).count() == 0
        assert db_session.query(OrderAuditDB).count() == 0

    def test_result_cannot_revert_to_pending(self, order_service, db_session):
        """Done to Pending is rejected and nothing is written."""
        create_long_order(order_service)
        order_service.update_order_result("ex-1", OrderResult.DONE)

        with pytest.raises(InvalidResultTransitionError):
            order_service.update_order_result("ex-1", OrderResult.PENDING)

        order = db_session.query(OrderDB).filter_by(order_id="ex-1").one()
        assert order.result is OrderResult.DONE

    def test_same_result_is_a_no_op(self, order_service, db_session):
        """Re-applying a result writes no audit row."""
        create_long_order(order_service)
        assert order_service.update_order_result("ex-1", OrderResult.DONE) is True
        rows_before = len(audit_rows(db_session, "ex-1"))

        assert order_service.update_order_result("ex-1", OrderResult.DONE) is False

        assert len(audit_rows(db_session, "ex-1")) == rows_before

    def test_non_audited_fields_are_refused(self, order_service, db_session):
        """Fields outside the permitted set cannot be changed through the recorder."""
        order = create_long_order(order_service)
        recorder = AuditRecorder(db_session)

        with pytest.raises(OrderPersistenceError):
            with recorder.transaction():
                recorder.apply_changes(order, {'symbol': 'BTCUSDT'})

        assert db_session.query(OrderDB).filter_by(order_id="ex-1").one().symbol == "DOGEUSDT"

    def test_changed_by_is_recorded(self, db_session):
        """The actor name is stored on every row."""
        from src.services.order_service import OrderService
        service = OrderService(db_session, changed_by="reconciler")

        create_long_order(service, order_id="ex-7")

        assert audit_rows(db_session, "ex-7")[0].changed_by == "reconciler"
