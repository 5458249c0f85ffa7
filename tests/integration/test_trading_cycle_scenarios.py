"""
End-to-end trading cycle scenarios against an in-memory database and a scripted exchange.
Each scenario drives TradingCycleOrchestrator.run_cycle() the way the scheduler does.
"""

import threading

import pytest
from unittest.mock import patch

from config.trading_core_config import get_config
from src.core.models import OrderDB, OrderAuditDB
from src.core.shared_enums import OrderSide, OrderResult, TradeDirection
from src.core.trading_errors import (CycleCancelledError, ExchangeRequestError, InsufficientCandleDataError,
                                     OrderPersistenceError, OrderUnrecordedError)
from src.trading.execution.cycle_scheduler import CycleScheduler
from src.trading.execution.trading_cycle import TradingCycleOrchestrator, CycleOutcome
from src.trading.positions.position_reconciler import ReconciliationAction
from tests.conftest import build_breakout_series
from tests.mocks.exchange_mocks import open_position


@pytest.fixture
def orchestrator(fake_exchange, order_service, no_sleep, breakout_series):
    fake_exchange.candles = breakout_series
    return TradingCycleOrchestrator.from_config(get_config('default'), fake_exchange, order_service,
                                                sleep=no_sleep)


class TestTradingCycleScenarios:
    """Scenario tests for one trading cycle."""

    def test_confirmed_long_breakout_places_and_records_order(self, orchestrator, fake_exchange,
                                                               order_service, db_session):
        """Wall 100, close 105, balance 1000: nine units with +3 % / -0.8 % protection."""
        report = orchestrator.run_cycle()

        assert report.outcome is CycleOutcome.ORDER_PLACED
        assert report.reconciliation.action is ReconciliationAction.NO_POSITION
        assert report.signal.wall == 100.0
        assert report.signal.direction is TradeDirection.LONG
        assert report.finished_at >= report.started_at

        placed = fake_exchange.placed[0]
        assert placed['quantity'] == 9
        assert placed['price'] == 105.0
        assert placed['take_profit'] == pytest.approx(108.15)
        assert placed['stop_loss'] == pytest.approx(104.16)

        order = order_service.get_order(report.placement.exchange_order_id)
        assert order.side is OrderSide.BUY
        assert order.result is OrderResult.PENDING
        assert order.order_price == 105.0
        assert order.take_profit_price == pytest.approx(108.15)
        assert db_session.query(OrderAuditDB).filter_by(order_id=order.order_id, field_name="created").count() == 1

    def test_confirmed_short_breakout(self, fake_exchange, order_service, no_sleep):
        fake_exchange.candles = build_breakout_series(breaking_open=91.0, breaking_close=85.0, default_green=False)
        orchestrator = TradingCycleOrchestrator.from_config(get_config('default'), fake_exchange, order_service,
                                                            sleep=no_sleep)

        report = orchestrator.run_cycle()

        assert report.outcome is CycleOutcome.ORDER_PLACED
        assert fake_exchange.placed[0]['direction'] is TradeDirection.SHORT
        assert fake_exchange.placed[0]['quantity'] == 11
        assert order_service.get_order(report.placement.exchange_order_id).side is OrderSide.SELL

    def test_pending_order_bypasses_next_cycle(self, orchestrator, fake_exchange):
        """Single flight: the second cycle neither fetches candles nor places."""
        orchestrator.run_cycle()
        fake_exchange.calls.clear()

        report = orchestrator.run_cycle()

        assert report.outcome is CycleOutcome.BYPASSED_ACTIVE
        assert 'fetch_recent_candles' not in fake_exchange.calls
        assert len(fake_exchange.placed) == 1

    def test_position_settles_order_and_bypasses(self, orchestrator, fake_exchange, order_service, db_session):
        """Reconciliation is idempotent across cycles while the position stays open."""
        first = orchestrator.run_cycle()
        fake_exchange.positions = [open_position()]

        settled = orchestrator.run_cycle()
        audit_count = db_session.query(OrderAuditDB).count()
        again = orchestrator.run_cycle()

        assert settled.outcome is CycleOutcome.BYPASSED_ACTIVE
        assert settled.reconciliation.action is ReconciliationAction.SETTLED
        assert order_service.get_order(first.placement.exchange_order_id).result is OrderResult.DONE
        assert again.outcome is CycleOutcome.BYPASSED_ACTIVE
        assert again.reconciliation.action is ReconciliationAction.ALREADY_SETTLED
        assert db_session.query(OrderAuditDB).count() == audit_count

    def test_closed_position_frees_the_next_cycle(self, orchestrator, fake_exchange):
        orchestrator.run_cycle()
        fake_exchange.positions = [open_position()]
        orchestrator.run_cycle()
        fake_exchange.positions = []

        report = orchestrator.run_cycle()

        assert report.outcome is CycleOutcome.ORDER_PLACED
        assert len(fake_exchange.placed) == 2

    def test_close_inside_range_has_no_signal(self, fake_exchange, order_service, db_session):
        fake_exchange.candles = build_breakout_series(breaking_open=94.0, breaking_close=95.0)
        orchestrator = TradingCycleOrchestrator.from_config(get_config('default'), fake_exchange, order_service)

        report = orchestrator.run_cycle()

        assert report.outcome is CycleOutcome.NO_SIGNAL
        assert report.signal.has_breakout is False
        assert fake_exchange.placed == []
        assert 'get_available_balance' not in fake_exchange.calls
        assert db_session.query(OrderDB).count() == 0

    def test_weak_volume_skips_placement(self, fake_exchange, order_service):
        """A wall break against red volume is not traded."""
        fake_exchange.candles = build_breakout_series(default_green=False)
        orchestrator = TradingCycleOrchestrator.from_config(get_config('default'), fake_exchange, order_service)

        report = orchestrator.run_cycle()

        assert report.outcome is CycleOutcome.VOLUME_NOT_CONFIRMED
        assert report.signal.wall_break is True
        assert report.signal.volume_confirmed is False
        assert fake_exchange.placed == []

    def test_short_series_is_insufficient_data(self, fake_exchange, order_service, breakout_series):
        fake_exchange.candles = breakout_series[-50:]
        orchestrator = TradingCycleOrchestrator.from_config(get_config('default'), fake_exchange, order_service)

        report = orchestrator.run_cycle()

        assert report.outcome is CycleOutcome.INSUFFICIENT_DATA
        assert isinstance(report.error, InsufficientCandleDataError)
        assert report.error.required == 74
        assert report.error.received == 50
        assert fake_exchange.placed == []

    def test_exhausted_placement_records_nothing(self, orchestrator, fake_exchange, db_session, no_sleep):
        """Three failed attempts leave no row and do not block the next cycle."""
        fake_exchange.place_results = [ExchangeRequestError("timeout")] * 3

        report = orchestrator.run_cycle()

        assert report.outcome is CycleOutcome.PLACEMENT_FAILED
        assert report.placement.attempts == 3
        assert no_sleep.call_count == 2
        assert db_session.query(OrderDB).count() == 0

        assert orchestrator.run_cycle().outcome is CycleOutcome.ORDER_PLACED

    def test_unrecorded_order_surfaces_exchange_id(self, orchestrator, fake_exchange, order_service):
        with patch.object(order_service, 'create_order', side_effect=OrderPersistenceError("database is locked")):
            report = orchestrator.run_cycle()

        assert report.outcome is CycleOutcome.ORDER_UNRECORDED
        assert report.placement.exchange_order_id == "ex-1"
        assert isinstance(report.error, OrderUnrecordedError)
        assert report.error.exchange_order_id == "ex-1"

    def test_cancelled_cycle_does_nothing(self, fake_exchange, order_service, breakout_series):
        cancel_event = threading.Event()
        cancel_event.set()
        fake_exchange.candles = breakout_series
        orchestrator = TradingCycleOrchestrator.from_config(get_config('default'), fake_exchange, order_service,
                                                            cancel_event=cancel_event)

        report = orchestrator.run_cycle()

        assert report.outcome is CycleOutcome.CANCELLED
        assert isinstance(report.error, CycleCancelledError)
        assert fake_exchange.calls == []

    def test_exchange_error_ends_cycle(self, orchestrator, fake_exchange):
        fake_exchange.errors['fetch_recent_candles'] = ExchangeRequestError("connection reset")

        report = orchestrator.run_cycle()

        assert report.outcome is CycleOutcome.EXCHANGE_ERROR
        assert isinstance(report.error, ExchangeRequestError)
        assert fake_exchange.placed == []

    def test_unexpected_exception_propagates(self, orchestrator, fake_exchange):
        fake_exchange.errors['fetch_recent_candles'] = RuntimeError("bug")

        with pytest.raises(RuntimeError):
            orchestrator.run_cycle()

    def test_scheduler_runs_cycle_job(self, orchestrator, fake_exchange):
        """The cycle runs as a scheduled job and a failing cycle does not kill the loop."""
        done = threading.Event()
        results = []

        def job():
            results.append(orchestrator.run_cycle().outcome)
            if len(results) >= 2:
                done.set()

        scheduler = CycleScheduler(error_backoff_base=0.01, max_backoff=0.01, stop_event=orchestrator.cancel_event)
        scheduler.add_job("trading_cycle", job, 0.01)

        scheduler.start()
        assert done.wait(5)
        scheduler.stop()

        assert results[0] is CycleOutcome.ORDER_PLACED
        assert results[1] is CycleOutcome.BYPASSED_ACTIVE
