"""
TradingCycleOrchestrator - one repeatable unit of work for the breakout strategy.
Reconciles, enforces the single-flight rule, fetches candles, detects a breakout and places the order.
Exchange failures end the cycle early; unexpected exceptions propagate to the scheduler.
"""

import datetime
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from src.brokers.abstract_exchange_client import ExchangeClient
from src.core.context_aware_logger import get_context_logger, TradingEventType
from src.core.trading_errors import CycleCancelledError, ExchangeError, InsufficientCandleDataError
from src.services.order_service import OrderService
from src.trading.orders.order_lifecycle_controller import (OrderLifecycleController, PlacementOutcome,
                                                            PlacementStatus)
from src.trading.positions.position_reconciler import PositionReconciler, ReconciliationResult
from src.trading.signals.breakout_signal_detector import BreakoutSignalDetector, BreakoutSignal

context_logger = get_context_logger()


class CycleOutcome(Enum):
    BYPASSED_ACTIVE = "bypassed_active"
    NO_SIGNAL = "no_signal"
    VOLUME_NOT_CONFIRMED = "volume_not_confirmed"
    INSUFFICIENT_DATA = "insufficient_data"
    ORDER_PLACED = "order_placed"
    REJECTED = "rejected"
    PLACEMENT_FAILED = "placement_failed"
    ORDER_UNRECORDED = "order_unrecorded"
    EXCHANGE_ERROR = "exchange_error"
    CANCELLED = "cancelled"


PLACEMENT_OUTCOMES = {
    PlacementStatus.PLACED: CycleOutcome.ORDER_PLACED,
    PlacementStatus.REJECTED: CycleOutcome.REJECTED,
    PlacementStatus.EXHAUSTED: CycleOutcome.PLACEMENT_FAILED,
    PlacementStatus.CANCELLED: CycleOutcome.CANCELLED,
    PlacementStatus.UNRECORDED: CycleOutcome.ORDER_UNRECORDED,
}


@dataclass
class CycleReport:
    outcome: CycleOutcome
    started_at: datetime.datetime
    finished_at: Optional[datetime.datetime] = None
    reconciliation: Optional[ReconciliationResult] = None
    signal: Optional[BreakoutSignal] = None
    placement: Optional[PlacementOutcome] = None
    error: Optional[BaseException] = None


class TradingCycleOrchestrator:
    """Ties reconciler, detector and controller into run_cycle()."""

    def __init__(self,
                 exchange: ExchangeClient,
                 reconciler: PositionReconciler,
                 controller: OrderLifecycleController,
                 detector: BreakoutSignalDetector,
                 symbol: str,
                 timeframe: str = '1',
                 candle_count: int = 1000,
                 cancel_event: Optional[threading.Event] = None):
        self.exchange = exchange
        self.reconciler = reconciler
        self.controller = controller
        self.detector = detector
        self.symbol = symbol
        self.timeframe = timeframe
        self.candle_count = candle_count
        self.cancel_event = cancel_event or threading.Event()

    @classmethod
    def from_config(cls, config: Dict[str, Any], exchange: ExchangeClient, order_service: OrderService,
                    cancel_event: Optional[threading.Event] = None, sleep=None) -> 'TradingCycleOrchestrator':
        """Wire the cycle components from a trading core configuration."""
        cancel_event = cancel_event or threading.Event()
        strategy = config['strategy']
        return cls(
            exchange=exchange,
            reconciler=PositionReconciler(exchange, order_service, strategy['symbol']),
            controller=OrderLifecycleController.from_config(config, exchange, order_service,
                                                            cancel_event=cancel_event, sleep=sleep),
            detector=BreakoutSignalDetector.from_config(config),
            symbol=strategy['symbol'],
            timeframe=strategy['timeframe'],
            candle_count=strategy['candle_count'],
            cancel_event=cancel_event,
        )

    def _check_cancelled(self, phase: str) -> None:
        if self.cancel_event.is_set():
            raise CycleCancelledError(phase)

    def run_cycle(self) -> CycleReport:
        report = CycleReport(outcome=CycleOutcome.NO_SIGNAL, started_at=datetime.datetime.now())
        context_logger.log_event(
            TradingEventType.SYSTEM_HEALTH,
            "Trading cycle starting",
            symbol=self.symbol,
            context_provider={'timeframe': self.timeframe, 'candle_count': self.candle_count}
        )

        try:
            self._run_phases(report)
        except CycleCancelledError as e:
            report.outcome = CycleOutcome.CANCELLED
            report.error = e
            context_logger.log_event(
                TradingEventType.SYSTEM_HEALTH,
                "Trading cycle cancelled",
                symbol=self.symbol,
                context_provider={'phase': e.phase},
                decision_reason="CYCLE_CANCELLED"
            )
        except ExchangeError as e:
            report.outcome = CycleOutcome.EXCHANGE_ERROR
            report.error = e
            context_logger.log_event(
                TradingEventType.EXCHANGE_API,
                "Trading cycle ended early on exchange error",
                symbol=self.symbol,
                context_provider={'error': str(e), 'error_type': type(e).__name__},
                decision_reason="CYCLE_EXCHANGE_ERROR"
            )

        report.finished_at = datetime.datetime.now()
        context_logger.log_event(
            TradingEventType.SYSTEM_HEALTH,
            f"Trading cycle completed: {report.outcome.value}",
            symbol=self.symbol,
            context_provider={
                'outcome': report.outcome.value,
                'duration_seconds': lambda: (report.finished_at - report.started_at).total_seconds(),
            }
        )
        return report

    def _run_phases(self, report: CycleReport) -> None:
        self._check_cancelled("reconcile")
        report.reconciliation = self.reconciler.reconcile()

        if report.reconciliation.position_active or self.controller.has_active_order_or_position(
                report.reconciliation.positions):
            report.outcome = CycleOutcome.BYPASSED_ACTIVE
            context_logger.log_event(
                TradingEventType.EXECUTION_DECISION,
                "Active order or position, cycle bypassed",
                symbol=self.symbol,
                context_provider={'action': report.reconciliation.action.value},
                decision_reason="CYCLE_BYPASSED_ACTIVE"
            )
            return

        self._check_cancelled("fetch_candles")
        candles = self.exchange.fetch_recent_candles(self.symbol, self.timeframe, self.candle_count)

        try:
            signal = self.detector.detect(candles)
        except InsufficientCandleDataError as e:
            report.outcome = CycleOutcome.INSUFFICIENT_DATA
            report.error = e
            context_logger.log_event(
                TradingEventType.SIGNAL_DETECTION,
                "Not enough candles for breakout checks",
                symbol=self.symbol,
                context_provider={'required': e.required, 'count': e.received},
                decision_reason="INSUFFICIENT_CANDLE_DATA"
            )
            return
        report.signal = signal

        context_logger.log_event(
            TradingEventType.SIGNAL_DETECTION,
            "Breakout evaluation",
            symbol=self.symbol,
            context_provider={
                'wall': signal.wall,
                'support': signal.support,
                'price': signal.breaking_close,
                'direction': lambda: signal.direction.value if signal.direction else None,
                'volume_ratio': signal.volume_ratio,
                'breaking_volume': signal.breaking_volume,
            },
            decision_reason="BREAKOUT_DETECTED" if signal.has_breakout else "NO_BREAKOUT"
        )

        if not signal.has_breakout:
            report.outcome = CycleOutcome.NO_SIGNAL
            return
        if not signal.volume_confirmed:
            report.outcome = CycleOutcome.VOLUME_NOT_CONFIRMED
            return

        self._check_cancelled("place_order")
        placement = self.controller.place_directional_order(signal.direction, signal.breaking_close)
        report.placement = placement
        report.outcome = PLACEMENT_OUTCOMES[placement.status]
        report.error = placement.error
