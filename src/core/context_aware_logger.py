"""
Safe Context-Aware Logging System for the breakout trader.
Provides structured event logging with importance filtering, circuit breakers and recursion protection.
Designed to answer debugging questions about signals, order placement, reconciliation and the audit trail.
"""

import datetime
import inspect
import json
import logging
import os
import sys
import threading
import time
import uuid
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Dict, Any, Optional


# <Session Management - Begin>
class SessionLogger:
    """Manages session-based logging with a single file per trading session."""

    _current_session_file: Optional[str] = None
    _session_start_time: Optional[datetime.datetime] = None
    _session_handlers_configured = False
    log_dir = 'logs'

    @classmethod
    def start_new_session(cls) -> str:
        """Start a new logging session and return the session file path."""
        os.makedirs(cls.log_dir, exist_ok=True)

        timestamp = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
        session_file = os.path.join(cls.log_dir, f"trading_session_{timestamp}.log")

        cls._current_session_file = session_file
        cls._session_start_time = datetime.datetime.now()
        cls._session_handlers_configured = False

        print(f"🔄 Starting new trading session: {session_file}")
        return session_file

    @classmethod
    def get_current_session_file(cls) -> Optional[str]:
        return cls._current_session_file

    @classmethod
    def end_current_session(cls) -> None:
        """End the current logging session."""
        if cls._current_session_file:
            print(f"✅ Ending trading session: {cls._current_session_file}")
            cls._current_session_file = None
            cls._session_start_time = None
            cls._session_handlers_configured = False

    @classmethod
    def ensure_session_started(cls) -> str:
        if not cls._current_session_file:
            return cls.start_new_session()
        return cls._current_session_file

    @classmethod
    def configure_session_handlers(cls, logger: logging.Logger) -> None:
        """Attach a detailed file handler and a terse console handler for the current session."""
        if cls._session_handlers_configured:
            return

        session_file = cls.ensure_session_started()

        for handler in logger.handlers[:]:
            logger.removeHandler(handler)
            handler.close()

        file_handler = logging.FileHandler(session_file, mode='a', encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.WARNING)
        console_handler.setFormatter(logging.Formatter('%(levelname)s - %(name)s - %(message)s'))

        logger.addHandler(file_handler)
        logger.addHandler(console_handler)
        logger.setLevel(logging.DEBUG)
        logger.propagate = False

        cls._session_handlers_configured = True
# <Session Management - End>


class LogImportance(Enum):
    """3-level importance system for log filtering."""
    HIGH = 1      # Errors, placements, unrecorded orders, state transitions
    MEDIUM = 2    # Signal decisions, validations, reconciliation results
    LOW = 3       # System health, progress updates, routine checks


class TradingEventType(Enum):
    """Categories of trading events for structured logging."""
    SIGNAL_DETECTION = "signal_detection"
    ORDER_VALIDATION = "order_validation"
    EXECUTION_DECISION = "execution_decision"
    EXCHANGE_API = "exchange_api"
    POSITION_MANAGEMENT = "position_management"
    RECONCILIATION = "reconciliation"
    STATE_TRANSITION = "state_transition"
    AUDIT_TRAIL = "audit_trail"
    DATABASE_STATE = "database_state"
    SYSTEM_HEALTH = "system_health"


EVENT_TYPE_CODES = {event_type: code for code, event_type in enumerate(TradingEventType, start=1)}

EVENT_TYPE_IMPORTANCE = {
    TradingEventType.SIGNAL_DETECTION: LogImportance.MEDIUM,
    TradingEventType.ORDER_VALIDATION: LogImportance.MEDIUM,
    TradingEventType.EXECUTION_DECISION: LogImportance.HIGH,
    TradingEventType.EXCHANGE_API: LogImportance.LOW,
    TradingEventType.POSITION_MANAGEMENT: LogImportance.HIGH,
    TradingEventType.RECONCILIATION: LogImportance.MEDIUM,
    TradingEventType.STATE_TRANSITION: LogImportance.HIGH,
    TradingEventType.AUDIT_TRAIL: LogImportance.LOW,
    TradingEventType.DATABASE_STATE: LogImportance.LOW,
    TradingEventType.SYSTEM_HEALTH: LogImportance.LOW,
}

# LOG_LEVEL names accepted from the environment
LOG_LEVEL_IMPORTANCE = {
    'debug': LogImportance.LOW,
    'info': LogImportance.MEDIUM,
    'warn': LogImportance.HIGH,
    'warning': LogImportance.HIGH,
    'error': LogImportance.HIGH,
}

FIELD_COMPRESSION_MAP = {
    'timestamp': 'ts',
    'event_type': 'et',
    'symbol': 's',
    'message': 'm',
    'decision_reason': 'r',
    'context': 'c',
    'importance': 'i',
}

CONTEXT_FIELD_MAP = {
    'price': 'p', 'quantity': 'q', 'order_id': 'oid', 'exchange_order_id': 'xid',
    'symbol': 's', 'direction': 'dir', 'status': 'st', 'result': 'res',
    'error': 'e', 'error_type': 'et', 'count': 'cnt', 'attempt': 'att',
    'wall': 'w', 'support': 'sup', 'volume_ratio': 'vr', 'take_profit': 'tp',
    'stop_loss': 'sl', 'balance': 'bal', 'pnl': 'pnl', 'field_name': 'f',
}

CRITICAL_PATTERNS = ('error', 'fail', 'reject', 'unrecorded', 'placed', 'cancelled')
ROUTINE_PATTERNS = ('initialized', 'starting', 'checking', 'completed', 'fetched')


@dataclass
class TradingEvent:
    """Structured event data with safety guarantees."""
    event_id: str
    event_type: str
    timestamp: str
    session_id: str
    symbol: Optional[str]
    message: str
    context: Dict[str, Any]
    decision_reason: Optional[str]
    call_stack_depth: int


# SafeContext class - Begin
class SafeContext:
    """Lazy evaluation wrapper: callables are only invoked when the event is actually written."""

    def __init__(self, **lazy_fields):
        self._lazy_fields = lazy_fields
        self._evaluated = False
        self._safe_dict: Dict[str, Any] = {}

    def to_safe_dict(self) -> Dict[str, Any]:
        if not self._evaluated:
            for key, provider in self._lazy_fields.items():
                try:
                    value = provider() if callable(provider) else provider
                    self._safe_dict[key] = self._make_safe(value)
                except Exception as e:
                    self._safe_dict[key] = f"CTX_ERR:{str(e)[:20]}"
            self._evaluated = True
        return self._safe_dict

    def _make_safe(self, value: Any) -> Any:
        """Reduce a value to JSON-safe primitives, shortening long collections."""
        if value is None or isinstance(value, (str, int, float, bool)):
            return value
        if isinstance(value, Enum):
            return value.value
        if isinstance(value, (datetime.datetime, datetime.date)):
            return value.isoformat()
        if isinstance(value, (list, tuple)):
            if len(value) <= 3:
                return [self._make_safe(item) for item in value]
            return [self._make_safe(value[0]), self._make_safe(value[1]), f"+{len(value) - 2}"]
        if isinstance(value, dict):
            return {str(k): self._make_safe(v) for k, v in list(value.items())[:8]}
        text = str(value)
        return text[:50] + "..." if len(text) > 50 else text
# SafeContext class - End


class ContextAwareLogger:
    """
    Safe context-aware logger with multiple layers of dead-loop protection.
    """

    def __init__(self, max_events_per_second: int = 50, max_recursion_depth: int = 3):
        self.session_id = str(uuid.uuid4())[:8]
        self._active_threads: Dict[int, int] = {}
        self._event_counts: Dict[str, int] = {}
        self._last_reset = time.time()
        self._counter_lock = threading.Lock()

        self.max_events_per_second = max_events_per_second
        self.max_recursion_depth = max_recursion_depth

        # Default to MEDIUM (filters out LOW importance)
        self.min_importance = LogImportance.MEDIUM

        self._stats = self._empty_stats()

        self._file_logger = logging.getLogger(f"context_aware_{self.session_id}")
        SessionLogger.configure_session_handlers(self._file_logger)
        self._file_logger.info(f"ContextAwareLogger initialized (session: {self.session_id})")

    @staticmethod
    def _empty_stats() -> Dict[str, int]:
        return {
            'total_events': 0,
            'dropped_events': 0,
            'recursion_blocks': 0,
            'circuit_breaker_blocks': 0,
            'importance_filtered': 0,
        }

    def set_log_level(self, level_name: Optional[str]) -> LogImportance:
        """Map a LOG_LEVEL name (debug/info/warning/error) to the minimum importance written."""
        importance = LOG_LEVEL_IMPORTANCE.get((level_name or 'info').strip().lower(), LogImportance.MEDIUM)
        self.min_importance = importance
        return importance

    def log_event(self,
                  event_type: TradingEventType,
                  message: str,
                  symbol: Optional[str] = None,
                  context_provider: Optional[Dict[str, Any]] = None,
                  decision_reason: Optional[str] = None) -> bool:
        """
        Safely log a trading event. Returns True when the event was written.
        """
        thread_id = threading.get_ident()

        # Layer 1: importance filtering
        importance = self._determine_importance(event_type, message, decision_reason)
        if importance.value > self.min_importance.value:
            self._stats['importance_filtered'] += 1
            return False

        # Layer 2: circuit breaker
        if not self._check_circuit_breaker(event_type, time.time()):
            self._stats['circuit_breaker_blocks'] += 1
            return False

        # Layer 3: recursion detection
        recursion_depth = self._check_recursion(thread_id)
        if recursion_depth > self.max_recursion_depth:
            self._stats['recursion_blocks'] += 1
            self._cleanup_thread(thread_id)
            return False

        try:
            event = TradingEvent(
                event_id=str(uuid.uuid4())[:8],
                event_type=event_type.value,
                timestamp=datetime.datetime.now().isoformat(),
                session_id=self.session_id,
                symbol=symbol,
                message=message,
                context=SafeContext(**(context_provider or {})).to_safe_dict(),
                decision_reason=decision_reason,
                call_stack_depth=recursion_depth
            )
            self._write_compressed_log(asdict(event), event_type, importance)
            self._stats['total_events'] += 1
            return True
        except Exception as e:
            self._stats['dropped_events'] += 1
            print(f"ContextAwareLogger error: {e}")
            return False
        finally:
            self._cleanup_thread(thread_id)

    def _determine_importance(self,
                              event_type: TradingEventType,
                              message: str,
                              decision_reason: Optional[str]) -> LogImportance:
        """Importance from message and reason keywords, falling back to the event type default."""
        text = f"{message} {decision_reason or ''}".lower()
        if any(pattern in text for pattern in CRITICAL_PATTERNS):
            return LogImportance.HIGH

        base_importance = EVENT_TYPE_IMPORTANCE.get(event_type, LogImportance.MEDIUM)
        if base_importance != LogImportance.HIGH and any(pattern in message.lower() for pattern in ROUTINE_PATTERNS):
            return LogImportance.LOW
        return base_importance

    def _write_compressed_log(self, event_dict: Dict[str, Any], event_type: TradingEventType,
                              importance: LogImportance) -> None:
        """Write one compact JSON line to the session file and a readable line to the console."""
        core_info: Dict[str, Any] = {
            FIELD_COMPRESSION_MAP['timestamp']: round(time.time(), 3),
            FIELD_COMPRESSION_MAP['event_type']: EVENT_TYPE_CODES.get(event_type, 0),
            FIELD_COMPRESSION_MAP['importance']: importance.value,
            FIELD_COMPRESSION_MAP['message']: event_dict['message'][:80],
        }
        if event_dict['symbol']:
            core_info[FIELD_COMPRESSION_MAP['symbol']] = event_dict['symbol']
        if event_dict['decision_reason']:
            core_info[FIELD_COMPRESSION_MAP['decision_reason']] = event_dict['decision_reason']
        if event_dict['context']:
            core_info[FIELD_COMPRESSION_MAP['context']] = self._compress_context_fields(event_dict['context'])

        compact_json = json.dumps(core_info, separators=(',', ':'), default=str)

        SessionLogger.configure_session_handlers(self._file_logger)
        if importance == LogImportance.HIGH and any(word in event_dict['message'].lower()
                                                    for word in ('error', 'fail', 'unrecorded')):
            self._file_logger.error(f"E:{compact_json}")
        else:
            self._file_logger.info(f"E:{compact_json}")

        self._write_console_output(event_dict, importance)

    def _write_console_output(self, event_dict: Dict[str, Any], importance: LogImportance) -> None:
        if importance == LogImportance.HIGH:
            emoji = "🚨" if any(word in event_dict['message'].lower() for word in ('error', 'fail', 'unrecorded')) else "⚡"
        elif importance == LogImportance.MEDIUM:
            emoji = "🔍"
        else:
            emoji = "📝"

        symbol_str = f" [{event_dict['symbol']}]" if event_dict['symbol'] else ""
        insights = self._extract_console_insights(event_dict['context'])
        message = f"{event_dict['message']} | {insights}" if insights else event_dict['message']
        reason_str = f" - {event_dict['decision_reason']}" if event_dict['decision_reason'] else ""
        print(f"{emoji} {event_dict['event_type'].upper()}{symbol_str}: {message}{reason_str}")

    def _extract_console_insights(self, context: Dict[str, Any]) -> str:
        insights = []
        for field in ('price', 'quantity', 'exchange_order_id', 'direction', 'status', 'result', 'error'):
            value = context.get(field)
            if value is not None and len(str(value)) < 40:
                insights.append(f"{field}:{value}")
        return " | ".join(insights[:3])

    def _compress_context_fields(self, context: Dict[str, Any]) -> Dict[str, Any]:
        compressed = {}
        for key, value in context.items():
            short_key = CONTEXT_FIELD_MAP.get(key, key[:12])
            if isinstance(value, float):
                compressed[short_key] = round(value, 6)
            else:
                compressed[short_key] = value
        return compressed

    def _check_circuit_breaker(self, event_type: TradingEventType, current_time: float) -> bool:
        """Allow at most max_events_per_second events in each one second window."""
        with self._counter_lock:
            if current_time - self._last_reset > 1.0:
                self._event_counts.clear()
                self._last_reset = current_time

            self._event_counts[event_type.value] = self._event_counts.get(event_type.value, 0) + 1
            return sum(self._event_counts.values()) <= self.max_events_per_second

    def _check_recursion(self, thread_id: int) -> int:
        """Track nested log_event calls on the current thread."""
        frame = inspect.currentframe()
        nested_calls = 0
        while frame:
            if frame.f_code is self.log_event.__func__.__code__:
                nested_calls += 1
            frame = frame.f_back

        self._active_threads[thread_id] = self._active_threads.get(thread_id, 0) + 1
        return max(nested_calls, self._active_threads[thread_id])

    def _cleanup_thread(self, thread_id: int) -> None:
        if thread_id in self._active_threads:
            if self._active_threads[thread_id] <= 1:
                del self._active_threads[thread_id]
            else:
                self._active_threads[thread_id] -= 1

    def get_stats(self) -> Dict[str, Any]:
        return self._stats.copy()

    def reset_stats(self) -> None:
        self._stats = self._empty_stats()


_global_logger: Optional[ContextAwareLogger] = None


def get_context_logger() -> ContextAwareLogger:
    """Get or create the global context-aware logger instance."""
    global _global_logger
    if _global_logger is None:
        _global_logger = ContextAwareLogger()
    return _global_logger


# <Session Management Public API - Begin>
def start_trading_session() -> str:
    """Explicitly start a new trading session. Call this at application startup."""
    return SessionLogger.start_new_session()


def end_trading_session() -> None:
    """End the current trading session, writing a summary line first."""
    session_file = SessionLogger.get_current_session_file()

    if _global_logger and session_file and os.path.exists(session_file):
        stats = _global_logger.get_stats()
        file_size = os.path.getsize(session_file)
        _global_logger._file_logger.info(
            f"SESSION_SUMMARY: events={stats['total_events']}, "
            f"size_kb={file_size / 1024:.1f}, "
            f"filtered={stats['importance_filtered']}+{stats['circuit_breaker_blocks']}"
        )

    SessionLogger.end_current_session()


def get_current_session_file() -> Optional[str]:
    return SessionLogger.get_current_session_file()
# <Session Management Public API - End>
