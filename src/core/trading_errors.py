"""
Exception hierarchy for the breakout trading system.
Each class marks a distinct failure class so callers can decide between retry, abort and escalation.
"""

from typing import Optional


class TradingSystemError(Exception):
    """Base class for all trading system errors."""


# <Precondition Errors - Begin>
class InsufficientCandleDataError(TradingSystemError):
    """Raised when the candle series is too short for breakout evaluation."""

    def __init__(self, required: int, received: int):
        self.required = required
        self.received = received
        super().__init__(f"Not enough candles for breakout checks: need at least {required}, got {received}")


class OrderValidationError(TradingSystemError, ValueError):
    """Raised when order fields violate price, quantity, side or TP/SL rules."""
# <Precondition Errors - End>


# <Exchange Errors - Begin>
class ExchangeError(TradingSystemError):
    """Base class for failures talking to the exchange."""


class ExchangeRequestError(ExchangeError):
    """Transport level failure: connection, timeout, non-JSON body."""


class ExchangeResponseError(ExchangeError):
    """The exchange answered with a non-zero return code."""

    def __init__(self, message: str, ret_code: Optional[int] = None):
        self.ret_code = ret_code
        super().__init__(f"{message} (retCode: {ret_code})" if ret_code is not None else message)
# <Exchange Errors - End>


# <Persistence Errors - Begin>
class OrderPersistenceError(TradingSystemError):
    """Raised when the local store fails to record an order mutation."""


class DuplicateOrderError(OrderPersistenceError):
    """Raised when an order with the same exchange id is already stored."""


class OrderNotFoundError(OrderPersistenceError, LookupError):
    """Raised when an order or order status lookup finds nothing."""


class AuditWriteError(OrderPersistenceError):
    """Raised when an audit row cannot be written; the order mutation is rolled back."""


class InvalidResultTransitionError(TradingSystemError):
    """Raised when a result transition would move an order back to Pending."""
# <Persistence Errors - End>


class OrderUnrecordedError(TradingSystemError):
    """
    The exchange accepted the order but the local store did not record it.
    Carries the exchange order id so the position can be reconciled by hand.
    """

    def __init__(self, exchange_order_id: str, cause: Optional[BaseException] = None):
        self.exchange_order_id = exchange_order_id
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Order {exchange_order_id} placed on exchange but NOT recorded locally{detail}")


class CycleCancelledError(TradingSystemError):
    """Raised inside a trading cycle once the cancellation signal is observed."""

    def __init__(self, phase: str):
        self.phase = phase
        super().__init__(f"Trading cycle cancelled before phase: {phase}")
