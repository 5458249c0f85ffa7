"""
Maps exchange order status strings to local order status names.
The table is exhaustive over the exchange vocabulary; anything else maps to UNKNOWN and is stored as New.
"""

from enum import Enum

from src.core.context_aware_logger import get_context_logger, TradingEventType

context_logger = get_context_logger()


class ExchangeOrderStatus(Enum):
    NEW = "New"
    PARTIALLY_FILLED = "PartiallyFilled"
    FILLED = "Filled"
    CANCELLED = "Cancelled"
    REJECTED = "Rejected"
    UNTRIGGERED = "Untriggered"
    TRIGGERED = "Triggered"
    DEACTIVATED = "Deactivated"
    PARTIALLY_FILLED_CANCELED = "PartiallyFilledCanceled"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, raw_status: str) -> 'ExchangeOrderStatus':
        for member in cls:
            if member is not cls.UNKNOWN and member.value == raw_status:
                return member
        return cls.UNKNOWN


# Local OrderStatus names, as seeded in the order_statuses table
STATUS_TABLE = {
    ExchangeOrderStatus.NEW: "New",
    ExchangeOrderStatus.PARTIALLY_FILLED: "PartiallyFilled",
    ExchangeOrderStatus.FILLED: "Filled",
    ExchangeOrderStatus.CANCELLED: "Cancelled",
    ExchangeOrderStatus.REJECTED: "Rejected",
    ExchangeOrderStatus.UNTRIGGERED: "Untriggered",
    ExchangeOrderStatus.TRIGGERED: "Triggered",
    ExchangeOrderStatus.DEACTIVATED: "Deactivated",
    ExchangeOrderStatus.PARTIALLY_FILLED_CANCELED: "PartiallyFilledCanceled",
}

DEFAULT_LOCAL_STATUS = "New"

# Statuses after which the order can no longer open a position
TERMINAL_UNFILLED_STATUSES = frozenset({
    ExchangeOrderStatus.CANCELLED,
    ExchangeOrderStatus.REJECTED,
    ExchangeOrderStatus.DEACTIVATED,
})

# Statuses that still wait on the market
WAITING_STATUSES = frozenset({
    ExchangeOrderStatus.NEW,
    ExchangeOrderStatus.UNTRIGGERED,
})


def map_exchange_status(raw_status: str, symbol: str = None) -> str:
    """Return the local status name for an exchange status; unknown values fall back to New."""
    status = ExchangeOrderStatus.parse(raw_status)
    if status is ExchangeOrderStatus.UNKNOWN:
        context_logger.log_event(
            TradingEventType.ORDER_VALIDATION,
            f"Unknown exchange order status '{raw_status}', mapping to {DEFAULT_LOCAL_STATUS}",
            symbol=symbol,
            context_provider={'status': raw_status},
            decision_reason="UNKNOWN_STATUS_DEFAULTED_WARNING"
        )
        return DEFAULT_LOCAL_STATUS
    return STATUS_TABLE[status]
