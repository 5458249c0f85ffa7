import datetime
from typing import List, Optional, Sequence, Tuple

import pytest
from unittest.mock import Mock

# Database Testing - Begin
from src.core.database import DatabaseManager
from src.core.market_types import Candle
from src.services.order_service import OrderService
# Database Testing - End
from tests.mocks.exchange_mocks import FakeExchangeClient

BASE_TIME = datetime.datetime(2024, 1, 1, 0, 0, 0)
SYMBOL = "DOGEUSDT"


# Database Testing - Begin
@pytest.fixture(scope="function")
def test_db():
    """Create a seeded in-memory database for isolated testing"""
    db_manager = DatabaseManager(":memory:")
    db_manager.init_db()

    yield db_manager

    db_manager.close()


@pytest.fixture(scope="function")
def db_session(test_db):
    """Provide a database session for tests"""
    session = test_db.get_session()

    yield session

    session.rollback()
    session.close()


@pytest.fixture
def order_service(db_session):
    return OrderService(db_session)
# Database Testing - End


@pytest.fixture
def fake_exchange():
    return FakeExchangeClient(balance=1000.0)


@pytest.fixture
def no_sleep():
    """Sleep replacement that records requested delays."""
    return Mock(return_value=None)


# <Candle Factories - Begin>
def make_candle(index: int, open_: float, close: float, high: Optional[float] = None,
                low: Optional[float] = None, volume: float = 10.0) -> Candle:
    return Candle(
        timestamp=BASE_TIME + datetime.timedelta(minutes=index),
        open=open_,
        high=high if high is not None else max(open_, close) + 0.5,
        low=low if low is not None else min(open_, close) - 0.5,
        close=close,
        volume=volume,
    )


def build_breakout_series(count: int = 100,
                          wall: float = 100.0,
                          support: float = 90.0,
                          breaking_open: float = 100.0,
                          breaking_close: float = 105.0,
                          breaking_volume: float = 10.0,
                          default_green: bool = True,
                          default_volume: float = 10.0,
                          history: Sequence[Tuple[bool, float]] = ()) -> List[Candle]:
    """
    Candle series whose lookback window tops out at wall and bottoms at support.
    history overrides (is_green, volume) for candles from index count-3 downwards,
    i.e. the candles right behind the breaking candle in the volume scan.
    """
    candles = []
    overrides = {count - 3 - offset: override for offset, override in enumerate(history)}

    for index in range(count - 2):
        is_green, volume = overrides.get(index, (default_green, default_volume))
        open_, close = (94.0, 96.0) if is_green else (96.0, 94.0)
        high, low = 97.0, 93.0
        if index == count - 10:
            high = wall
        if index == count - 20:
            low = support
        candles.append(make_candle(index, open_, close, high=high, low=low, volume=volume))

    candles.append(make_candle(count - 2, breaking_open, breaking_close, volume=breaking_volume))
    # Still forming; never evaluated
    candles.append(make_candle(count - 1, breaking_close, breaking_close, volume=1.0))
    return candles
# <Candle Factories - End>


@pytest.fixture
def breakout_series():
    return build_breakout_series()
