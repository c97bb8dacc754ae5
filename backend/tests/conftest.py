from datetime import datetime, timedelta

import pytest

from confluence.config import get_settings
from confluence.models import Bar

BASE_TIME = datetime(2024, 1, 1)
DAY = timedelta(days=1)


def build_bar(i, open, high, low, close, volume=1000.0, step=DAY):
    return Bar(
        timestamp=BASE_TIME + step * i,
        open=open,
        high=high,
        low=low,
        close=close,
        volume=volume,
    )


@pytest.fixture(autouse=True)
def fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def bar():
    """Single bar at position ``i`` on a daily clock."""
    return build_bar


@pytest.fixture
def bars_from_ohlc():
    """Bars from (open, high, low, close[, volume]) tuples, one step apart."""
    def build(rows, step=DAY, start=0):
        return [build_bar(start + i, *row, step=step) for i, row in enumerate(rows)]
    return build


@pytest.fixture
def bars_from_closes():
    """Bars opening 30% of the way back to the previous close, 0.2 wicks."""
    def build(closes, volume=1000.0, step=DAY):
        bars = []
        prev = closes[0]
        for i, c in enumerate(closes):
            open = c - 0.3 * (c - prev)
            bars.append(build_bar(i, open, max(open, c) + 0.2, min(open, c) - 0.2, c, volume, step))
            prev = c
        return bars
    return build


@pytest.fixture
def flat_bars():
    """Doji bars at 100 inside a 100.5 / 99.5 range."""
    def build(n, volume=1000.0, step=DAY, start=0):
        return [build_bar(start + i, 100.0, 100.5, 99.5, 100.0, volume, step) for i in range(n)]
    return build


@pytest.fixture
def rising_bars():
    """Green bars climbing one point per bar from 100."""
    def build(n, volume=1000.0, step=DAY):
        bars = []
        for i in range(n):
            close = 100.0 + i
            open = close - 0.5
            bars.append(build_bar(i, open, close + 0.3, open - 0.3, close, volume, step))
        return bars
    return build
