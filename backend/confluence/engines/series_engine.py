"""
Confluence — Bar Series Engine

Immutable, validated OHLCV series with windowing and resampling.
A series is checked once on construction; every detector downstream can
assume finite, well-ordered bars with strictly increasing timestamps.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional, Sequence, Union, overload

import numpy as np
import pandas as pd

from confluence.exceptions import InsufficientData, InvalidBar, UpstreamUnavailable
from confluence.models import Bar, Resolution


def validate_bars(bars: Sequence[Bar]) -> None:
    """Raise ``InvalidBar`` for the first bar that breaks an invariant."""
    previous_ts = None
    for i, b in enumerate(bars):
        values = (b.open, b.high, b.low, b.close, b.volume)
        if not all(math.isfinite(v) for v in values):
            raise InvalidBar("non-finite price or volume", index=i)
        if b.low < 0:
            raise InvalidBar(f"negative low {b.low}", index=i)
        if b.volume < 0:
            raise InvalidBar(f"negative volume {b.volume}", index=i)
        if b.high < max(b.open, b.close):
            raise InvalidBar(f"high {b.high} below body top {max(b.open, b.close)}", index=i)
        if min(b.open, b.close) < b.low:
            raise InvalidBar(f"low {b.low} above body bottom {min(b.open, b.close)}", index=i)
        if previous_ts is not None and b.timestamp <= previous_ts:
            raise InvalidBar("timestamps not strictly increasing", index=i)
        previous_ts = b.timestamp


@dataclass(frozen=True)
class BarSeries(Sequence[Bar]):
    """Ordered, read-only bars for one (instrument, resolution) pair.

    Usage:
        series = BarSeries.of(bars, resolution=Resolution.H1, symbol="AAPL")
        last_20 = series.window(20)
        four_hour = series.derive(Resolution.H4)
    """
    bars: tuple[Bar, ...]
    resolution: Optional[Resolution] = None
    symbol: str = ""

    def __post_init__(self):
        validate_bars(self.bars)

    @classmethod
    def of(
        cls,
        bars: Iterable[Bar],
        resolution: Optional[Resolution] = None,
        symbol: str = "",
    ) -> "BarSeries":
        return cls(tuple(bars), resolution, symbol)

    # ──────────────────────────────────────────
    # Sequence protocol
    # ──────────────────────────────────────────

    def __len__(self) -> int:
        return len(self.bars)

    @overload
    def __getitem__(self, i: int) -> Bar: ...

    @overload
    def __getitem__(self, i: slice) -> "BarSeries": ...

    def __getitem__(self, i: Union[int, slice]) -> Union[Bar, "BarSeries"]:
        if isinstance(i, slice):
            # Forward slices keep timestamps increasing; skip re-validation.
            if i.step is not None and i.step < 0:
                raise ValueError("BarSeries slices must run forward in time")
            sliced = object.__new__(BarSeries)
            object.__setattr__(sliced, "bars", self.bars[i])
            object.__setattr__(sliced, "resolution", self.resolution)
            object.__setattr__(sliced, "symbol", self.symbol)
            return sliced
        return self.bars[i]

    def __iter__(self) -> Iterator[Bar]:
        return iter(self.bars)

    # ──────────────────────────────────────────
    # Windows and columns
    # ──────────────────────────────────────────

    def window(self, n: int) -> "BarSeries":
        """The most recent ``n`` bars (all of them when shorter)."""
        if n <= 0:
            return self[0:0]
        return self[-n:]

    @property
    def last(self) -> Bar:
        return self.bars[-1]

    @property
    def opens(self) -> np.ndarray:
        return np.array([b.open for b in self.bars], dtype=float)

    @property
    def highs(self) -> np.ndarray:
        return np.array([b.high for b in self.bars], dtype=float)

    @property
    def lows(self) -> np.ndarray:
        return np.array([b.low for b in self.bars], dtype=float)

    @property
    def closes(self) -> np.ndarray:
        return np.array([b.close for b in self.bars], dtype=float)

    @property
    def volumes(self) -> np.ndarray:
        return np.array([b.volume for b in self.bars], dtype=float)

    def to_dataframe(self) -> pd.DataFrame:
        """Convert to a pandas DataFrame indexed by timestamp."""
        data = {
            "timestamp": [b.timestamp for b in self.bars],
            "open": [b.open for b in self.bars],
            "high": [b.high for b in self.bars],
            "low": [b.low for b in self.bars],
            "close": [b.close for b in self.bars],
            "volume": [float(b.volume) for b in self.bars],
        }
        df = pd.DataFrame(data)
        df.set_index("timestamp", inplace=True)
        return df

    # ──────────────────────────────────────────
    # Resampling
    # ──────────────────────────────────────────

    def derive(self, target: Resolution) -> "BarSeries":
        """Resample into a coarser resolution by whole-number bar ratio."""
        if self.resolution is None:
            raise UpstreamUnavailable(target.value, "source resolution unknown")
        if target == self.resolution:
            return self
        if target.minutes < self.resolution.minutes:
            raise UpstreamUnavailable(
                target.value, f"cannot derive from coarser {self.resolution.value} bars"
            )
        factor, remainder = divmod(target.minutes, self.resolution.minutes)
        if remainder:
            raise UpstreamUnavailable(
                target.value, f"{self.resolution.value} does not divide {target.value}"
            )
        try:
            return resample(self, factor, resolution=target)
        except InsufficientData as exc:
            raise UpstreamUnavailable(target.value, str(exc)) from exc


def resample(
    series: Sequence[Bar],
    factor: int,
    resolution: Optional[Resolution] = None,
) -> BarSeries:
    """Group ``factor`` consecutive bars into one coarser bar.

    Groups are aligned from the first bar. A trailing partial group is kept
    as the most recent, still-forming coarse bar.

    Raises:
        ValueError: ``factor`` is below 1.
        InsufficientData: fewer bars than ``factor``.
    """
    if factor < 1:
        raise ValueError(f"resample factor must be >= 1, got {factor}")
    if len(series) < factor:
        raise InsufficientData(factor, len(series))

    bars = list(series)
    out: list[Bar] = []
    for start in range(0, len(bars), factor):
        chunk = bars[start:start + factor]
        out.append(Bar(
            timestamp=chunk[0].timestamp,
            open=chunk[0].open,
            high=max(b.high for b in chunk),
            low=min(b.low for b in chunk),
            close=chunk[-1].close,
            volume=sum(b.volume for b in chunk),
        ))

    symbol = series.symbol if isinstance(series, BarSeries) else ""
    return BarSeries.of(out, resolution=resolution, symbol=symbol)


def as_series(
    bars: Union[BarSeries, Sequence[Bar]],
    resolution: Optional[Resolution] = None,
    symbol: str = "",
) -> BarSeries:
    """Accept either a BarSeries or a plain bar list."""
    if isinstance(bars, BarSeries):
        return bars
    return BarSeries.of(bars, resolution=resolution, symbol=symbol)
