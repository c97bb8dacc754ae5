"""
Confluence — Technical Analysis Engine

Indicator readings shared by the horizon and confidence engines: RSI,
MACD and EMA-stack states, log-return volatility, and swing-point
support/resistance.

Uses the `ta` library for indicator calculations on pandas DataFrames.
"""

from __future__ import annotations

from typing import Optional

import numpy as np
import pandas as pd
from ta.momentum import RSIIndicator
from ta.trend import MACD, EMAIndicator

from confluence.engines.series_engine import BarSeries
from confluence.models import Direction, KeyLevels

NEUTRAL_RSI = 50.0
NEUTRAL_VOLATILITY = 50.0
KEY_LEVEL_MIN_BARS = 50


class TAEngine:
    """Indicator helpers over a validated BarSeries.

    Usage:
        engine = TAEngine()
        rsi = engine.rsi(series)
        macd = engine.macd_state(series)
    """

    # ──────────────────────────────────────────
    # Oscillators
    # ──────────────────────────────────────────

    def rsi(self, series: BarSeries, window: int = 14) -> float:
        """Latest RSI reading; 50 when history is too short."""
        if len(series) < window + 1:
            return NEUTRAL_RSI
        value = RSIIndicator(series.to_dataframe()["close"], window=window).rsi().iloc[-1]
        rounded = self._safe_round(value, 4)
        return NEUTRAL_RSI if rounded is None else rounded

    def macd_state(self, series: BarSeries) -> Direction:
        """MACD(12, 26, 9) line against its signal line."""
        if len(series) < 26:
            return Direction.NEUTRAL
        macd = MACD(series.to_dataframe()["close"], window_slow=26, window_fast=12, window_sign=9)
        line = self._safe_round(macd.macd().iloc[-1], 8)
        signal = self._safe_round(macd.macd_signal().iloc[-1], 8)
        if line is None or signal is None:
            return Direction.NEUTRAL
        if line > signal:
            return Direction.BULLISH
        if line < signal:
            return Direction.BEARISH
        return Direction.NEUTRAL

    def ema_state(self, series: BarSeries, fast: int = 20, slow: int = 50) -> Direction:
        """Price above a rising EMA stack is bullish, below a falling one bearish."""
        if len(series) < slow:
            return Direction.NEUTRAL
        close = series.to_dataframe()["close"]
        ema_fast = self._safe_round(EMAIndicator(close, window=fast).ema_indicator().iloc[-1], 8)
        ema_slow = self._safe_round(EMAIndicator(close, window=slow).ema_indicator().iloc[-1], 8)
        if ema_fast is None or ema_slow is None:
            return Direction.NEUTRAL
        price = float(close.iloc[-1])
        if price > ema_fast > ema_slow:
            return Direction.BULLISH
        if price < ema_fast < ema_slow:
            return Direction.BEARISH
        return Direction.NEUTRAL

    # ──────────────────────────────────────────
    # Volatility
    # ──────────────────────────────────────────

    @staticmethod
    def volatility(series: BarSeries, lookback: int = 20) -> float:
        """Population stdev of log returns over ``lookback`` bars, scaled to 0-100.

        A daily stdev of 0.05 maps to 100.
        """
        if len(series) < lookback:
            return NEUTRAL_VOLATILITY
        closes = series.window(lookback).closes
        if np.any(closes <= 0):
            return 100.0
        returns = np.diff(np.log(closes))
        return float(min(100.0, np.std(returns) * 2000))

    # ──────────────────────────────────────────
    # Support / Resistance
    # ──────────────────────────────────────────

    def key_levels(
        self,
        series: BarSeries,
        lookback: int = 50,
        top: int = 3,
        min_bars: int = KEY_LEVEL_MIN_BARS,
    ) -> KeyLevels:
        """Swing highs (resistance) and swing lows (support) from recent bars.

        A swing point beats both neighbours on each side. Support is ordered
        highest first, resistance lowest first.
        """
        if len(series) < min_bars:
            return KeyLevels()

        recent = series.window(lookback).to_dataframe()
        resistance = [v for _, v in self._find_local_extrema(recent["high"], mode="max", order=2)]
        support = [v for _, v in self._find_local_extrema(recent["low"], mode="min", order=2)]

        return KeyLevels(
            support=sorted(support, reverse=True)[:top],
            resistance=sorted(resistance)[:top],
        )

    # ──────────────────────────────────────────
    # Private Helpers
    # ──────────────────────────────────────────

    @staticmethod
    def _safe_round(value, decimals: int = 2) -> Optional[float]:
        """Safely round a value, handling None and NaN."""
        if value is None:
            return None
        try:
            if np.isnan(value) or np.isinf(value):
                return None
            return round(float(value), decimals)
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _find_local_extrema(series: pd.Series, mode: str = "min", order: int = 2) -> list[tuple[int, float]]:
        """Strict local minima or maxima: beats ``order`` neighbours on each side."""
        extrema = []
        values = series.values
        for i in range(order, len(values) - order):
            neighbours = [values[i - j] for j in range(1, order + 1)] + \
                         [values[i + j] for j in range(1, order + 1)]
            if mode == "min":
                if all(values[i] < v for v in neighbours):
                    extrema.append((i, float(values[i])))
            else:
                if all(values[i] > v for v in neighbours):
                    extrema.append((i, float(values[i])))
        return extrema
