"""
Confluence — Pattern Detection Engine

Rule-based detection of candlestick and chart patterns plus a buyer/seller
pressure reading. Deterministic, closed-form predicates over OHLCV.

Candlestick Patterns (last 2-3 bars):
  Bullish/Bearish Engulfing, Morning/Evening Star, Hammer, Shooting Star,
  Piercing Pattern, Dark Cloud Cover, Doji

Chart Patterns (last 10-20 bars):
  Uptrend, Downtrend, Double Bottom/Top, Resistance Breakout,
  Support Breakdown

Pressure (last 5 bars):
  Strong/Moderate Buyer, Balanced, Moderate/Strong Seller
"""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np

from confluence.engines.series_engine import as_series
from confluence.models import (
    Bar,
    Direction,
    PatternCategory,
    PatternScan,
    PatternSignal,
    Strength,
)

MIN_CANDLESTICK_BARS = 3
MIN_CHART_BARS = 10
MIN_DOUBLE_BARS = 20
MIN_PRESSURE_BARS = 5


# ──────────────────────────────────────────────
# Candlestick Predicates
# ──────────────────────────────────────────────

def is_bullish_engulfing(prev: Bar, curr: Bar) -> bool:
    return (prev.is_red and curr.is_green
            and curr.open < prev.close
            and curr.close > prev.open)


def is_bearish_engulfing(prev: Bar, curr: Bar) -> bool:
    return (prev.is_green and curr.is_red
            and curr.open > prev.close
            and curr.close < prev.open)


def is_morning_star(first: Bar, second: Bar, third: Bar) -> bool:
    return (first.is_red
            and second.body < first.body * 0.3
            and third.is_green
            and third.close > (first.open + first.close) / 2)


def is_evening_star(first: Bar, second: Bar, third: Bar) -> bool:
    return (first.is_green
            and second.body < first.body * 0.3
            and third.is_red
            and third.close < (first.open + first.close) / 2)


def is_hammer(bar: Bar) -> bool:
    return bar.lower_wick > bar.body * 2 and bar.upper_wick < bar.body * 0.5


def is_shooting_star(bar: Bar) -> bool:
    return bar.upper_wick > bar.body * 2 and bar.lower_wick < bar.body * 0.5


def is_doji(bar: Bar) -> bool:
    return bar.body < bar.range * 0.1


def is_piercing(prev: Bar, curr: Bar) -> bool:
    return (prev.is_red and curr.is_green
            and curr.close > (prev.open + prev.close) / 2
            and curr.close < prev.open)


def is_dark_cloud_cover(prev: Bar, curr: Bar) -> bool:
    return (prev.is_green and curr.is_red
            and curr.close < (prev.open + prev.close) / 2
            and curr.close > prev.open)


class PatternEngine:
    """Rule-based candlestick, chart, and pressure detector.

    Usage:
        engine = PatternEngine()
        scan = engine.scan_all_patterns(series)
    """

    # ──────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────

    def detect_candlestick_patterns(self, bars: Sequence[Bar]) -> list[PatternSignal]:
        """Test every candlestick predicate against the last three bars."""
        if len(bars) < MIN_CANDLESTICK_BARS:
            return []

        two_ago, prev, curr = bars[-3], bars[-2], bars[-1]
        patterns: list[PatternSignal] = []

        # ── Bullish ──
        if is_bullish_engulfing(prev, curr):
            patterns.append(self._candle(
                "Bullish Engulfing", Direction.BULLISH, Strength.STRONG,
                "Green candle completely engulfs the previous red candle. Buyers taking control.",
            ))
        if is_morning_star(two_ago, prev, curr):
            patterns.append(self._candle(
                "Morning Star", Direction.BULLISH, Strength.STRONG,
                "Three-candle reversal from bearish to bullish.",
            ))
        if is_hammer(curr):
            patterns.append(self._candle(
                "Hammer", Direction.BULLISH, Strength.MODERATE,
                "Long lower shadow. Buyers rejected lower prices.",
            ))
        if is_piercing(prev, curr):
            patterns.append(self._candle(
                "Piercing Pattern", Direction.BULLISH, Strength.MODERATE,
                "Green candle closes above the midpoint of the previous red candle.",
            ))

        # ── Bearish ──
        if is_bearish_engulfing(prev, curr):
            patterns.append(self._candle(
                "Bearish Engulfing", Direction.BEARISH, Strength.STRONG,
                "Red candle completely engulfs the previous green candle. Sellers dominating.",
            ))
        if is_evening_star(two_ago, prev, curr):
            patterns.append(self._candle(
                "Evening Star", Direction.BEARISH, Strength.STRONG,
                "Three-candle reversal from bullish to bearish.",
            ))
        if is_shooting_star(curr):
            patterns.append(self._candle(
                "Shooting Star", Direction.BEARISH, Strength.MODERATE,
                "Long upper shadow. Sellers rejected higher prices.",
            ))
        if is_dark_cloud_cover(prev, curr):
            patterns.append(self._candle(
                "Dark Cloud Cover", Direction.BEARISH, Strength.MODERATE,
                "Red candle closes below the midpoint of the previous green candle.",
            ))

        # ── Indecision ──
        if is_doji(curr):
            patterns.append(self._candle(
                "Doji", Direction.NEUTRAL, Strength.WEAK,
                "Open and close nearly equal. Wait for confirmation.",
            ))

        return patterns

    def detect_chart_patterns(self, bars: Sequence[Bar]) -> list[PatternSignal]:
        """Trend runs, double tops/bottoms, and 20-bar breakouts."""
        if len(bars) < MIN_CHART_BARS:
            return []

        series = as_series(bars)
        h = series.highs
        l = series.lows
        c = series.closes

        patterns: list[PatternSignal] = []

        if self._is_trend_run(h[-10:], l[-10:], rising=True):
            patterns.append(self._chart(
                "Uptrend", Direction.BULLISH, Strength.STRONG,
                "Series of higher highs and higher lows.",
            ))
        if self._is_trend_run(h[-10:], l[-10:], rising=False):
            patterns.append(self._chart(
                "Downtrend", Direction.BEARISH, Strength.STRONG,
                "Series of lower highs and lower lows.",
            ))

        if len(bars) >= MIN_DOUBLE_BARS:
            if self._is_double_bottom(h[-20:], l[-20:]):
                patterns.append(self._chart(
                    "Double Bottom", Direction.BULLISH, Strength.STRONG,
                    "W-shaped retest of the same low. Support holding.",
                ))
            if self._is_double_top(h[-20:], l[-20:]):
                patterns.append(self._chart(
                    "Double Top", Direction.BEARISH, Strength.STRONG,
                    "M-shaped retest of the same high. Resistance holding.",
                ))
            breakout = self._detect_breakout(h[-20:], l[-20:], float(c[-1]))
            if breakout is not None:
                patterns.append(breakout)

        return patterns

    def analyze_pressure(self, bars: Sequence[Bar]) -> PatternSignal:
        """Buyer/seller pressure over the last five bars."""
        if len(bars) < MIN_PRESSURE_BARS:
            return self._pressure(
                "Balanced Pressure", Direction.NEUTRAL, Strength.WEAK,
                "Not enough data for pressure analysis.",
            )

        recent = list(bars[-5:])
        avg_volume = float(np.mean([b.volume for b in recent]))
        buy = 0.0
        sell = 0.0

        for b in recent:
            rng = b.range
            if rng > 0:
                if b.is_green:
                    buy += b.body / rng
                    buy += b.lower_wick / rng * 0.5
                else:
                    sell += b.body / rng
                    sell += b.upper_wick / rng * 0.5

            if avg_volume > 0 and b.volume > 0:
                volume_term = b.volume / avg_volume * 0.1
                if b.is_green:
                    buy += volume_term
                else:
                    sell += volume_term

        total = buy + sell
        if total == 0:
            return self._pressure(
                "Balanced Pressure", Direction.NEUTRAL, Strength.WEAK,
                "No measurable pressure in recent bars.",
            )

        ratio = buy / total
        pct = round(ratio * 100)
        if ratio > 0.65:
            return self._pressure(
                "Strong Buyer Pressure", Direction.BULLISH, Strength.STRONG,
                f"Buyers dominating with {pct}% pressure.",
            )
        if ratio > 0.55:
            return self._pressure(
                "Moderate Buyer Pressure", Direction.BULLISH, Strength.MODERATE,
                f"Buyers slightly ahead with {pct}% pressure.",
            )
        if ratio < 0.35:
            return self._pressure(
                "Strong Seller Pressure", Direction.BEARISH, Strength.STRONG,
                f"Sellers dominating with {100 - pct}% pressure.",
            )
        if ratio < 0.45:
            return self._pressure(
                "Moderate Seller Pressure", Direction.BEARISH, Strength.MODERATE,
                f"Sellers slightly ahead with {100 - pct}% pressure.",
            )
        return self._pressure(
            "Balanced Pressure", Direction.NEUTRAL, Strength.WEAK,
            "Buyers and sellers in equilibrium.",
        )

    def scan_all_patterns(self, bars: Sequence[Bar]) -> PatternScan:
        """Combined candlestick + chart + pressure scan."""
        candle = self.detect_candlestick_patterns(bars)
        chart = self.detect_chart_patterns(bars)
        pressure = self.analyze_pressure(bars)

        all_patterns = candle + chart + [pressure]
        bullish = sum(1 for p in all_patterns if p.direction == Direction.BULLISH)
        bearish = sum(1 for p in all_patterns if p.direction == Direction.BEARISH)

        if bullish > bearish:
            bias = Direction.BULLISH
        elif bearish > bullish:
            bias = Direction.BEARISH
        else:
            bias = Direction.NEUTRAL

        return PatternScan(
            candlestick=candle,
            chart=chart,
            pressure=pressure,
            bullish_count=bullish,
            bearish_count=bearish,
            bias=bias,
        )

    # ──────────────────────────────────────────
    # Chart Pattern Helpers
    # ──────────────────────────────────────────

    @staticmethod
    def _is_trend_run(h: np.ndarray, l: np.ndarray, rising: bool, min_agree: int = 6) -> bool:
        """Two-bar-lag comparisons of highs and lows; both must agree ``min_agree`` times."""
        if rising:
            highs_agree = int(np.sum(h[2:] > h[:-2]))
            lows_agree = int(np.sum(l[2:] > l[:-2]))
        else:
            highs_agree = int(np.sum(h[2:] < h[:-2]))
            lows_agree = int(np.sum(l[2:] < l[:-2]))
        return highs_agree >= min_agree and lows_agree >= min_agree

    @staticmethod
    def _is_double_bottom(h: np.ndarray, l: np.ndarray, tolerance: float = 0.02) -> bool:
        half = len(l) // 2
        i1 = int(np.argmin(l[:half]))
        i2 = half + int(np.argmin(l[half:]))
        min1, min2 = float(l[i1]), float(l[i2])
        if min1 <= 0:
            return False
        if abs(min1 - min2) / min1 >= tolerance:
            return False
        # Bottoms must be separated by a real bounce, not a flat floor.
        neckline = float(np.max(h[i1:i2 + 1]))
        return neckline > max(min1, min2) * (1 + tolerance)

    @staticmethod
    def _is_double_top(h: np.ndarray, l: np.ndarray, tolerance: float = 0.02) -> bool:
        half = len(h) // 2
        i1 = int(np.argmax(h[:half]))
        i2 = half + int(np.argmax(h[half:]))
        max1, max2 = float(h[i1]), float(h[i2])
        if max1 <= 0:
            return False
        if abs(max1 - max2) / max1 >= tolerance:
            return False
        neckline = float(np.min(l[i1:i2 + 1]))
        return neckline < min(max1, max2) * (1 - tolerance)

    def _detect_breakout(self, h: np.ndarray, l: np.ndarray, close: float) -> Optional[PatternSignal]:
        """Close beyond the prior 19-bar extreme by more than 1%."""
        resistance = float(np.max(h[:-1]))
        support = float(np.min(l[:-1]))

        if close > resistance * 1.01:
            return self._chart(
                "Resistance Breakout", Direction.BULLISH, Strength.STRONG,
                f"Price closed above resistance at {resistance:.2f}.",
            )
        if close < support * 0.99:
            return self._chart(
                "Support Breakdown", Direction.BEARISH, Strength.STRONG,
                f"Price closed below support at {support:.2f}.",
            )
        return None

    # ──────────────────────────────────────────
    # Constructors
    # ──────────────────────────────────────────

    @staticmethod
    def _candle(label: str, direction: Direction, strength: Strength, description: str) -> PatternSignal:
        return PatternSignal(
            label=label, direction=direction, strength=strength,
            description=description, category=PatternCategory.CANDLESTICK,
        )

    @staticmethod
    def _chart(label: str, direction: Direction, strength: Strength, description: str) -> PatternSignal:
        return PatternSignal(
            label=label, direction=direction, strength=strength,
            description=description, category=PatternCategory.CHART,
        )

    @staticmethod
    def _pressure(label: str, direction: Direction, strength: Strength, description: str) -> PatternSignal:
        return PatternSignal(
            label=label, direction=direction, strength=strength,
            description=description, category=PatternCategory.PRESSURE,
        )
