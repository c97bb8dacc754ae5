"""
Confluence — Multi-Horizon Engine

Runs the same trend analysis on six resolutions and folds the results into
one weighted verdict.

Per resolution (>= 20 bars):
  RSI(14)        -20 overbought ... +20 oversold bounce
  MACD(12,26,9)  +/-20
  EMA 20/50      +/-25
  Price action   +/-20 (majority of the last 10 bars)
  Volume         +/-15, only when elevated and aligned with the running score

Across resolutions: weighted score -> overall trend, weighted confidence,
alignment, heatmap, key levels from the coarsest series, recommendation.
"""

from __future__ import annotations

import concurrent.futures
from typing import Mapping, Optional, Sequence

import numpy as np
import structlog

from confluence.config import get_settings
from confluence.engines.series_engine import BarSeries, as_series
from confluence.engines.ta_engine import KEY_LEVEL_MIN_BARS, TAEngine
from confluence.exceptions import UpstreamUnavailable
from confluence.models import (
    Bar,
    Direction,
    HeatmapCell,
    KeyLevels,
    MultiHorizonReport,
    Recommendation,
    Resolution,
    TimeframeSignal,
    TrendClass,
    VolumeState,
)

log = structlog.get_logger(__name__)

HORIZON_WEIGHTS: dict[Resolution, float] = {
    Resolution.M1: 0.03,
    Resolution.M5: 0.07,
    Resolution.M15: 0.15,
    Resolution.H1: 0.20,
    Resolution.H4: 0.25,
    Resolution.D1: 0.30,
}

HEATMAP_ROWS = ("Trend", "RSI", "MACD", "EMA", "Price Action", "Volume")
HEATMAP_COLUMNS = (
    Resolution.D1, Resolution.H4, Resolution.H1,
    Resolution.M15, Resolution.M5, Resolution.M1,
)


# ──────────────────────────────────────────────
# Pure helpers
# ──────────────────────────────────────────────

def classify_trend(score: float) -> TrendClass:
    if score > 60:
        return TrendClass.STRONG_BULLISH
    if score > 20:
        return TrendClass.BULLISH
    if score < -60:
        return TrendClass.STRONG_BEARISH
    if score < -20:
        return TrendClass.BEARISH
    return TrendClass.NEUTRAL


def default_signal(resolution: Resolution) -> TimeframeSignal:
    """Neutral, zero-confidence snapshot for a missing or short resolution."""
    return TimeframeSignal(resolution=resolution, available=False)


def score_timeframe(
    rsi: float,
    macd: Direction,
    ma_state: Direction,
    price_action: Direction,
    volume: VolumeState,
) -> int:
    """Sum indicator contributions into a score clamped to [-100, 100]."""
    score = 0

    if rsi > 70:
        score -= 20
    elif rsi > 60:
        score += 10
    elif rsi > 50:
        score += 5
    elif rsi > 40:
        score -= 5
    elif rsi > 30:
        score -= 10
    else:
        score += 20  # oversold bounce

    score += {Direction.BULLISH: 20, Direction.BEARISH: -20}.get(macd, 0)
    score += {Direction.BULLISH: 25, Direction.BEARISH: -25}.get(ma_state, 0)
    score += {Direction.BULLISH: 20, Direction.BEARISH: -20}.get(price_action, 0)

    if volume == VolumeState.HIGH and score > 0:
        score += 15
    elif volume == VolumeState.HIGH and score < 0:
        score -= 15

    return max(-100, min(100, score))


def alignment_pct(signals: Sequence[TimeframeSignal]) -> int:
    """Largest agreeing share of bullish / bearish / neutral trend classes."""
    if not signals:
        return 0
    directions = [s.trend.direction for s in signals]
    counts = [directions.count(d) for d in (Direction.BULLISH, Direction.BEARISH, Direction.NEUTRAL)]
    return round(max(counts) / len(signals) * 100)


class HorizonEngine:
    """Six-resolution trend aggregator.

    Usage:
        engine = HorizonEngine()
        report = engine.analyze({Resolution.D1: daily, Resolution.H1: hourly})
        report = engine.analyze_from_base(one_minute_series)
    """

    def __init__(
        self,
        ta: Optional[TAEngine] = None,
        max_workers: Optional[int] = None,
        min_bars: Optional[int] = None,
    ):
        settings = get_settings()
        self.ta = ta or TAEngine()
        self.max_workers = max_workers or settings.horizon_max_workers
        self.min_bars = min_bars if min_bars is not None else settings.horizon_min_bars

    # ──────────────────────────────────────────
    # Per-resolution
    # ──────────────────────────────────────────

    def analyze_resolution(self, bars: Sequence[Bar], resolution: Resolution) -> TimeframeSignal:
        if len(bars) < self.min_bars:
            return default_signal(resolution)

        series = as_series(bars, resolution=resolution)
        rsi = self.ta.rsi(series)
        macd = self.ta.macd_state(series)
        ma_state = self.ta.ema_state(series)

        recent = series.window(10)
        green = sum(1 for b in recent if b.is_green)
        red = sum(1 for b in recent if b.is_red)
        if green > 6:
            price_action = Direction.BULLISH
        elif red > 6:
            price_action = Direction.BEARISH
        else:
            price_action = Direction.NEUTRAL

        volumes = series.volumes
        avg_volume = float(np.mean(volumes))
        recent_volume = float(np.mean(volumes[-5:]))
        if avg_volume > 0 and recent_volume > avg_volume * 1.5:
            volume = VolumeState.HIGH
        elif avg_volume > 0 and recent_volume < avg_volume * 0.7:
            volume = VolumeState.LOW
        else:
            volume = VolumeState.NORMAL

        score = score_timeframe(rsi, macd, ma_state, price_action, volume)
        active = sum(1 for d in (macd, ma_state, price_action) if d != Direction.NEUTRAL)

        return TimeframeSignal(
            resolution=resolution,
            trend=classify_trend(score),
            score=score,
            rsi=rsi,
            macd=macd,
            ma_state=ma_state,
            price_action=price_action,
            volume=volume,
            confidence=min(100, abs(score) + 10 * active),
            available=True,
        )

    # ──────────────────────────────────────────
    # Fan-out / fold
    # ──────────────────────────────────────────

    def analyze(
        self,
        series_by_resolution: Mapping[Resolution, Optional[Sequence[Bar]]],
    ) -> MultiHorizonReport:
        """Analyze all six resolutions concurrently and combine.

        Series are validated up front, so ``InvalidBar`` propagates before any
        work starts. Missing resolutions and per-resolution failures degrade
        to the neutral default.
        """
        supplied: dict[Resolution, BarSeries] = {}
        for resolution, bars in series_by_resolution.items():
            if bars is not None and len(bars) > 0:
                supplied[resolution] = as_series(bars, resolution=resolution)

        signals: dict[Resolution, TimeframeSignal] = {}
        with concurrent.futures.ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = {
                resolution: pool.submit(self._resolve, resolution, supplied.get(resolution))
                for resolution in Resolution
            }
            for resolution, future in futures.items():
                try:
                    signals[resolution] = future.result()
                except UpstreamUnavailable as exc:
                    log.info("horizon.resolution_unavailable", resolution=resolution.value, reason=exc.reason)
                    signals[resolution] = default_signal(resolution)
                except Exception as exc:
                    log.warning("horizon.resolution_failed", resolution=resolution.value, error=str(exc))
                    signals[resolution] = default_signal(resolution)

        key_levels = KeyLevels()
        current_price = 0.0
        coarsest = [r for r in reversed(list(Resolution)) if r in supplied]
        if coarsest:
            # coarsest series that is long enough to carry swing levels
            deep = [r for r in coarsest if len(supplied[r]) >= KEY_LEVEL_MIN_BARS]
            key_levels = self.ta.key_levels(supplied[deep[0] if deep else coarsest[0]])
            current_price = supplied[coarsest[-1]].last.close

        return self.combine_signals(signals, key_levels=key_levels, current_price=current_price)

    def analyze_from_base(self, series: BarSeries) -> MultiHorizonReport:
        """Derive every coarser resolution from one series, then analyze."""
        derived: dict[Resolution, Optional[BarSeries]] = {}
        for resolution in Resolution:
            try:
                derived[resolution] = series.derive(resolution)
            except UpstreamUnavailable as exc:
                log.debug("horizon.derive_skipped", resolution=resolution.value, reason=exc.reason)
                derived[resolution] = None
        return self.analyze(derived)

    def _resolve(self, resolution: Resolution, series: Optional[BarSeries]) -> TimeframeSignal:
        if series is None:
            raise UpstreamUnavailable(resolution.value)
        return self.analyze_resolution(series, resolution)

    # ──────────────────────────────────────────
    # Combination
    # ──────────────────────────────────────────

    def combine_signals(
        self,
        signals: Mapping[Resolution, TimeframeSignal],
        key_levels: Optional[KeyLevels] = None,
        current_price: float = 0.0,
    ) -> MultiHorizonReport:
        """Weighted fold over a complete six-slot mapping."""
        full = {r: signals.get(r) or default_signal(r) for r in Resolution}

        weighted_score = sum(full[r].score * w for r, w in HORIZON_WEIGHTS.items())
        weighted_conf = sum(full[r].confidence * w for r, w in HORIZON_WEIGHTS.items())
        overall = classify_trend(weighted_score)
        confidence = max(0, min(100, round(weighted_conf)))
        alignment = alignment_pct(list(full.values()))

        return MultiHorizonReport(
            timeframes=full,
            overall_trend=overall,
            weighted_score=round(weighted_score, 4),
            confidence=confidence,
            alignment=alignment,
            heatmap=self._heatmap(full),
            key_levels=key_levels or KeyLevels(),
            recommendation=self._recommend(full, overall, confidence),
            reasoning=self._reasoning(full, overall, alignment),
            current_price=current_price,
        )

    @staticmethod
    def _heatmap(signals: Mapping[Resolution, TimeframeSignal]) -> list[list[HeatmapCell]]:
        def cell_value(indicator: str, s: TimeframeSignal) -> Direction:
            if indicator == "Trend":
                return s.trend.direction
            if indicator == "RSI":
                if s.rsi > 60:
                    return Direction.BULLISH
                if s.rsi < 40:
                    return Direction.BEARISH
                return Direction.NEUTRAL
            if indicator == "MACD":
                return s.macd
            if indicator == "EMA":
                return s.ma_state
            if indicator == "Price Action":
                return s.price_action
            # Volume
            if s.volume != VolumeState.HIGH or s.score == 0:
                return Direction.NEUTRAL
            return Direction.BULLISH if s.score > 0 else Direction.BEARISH

        return [
            [
                HeatmapCell(resolution=r, indicator=row, value=cell_value(row, signals[r]))
                for r in HEATMAP_COLUMNS
            ]
            for row in HEATMAP_ROWS
        ]

    @staticmethod
    def _recommend(
        signals: Mapping[Resolution, TimeframeSignal],
        overall: TrendClass,
        confidence: int,
    ) -> Recommendation:
        if overall == TrendClass.STRONG_BULLISH and confidence > 70:
            return Recommendation.STRONG_BUY
        if overall == TrendClass.BULLISH or (overall == TrendClass.STRONG_BULLISH and confidence > 50):
            return Recommendation.BUY
        if overall == TrendClass.STRONG_BEARISH and confidence > 70:
            return Recommendation.STRONG_SELL
        if overall == TrendClass.BEARISH or (overall == TrendClass.STRONG_BEARISH and confidence > 50):
            return Recommendation.SELL

        higher = (signals[Resolution.D1].score + signals[Resolution.H4].score + signals[Resolution.H1].score) / 3
        if higher > 40:
            return Recommendation.BUY
        if higher < -40:
            return Recommendation.SELL
        return Recommendation.HOLD

    @staticmethod
    def _reasoning(
        signals: Mapping[Resolution, TimeframeSignal],
        overall: TrendClass,
        alignment: int,
    ) -> list[str]:
        reasoning = [f"Overall trend: {overall.value.replace('_', ' ')} with {alignment}% alignment"]

        daily = signals[Resolution.D1].trend.direction
        four_hour = signals[Resolution.H4].trend.direction
        if daily == four_hour == Direction.BULLISH:
            reasoning.append("Higher timeframes (1d, 4h) aligned bullish")
        elif daily == four_hour == Direction.BEARISH:
            reasoning.append("Higher timeframes (1d, 4h) aligned bearish")
        else:
            reasoning.append("Higher timeframes diverge, wait for clarity")

        daily_signal = signals[Resolution.D1]
        if daily_signal.available and daily_signal.rsi > 70:
            reasoning.append(f"Daily RSI at {daily_signal.rsi:.0f}, overbought")
        elif daily_signal.available and daily_signal.rsi < 30:
            reasoning.append(f"Daily RSI at {daily_signal.rsi:.0f}, oversold")

        bullish_macd = sum(1 for s in signals.values() if s.macd == Direction.BULLISH)
        bearish_macd = sum(1 for s in signals.values() if s.macd == Direction.BEARISH)
        if bullish_macd >= 4:
            reasoning.append(f"{bullish_macd}/6 timeframes show bullish MACD")
        elif bearish_macd >= 4:
            reasoning.append(f"{bearish_macd}/6 timeframes show bearish MACD")

        high_volume = sum(1 for s in signals.values() if s.volume == VolumeState.HIGH)
        if high_volume >= 3:
            reasoning.append(f"High volume across {high_volume} timeframes")

        return reasoning
