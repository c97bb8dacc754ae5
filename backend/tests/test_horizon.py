"""
Multi-horizon engine tests: per-resolution scoring, the weighted fold,
and degradation when resolutions are missing or fail.
"""

from __future__ import annotations

import math
from datetime import timedelta

import pytest

from confluence.engines.horizon_engine import (
    HEATMAP_ROWS,
    HORIZON_WEIGHTS,
    HorizonEngine,
    alignment_pct,
    classify_trend,
    score_timeframe,
)
from confluence.engines.series_engine import BarSeries
from confluence.exceptions import InvalidBar
from confluence.models import (
    Direction,
    Recommendation,
    Resolution,
    TimeframeSignal,
    TrendClass,
    VolumeState,
)


def _wave(bars_from_closes, n, step=timedelta(days=1)):
    return bars_from_closes([100 + 10 * math.sin(i * 0.25) + i * 0.2 for i in range(n)], step=step)


class TestScoring:

    def test_weights_sum_to_one(self):
        assert sum(HORIZON_WEIGHTS.values()) == pytest.approx(1.0)
        assert set(HORIZON_WEIGHTS) == set(Resolution)

    def test_classify_boundaries(self):
        assert classify_trend(61) == TrendClass.STRONG_BULLISH
        assert classify_trend(60) == TrendClass.BULLISH
        assert classify_trend(20) == TrendClass.NEUTRAL
        assert classify_trend(-20) == TrendClass.NEUTRAL
        assert classify_trend(-21) == TrendClass.BEARISH
        assert classify_trend(-61) == TrendClass.STRONG_BEARISH

    def test_aligned_bullish_score(self):
        score = score_timeframe(55, Direction.BULLISH, Direction.BULLISH, Direction.BULLISH, VolumeState.HIGH)
        assert score == 85

    def test_score_clamped(self):
        score = score_timeframe(75, Direction.BEARISH, Direction.BEARISH, Direction.BEARISH, VolumeState.HIGH)
        assert score == -100

    def test_oversold_bounce(self):
        assert score_timeframe(25, Direction.NEUTRAL, Direction.NEUTRAL, Direction.NEUTRAL, VolumeState.NORMAL) == 20

    def test_alignment(self):
        signals = [
            TimeframeSignal(resolution=Resolution.D1, trend=TrendClass.BULLISH),
            TimeframeSignal(resolution=Resolution.H4, trend=TrendClass.STRONG_BULLISH),
            TimeframeSignal(resolution=Resolution.H1, trend=TrendClass.BEARISH),
            TimeframeSignal(resolution=Resolution.M15, trend=TrendClass.NEUTRAL),
        ]
        assert alignment_pct(signals) == 50
        assert alignment_pct([]) == 0


class TestCombine:

    def test_full_bullish_alignment(self):
        signals = {
            r: TimeframeSignal(resolution=r, trend=TrendClass.STRONG_BULLISH, score=80, confidence=90)
            for r in Resolution
        }
        report = HorizonEngine().combine_signals(signals)
        assert report.alignment == 100
        assert report.overall_trend == TrendClass.STRONG_BULLISH
        assert report.weighted_score == pytest.approx(80)
        assert report.confidence == 90
        assert report.recommendation == Recommendation.STRONG_BUY

    def test_heatmap_shape(self):
        report = HorizonEngine().combine_signals({})
        assert len(report.heatmap) == len(HEATMAP_ROWS)
        assert all(len(row) == 6 for row in report.heatmap)
        assert report.heatmap[0][0].resolution == Resolution.D1
        assert all(cell.value == Direction.NEUTRAL for row in report.heatmap for cell in row)

    def test_bearish_higher_timeframes(self):
        signals = {
            Resolution.D1: TimeframeSignal(resolution=Resolution.D1, trend=TrendClass.BEARISH, score=-50, confidence=60),
            Resolution.H4: TimeframeSignal(resolution=Resolution.H4, trend=TrendClass.BEARISH, score=-50, confidence=60),
            Resolution.H1: TimeframeSignal(resolution=Resolution.H1, trend=TrendClass.BEARISH, score=-40, confidence=50),
        }
        report = HorizonEngine().combine_signals(signals)
        assert report.overall_trend == TrendClass.BEARISH
        assert report.recommendation == Recommendation.SELL
        assert any("aligned bearish" in r for r in report.reasoning)


class TestAnalyze:

    def test_no_series_is_neutral(self):
        report = HorizonEngine().analyze({})
        assert report.overall_trend == TrendClass.NEUTRAL
        assert report.confidence == 0
        assert not any(s.available for s in report.timeframes.values())
        assert set(report.timeframes) == set(Resolution)

    def test_short_series_uses_default(self, rising_bars):
        report = HorizonEngine().analyze({Resolution.D1: rising_bars(10)})
        daily = report.timeframes[Resolution.D1]
        assert not daily.available
        assert daily.score == 0
        assert daily.confidence == 0

    def test_supplied_resolution_is_scored(self, bars_from_closes):
        report = HorizonEngine().analyze({Resolution.D1: _wave(bars_from_closes, 80)})
        daily = report.timeframes[Resolution.D1]
        assert daily.available
        assert -100 <= daily.score <= 100
        assert 0 <= daily.confidence <= 100
        assert not report.timeframes[Resolution.H1].available
        assert report.current_price == pytest.approx(_wave(bars_from_closes, 80)[-1].close)
        assert report.key_levels.support or report.key_levels.resistance

    def test_failure_in_one_resolution_is_isolated(self, bars_from_closes):
        class FlakyHorizonEngine(HorizonEngine):
            def analyze_resolution(self, bars, resolution):
                if resolution == Resolution.H1:
                    raise RuntimeError("indicator blew up")
                return super().analyze_resolution(bars, resolution)

        bars = _wave(bars_from_closes, 60)
        report = FlakyHorizonEngine().analyze({Resolution.D1: bars, Resolution.H1: bars})
        assert report.timeframes[Resolution.D1].available
        assert not report.timeframes[Resolution.H1].available

    def test_invalid_series_raises_before_work(self, bar):
        bars = [bar(1, 100, 101, 99, 100), bar(0, 100, 101, 99, 100)]
        with pytest.raises(InvalidBar):
            HorizonEngine().analyze({Resolution.D1: bars})

    def test_analyze_from_base(self, bars_from_closes):
        base = BarSeries.of(
            _wave(bars_from_closes, 600, step=timedelta(minutes=1)),
            resolution=Resolution.M1,
        )
        report = HorizonEngine().analyze_from_base(base)
        tf = report.timeframes
        assert tf[Resolution.M1].available
        assert tf[Resolution.M5].available
        assert tf[Resolution.M15].available
        assert not tf[Resolution.H1].available
        assert not tf[Resolution.H4].available
        assert not tf[Resolution.D1].available

    def test_deterministic(self, bars_from_closes):
        series = {Resolution.D1: _wave(bars_from_closes, 80), Resolution.H4: _wave(bars_from_closes, 40)}
        engine = HorizonEngine()
        assert engine.analyze(series) == engine.analyze(series)
