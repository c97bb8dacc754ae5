"""
End-to-end pipeline tests for the AnalysisEngine.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta

import pytest

from confluence.engines.analysis_engine import AnalysisEngine
from confluence.engines.series_engine import BarSeries
from confluence.engines.ta_engine import TAEngine
from confluence.exceptions import InvalidBar
from confluence.models import AnalysisRequest, Resolution


@pytest.fixture
def hourly_bars(bars_from_closes):
    closes = [100 + 8 * math.sin(i * 0.2) + i * 0.05 for i in range(200)]
    return bars_from_closes(closes, step=timedelta(hours=1))


class TestAnalysisEngine:

    def test_run_produces_complete_report(self, hourly_bars):
        request = AnalysisRequest(symbol="AAPL", resolution=Resolution.H1, bars=hourly_bars)
        report = AnalysisEngine().run(request)

        assert report.symbol == "AAPL"
        assert report.current_price == hourly_bars[-1].close
        assert report.as_of == hourly_bars[-1].timestamp
        assert 0 <= report.rsi <= 100
        assert report.patterns.pressure is not None
        assert set(report.horizon.timeframes) == set(Resolution)

        result = report.confidence
        assert 0 <= result.overall_confidence <= 100
        assert result.probability_bullish + result.probability_bearish == 100
        assert result.as_of == hourly_bars[-1].timestamp

    def test_coarser_resolutions_are_derived(self, hourly_bars):
        request = AnalysisRequest(symbol="AAPL", resolution=Resolution.H1, bars=hourly_bars)
        tf = AnalysisEngine().run(request).horizon.timeframes
        assert tf[Resolution.H1].available
        # 200 hourly bars -> 50 four-hour bars, but only 9 daily bars
        assert tf[Resolution.H4].available
        assert not tf[Resolution.D1].available
        # finer resolutions cannot be derived
        assert not tf[Resolution.M15].available

    def test_key_levels_come_from_deepest_coarse_series(self, hourly_bars):
        request = AnalysisRequest(symbol="AAPL", resolution=Resolution.H1, bars=hourly_bars)
        levels = AnalysisEngine().run(request).horizon.key_levels
        # D1 has too few bars for swing levels, so H4 supplies them
        four_hour = BarSeries.of(hourly_bars, Resolution.H1).derive(Resolution.H4)
        assert levels == TAEngine().key_levels(four_hour)
        assert levels.support and levels.resistance

    def test_supplied_horizon_is_used(self, hourly_bars, bars_from_closes):
        five_minute = bars_from_closes([100 + math.sin(i * 0.3) for i in range(40)], step=timedelta(minutes=5))
        request = AnalysisRequest(
            symbol="AAPL",
            resolution=Resolution.H1,
            bars=hourly_bars,
            horizons={Resolution.M5: five_minute},
        )
        tf = AnalysisEngine().run(request).horizon.timeframes
        assert tf[Resolution.M5].available
        assert not tf[Resolution.M1].available

    def test_analyze_returns_confidence_only(self, hourly_bars):
        request = AnalysisRequest(symbol="AAPL", resolution=Resolution.H1, bars=hourly_bars)
        engine = AnalysisEngine()
        assert engine.analyze(request) == engine.run(request).confidence

    def test_explicit_as_of(self, hourly_bars):
        as_of = datetime(2030, 6, 1, 12, 0)
        request = AnalysisRequest(symbol="AAPL", resolution=Resolution.H1, bars=hourly_bars, as_of=as_of)
        report = AnalysisEngine().run(request)
        assert report.as_of == as_of
        assert report.confidence.as_of == as_of

    def test_invalid_primary_bar(self, hourly_bars):
        bars = list(hourly_bars)
        bars[5] = bars[5].model_copy(update={"high": bars[5].low - 1})
        request = AnalysisRequest(symbol="AAPL", resolution=Resolution.H1, bars=bars)
        with pytest.raises(InvalidBar) as exc:
            AnalysisEngine().run(request)
        assert exc.value.index == 5

    def test_invalid_horizon_series(self, hourly_bars, bar):
        broken = [bar(1, 100, 101, 99, 100), bar(0, 100, 101, 99, 100)]
        request = AnalysisRequest(
            symbol="AAPL", resolution=Resolution.H1, bars=hourly_bars, horizons={Resolution.D1: broken},
        )
        with pytest.raises(InvalidBar):
            AnalysisEngine().run(request)

    def test_short_series_degrades_gracefully(self, flat_bars):
        request = AnalysisRequest(symbol="XYZ", resolution=Resolution.D1, bars=flat_bars(3))
        report = AnalysisEngine().run(request)
        assert report.manipulation is None
        assert report.structure.confidence == 0
        assert report.operator_strength.score == 50
        assert report.rsi == 50
        assert not any(s.available for s in report.horizon.timeframes.values())

    def test_idempotent(self, hourly_bars):
        request = AnalysisRequest(symbol="AAPL", resolution=Resolution.H1, bars=hourly_bars)
        engine = AnalysisEngine()
        assert engine.run(request) == engine.run(request)
