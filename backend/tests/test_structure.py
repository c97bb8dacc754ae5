"""
Market structure engine tests.
"""

from __future__ import annotations

import pytest

from confluence.engines.structure_engine import (
    StructureEngine,
    determine_market_structure,
    score_structure,
    structure_confidence,
    structure_recommendation,
)
from confluence.models import (
    Direction,
    Level,
    MarketStructure,
    OrderBlock,
    Recommendation,
    Strength,
    ZoneType,
)


def _order_block(bar, direction=Direction.BULLISH, strength=Strength.STRONG, i=0):
    b = bar(i, 100, 100.2, 98.8, 99)
    return OrderBlock(
        direction=direction, high=b.high, low=b.low, index=i,
        timestamp=b.timestamp, strength=strength,
    )


class TestScoring:

    def test_confidence_without_evidence(self):
        assert structure_confidence(0, 0) == 0

    def test_confidence_is_dominant_share(self):
        assert structure_confidence(60, 20) == 75
        assert structure_confidence(20, 60) == 75

    def test_recommendation_thresholds(self):
        assert structure_recommendation(60, 20) == Recommendation.STRONG_BUY
        assert structure_recommendation(30, 25) == Recommendation.BUY
        assert structure_recommendation(20, 60) == Recommendation.STRONG_SELL
        assert structure_recommendation(25, 30) == Recommendation.SELL
        assert structure_recommendation(0, 0) == Recommendation.HOLD

    def test_more_bullish_evidence_never_lowers_bullish_score(self, bar):
        base = [_order_block(bar)]
        bull_before, bear_before, _ = score_structure(
            [], base, [], MarketStructure.RANGING, None, None, [],
        )
        bull_after, bear_after, _ = score_structure(
            [], base + [_order_block(bar, i=1)], [], MarketStructure.RANGING, None, None, [],
        )
        assert bull_after == bull_before + 20
        assert bear_after == bear_before

    def test_only_strong_order_blocks_count(self, bar):
        weak = [_order_block(bar, strength=Strength.WEAK)]
        bullish, bearish, _ = score_structure([], weak, [], MarketStructure.RANGING, None, None, [])
        assert (bullish, bearish) == (0, 0)

    def test_structure_weight(self):
        bullish, _, reasoning = score_structure([], [], [], MarketStructure.BULLISH, None, None, [])
        assert bullish == 25
        assert any("Bullish market structure" in r for r in reasoning)


class TestMarketStructure:

    def test_rising(self, rising_bars):
        assert determine_market_structure(rising_bars(20)) == MarketStructure.BULLISH

    def test_falling(self, rising_bars):
        mirrored = [
            b.model_copy(update={"open": 300 - b.open, "close": 300 - b.close,
                                 "high": 300 - b.low, "low": 300 - b.high})
            for b in rising_bars(20)
        ]
        assert determine_market_structure(mirrored) == MarketStructure.BEARISH

    def test_flat(self, flat_bars):
        assert determine_market_structure(flat_bars(20)) == MarketStructure.RANGING


class TestDetectors:

    def test_bullish_liquidity_sweep(self, flat_bars, bars_from_ohlc):
        bars = flat_bars(20) + bars_from_ohlc([
            (100, 100.1, 98, 99.6),
            (99.6, 101.6, 99.5, 101.5),
        ], start=20)
        sweeps = StructureEngine().detect_liquidity_sweeps(bars)
        assert len(sweeps) == 1
        assert sweeps[0].direction == Direction.BULLISH
        assert sweeps[0].swept_level == 99.5
        assert sweeps[0].index == 20
        assert sweeps[0].confidence == Level.HIGH

    def test_bullish_order_block(self, bars_from_ohlc):
        bars = bars_from_ohlc([
            (100, 100.2, 98.8, 99),
            (99, 101.2, 98.9, 101),
            (101, 102.7, 100.9, 102.5),
            (102.5, 104.2, 102.4, 104),
        ])
        blocks = StructureEngine().detect_order_blocks(bars)
        assert len(blocks) == 1
        assert blocks[0].direction == Direction.BULLISH
        assert blocks[0].strength == Strength.STRONG
        assert blocks[0].midpoint == pytest.approx(99.5)

    def test_mixed_impulse_is_not_an_order_block(self, bars_from_ohlc):
        bars = bars_from_ohlc([
            (100, 100.2, 98.8, 99),
            (99, 101.2, 98.9, 101),
            (101, 101.5, 100.4, 100.5),
            (100.5, 104.2, 100.4, 104),
        ])
        assert StructureEngine().detect_order_blocks(bars) == []

    def test_fair_value_gap_and_fill(self, bars_from_ohlc):
        rows = [
            (99, 100, 98.8, 99.5),
            (99.5, 102.2, 99.4, 102),
            (102, 103.5, 101, 103),
        ]
        gaps = StructureEngine().detect_fair_value_gaps(bars_from_ohlc(rows))
        assert len(gaps) == 1
        assert gaps[0].direction == Direction.BULLISH
        assert (gaps[0].bottom, gaps[0].top) == (100, 101)
        assert gaps[0].gap_pct == 1.0
        assert not gaps[0].filled

        refilled = StructureEngine().detect_fair_value_gaps(bars_from_ohlc(rows + [(103, 103.2, 99.9, 100.5)]))
        assert refilled[0].filled

    def test_break_of_structure(self, flat_bars, bar):
        bars = flat_bars(49) + [bar(49, 100, 103.5, 99.8, 103)]
        bos = StructureEngine().detect_break_of_structure(bars)
        assert bos is not None
        assert bos.direction == Direction.BULLISH
        assert bos.previous_structure == 100.5

    def test_institutional_candle(self, flat_bars, bar):
        bars = flat_bars(9) + [bar(9, 100, 103.2, 99.9, 103, volume=5000)]
        candles = StructureEngine().detect_institutional_candles(bars)
        assert len(candles) == 1
        assert candles[0].direction == Direction.BULLISH
        assert candles[0].confidence == Level.HIGH

    def test_demand_zone(self, flat_bars, bars_from_ohlc):
        rally = [(100 + 3 * i, 103.5 + 3 * i, 99.8 + 3 * i, 103 + 3 * i) for i in range(10)]
        bars = flat_bars(51) + bars_from_ohlc(rally, start=51)
        zones = StructureEngine().identify_supply_demand_zones(bars)
        assert zones
        assert zones[-1].zone_type == ZoneType.DEMAND
        assert 0 <= zones[-1].strength <= 100


class TestAnalyze:

    def test_short_series_returns_default(self, rising_bars):
        report = StructureEngine().analyze(rising_bars(49))
        assert report.confidence == 0
        assert report.recommendation == Recommendation.HOLD
        assert report.order_blocks == []
        assert report.bos is None

    def test_ten_bars_is_ranging_default(self, rising_bars):
        report = StructureEngine().analyze(rising_bars(10))
        assert report.market_structure == MarketStructure.RANGING
        assert report.liquidity_sweeps == []
        assert report.fair_value_gaps == []
        assert report.supply_demand_zones == []
        assert report.choch is None

    def test_steady_uptrend(self, rising_bars):
        report = StructureEngine().analyze(rising_bars(60))
        assert report.market_structure == MarketStructure.BULLISH
        assert report.bos is not None and report.bos.direction == Direction.BULLISH
        assert report.recommendation == Recommendation.STRONG_BUY
        assert report.bearish_score == 0
        assert report.confidence == 100
        assert len(report.fair_value_gaps) <= 5

    def test_min_bars_configurable(self, rising_bars):
        report = StructureEngine(min_bars=20).analyze(rising_bars(30))
        assert report.market_structure == MarketStructure.BULLISH
