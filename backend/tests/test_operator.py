"""
Operator engine tests: manipulation verdicts in priority order and the
operator strength score.
"""

from __future__ import annotations

import pytest

from confluence.config import OperatorThresholds
from confluence.engines.operator_engine import OperatorEngine
from confluence.models import Direction, Level, ManipulationAction, ManipulationType


@pytest.fixture
def bull_trap_bars(bars_from_ohlc):
    """Doji range capped at 100, a pierce to 102, then closes back under 99 on 5x volume."""
    rows = [(99, 100, 98, 99, 1000)] * 12
    rows.append((99, 102, 98, 99, 1000))
    rows += [
        (98, 99.8, 97.8, 98.6, 5000),
        (98, 99.5, 97.8, 98.6, 5000),
        (98, 99.2, 97.8, 98.6, 5000),
    ]
    return bars_from_ohlc(rows)


@pytest.fixture
def pump_dump_bars(bars_from_ohlc):
    rows = [(100, 100.5, 99.5, 100), (100, 110, 100, 108), (108, 108, 104.5, 105)]
    closes = [105, 101, 97, 93, 89, 85, 81, 77]
    for prev, close in zip(closes, closes[1:]):
        rows.append((prev, prev, close - 0.5, close))
    return bars_from_ohlc(rows)


class TestVerdicts:

    def test_bull_trap(self, bull_trap_bars):
        verdict = OperatorEngine().detect(bull_trap_bars)
        assert verdict is not None
        assert verdict.type == ManipulationType.BULL_TRAP
        assert verdict.action == ManipulationAction.AVOID
        assert verdict.confidence == Level.HIGH
        assert verdict.supporting_indicators

    def test_accumulation(self, bars_from_ohlc):
        rows = [(100, 101, 99.5, 100.5, 500)] * 7
        rows += [
            (100.5, 102, 99, 100.5, 500),
            (100.5, 102, 99, 100.5, 3000),
            (100.5, 100.8, 100.4, 100.7, 2000),
        ]
        verdict = OperatorEngine().detect(bars_from_ohlc(rows))
        assert verdict.type == ManipulationType.ACCUMULATION
        assert verdict.action == ManipulationAction.BUY

    def test_distribution(self, bars_from_ohlc):
        rows = [(100, 101, 99.5, 100, 1000)] * 6
        rows += [
            (100, 103, 98.5, 99, 4000),
            (99, 102.5, 98, 98.5, 4000),
            (98.5, 102, 97.5, 98, 4000),
            (98, 101.5, 97, 97.5, 4000),
        ]
        verdict = OperatorEngine().detect(bars_from_ohlc(rows))
        assert verdict.type == ManipulationType.DISTRIBUTION
        assert verdict.action == ManipulationAction.SELL
        assert verdict.confidence == Level.HIGH

    def test_bear_trap(self, bars_from_ohlc):
        rows = [(101, 102, 100, 101, 1000)] * 12
        rows.append((101, 102, 98, 101, 1000))
        rows += [(102, 102.2, 100.5, 101.4, 5000)] * 3
        verdict = OperatorEngine().detect(bars_from_ohlc(rows))
        assert verdict.type == ManipulationType.BEAR_TRAP
        assert verdict.action == ManipulationAction.BUY
        assert verdict.confidence == Level.HIGH

    def test_pump_and_dump(self, pump_dump_bars):
        assert len(pump_dump_bars) == 10
        verdict = OperatorEngine().detect(pump_dump_bars)
        assert verdict.type == ManipulationType.PUMP_DUMP
        assert verdict.action == ManipulationAction.AVOID

    def test_fake_breakout(self, flat_bars, bars_from_ohlc):
        bars = flat_bars(17) + bars_from_ohlc([(100, 103.5, 99.8, 103, 300)] * 3, start=17)
        verdict = OperatorEngine().detect(bars)
        assert verdict.type == ManipulationType.BREAKOUT_FAKE
        assert verdict.action == ManipulationAction.WAIT
        assert verdict.confidence == Level.MEDIUM

    def test_short_squeeze(self, bars_from_ohlc):
        rows = [
            (101, 101.2, 99.8, 100),
            (100, 100.1, 98.4, 98.5),
            (98.5, 98.6, 96.9, 97),
            (97, 97.1, 95.4, 95.5),
            (95.5, 95.6, 93.9, 94),
            (94, 94.3, 93.8, 94),
            (94, 94.3, 93.8, 94),
            (94, 95.6, 93.9, 95.5),
            (95.5, 97.1, 95.4, 97),
            (97, 99.1, 96.9, 99, 8000),
        ]
        verdict = OperatorEngine().detect(bars_from_ohlc(rows))
        assert verdict.type == ManipulationType.SQUEEZE
        assert verdict.action == ManipulationAction.BUY

    def test_quiet_range_has_no_verdict(self, flat_bars):
        assert OperatorEngine().detect(flat_bars(30)) is None

    def test_fewer_than_ten_bars(self, pump_dump_bars):
        assert OperatorEngine().detect(pump_dump_bars[:9]) is None

    def test_thresholds_are_configurable(self, pump_dump_bars):
        engine = OperatorEngine(OperatorThresholds(pump_min_gain_pct=50.0))
        assert engine.detect_pump_and_dump(pump_dump_bars) is None

    def test_thresholds_from_environment(self, monkeypatch, pump_dump_bars):
        monkeypatch.setenv("CONFLUENCE_OPERATOR__PUMP_MIN_GAIN_PCT", "50")
        assert OperatorEngine().t.pump_min_gain_pct == 50.0
        assert OperatorEngine().detect(pump_dump_bars) is None

    def test_detector_order(self):
        kinds = [kind for kind, _ in OperatorEngine().detectors]
        assert kinds == [
            ManipulationType.ACCUMULATION,
            ManipulationType.DISTRIBUTION,
            ManipulationType.BULL_TRAP,
            ManipulationType.BEAR_TRAP,
            ManipulationType.PUMP_DUMP,
            ManipulationType.BREAKOUT_FAKE,
            ManipulationType.SQUEEZE,
        ]

    def test_higher_priority_verdict_wins(self, bars_from_ohlc):
        # Quiet green drift lower, then a volume-backed rally: fits both
        # accumulation and a short squeeze.
        rows = [
            (99.8, 100.3, 99.7, 100, 500),
            (98.3, 98.8, 98.2, 98.5, 500),
            (96.8, 97.3, 96.7, 97, 500),
            (95.3, 95.8, 95.2, 95.5, 500),
            (93.8, 94.3, 93.7, 94, 500),
            (93.8, 94.3, 93.7, 94, 500),
            (93.8, 94.3, 93.7, 94, 500),
            (94, 96.3, 93.9, 96, 4000),
            (96, 98.3, 95.9, 98, 3000),
            (98, 98.4, 97.9, 98.2, 5000),
        ]
        bars = bars_from_ohlc(rows)
        engine = OperatorEngine()
        assert engine.detect_short_squeeze(bars) is not None
        assert engine.detect_accumulation(bars) is not None
        assert engine.detect(bars).type == ManipulationType.ACCUMULATION


class TestOperatorStrength:

    def test_insufficient_data(self, flat_bars):
        strength = OperatorEngine().strength(flat_bars(5))
        assert strength.score == 50
        assert strength.sentiment == Direction.NEUTRAL

    def test_no_evidence_is_neutral(self, flat_bars):
        strength = OperatorEngine().strength(flat_bars(20))
        assert strength.score == 50
        assert strength.sentiment == Direction.NEUTRAL

    def test_volume_backed_buying(self, flat_bars, bars_from_ohlc):
        bars = flat_bars(8) + bars_from_ohlc([(100, 104.2, 99.8, 104, 5000)] * 2, start=8)
        strength = OperatorEngine().strength(bars)
        assert strength.score == 100
        assert strength.sentiment == Direction.BULLISH

    def test_volume_backed_selling(self, flat_bars, bars_from_ohlc):
        bars = flat_bars(8) + bars_from_ohlc([(100, 100.2, 95.8, 96, 5000)] * 2, start=8)
        strength = OperatorEngine().strength(bars)
        assert strength.score == 0
        assert strength.sentiment == Direction.BEARISH
