"""
Confluence — Operator (Manipulation) Detection Engine

Heuristic detection of large-participant behaviour in the most recent
10-20 bars. Seven detectors are evaluated lazily in a fixed priority order
and the first one that fires is the verdict; a separate strength score is
always computed.

Priority:
  1. Accumulation      5. Pump & Dump
  2. Distribution      6. Fake Breakout
  3. Bull Trap         7. Short Squeeze
  4. Bear Trap
"""

from __future__ import annotations

from typing import Callable, Optional, Sequence

import numpy as np
import structlog

from confluence.config import OperatorThresholds, get_settings
from confluence.models import (
    Bar,
    Direction,
    Level,
    ManipulationAction,
    ManipulationType,
    ManipulationVerdict,
    OperatorStrength,
)

log = structlog.get_logger(__name__)

MIN_BARS = 10
TRAP_WINDOW = 15
FAKE_BREAKOUT_WINDOW = 20

Detector = Callable[[Sequence[Bar]], Optional[ManipulationVerdict]]


def _mean_volume(bars: Sequence[Bar]) -> float:
    return float(np.mean([b.volume for b in bars])) if bars else 0.0


class OperatorEngine:
    """Manipulation-pattern classifier.

    Usage:
        engine = OperatorEngine()
        verdict = engine.detect(bars)       # None when nothing fires
        strength = engine.strength(bars)
    """

    def __init__(self, thresholds: Optional[OperatorThresholds] = None):
        self.t = thresholds or get_settings().operator

    @property
    def detectors(self) -> tuple[tuple[ManipulationType, Detector], ...]:
        """Detectors in priority order; earlier entries win."""
        return (
            (ManipulationType.ACCUMULATION, self.detect_accumulation),
            (ManipulationType.DISTRIBUTION, self.detect_distribution),
            (ManipulationType.BULL_TRAP, self.detect_bull_trap),
            (ManipulationType.BEAR_TRAP, self.detect_bear_trap),
            (ManipulationType.PUMP_DUMP, self.detect_pump_and_dump),
            (ManipulationType.BREAKOUT_FAKE, self.detect_fake_breakout),
            (ManipulationType.SQUEEZE, self.detect_short_squeeze),
        )

    # ──────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────

    def detect(self, bars: Sequence[Bar]) -> Optional[ManipulationVerdict]:
        """Return the first verdict in priority order, or None."""
        if len(bars) < MIN_BARS:
            return None

        for kind, detector in self.detectors:
            verdict = detector(bars)
            if verdict is not None:
                log.debug("operator.verdict", type=kind.value, action=verdict.action.value)
                return verdict
        return None

    def strength(self, bars: Sequence[Bar]) -> OperatorStrength:
        """Recency-weighted buying vs. selling from volume-backed large bodies."""
        if len(bars) < MIN_BARS:
            return OperatorStrength(score=50, sentiment=Direction.NEUTRAL, description="Insufficient data")

        recent = list(bars[-10:])
        avg_volume = _mean_volume(recent)
        bullish = 0.0
        bearish = 0.0

        for idx, b in enumerate(recent):
            volume_ratio = b.volume / avg_volume if avg_volume > 0 else 0.0
            body_ratio = b.body / b.range if b.range > 0 else 0.0
            backed = (volume_ratio > self.t.strength_volume_ratio
                      and body_ratio > self.t.strength_body_ratio)

            if backed and b.is_green:
                bullish += 10 * volume_ratio
            elif backed and b.is_red:
                bearish += 10 * volume_ratio

            # Later bars compound more weight onto everything seen so far.
            recency = (idx + 1) / len(recent)
            bullish *= 1 + recency * 0.5
            bearish *= 1 + recency * 0.5

        total = bullish + bearish
        if total == 0:
            return OperatorStrength(
                score=50,
                sentiment=Direction.NEUTRAL,
                description="No volume-backed large candles. No clear directional bias.",
            )

        score = round(min(100.0, bullish / total * 100))
        if score > 65:
            return OperatorStrength(
                score=score, sentiment=Direction.BULLISH,
                description="Strong operator buying detected. Institutions accumulating positions.",
            )
        if score < 35:
            return OperatorStrength(
                score=score, sentiment=Direction.BEARISH,
                description="Strong operator selling detected. Institutions distributing positions.",
            )
        return OperatorStrength(
            score=score, sentiment=Direction.NEUTRAL,
            description="Balanced operator activity. No clear directional bias.",
        )

    # ──────────────────────────────────────────
    # Detectors
    # ──────────────────────────────────────────

    def detect_accumulation(self, bars: Sequence[Bar]) -> Optional[ManipulationVerdict]:
        """Quiet low-volume green bars, a tight current range, then rising volume."""
        if len(bars) < MIN_BARS:
            return None
        recent = list(bars[-10:])
        avg_volume = _mean_volume(recent)
        avg_range = float(np.mean([b.range for b in recent]))

        quiet_green = sum(
            1 for b in recent
            if b.is_green and b.volume < avg_volume * self.t.accumulation_low_volume_ratio
        )
        tight = recent[-1].range < avg_range * self.t.accumulation_tight_range_ratio
        volume_rising = recent[-1].volume > recent[-3].volume * self.t.accumulation_volume_rise

        if quiet_green >= self.t.accumulation_min_green_bars and tight and volume_rising:
            return ManipulationVerdict(
                type=ManipulationType.ACCUMULATION,
                confidence=Level.HIGH,
                action=ManipulationAction.BUY,
                description=(
                    "Operators accumulating quietly. Low-volume green candles in a tight "
                    "range followed by a volume pickup."
                ),
                supporting_indicators=[
                    f"{quiet_green} low-volume green candles detected",
                    "Price consolidating in tight range",
                    "Volume increasing over the last 3 bars",
                ],
            )
        return None

    def detect_distribution(self, bars: Sequence[Bar]) -> Optional[ManipulationVerdict]:
        """Heavy red bars, long upper wicks, and lower highs."""
        if len(bars) < MIN_BARS:
            return None
        recent = list(bars[-10:])
        avg_volume = _mean_volume(recent)

        heavy_red = sum(
            1 for b in recent
            if b.is_red and b.volume > avg_volume * self.t.distribution_high_volume_ratio
        )
        rejections = sum(
            1 for b in recent if b.upper_wick > b.body * self.t.distribution_wick_body_ratio
        )
        lower_highs = recent[-1].high < recent[-3].high and recent[-2].high < recent[-4].high

        if (heavy_red >= self.t.distribution_min_red_bars
                and rejections >= self.t.distribution_min_wick_bars
                and lower_highs):
            return ManipulationVerdict(
                type=ManipulationType.DISTRIBUTION,
                confidence=Level.HIGH,
                action=ManipulationAction.SELL,
                description=(
                    "Operators distributing into strength. High-volume red candles with "
                    "long upper shadows while highs step lower."
                ),
                supporting_indicators=[
                    f"{heavy_red} high-volume red candles",
                    f"{rejections} candles with long upper shadows",
                    "Price making lower highs",
                ],
            )
        return None

    def detect_bull_trap(self, bars: Sequence[Bar]) -> Optional[ManipulationVerdict]:
        """Resistance pierced intrabar, then closes fall back under it on heavy volume."""
        if len(bars) < TRAP_WINDOW:
            return None
        recent = list(bars[-TRAP_WINDOW:])
        resistance = max(b.high for b in recent[:10])
        pierce = self.t.trap_pierce_pct

        broke = False
        fell_back = False
        for idx, b in enumerate(recent[-5:]):
            if b.high > resistance * (1 + pierce):
                broke = True
            if broke and idx > 1 and b.close < resistance * (1 - pierce):
                fell_back = True

        heavy = recent[-1].volume > _mean_volume(recent) * self.t.trap_volume_ratio

        if broke and fell_back and heavy:
            return ManipulationVerdict(
                type=ManipulationType.BULL_TRAP,
                confidence=Level.HIGH,
                action=ManipulationAction.AVOID,
                description=(
                    "Bull trap. Price broke resistance to trap buyers, then reversed "
                    "back below it on heavy volume."
                ),
                supporting_indicators=[
                    f"Fake breakout above {resistance:.2f}",
                    "Reversal with high volume",
                    "Wait for genuine support before buying",
                ],
            )
        return None

    def detect_bear_trap(self, bars: Sequence[Bar]) -> Optional[ManipulationVerdict]:
        """Support pierced intrabar, then closes recover above it on heavy volume."""
        if len(bars) < TRAP_WINDOW:
            return None
        recent = list(bars[-TRAP_WINDOW:])
        support = min(b.low for b in recent[:10])
        pierce = self.t.trap_pierce_pct

        broke = False
        recovered = False
        for idx, b in enumerate(recent[-5:]):
            if b.low < support * (1 - pierce):
                broke = True
            if broke and idx > 1 and b.close > support * (1 + pierce):
                recovered = True

        heavy = recent[-1].volume > _mean_volume(recent) * self.t.trap_volume_ratio

        if broke and recovered and heavy:
            return ManipulationVerdict(
                type=ManipulationType.BEAR_TRAP,
                confidence=Level.HIGH,
                action=ManipulationAction.BUY,
                description=(
                    "Bear trap. Price broke support to shake out sellers, then recovered "
                    "above it on heavy volume."
                ),
                supporting_indicators=[
                    f"Fake breakdown below {support:.2f}",
                    "Recovery with high volume",
                    "Weak hands shaken out",
                ],
            )
        return None

    def detect_pump_and_dump(self, bars: Sequence[Bar]) -> Optional[ManipulationVerdict]:
        """A single-bar spike followed by a steady per-bar decline."""
        if len(bars) < MIN_BARS:
            return None
        recent = list(bars[-10:])

        max_gain = 0.0
        max_idx = 0
        for idx in range(1, len(recent)):
            prev_close = recent[idx - 1].close
            if prev_close <= 0:
                continue
            gain = (recent[idx].high - prev_close) / prev_close * 100
            if gain > max_gain:
                max_gain = gain
                max_idx = idx

        crashed = False
        avg_drop = 0.0
        if max_idx < len(recent) - 2:
            after = recent[max_idx + 1:]
            drops = [
                (after[i - 1].close - after[i].close) / after[i - 1].close * 100
                for i in range(1, len(after))
                if after[i - 1].close > 0
            ]
            avg_drop = sum(drops) / (len(after) - 1)
            crashed = avg_drop > self.t.dump_min_avg_drop_pct

        if max_gain > self.t.pump_min_gain_pct and crashed:
            return ManipulationVerdict(
                type=ManipulationType.PUMP_DUMP,
                confidence=Level.HIGH,
                action=ManipulationAction.AVOID,
                description="Pump and dump. Sudden spike followed by a sharp, sustained decline.",
                supporting_indicators=[
                    f"Sudden {max_gain:.1f}% spike detected",
                    f"Average decline of {avg_drop:.1f}% per bar afterwards",
                ],
            )
        return None

    def detect_fake_breakout(self, bars: Sequence[Bar]) -> Optional[ManipulationVerdict]:
        """A new high beyond the prior 17 bars without volume behind it."""
        if len(bars) < FAKE_BREAKOUT_WINDOW:
            return None
        recent = list(bars[-FAKE_BREAKOUT_WINDOW:])
        last3 = recent[-3:]
        previous = recent[:-3]

        resistance = max(b.high for b in previous)
        broke = any(b.high > resistance * (1 + self.t.fake_breakout_margin) for b in last3)
        thin = _mean_volume(last3) < _mean_volume(previous) * self.t.fake_breakout_volume_ratio

        if broke and thin:
            return ManipulationVerdict(
                type=ManipulationType.BREAKOUT_FAKE,
                confidence=Level.MEDIUM,
                action=ManipulationAction.WAIT,
                description="Breakout on thin volume. Genuine breakouts need volume confirmation.",
                supporting_indicators=[
                    f"New high above {resistance:.2f} without volume support",
                    "Wait for volume confirmation",
                ],
            )
        return None

    def detect_short_squeeze(self, bars: Sequence[Bar]) -> Optional[ManipulationVerdict]:
        """An earlier sharp fall, then a sharp rally on a volume spike."""
        if len(bars) < MIN_BARS:
            return None
        recent = list(bars[-10:])
        avg_volume = _mean_volume(recent)

        first5 = recent[:5]
        last3 = recent[-3:]
        if first5[0].close <= 0 or last3[0].open <= 0:
            return None

        fall_pct = (first5[0].close - first5[4].close) / first5[0].close * 100
        rise_pct = (last3[2].close - last3[0].open) / last3[0].open * 100
        spike = any(b.volume > avg_volume * self.t.squeeze_volume_ratio for b in last3)

        if (fall_pct > self.t.squeeze_min_fall_pct
                and rise_pct > self.t.squeeze_min_rise_pct
                and spike):
            return ManipulationVerdict(
                type=ManipulationType.SQUEEZE,
                confidence=Level.HIGH,
                action=ManipulationAction.BUY,
                description="Short squeeze. A sharp fall trapped shorts who are now forced to cover.",
                supporting_indicators=[
                    f"{fall_pct:.1f}% fall trapped short sellers",
                    f"{rise_pct:.1f}% sharp recovery",
                    "Volume spike as shorts cover",
                ],
            )
        return None
