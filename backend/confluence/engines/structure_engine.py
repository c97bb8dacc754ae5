"""
Confluence — Market Structure Engine

Smart-money structure concepts over a long window (>= 50 bars):

  Liquidity sweeps      stop runs beyond a 20-bar swing that reverse next bar
  Order blocks          last opposite bar before a three-bar impulse
  Fair value gaps       three-bar imbalances wider than 0.3%
  Market structure      higher-high/higher-low classification of 20 bars
  Break of structure    close beyond the swing of the prior 25 bars
  Change of character   structure flip between consecutive 20-bar windows
  Institutional candles heavy-volume, large-body bars
  Supply/demand zones   six-bar bases that launched a sustained move

Evidence is summed into bullish and bearish scores, which drive a 0-100
confidence and a five-way recommendation.
"""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np
import structlog

from confluence.config import get_settings
from confluence.models import (
    Bar,
    BreakOfStructure,
    ChangeOfCharacter,
    Direction,
    FairValueGap,
    InstitutionalCandle,
    Level,
    LiquiditySweep,
    MarketStructure,
    OrderBlock,
    Recommendation,
    Strength,
    StructureReport,
    SupplyDemandZone,
    ZoneType,
)

log = structlog.get_logger(__name__)

SWEEP_LOOKBACK = 20
STRUCTURE_WINDOW = 20
BOS_WINDOW = 30
ZONE_LOOKBACK = 50

MAX_SWEEPS = 5
MAX_ORDER_BLOCKS = 3
MAX_FVGS = 5
MAX_INSTITUTIONAL = 5
MAX_ZONES = 3

# Evidence weights
W_SWEEP = 15
W_ORDER_BLOCK = 20
W_FVG = 10
W_STRUCTURE = 25
W_BOS = 20
W_CHOCH = 25
W_INSTITUTIONAL = 10


def default_report() -> StructureReport:
    return StructureReport(reasoning=["Insufficient data for structure analysis"])


# ──────────────────────────────────────────────
# Scoring
# ──────────────────────────────────────────────

def score_structure(
    sweeps: Sequence[LiquiditySweep],
    order_blocks: Sequence[OrderBlock],
    fvgs: Sequence[FairValueGap],
    market_structure: MarketStructure,
    bos: Optional[BreakOfStructure],
    choch: Optional[ChangeOfCharacter],
    institutional: Sequence[InstitutionalCandle],
) -> tuple[float, float, list[str]]:
    """Sum weighted bullish and bearish evidence.

    Returns (bullish_score, bearish_score, reasoning). Only STRONG order
    blocks carry weight.
    """
    bullish = 0.0
    bearish = 0.0
    reasoning: list[str] = []

    bull_sweeps = sum(1 for s in sweeps if s.direction == Direction.BULLISH)
    bear_sweeps = sum(1 for s in sweeps if s.direction == Direction.BEARISH)
    bullish += bull_sweeps * W_SWEEP
    bearish += bear_sweeps * W_SWEEP
    if bull_sweeps:
        reasoning.append(f"{bull_sweeps} bullish liquidity sweep(s) detected")
    if bear_sweeps:
        reasoning.append(f"{bear_sweeps} bearish liquidity sweep(s) detected")

    bull_ob = sum(1 for ob in order_blocks
                  if ob.direction == Direction.BULLISH and ob.strength == Strength.STRONG)
    bear_ob = sum(1 for ob in order_blocks
                  if ob.direction == Direction.BEARISH and ob.strength == Strength.STRONG)
    bullish += bull_ob * W_ORDER_BLOCK
    bearish += bear_ob * W_ORDER_BLOCK
    if bull_ob:
        reasoning.append(f"{bull_ob} strong bullish order block(s)")
    if bear_ob:
        reasoning.append(f"{bear_ob} strong bearish order block(s)")

    bullish += sum(1 for g in fvgs if g.direction == Direction.BULLISH) * W_FVG
    bearish += sum(1 for g in fvgs if g.direction == Direction.BEARISH) * W_FVG

    if market_structure == MarketStructure.BULLISH:
        bullish += W_STRUCTURE
        reasoning.append("Bullish market structure (higher highs and higher lows)")
    elif market_structure == MarketStructure.BEARISH:
        bearish += W_STRUCTURE
        reasoning.append("Bearish market structure (lower highs and lower lows)")

    if bos is not None:
        if bos.direction == Direction.BULLISH:
            bullish += W_BOS
            reasoning.append("Bullish break of structure confirmed")
        elif bos.direction == Direction.BEARISH:
            bearish += W_BOS
            reasoning.append("Bearish break of structure confirmed")

    if choch is not None:
        if choch.direction == Direction.BULLISH:
            bullish += W_CHOCH
            reasoning.append("Bullish change of character, possible reversal")
        elif choch.direction == Direction.BEARISH:
            bearish += W_CHOCH
            reasoning.append("Bearish change of character, possible reversal")

    bullish += sum(1 for c in institutional if c.direction == Direction.BULLISH) * W_INSTITUTIONAL
    bearish += sum(1 for c in institutional if c.direction == Direction.BEARISH) * W_INSTITUTIONAL

    return bullish, bearish, reasoning


def structure_confidence(bullish: float, bearish: float) -> int:
    """Share of the dominant side, 0 when there is no evidence at all."""
    total = bullish + bearish
    if total <= 0:
        return 0
    return min(100, round(max(bullish, bearish) / total * 100))


def structure_recommendation(bullish: float, bearish: float) -> Recommendation:
    if bullish > bearish:
        return Recommendation.STRONG_BUY if bullish >= bearish * 1.5 else Recommendation.BUY
    if bearish > bullish:
        return Recommendation.STRONG_SELL if bearish >= bullish * 1.5 else Recommendation.SELL
    return Recommendation.HOLD


def determine_market_structure(bars: Sequence[Bar], min_agree: int = 8) -> MarketStructure:
    """Classify the last 20 bars by two-bar-lag high/low comparisons."""
    recent = list(bars[-STRUCTURE_WINDOW:])
    if len(recent) < 3:
        return MarketStructure.RANGING
    h = np.array([b.high for b in recent])
    l = np.array([b.low for b in recent])

    higher_highs = int(np.sum(h[2:] > h[:-2]))
    higher_lows = int(np.sum(l[2:] > l[:-2]))
    lower_highs = int(np.sum(h[2:] < h[:-2]))
    lower_lows = int(np.sum(l[2:] < l[:-2]))

    if higher_highs >= min_agree and higher_lows >= min_agree:
        return MarketStructure.BULLISH
    if lower_highs >= min_agree and lower_lows >= min_agree:
        return MarketStructure.BEARISH
    return MarketStructure.RANGING


class StructureEngine:
    """Smart-money structure detector.

    Usage:
        engine = StructureEngine()
        report = engine.analyze(bars)
    """

    def __init__(self, min_bars: Optional[int] = None):
        self.min_bars = min_bars if min_bars is not None else get_settings().structure_min_bars

    # ──────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────

    def analyze(self, bars: Sequence[Bar]) -> StructureReport:
        if len(bars) < self.min_bars:
            log.debug("structure.insufficient_data", bars=len(bars), required=self.min_bars)
            return default_report()

        bars = list(bars)
        sweeps = self.detect_liquidity_sweeps(bars)
        order_blocks = self.detect_order_blocks(bars)
        fvgs = self.detect_fair_value_gaps(bars)
        market_structure = determine_market_structure(bars)
        bos = self.detect_break_of_structure(bars)
        choch = self.detect_change_of_character(bars)
        institutional = self.detect_institutional_candles(bars)
        zones = self.identify_supply_demand_zones(bars)

        bullish, bearish, reasoning = score_structure(
            sweeps, order_blocks, fvgs, market_structure, bos, choch, institutional,
        )

        return StructureReport(
            liquidity_sweeps=sweeps,
            order_blocks=order_blocks,
            fair_value_gaps=fvgs,
            market_structure=market_structure,
            bos=bos,
            choch=choch,
            institutional_candles=institutional,
            supply_demand_zones=zones,
            bullish_score=bullish,
            bearish_score=bearish,
            confidence=structure_confidence(bullish, bearish),
            recommendation=structure_recommendation(bullish, bearish),
            reasoning=reasoning,
        )

    # ──────────────────────────────────────────
    # Liquidity Sweeps
    # ──────────────────────────────────────────

    def detect_liquidity_sweeps(self, bars: Sequence[Bar], lookback: int = SWEEP_LOOKBACK) -> list[LiquiditySweep]:
        h = np.array([b.high for b in bars])
        l = np.array([b.low for b in bars])
        sweeps: list[LiquiditySweep] = []

        for i in range(lookback, len(bars) - 1):
            cur, nxt = bars[i], bars[i + 1]
            swing_high = float(np.max(h[i - lookback:i]))
            swing_low = float(np.min(l[i - lookback:i]))

            if cur.low < swing_low and nxt.close > cur.open and nxt.close > swing_low:
                sweeps.append(LiquiditySweep(
                    direction=Direction.BULLISH,
                    price=cur.low,
                    swept_level=swing_low,
                    index=i,
                    timestamp=cur.timestamp,
                    confidence=Level.HIGH if nxt.close > cur.open * 1.01 else Level.MEDIUM,
                    description=f"Swept below {swing_low:.2f} to {cur.low:.2f}, then reclaimed.",
                ))

            if cur.high > swing_high and nxt.close < cur.open and nxt.close < swing_high:
                sweeps.append(LiquiditySweep(
                    direction=Direction.BEARISH,
                    price=cur.high,
                    swept_level=swing_high,
                    index=i,
                    timestamp=cur.timestamp,
                    confidence=Level.HIGH if nxt.close < cur.open * 0.99 else Level.MEDIUM,
                    description=f"Swept above {swing_high:.2f} to {cur.high:.2f}, then rejected.",
                ))

        return sweeps[-MAX_SWEEPS:]

    # ──────────────────────────────────────────
    # Order Blocks
    # ──────────────────────────────────────────

    def detect_order_blocks(self, bars: Sequence[Bar]) -> list[OrderBlock]:
        blocks: list[OrderBlock] = []

        for i in range(len(bars) - 3):
            cur = bars[i]
            impulse = bars[i + 1:i + 4]
            third = impulse[-1]

            if cur.is_red and all(b.is_green for b in impulse) and third.close > cur.high:
                if third.close > cur.high * 1.03:
                    strength = Strength.STRONG
                elif third.close > cur.high * 1.015:
                    strength = Strength.MODERATE
                else:
                    strength = Strength.WEAK
                move = (third.close - cur.high) / cur.high * 100 if cur.high > 0 else 0.0
                blocks.append(OrderBlock(
                    direction=Direction.BULLISH,
                    high=cur.high,
                    low=cur.low,
                    index=i,
                    timestamp=cur.timestamp,
                    strength=strength,
                    description=f"Bullish order block {cur.low:.2f}-{cur.high:.2f} before a {move:.1f}% rally.",
                ))

            if cur.is_green and all(b.is_red for b in impulse) and third.close < cur.low:
                if third.close < cur.low * 0.97:
                    strength = Strength.STRONG
                elif third.close < cur.low * 0.985:
                    strength = Strength.MODERATE
                else:
                    strength = Strength.WEAK
                move = (cur.low - third.close) / cur.low * 100 if cur.low > 0 else 0.0
                blocks.append(OrderBlock(
                    direction=Direction.BEARISH,
                    high=cur.high,
                    low=cur.low,
                    index=i,
                    timestamp=cur.timestamp,
                    strength=strength,
                    description=f"Bearish order block {cur.low:.2f}-{cur.high:.2f} before a {move:.1f}% drop.",
                ))

        return blocks[-MAX_ORDER_BLOCKS:]

    # ──────────────────────────────────────────
    # Fair Value Gaps
    # ──────────────────────────────────────────

    def detect_fair_value_gaps(self, bars: Sequence[Bar], min_gap_pct: float = 0.3) -> list[FairValueGap]:
        gaps: list[FairValueGap] = []

        for i in range(1, len(bars) - 1):
            prev, cur, nxt = bars[i - 1], bars[i], bars[i + 1]
            later = bars[i + 2:]

            if nxt.low > prev.high and cur.is_green and prev.high > 0:
                gap_pct = (nxt.low - prev.high) / prev.high * 100
                if gap_pct > min_gap_pct:
                    gaps.append(FairValueGap(
                        direction=Direction.BULLISH,
                        top=nxt.low,
                        bottom=prev.high,
                        gap_pct=round(gap_pct, 4),
                        index=i,
                        timestamp=cur.timestamp,
                        filled=any(b.low <= prev.high for b in later),
                        description=f"Bullish imbalance {prev.high:.2f}-{nxt.low:.2f} ({gap_pct:.2f}%).",
                    ))

            if nxt.high < prev.low and cur.is_red and prev.low > 0:
                gap_pct = (prev.low - nxt.high) / prev.low * 100
                if gap_pct > min_gap_pct:
                    gaps.append(FairValueGap(
                        direction=Direction.BEARISH,
                        top=prev.low,
                        bottom=nxt.high,
                        gap_pct=round(gap_pct, 4),
                        index=i,
                        timestamp=cur.timestamp,
                        filled=any(b.high >= prev.low for b in later),
                        description=f"Bearish imbalance {nxt.high:.2f}-{prev.low:.2f} ({gap_pct:.2f}%).",
                    ))

        return gaps[-MAX_FVGS:]

    # ──────────────────────────────────────────
    # BOS / CHOCH
    # ──────────────────────────────────────────

    def detect_break_of_structure(self, bars: Sequence[Bar]) -> Optional[BreakOfStructure]:
        """Current close beyond the swing of the first 25 of the last 30 bars."""
        recent = list(bars[-BOS_WINDOW:])
        base = recent[:-5]
        if not base:
            return None
        current = bars[-1]
        swing_high = max(b.high for b in base)
        swing_low = min(b.low for b in base)

        if current.close > swing_high:
            return BreakOfStructure(
                direction=Direction.BULLISH,
                price=current.close,
                previous_structure=swing_high,
                index=len(bars) - 1,
                timestamp=current.timestamp,
                description=f"Close above swing high {swing_high:.2f} confirms continuation.",
            )
        if current.close < swing_low:
            return BreakOfStructure(
                direction=Direction.BEARISH,
                price=current.close,
                previous_structure=swing_low,
                index=len(bars) - 1,
                timestamp=current.timestamp,
                description=f"Close below swing low {swing_low:.2f} confirms continuation.",
            )
        return None

    def detect_change_of_character(self, bars: Sequence[Bar]) -> Optional[ChangeOfCharacter]:
        """Structure label flip between bars 40..20 ago and the last 20."""
        if len(bars) < 2 * STRUCTURE_WINDOW:
            return None
        before = determine_market_structure(bars[-2 * STRUCTURE_WINDOW:-STRUCTURE_WINDOW])
        now = determine_market_structure(bars[-STRUCTURE_WINDOW:])
        last = bars[-1]

        if before == MarketStructure.BULLISH and now == MarketStructure.BEARISH:
            return ChangeOfCharacter(
                direction=Direction.BEARISH,
                price=last.close,
                index=len(bars) - 1,
                timestamp=last.timestamp,
                description="Structure shifted from bullish to bearish.",
            )
        if before == MarketStructure.BEARISH and now == MarketStructure.BULLISH:
            return ChangeOfCharacter(
                direction=Direction.BULLISH,
                price=last.close,
                index=len(bars) - 1,
                timestamp=last.timestamp,
                description="Structure shifted from bearish to bullish.",
            )
        return None

    # ──────────────────────────────────────────
    # Institutional Candles / Zones
    # ──────────────────────────────────────────

    def detect_institutional_candles(
        self,
        bars: Sequence[Bar],
        volume_ratio: float = 2.0,
        body_ratio: float = 0.7,
    ) -> list[InstitutionalCandle]:
        avg_volume = float(np.mean([b.volume for b in bars])) if bars else 0.0
        if avg_volume <= 0:
            return []

        candles: list[InstitutionalCandle] = []
        for i, b in enumerate(bars):
            if b.range <= 0:
                continue
            vr = b.volume / avg_volume
            br = b.body / b.range
            if vr > volume_ratio and br > body_ratio:
                direction = Direction.BULLISH if b.is_green else Direction.BEARISH
                side = "buying" if b.is_green else "selling"
                candles.append(InstitutionalCandle(
                    direction=direction,
                    index=i,
                    timestamp=b.timestamp,
                    volume=b.volume,
                    volume_ratio=round(vr, 4),
                    body_size=b.body,
                    body_ratio=round(br, 4),
                    confidence=Level.HIGH if vr >= 3 else Level.MEDIUM,
                    description=f"Institutional {side}: {vr:.1f}x average volume, body {br * 100:.0f}% of range.",
                ))

        return candles[-MAX_INSTITUTIONAL:]

    def identify_supply_demand_zones(self, bars: Sequence[Bar]) -> list[SupplyDemandZone]:
        """Six-bar bases followed by >= 5 of 10 closes 2% beyond them."""
        zones: list[SupplyDemandZone] = []

        for i in range(ZONE_LOOKBACK, len(bars) - 10):
            base = bars[i - 5:i + 1]
            after = bars[i + 1:i + 11]
            later = bars[i + 11:]
            top = max(b.high for b in base)
            bottom = min(b.low for b in base)

            rally = sum(1 for b in after if b.close > top * 1.02)
            if rally >= 5:
                touches = sum(1 for b in later if bottom <= b.low <= top)
                zones.append(SupplyDemandZone(
                    zone_type=ZoneType.DEMAND,
                    direction=Direction.BULLISH,
                    top=top,
                    bottom=bottom,
                    index=i,
                    timestamp=bars[i].timestamp,
                    strength=min(100, rally * 10 + touches * 5),
                    touches=touches,
                    description=f"Demand zone {bottom:.2f}-{top:.2f}, {touches} retests.",
                ))

            drop = sum(1 for b in after if b.close < bottom * 0.98)
            if drop >= 5:
                touches = sum(1 for b in later if bottom <= b.high <= top)
                zones.append(SupplyDemandZone(
                    zone_type=ZoneType.SUPPLY,
                    direction=Direction.BEARISH,
                    top=top,
                    bottom=bottom,
                    index=i,
                    timestamp=bars[i].timestamp,
                    strength=min(100, drop * 10 + touches * 5),
                    touches=touches,
                    description=f"Supply zone {bottom:.2f}-{top:.2f}, {touches} retests.",
                ))

        return zones[-MAX_ZONES:]
