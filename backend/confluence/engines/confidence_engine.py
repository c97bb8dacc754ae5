"""
Confluence — Confidence Engine

Fuses six component scores into one confidence, a risk score, directional
probabilities, a recommendation, and a concrete trade setup.

Component weights:
  technical 0.15 | structure 0.25 | horizon 0.25
  manipulation 0.20 | volume 0.10 | momentum 0.05
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Sequence

import numpy as np

from confluence.engines.series_engine import as_series
from confluence.engines.ta_engine import TAEngine
from confluence.models import (
    Bar,
    ComponentScores,
    ConfidenceResult,
    Direction,
    Factor,
    FactorImpact,
    Level,
    ManipulationAction,
    ManipulationType,
    ManipulationVerdict,
    MarketStructure,
    MultiHorizonReport,
    OperatorStrength,
    PatternSignal,
    PositionSize,
    Recommendation,
    Resolution,
    SignalStrength,
    Strength,
    StructureReport,
    TimeHorizon,
    TradeSetup,
    TrendClass,
)

COMPONENT_WEIGHTS: dict[str, float] = {
    "technical": 0.15,
    "structure": 0.25,
    "horizon": 0.25,
    "manipulation": 0.20,
    "volume": 0.10,
    "momentum": 0.05,
}

FACTOR_NAMES = {
    "technical": "Technical Indicators",
    "structure": "Market Structure",
    "horizon": "Multi-Horizon Trend",
    "manipulation": "Operator Activity",
    "volume": "Volume Analysis",
}


def clamp(value: float, lo: float = 0.0, hi: float = 100.0) -> float:
    return max(lo, min(hi, value))


# ──────────────────────────────────────────────
# Classification
# ──────────────────────────────────────────────

def probabilities(overall_confidence: int) -> tuple[int, int]:
    """(bullish, bearish) percentages summing to exactly 100."""
    bullish = int(clamp(50 + (overall_confidence - 50)))
    return bullish, 100 - bullish


def risk_score(overall_confidence: float, volatility: float) -> int:
    return int(clamp(round(100 - 0.7 * overall_confidence + 0.3 * volatility)))


def signal_strength_for(confidence: float) -> SignalStrength:
    if confidence > 85:
        return SignalStrength.VERY_STRONG
    if confidence > 70:
        return SignalStrength.STRONG
    if confidence > 55:
        return SignalStrength.MODERATE
    if confidence > 40:
        return SignalStrength.WEAK
    return SignalStrength.VERY_WEAK


def recommend(
    confidence: float,
    probability_bullish: float,
    risk: float,
    verdict: Optional[ManipulationVerdict] = None,
) -> Recommendation:
    """Trap overrides first, then the risk collapse, then the numeric scale."""
    if verdict is not None:
        if verdict.type in (ManipulationType.BULL_TRAP, ManipulationType.PUMP_DUMP):
            return Recommendation.STRONG_SELL
        if verdict.type == ManipulationType.BEAR_TRAP:
            return Recommendation.STRONG_BUY

    if risk > 75:
        return Recommendation.HOLD

    if confidence > 80 and probability_bullish > 70:
        return Recommendation.STRONG_BUY
    if confidence > 65 and probability_bullish > 60:
        return Recommendation.BUY
    if confidence > 80 and probability_bullish < 30:
        return Recommendation.STRONG_SELL
    if confidence > 65 and probability_bullish < 40:
        return Recommendation.SELL
    return Recommendation.HOLD


def time_horizon_for(
    horizon: Optional[MultiHorizonReport],
    strength: SignalStrength,
) -> TimeHorizon:
    """Agreement of the two heaviest resolutions first, then the two lightest."""
    if horizon is None:
        return TimeHorizon.INTRADAY

    tf = horizon.timeframes
    if tf[Resolution.D1].trend == tf[Resolution.H4].trend:
        return TimeHorizon.POSITIONAL if strength == SignalStrength.VERY_STRONG else TimeHorizon.SWING
    if tf[Resolution.M1].trend == tf[Resolution.M5].trend:
        return TimeHorizon.INTRADAY
    return TimeHorizon.SCALP


def position_size_for(confidence: float, risk: float, strength: SignalStrength) -> PositionSize:
    if confidence > 80 and risk < 40 and strength == SignalStrength.VERY_STRONG:
        return PositionSize.LARGE
    if confidence > 65 and risk < 60:
        return PositionSize.MEDIUM
    return PositionSize.SMALL


def trade_setup(
    price: float,
    recommendation: Recommendation,
    structure: Optional[StructureReport],
    horizon: Optional[MultiHorizonReport],
    volatility: float,
) -> TradeSetup:
    """Entry from a same-side order block, target/stop from key levels.

    Without levels, target and stop fall back to 3% / 1.5% moves scaled up
    by volatility.
    """
    if recommendation == Recommendation.HOLD:
        return TradeSetup(entry=round(price, 2), target=round(price, 2), stop_loss=round(price, 2), risk_reward=0.0)

    multiplier = 1 + volatility / 200
    blocks = structure.order_blocks if structure is not None else []
    support = horizon.key_levels.support if horizon is not None else []
    resistance = horizon.key_levels.resistance if horizon is not None else []

    entry = price
    if recommendation.is_buy:
        candidates = [ob for ob in blocks if ob.direction == Direction.BULLISH and ob.midpoint < price]
        if candidates:
            entry = candidates[-1].midpoint
        above = [r for r in resistance if r > price]
        below = [s for s in support if s < entry]
        target = min(above) if above else price * (1 + 0.03 * multiplier)
        stop = max(below) if below else price * (1 - 0.015 * multiplier)
    else:
        candidates = [ob for ob in blocks if ob.direction == Direction.BEARISH and ob.midpoint > price]
        if candidates:
            entry = candidates[-1].midpoint
        below = [s for s in support if s < price]
        above = [r for r in resistance if r > entry]
        target = max(below) if below else price * (1 - 0.03 * multiplier)
        stop = min(above) if above else price * (1 + 0.015 * multiplier)

    risk = abs(entry - stop)
    reward = abs(target - entry)
    rr = round(reward / risk, 2) if risk > 0 else 0.0

    return TradeSetup(
        entry=round(entry, 2),
        target=round(target, 2),
        stop_loss=round(stop, 2),
        risk_reward=rr,
    )


class ConfidenceEngine:
    """Final score fusion.

    Usage:
        engine = ConfidenceEngine()
        result = engine.evaluate(bars, rsi=rsi, macd=macd, patterns=scan.signals,
                                 verdict=verdict, strength=strength,
                                 structure=structure, horizon=horizon)
    """

    def __init__(self, ta: Optional[TAEngine] = None):
        self.ta = ta or TAEngine()

    # ──────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────

    def evaluate(
        self,
        bars: Sequence[Bar],
        rsi: float,
        macd: Direction,
        patterns: Sequence[PatternSignal] = (),
        verdict: Optional[ManipulationVerdict] = None,
        strength: Optional[OperatorStrength] = None,
        structure: Optional[StructureReport] = None,
        horizon: Optional[MultiHorizonReport] = None,
        current_price: Optional[float] = None,
        as_of: Optional[datetime] = None,
    ) -> ConfidenceResult:
        series = as_series(bars)
        price = current_price if current_price is not None else series.last.close

        scores = ComponentScores(
            technical=self.technical_score(rsi, macd, patterns),
            structure=self.structure_score(structure),
            horizon=self.horizon_score(horizon),
            manipulation=self.manipulation_score(verdict, strength),
            volume=self.volume_score(series),
            momentum=self.momentum_score(series, rsi),
        )
        overall = int(clamp(round(sum(
            getattr(scores, name) * weight for name, weight in COMPONENT_WEIGHTS.items()
        ))))

        p_bull, p_bear = probabilities(overall)
        volatility = round(self.ta.volatility(series), 4)
        risk = risk_score(overall, volatility)
        strength_class = signal_strength_for(overall)
        recommendation = recommend(overall, p_bull, risk, verdict)

        factors = self.key_factors(scores, rsi, macd, verdict, structure, horizon)

        return ConfidenceResult(
            overall_confidence=overall,
            risk_score=risk,
            probability_bullish=p_bull,
            probability_bearish=p_bear,
            signal_strength=strength_class,
            recommendation=recommendation,
            time_horizon=time_horizon_for(horizon, strength_class),
            component_scores=scores,
            volatility=volatility,
            key_factors=factors,
            reasoning=self._reasoning(factors, recommendation, strength_class, p_bull, overall),
            warnings=self._warnings(rsi, risk, volatility, horizon, verdict),
            opportunities=self._opportunities(structure, horizon, verdict, patterns),
            trade_setup=trade_setup(price, recommendation, structure, horizon, volatility),
            position_size=position_size_for(overall, risk, strength_class),
            as_of=as_of or series.last.timestamp,
        )

    # ──────────────────────────────────────────
    # Component Scores
    # ──────────────────────────────────────────

    @staticmethod
    def technical_score(rsi: float, macd: Direction, patterns: Sequence[PatternSignal]) -> float:
        score = 50.0

        if rsi > 70:
            score -= 15
        elif rsi > 60:
            score += 10
        elif rsi > 50:
            score += 15
        elif rsi > 40:
            score += 10
        elif rsi > 30:
            score -= 10
        else:
            score += 15

        if macd == Direction.BULLISH:
            score += 15
        elif macd == Direction.BEARISH:
            score -= 15

        weights = {Strength.STRONG: 10, Strength.MODERATE: 5}
        for p in patterns:
            if p.direction == Direction.BULLISH:
                score += weights.get(p.strength, 0)
            elif p.direction == Direction.BEARISH:
                score -= weights.get(p.strength, 0)

        return clamp(score)

    @staticmethod
    def structure_score(structure: Optional[StructureReport]) -> float:
        if structure is None:
            return 50.0

        score = 50.0
        if structure.market_structure == MarketStructure.BULLISH:
            score += 20
        elif structure.market_structure == MarketStructure.BEARISH:
            score -= 20

        if structure.bos is not None:
            score += 15 if structure.bos.direction == Direction.BULLISH else -15
        if structure.choch is not None:
            score += 20 if structure.choch.direction == Direction.BULLISH else -20

        for sweep in structure.liquidity_sweeps:
            score += 5 if sweep.direction == Direction.BULLISH else -5
        for block in structure.order_blocks:
            score += 5 if block.direction == Direction.BULLISH else -5

        return clamp(score)

    @staticmethod
    def horizon_score(horizon: Optional[MultiHorizonReport]) -> float:
        """Neutral 50 when no resolution had enough data."""
        if horizon is None or not any(s.available for s in horizon.timeframes.values()):
            return 50.0

        score = horizon.confidence + (horizon.alignment - 50) * 0.5
        if horizon.overall_trend == TrendClass.STRONG_BULLISH:
            score += 10
        elif horizon.overall_trend == TrendClass.STRONG_BEARISH:
            score -= 10
        return clamp(score)

    @staticmethod
    def manipulation_score(
        verdict: Optional[ManipulationVerdict],
        strength: Optional[OperatorStrength],
    ) -> float:
        score = 50.0

        if verdict is not None:
            bump = 30 if verdict.confidence == Level.HIGH else 20
            if verdict.action == ManipulationAction.BUY:
                score += bump
            elif verdict.action == ManipulationAction.SELL:
                score -= bump
            elif verdict.action == ManipulationAction.AVOID:
                score = 30.0

        if strength is not None:
            score += (strength.score - 50) * 0.4

        return clamp(score)

    @staticmethod
    def volume_score(bars: Sequence[Bar]) -> float:
        if len(bars) < 10:
            return 50.0

        recent = list(bars[-10:])
        avg_volume = float(np.mean([b.volume for b in recent]))
        last = recent[-1]
        ratio = last.volume / avg_volume if avg_volume > 0 else 1.0
        sign = 1 if last.is_green else -1

        score = 50.0
        if ratio > 2:
            score += 30 * sign
        elif ratio > 1.5:
            score += 20 * sign
        elif ratio > 1.2:
            score += 10 * sign
        elif ratio < 0.7:
            score -= 10
        return clamp(score)

    @staticmethod
    def momentum_score(bars: Sequence[Bar], rsi: float) -> float:
        if len(bars) < 5:
            return 50.0

        recent = list(bars[-5:])
        first = recent[0].close
        change = (recent[-1].close - first) / first * 100 if first > 0 else 0.0

        score = 50.0
        if change > 3:
            score += 30
        elif change > 1.5:
            score += 20
        elif change > 0.5:
            score += 10
        elif change < -3:
            score -= 30
        elif change < -1.5:
            score -= 20
        elif change < -0.5:
            score -= 10

        if rsi > 60 and change > 0:
            score += 10
        elif rsi < 40 and change < 0:
            score -= 10
        return clamp(score)

    # ──────────────────────────────────────────
    # Explanations
    # ──────────────────────────────────────────

    @staticmethod
    def key_factors(
        scores: ComponentScores,
        rsi: float,
        macd: Direction,
        verdict: Optional[ManipulationVerdict],
        structure: Optional[StructureReport],
        horizon: Optional[MultiHorizonReport],
    ) -> list[Factor]:
        """Component factors ordered by absolute contribution."""
        descriptions: dict[str, str] = {
            "technical": f"RSI: {rsi:.0f}, MACD: {macd.value}",
        }
        if structure is not None:
            descriptions["structure"] = (
                f"{structure.market_structure.value} structure, {structure.recommendation.value}"
            )
        if horizon is not None:
            descriptions["horizon"] = f"{horizon.overall_trend.value}, {horizon.alignment}% alignment"
        if verdict is not None:
            descriptions["manipulation"] = f"{verdict.type.value}: {verdict.action.value}"
        if scores.volume > 60:
            descriptions["volume"] = "High volume confirmation"
        elif scores.volume < 40:
            descriptions["volume"] = "Low volume warning"
        else:
            descriptions["volume"] = "Normal volume"

        factors = []
        for name, description in descriptions.items():
            component = getattr(scores, name)
            if component > 50:
                impact = FactorImpact.POSITIVE
            elif component < 50:
                impact = FactorImpact.NEGATIVE
            else:
                impact = FactorImpact.NEUTRAL
            factors.append(Factor(
                name=FACTOR_NAMES[name],
                score=round((component - 50) * 2, 2),
                weight=COMPONENT_WEIGHTS[name],
                description=description,
                impact=impact,
            ))

        return sorted(factors, key=lambda f: abs(f.score), reverse=True)

    @staticmethod
    def _reasoning(
        factors: Sequence[Factor],
        recommendation: Recommendation,
        strength: SignalStrength,
        probability_bullish: int,
        confidence: int,
    ) -> list[str]:
        reasoning = [
            f"Overall confidence: {confidence}/100 ({strength.value})",
            f"Bullish probability: {probability_bullish}%, bearish: {100 - probability_bullish}%",
            f"Recommendation: {recommendation.value}",
        ]
        for factor in factors[:3]:
            reasoning.append(f"[{factor.impact.value}] {factor.name}: {factor.description}")
        return reasoning

    @staticmethod
    def _warnings(
        rsi: float,
        risk: int,
        volatility: float,
        horizon: Optional[MultiHorizonReport],
        verdict: Optional[ManipulationVerdict],
    ) -> list[str]:
        warnings = []
        if rsi > 75:
            warnings.append("RSI extremely overbought, potential reversal")
        if rsi < 25:
            warnings.append("RSI extremely oversold, high risk")
        if risk > 75:
            warnings.append("High risk score, use a tight stop loss")
        if volatility > 70:
            warnings.append("High volatility, expect large price swings")
        if horizon is not None and horizon.alignment < 50:
            warnings.append("Low timeframe alignment, conflicting signals")
        if verdict is not None and verdict.action == ManipulationAction.AVOID:
            warnings.append(f"Operator activity: {verdict.type.value}, stay away")
        return warnings

    @staticmethod
    def _opportunities(
        structure: Optional[StructureReport],
        horizon: Optional[MultiHorizonReport],
        verdict: Optional[ManipulationVerdict],
        patterns: Sequence[PatternSignal],
    ) -> list[str]:
        opportunities = []
        if structure is not None and structure.choch is not None:
            opportunities.append("Change of character detected, potential trend reversal")
        if structure is not None and structure.bos is not None:
            opportunities.append("Break of structure, trend continuation confirmed")
        if (horizon is not None and horizon.alignment > 80
                and horizon.overall_trend != TrendClass.NEUTRAL):
            opportunities.append(f"Strong timeframe alignment ({horizon.alignment}%)")
        if verdict is not None and verdict.type == ManipulationType.BEAR_TRAP:
            opportunities.append("Bear trap detected, buy opportunity")
        if verdict is not None and verdict.type == ManipulationType.ACCUMULATION:
            opportunities.append("Operator accumulation, position before the breakout")
        strong_bullish = [p for p in patterns
                          if p.direction == Direction.BULLISH and p.strength == Strength.STRONG]
        if len(strong_bullish) >= 2:
            opportunities.append("Multiple strong bullish patterns detected")
        return opportunities
