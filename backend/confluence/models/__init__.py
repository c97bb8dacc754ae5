"""
Confluence — Pydantic Models

All I/O schemas for the engine. Engines return these, the orchestrator
bundles them, API routes serialize them. Every result model is frozen:
once an engine hands one back it is never mutated.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# ──────────────────────────────────────────────
# Enums
# ──────────────────────────────────────────────

class Resolution(str, Enum):
    """Bar resolutions analysed by the multi-horizon aggregator, finest first."""
    M1 = "1m"
    M5 = "5m"
    M15 = "15m"
    H1 = "1h"
    H4 = "4h"
    D1 = "1d"

    @property
    def minutes(self) -> int:
        return RESOLUTION_MINUTES[self]


RESOLUTION_MINUTES: dict[Resolution, int] = {
    Resolution.M1: 1,
    Resolution.M5: 5,
    Resolution.M15: 15,
    Resolution.H1: 60,
    Resolution.H4: 240,
    Resolution.D1: 1440,
}


class Direction(str, Enum):
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    NEUTRAL = "NEUTRAL"


class Strength(str, Enum):
    STRONG = "STRONG"
    MODERATE = "MODERATE"
    WEAK = "WEAK"


class Level(str, Enum):
    """Confidence / significance tag."""
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class PatternCategory(str, Enum):
    CANDLESTICK = "candlestick"
    CHART = "chart"
    PRESSURE = "pressure"


class ManipulationType(str, Enum):
    ACCUMULATION = "ACCUMULATION"
    DISTRIBUTION = "DISTRIBUTION"
    BULL_TRAP = "BULL_TRAP"
    BEAR_TRAP = "BEAR_TRAP"
    PUMP_DUMP = "PUMP_DUMP"
    BREAKOUT_FAKE = "BREAKOUT_FAKE"
    SQUEEZE = "SQUEEZE"


class ManipulationAction(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    AVOID = "AVOID"
    WAIT = "WAIT"


class MarketStructure(str, Enum):
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    RANGING = "RANGING"


class Recommendation(str, Enum):
    STRONG_BUY = "STRONG_BUY"
    BUY = "BUY"
    HOLD = "HOLD"
    SELL = "SELL"
    STRONG_SELL = "STRONG_SELL"

    @property
    def is_buy(self) -> bool:
        return self in (Recommendation.STRONG_BUY, Recommendation.BUY)

    @property
    def is_sell(self) -> bool:
        return self in (Recommendation.STRONG_SELL, Recommendation.SELL)


class TrendClass(str, Enum):
    STRONG_BULLISH = "STRONG_BULLISH"
    BULLISH = "BULLISH"
    NEUTRAL = "NEUTRAL"
    BEARISH = "BEARISH"
    STRONG_BEARISH = "STRONG_BEARISH"

    @property
    def direction(self) -> Direction:
        if self in (TrendClass.STRONG_BULLISH, TrendClass.BULLISH):
            return Direction.BULLISH
        if self in (TrendClass.STRONG_BEARISH, TrendClass.BEARISH):
            return Direction.BEARISH
        return Direction.NEUTRAL


class VolumeState(str, Enum):
    HIGH = "HIGH"
    NORMAL = "NORMAL"
    LOW = "LOW"


class SignalStrength(str, Enum):
    VERY_STRONG = "VERY_STRONG"
    STRONG = "STRONG"
    MODERATE = "MODERATE"
    WEAK = "WEAK"
    VERY_WEAK = "VERY_WEAK"


class TimeHorizon(str, Enum):
    SCALP = "SCALP"
    INTRADAY = "INTRADAY"
    SWING = "SWING"
    POSITIONAL = "POSITIONAL"


class PositionSize(str, Enum):
    SMALL = "SMALL"
    MEDIUM = "MEDIUM"
    LARGE = "LARGE"


class ZoneType(str, Enum):
    SUPPLY = "SUPPLY"
    DEMAND = "DEMAND"


class FactorImpact(str, Enum):
    POSITIVE = "POSITIVE"
    NEGATIVE = "NEGATIVE"
    NEUTRAL = "NEUTRAL"


# ──────────────────────────────────────────────
# Market Data
# ──────────────────────────────────────────────

class Bar(BaseModel):
    """Single OHLCV bar.

    Field types are enforced here; the OHLC ordering invariant is checked
    when a series is assembled so the offending index can be reported.
    """
    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float

    @property
    def is_green(self) -> bool:
        return self.close > self.open

    @property
    def is_red(self) -> bool:
        return self.close < self.open

    @property
    def body(self) -> float:
        return abs(self.close - self.open)

    @property
    def range(self) -> float:
        return self.high - self.low

    @property
    def upper_wick(self) -> float:
        return self.high - max(self.open, self.close)

    @property
    def lower_wick(self) -> float:
        return min(self.open, self.close) - self.low


# ──────────────────────────────────────────────
# Pattern Detection
# ──────────────────────────────────────────────

class PatternSignal(BaseModel):
    """A single detected candlestick, chart, or pressure pattern."""
    model_config = ConfigDict(frozen=True)

    label: str
    direction: Direction
    strength: Strength
    description: str = ""
    category: PatternCategory = PatternCategory.CANDLESTICK


class PatternScan(BaseModel):
    """Combined output of the three pattern detectors."""
    model_config = ConfigDict(frozen=True)

    candlestick: list[PatternSignal] = []
    chart: list[PatternSignal] = []
    pressure: PatternSignal
    bullish_count: int = 0
    bearish_count: int = 0
    bias: Direction = Direction.NEUTRAL

    @property
    def signals(self) -> list[PatternSignal]:
        """All signals in detector order: candlestick, chart, pressure."""
        return [*self.candlestick, *self.chart, self.pressure]


# ──────────────────────────────────────────────
# Manipulation Detection
# ──────────────────────────────────────────────

class ManipulationVerdict(BaseModel):
    """The single dominant manipulation-style pattern, if any fired."""
    model_config = ConfigDict(frozen=True)

    type: ManipulationType
    confidence: Level
    action: ManipulationAction
    description: str
    supporting_indicators: list[str] = []


class OperatorStrength(BaseModel):
    """Recency-weighted large-participant pressure, 0 (sellers) to 100 (buyers)."""
    model_config = ConfigDict(frozen=True)

    score: int = 50
    sentiment: Direction = Direction.NEUTRAL
    description: str = ""


# ──────────────────────────────────────────────
# Market Structure
# ──────────────────────────────────────────────

class LiquiditySweep(BaseModel):
    model_config = ConfigDict(frozen=True)

    direction: Direction
    price: float
    swept_level: float
    index: int
    timestamp: datetime
    confidence: Level
    description: str = ""


class OrderBlock(BaseModel):
    model_config = ConfigDict(frozen=True)

    direction: Direction
    high: float
    low: float
    index: int
    timestamp: datetime
    strength: Strength
    description: str = ""

    @property
    def midpoint(self) -> float:
        return (self.high + self.low) / 2


class FairValueGap(BaseModel):
    model_config = ConfigDict(frozen=True)

    direction: Direction
    top: float
    bottom: float
    gap_pct: float
    index: int
    timestamp: datetime
    filled: bool = False
    description: str = ""


class BreakOfStructure(BaseModel):
    model_config = ConfigDict(frozen=True)

    direction: Direction
    price: float
    previous_structure: float
    index: int
    timestamp: datetime
    confidence: Level = Level.HIGH
    description: str = ""


class ChangeOfCharacter(BaseModel):
    model_config = ConfigDict(frozen=True)

    direction: Direction
    price: float
    index: int
    timestamp: datetime
    significance: Level = Level.HIGH
    description: str = ""


class InstitutionalCandle(BaseModel):
    model_config = ConfigDict(frozen=True)

    direction: Direction
    index: int
    timestamp: datetime
    volume: float
    volume_ratio: float
    body_size: float
    body_ratio: float
    confidence: Level
    description: str = ""


class SupplyDemandZone(BaseModel):
    model_config = ConfigDict(frozen=True)

    zone_type: ZoneType
    direction: Direction
    top: float
    bottom: float
    index: int
    timestamp: datetime
    strength: int = Field(ge=0, le=100)
    touches: int = 0
    description: str = ""


class StructureReport(BaseModel):
    """Aggregated smart-money structure evidence for one series."""
    model_config = ConfigDict(frozen=True)

    liquidity_sweeps: list[LiquiditySweep] = []
    order_blocks: list[OrderBlock] = []
    fair_value_gaps: list[FairValueGap] = []
    market_structure: MarketStructure = MarketStructure.RANGING
    bos: Optional[BreakOfStructure] = None
    choch: Optional[ChangeOfCharacter] = None
    institutional_candles: list[InstitutionalCandle] = []
    supply_demand_zones: list[SupplyDemandZone] = []
    bullish_score: float = 0.0
    bearish_score: float = 0.0
    confidence: int = 0
    recommendation: Recommendation = Recommendation.HOLD
    reasoning: list[str] = []


# ──────────────────────────────────────────────
# Multi-Horizon
# ──────────────────────────────────────────────

class TimeframeSignal(BaseModel):
    """Per-resolution trend snapshot."""
    model_config = ConfigDict(frozen=True)

    resolution: Resolution
    trend: TrendClass = TrendClass.NEUTRAL
    score: int = Field(default=0, ge=-100, le=100)
    rsi: float = 50.0
    macd: Direction = Direction.NEUTRAL
    ma_state: Direction = Direction.NEUTRAL
    price_action: Direction = Direction.NEUTRAL
    volume: VolumeState = VolumeState.NORMAL
    confidence: int = Field(default=0, ge=0, le=100)
    available: bool = True


class HeatmapCell(BaseModel):
    model_config = ConfigDict(frozen=True)

    resolution: Resolution
    indicator: str
    value: Direction


class KeyLevels(BaseModel):
    model_config = ConfigDict(frozen=True)

    support: list[float] = []
    resistance: list[float] = []


class MultiHorizonReport(BaseModel):
    """Weighted combination of the six per-resolution snapshots."""
    model_config = ConfigDict(frozen=True)

    timeframes: dict[Resolution, TimeframeSignal]
    overall_trend: TrendClass = TrendClass.NEUTRAL
    weighted_score: float = 0.0
    confidence: int = 0
    alignment: int = 0
    heatmap: list[list[HeatmapCell]] = []
    key_levels: KeyLevels = KeyLevels()
    recommendation: Recommendation = Recommendation.HOLD
    reasoning: list[str] = []
    current_price: float = 0.0


# ──────────────────────────────────────────────
# Confidence
# ──────────────────────────────────────────────

class Factor(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    score: float = Field(ge=-100, le=100)
    weight: float
    description: str
    impact: FactorImpact


class TradeSetup(BaseModel):
    model_config = ConfigDict(frozen=True)

    entry: float
    target: float
    stop_loss: float
    risk_reward: float = 0.0


class ComponentScores(BaseModel):
    model_config = ConfigDict(frozen=True)

    technical: float = Field(ge=0, le=100)
    structure: float = Field(ge=0, le=100)
    horizon: float = Field(ge=0, le=100)
    manipulation: float = Field(ge=0, le=100)
    volume: float = Field(ge=0, le=100)
    momentum: float = Field(ge=0, le=100)


class ConfidenceResult(BaseModel):
    """Final fused signal with a derived trade setup."""
    model_config = ConfigDict(frozen=True)

    overall_confidence: int = Field(ge=0, le=100)
    risk_score: int = Field(ge=0, le=100)
    probability_bullish: int = Field(ge=0, le=100)
    probability_bearish: int = Field(ge=0, le=100)
    signal_strength: SignalStrength
    recommendation: Recommendation
    time_horizon: TimeHorizon
    component_scores: ComponentScores
    volatility: float = Field(default=50.0, ge=0, le=100)
    key_factors: list[Factor] = []
    reasoning: list[str] = []
    warnings: list[str] = []
    opportunities: list[str] = []
    trade_setup: TradeSetup
    position_size: PositionSize = PositionSize.SMALL
    as_of: Optional[datetime] = None


# ──────────────────────────────────────────────
# Pipeline I/O
# ──────────────────────────────────────────────

class AnalysisRequest(BaseModel):
    """Input to the analysis pipeline.

    ``bars`` is the primary series. ``horizons`` optionally supplies bars per
    resolution; any resolution missing there is derived from ``bars`` when
    it is coarser than ``resolution``.
    """
    symbol: str = Field(min_length=1, max_length=32)
    resolution: Resolution = Resolution.D1
    bars: list[Bar] = Field(min_length=1)
    horizons: dict[Resolution, list[Bar]] = {}
    as_of: Optional[datetime] = None


class AnalysisReport(BaseModel):
    """Every component output plus the fused confidence result."""
    model_config = ConfigDict(frozen=True)

    symbol: str
    resolution: Resolution
    current_price: float
    rsi: float
    macd: Direction
    patterns: PatternScan
    manipulation: Optional[ManipulationVerdict] = None
    operator_strength: OperatorStrength
    structure: StructureReport
    horizon: MultiHorizonReport
    confidence: ConfidenceResult
    as_of: datetime
