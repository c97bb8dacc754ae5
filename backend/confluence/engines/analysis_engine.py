"""
Confluence — Analysis Engine

End-to-end pipeline: validate every series, run the single-resolution
detectors on the primary series, aggregate the six horizons, and fuse
everything in the confidence engine.

The pipeline either returns a complete result or raises ``InvalidBar``
before any detector runs.
"""

from __future__ import annotations

from typing import Optional

import structlog

from confluence.engines.confidence_engine import ConfidenceEngine
from confluence.engines.horizon_engine import HorizonEngine
from confluence.engines.operator_engine import OperatorEngine
from confluence.engines.pattern_engine import PatternEngine
from confluence.engines.series_engine import BarSeries
from confluence.engines.structure_engine import StructureEngine
from confluence.engines.ta_engine import TAEngine
from confluence.exceptions import InvalidBar, UpstreamUnavailable
from confluence.models import (
    AnalysisReport,
    AnalysisRequest,
    ConfidenceResult,
    MultiHorizonReport,
    Resolution,
)

log = structlog.get_logger(__name__)


class AnalysisEngine:
    """Pipeline orchestrator.

    Usage:
        engine = AnalysisEngine()
        result = engine.analyze(request)     # ConfidenceResult
        report = engine.run(request)         # every component output
    """

    def __init__(
        self,
        ta: Optional[TAEngine] = None,
        patterns: Optional[PatternEngine] = None,
        operator: Optional[OperatorEngine] = None,
        structure: Optional[StructureEngine] = None,
        horizon: Optional[HorizonEngine] = None,
        confidence: Optional[ConfidenceEngine] = None,
    ):
        self.ta = ta or TAEngine()
        self.patterns = patterns or PatternEngine()
        self.operator = operator or OperatorEngine()
        self.structure = structure or StructureEngine()
        self.horizon = horizon or HorizonEngine(ta=self.ta)
        self.confidence = confidence or ConfidenceEngine(ta=self.ta)

    # ──────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────

    def analyze(self, request: AnalysisRequest) -> ConfidenceResult:
        return self.run(request).confidence

    def run(self, request: AnalysisRequest) -> AnalysisReport:
        primary, horizons = self.load_series(request)

        rsi = self.ta.rsi(primary)
        macd = self.ta.macd_state(primary)
        scan = self.patterns.scan_all_patterns(primary)
        verdict = self.operator.detect(primary)
        strength = self.operator.strength(primary)
        structure = self.structure.analyze(primary)
        horizon = self.horizon_report(primary, horizons)

        as_of = request.as_of or primary.last.timestamp
        result = self.confidence.evaluate(
            primary,
            rsi=rsi,
            macd=macd,
            patterns=scan.signals,
            verdict=verdict,
            strength=strength,
            structure=structure,
            horizon=horizon,
            as_of=as_of,
        )

        log.info(
            "analysis.complete",
            symbol=request.symbol,
            resolution=request.resolution.value,
            bars=len(primary),
            confidence=result.overall_confidence,
            recommendation=result.recommendation.value,
        )

        return AnalysisReport(
            symbol=request.symbol,
            resolution=request.resolution,
            current_price=primary.last.close,
            rsi=rsi,
            macd=macd,
            patterns=scan,
            manipulation=verdict,
            operator_strength=strength,
            structure=structure,
            horizon=horizon,
            confidence=result,
            as_of=as_of,
        )

    # ──────────────────────────────────────────
    # Helpers
    # ──────────────────────────────────────────

    def load_series(self, request: AnalysisRequest) -> tuple[BarSeries, dict[Resolution, BarSeries]]:
        """Validate the primary and every supplied horizon series up front."""
        try:
            primary = BarSeries.of(request.bars, resolution=request.resolution, symbol=request.symbol)
            horizons = {
                resolution: BarSeries.of(bars, resolution=resolution, symbol=request.symbol)
                for resolution, bars in request.horizons.items()
                if bars
            }
        except InvalidBar as exc:
            log.warning("analysis.invalid_series", symbol=request.symbol, index=exc.index, reason=exc.reason)
            raise
        return primary, horizons

    def horizon_report(
        self,
        primary: BarSeries,
        horizons: dict[Resolution, BarSeries],
    ) -> MultiHorizonReport:
        """Supplied series win; gaps are derived from the primary series."""
        merged: dict[Resolution, Optional[BarSeries]] = {}
        for resolution in Resolution:
            if resolution in horizons:
                merged[resolution] = horizons[resolution]
                continue
            try:
                merged[resolution] = primary.derive(resolution)
            except UpstreamUnavailable:
                merged[resolution] = None
        return self.horizon.analyze(merged)
