"""
Confluence — API Routes

All HTTP endpoints. Thin layer: bars arrive in the request body and are
handed to the engines; the service never fetches market data itself.
"""

from __future__ import annotations

import time as _time

from fastapi import APIRouter

from confluence import __version__
from confluence.config import get_settings
from confluence.engines.analysis_engine import AnalysisEngine
from confluence.models import (
    AnalysisReport,
    AnalysisRequest,
    ConfidenceResult,
    MultiHorizonReport,
    PatternScan,
    StructureReport,
)

# Track process start for uptime reporting
APP_START_TIME: float = _time.monotonic()

# ──────────────────────────────────────────────
# Health
# ──────────────────────────────────────────────

health_router = APIRouter()


@health_router.get("/health")
async def health_check():
    """Liveness probe with version and uptime."""
    settings = get_settings()
    return {
        "status": "ok",
        "version": __version__,
        "environment": settings.app_env,
        "uptime_seconds": round(_time.monotonic() - APP_START_TIME, 1),
    }


# ──────────────────────────────────────────────
# Analysis Routes
# ──────────────────────────────────────────────

analysis_router = APIRouter(prefix="/analysis")

_engine = AnalysisEngine()


@analysis_router.post("/confidence", response_model=ConfidenceResult)
def confidence(request: AnalysisRequest):
    """Fused confidence verdict for the primary series."""
    return _engine.analyze(request)


@analysis_router.post("/full", response_model=AnalysisReport)
def full_report(request: AnalysisRequest):
    """Every component output plus the fused confidence verdict."""
    return _engine.run(request)


@analysis_router.post("/patterns", response_model=PatternScan)
def patterns(request: AnalysisRequest):
    primary, _ = _engine.load_series(request)
    return _engine.patterns.scan_all_patterns(primary)


@analysis_router.post("/operator")
def operator(request: AnalysisRequest):
    """Manipulation verdict (``null`` when nothing matches) and operator strength."""
    primary, _ = _engine.load_series(request)
    verdict = _engine.operator.detect(primary)
    strength = _engine.operator.strength(primary)
    return {
        "symbol": request.symbol,
        "manipulation": verdict.model_dump(mode="json") if verdict else None,
        "operator_strength": strength.model_dump(mode="json"),
    }


@analysis_router.post("/structure", response_model=StructureReport)
def structure(request: AnalysisRequest):
    primary, _ = _engine.load_series(request)
    return _engine.structure.analyze(primary)


@analysis_router.post("/multi-horizon", response_model=MultiHorizonReport)
def multi_horizon(request: AnalysisRequest):
    """Six-resolution trend report; missing horizons are derived from ``bars``."""
    primary, horizons = _engine.load_series(request)
    return _engine.horizon_report(primary, horizons)
