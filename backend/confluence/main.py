"""
Confluence — FastAPI Application Entry Point

Stateless analysis API. Bars arrive in the request body; every response is
computed from them alone.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from confluence import __version__
from confluence.config import get_settings
from confluence.routes import analysis_router, health_router

log = structlog.get_logger("confluence.startup")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle hooks."""
    settings = get_settings()
    log.info(
        "startup",
        env=settings.app_env,
        horizon_workers=settings.horizon_max_workers,
        structure_min_bars=settings.structure_min_bars,
    )
    yield
    log.info("shutdown")


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()

    app = FastAPI(
        title="Confluence",
        description="""# Confluence API

Multi-factor trading signal engine.

## Features
- **Pattern detection**: candlestick, chart, and buying/selling pressure
- **Operator detection**: accumulation, distribution, traps, pumps, squeezes
- **Market structure**: sweeps, order blocks, fair value gaps, BOS / CHOCH
- **Multi-horizon**: six-resolution trend alignment and heatmap
- **Confidence**: weighted verdict with risk, probabilities, and a trade setup
""",
        version=__version__,
        debug=settings.app_debug,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_tags=[
            {"name": "Health", "description": "Service liveness"},
            {"name": "Analysis", "description": "Signal analysis over caller-supplied bars"},
        ],
    )

    # ── Global Error Handlers ──
    from confluence.error_handlers import register_error_handlers
    register_error_handlers(app)

    # ── CORS (configurable from settings) ──
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Custom Middleware ──
    from confluence.middleware.request_logger import RequestLoggerMiddleware
    app.add_middleware(RequestLoggerMiddleware)

    # ── Routes (unversioned) ──
    app.include_router(health_router, tags=["Health"])

    # ── Routes (v1 API) ──
    API_V1 = "/v1/api"
    app.include_router(analysis_router, prefix=API_V1, tags=["Analysis"])

    # ── API Version Header ──
    @app.middleware("http")
    async def add_api_version_header(request, call_next):
        response = await call_next(request)
        response.headers["X-API-Version"] = "v1"
        return response

    return app


app = create_app()
