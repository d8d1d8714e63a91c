"""fincat API — Main entry point."""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from fincat.config import settings
from fincat.core.container import build_default_container
from fincat.core.database import async_session_factory, engine
from fincat.core.exceptions import (
    AICategorisationError,
    AITimeoutError,
    DuplicateRuleError,
    InvalidPatternError,
    RateLimitedError,
)
from fincat.core.logging import configure_logging
from fincat.core.middleware import RequestLoggingMiddleware

configure_logging(settings.app_debug)
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: wire services on startup, release the pool on shutdown."""
    logger.info("Starting fincat API", env=settings.app_env, ai_provider=settings.ai_provider)
    if getattr(app.state, "container", None) is None:
        app.state.container = build_default_container(settings, async_session_factory)
    yield
    logger.info("Shutting down fincat API")
    await engine.dispose()


app = FastAPI(
    title="fincat API",
    description="Transaction categorisation: rule matching with an AI fallback",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    redirect_slashes=False,
)

# ── Middleware ─────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)


# ── Error handlers ────────────────────────────────
@app.exception_handler(DuplicateRuleError)
async def duplicate_rule_handler(request: Request, exc: DuplicateRuleError):
    return JSONResponse(
        status_code=409,
        content={
            "detail": "Pattern already exists",
            "existing_rule": exc.existing_rule.model_dump(mode="json"),
        },
    )


@app.exception_handler(InvalidPatternError)
async def invalid_pattern_handler(request: Request, exc: InvalidPatternError):
    return JSONResponse(
        status_code=422,
        content={"detail": f"Invalid pattern: {exc.reason}", "pattern": exc.pattern},
    )


@app.exception_handler(RateLimitedError)
async def rate_limited_handler(request: Request, exc: RateLimitedError):
    return JSONResponse(
        status_code=429,
        content={
            "detail": exc.message,
            "code": exc.code,
            "remaining": exc.remaining,
            "daily_limit": exc.daily_limit,
        },
    )


@app.exception_handler(AICategorisationError)
async def ai_error_handler(request: Request, exc: AICategorisationError):
    status_code = 504 if isinstance(exc, AITimeoutError) else 502
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "code": exc.code, "retryable": exc.retryable},
    )


# ── Health Check ──────────────────────────────────
@app.get("/health", tags=["system"])
async def health_check():
    """Liveness probe — always returns healthy if the process is running."""
    return {"status": "healthy", "version": "0.1.0"}


@app.get("/ready", tags=["system"])
async def readiness_check(request: Request):
    """Readiness probe — checks the rule store is reachable."""
    checks = {"database": "unknown", "api": "ok"}
    try:
        await request.app.state.container.rule_store.ping()
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {e}"
        return {"status": "degraded", "checks": checks}

    return {"status": "ready", "checks": checks}


# ── API Routes ────────────────────────────────────
from fincat.api.v1 import categorisation, corrections, rules  # noqa: E402

app.include_router(rules.router, prefix="/api/v1/rules", tags=["rules"])
app.include_router(categorisation.router, prefix="/api/v1/categorisation", tags=["categorisation"])
app.include_router(corrections.router, prefix="/api/v1/corrections", tags=["corrections"])
