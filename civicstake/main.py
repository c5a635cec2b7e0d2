"""
CivicStake Backend - FastAPI Application

Main entry point for the Civic Reputation Marketplace API.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from civicstake.config import get_settings
from civicstake.core import build_core
from civicstake.errors import CivicError, InvariantViolation
from civicstake.routers import auth, questions, bounties, answers, leaderboard
from civicstake.services.sweeper import run_sweeper

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Startup
    if getattr(app.state, "core", None) is None:
        app.state.core = build_core(settings)
    stop = asyncio.Event()
    sweeper = asyncio.create_task(
        run_sweeper(app.state.core, settings.sweep_interval_seconds, stop)
    )
    logger.info("🚀 CivicStake API starting up...")
    yield
    # Shutdown
    stop.set()
    await sweeper
    logger.info("👋 CivicStake API shutting down...")


app = FastAPI(
    title="CivicStake API",
    description="""
    The Civic Reputation Marketplace - where citizens hold politicians accountable.

    ## Features
    - Citizens post questions and stake civic points as bounties
    - Politicians answer to earn reputation and release funds to charity
    - AI-powered answer analysis detects evasive responses
    - Bayesian ranking system rewards responsive politicians
    """,
    version="1.0.0",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        # Production domains
        "https://netaoffice.vercel.app",
    ],
    allow_origin_regex=r"https://.*\.vercel\.app",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CivicError)
async def civic_error_handler(request: Request, exc: CivicError):
    """Validation errors surface as 4xx with a stable code."""
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(InvariantViolation)
async def invariant_violation_handler(request: Request, exc: InvariantViolation):
    """Invariant violations are logged in detail; callers get a generic failure."""
    return JSONResponse(status_code=500, content={"detail": "Internal error", "code": "internal_error"})


# Register routers
app.include_router(auth.router)
app.include_router(questions.router)
app.include_router(bounties.router)
app.include_router(answers.router)
app.include_router(leaderboard.router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "CivicStake API",
        "version": "1.0.0"
    }


@app.get("/health")
async def health_check():
    """Detailed health check."""
    settings = get_settings()

    return {
        "status": "healthy",
        "supabase_configured": bool(settings.supabase_url and settings.supabase_key),
        "ai_configured": bool(settings.gemini_api_key),
        "escrow_timeout_days": settings.escrow_timeout_days,
        "voting_window_hours": settings.voting_window_hours
    }
