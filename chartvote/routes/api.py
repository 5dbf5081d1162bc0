"""
SMX Chart Votes - JSON API Routes

Provides all REST API endpoints for:
- Chart list (SMX API data with corrected difficulty labels)
- Vote tallies and vote submission (toggle semantics)
- Account registration, login, logout, and current user
- Health check
"""

import time
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request
from loguru import logger
from pydantic import ValidationError

from chartvote.auth import (
    get_current_user_id,
    get_voter_id,
    hash_password,
    login_session,
    logout_session,
    verify_password,
)
from chartvote.config import (
    APP_VERSION,
    IDENTITY_MODE,
    MAX_PASSWORD_BYTES,
    MIN_PASSWORD_LENGTH,
)
from chartvote.database import (
    cast_vote,
    count_votes,
    create_user,
    get_user,
    get_user_by_username,
    get_vote_counts,
)
from chartvote.errors import ConflictError, UpstreamError
from chartvote.models import (
    ChartWithSong,
    Credentials,
    User,
    VoteCount,
    VoteRequest,
    VoteResult,
)
from chartvote.services.chart_catalog import ChartCatalog, get_catalog

router = APIRouter(prefix="/api", tags=["API"])

# Track startup time for health check
_START_TIME = time.time()


async def _read_model(request: Request, model, error: str):
    """Parse the JSON body into *model*, answering 400 on any malformed input."""
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail=error)
    try:
        return model.model_validate(body)
    except ValidationError:
        raise HTTPException(status_code=400, detail=error)


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------
@router.get("/health")
async def health_check(catalog: ChartCatalog = Depends(get_catalog)):
    """Health check endpoint for the service."""
    uptime = round(time.time() - _START_TIME, 2)
    catalog_status = catalog.status()

    status = "ok" if catalog_status["cached_charts"] else "degraded"

    return {
        "status": status,
        "version": APP_VERSION,
        "uptime_seconds": uptime,
        "identity_mode": IDENTITY_MODE,
        "total_votes": await count_votes(),
        "charts": catalog_status,
    }


# ---------------------------------------------------------------------------
# Charts
# ---------------------------------------------------------------------------
@router.get("/charts", response_model=List[ChartWithSong])
async def api_list_charts(catalog: ChartCatalog = Depends(get_catalog)):
    """List every chart with corrected difficulty labels and its song."""
    try:
        return await catalog.get_charts()
    except UpstreamError as e:
        logger.error("❌ Error fetching charts: {}", e)
        raise HTTPException(status_code=500, detail="Failed to fetch charts")


# ---------------------------------------------------------------------------
# Votes
# ---------------------------------------------------------------------------
@router.get("/votes", response_model=List[VoteCount])
async def api_vote_counts(request: Request):
    """Vote tallies per chart, annotated with the caller's own vote."""
    try:
        return await get_vote_counts(get_voter_id(request))
    except Exception as e:
        logger.error("❌ Error fetching votes: {}", e)
        raise HTTPException(status_code=500, detail="Failed to fetch votes")


@router.post("/votes", response_model=VoteResult)
async def api_cast_vote(request: Request):
    """
    Cast, flip, or withdraw a vote.

    Sending the direction the caller already voted removes the vote; sending
    the opposite direction flips it.
    """
    voter_id = get_voter_id(request)
    if not voter_id:
        raise HTTPException(status_code=401, detail="Authentication required")

    body: VoteRequest = await _read_model(request, VoteRequest, "Invalid vote data")

    try:
        return await cast_vote(body.chart_id, voter_id, body.direction)
    except Exception as e:
        logger.error("❌ Error casting vote: {}", e)
        raise HTTPException(status_code=500, detail="Failed to cast vote")


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------
@router.post("/auth/register", response_model=User, status_code=201)
async def api_register(request: Request):
    """Create an account and log it in."""
    creds: Credentials = await _read_model(request, Credentials, "Invalid credentials")
    if len(creds.password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(
            status_code=400,
            detail=f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
        )
    if len(creds.password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise HTTPException(
            status_code=400,
            detail=f"Password must be at most {MAX_PASSWORD_BYTES} bytes",
        )

    try:
        user = await create_user(creds.username, hash_password(creds.password))
    except ConflictError:
        raise HTTPException(status_code=409, detail="Username already taken")

    login_session(request, user["id"])
    return User(**user)


@router.post("/auth/login", response_model=User)
async def api_login(request: Request):
    """Log in with username and password."""
    creds: Credentials = await _read_model(request, Credentials, "Invalid credentials")

    user = await get_user_by_username(creds.username)
    if not user or not verify_password(creds.password, user["password_hash"]):
        logger.warning("🔒 Failed login attempt for '{}'", creds.username)
        raise HTTPException(status_code=401, detail="Invalid username or password")

    login_session(request, user["id"])
    logger.info("🔓 User '{}' logged in", user["username"])
    return User(**user)


@router.post("/auth/logout")
async def api_logout(request: Request):
    """Log out and start a new anonymous session."""
    user_id = get_current_user_id(request)
    if user_id:
        logger.info("🔒 User id={} logged out", user_id)
    logout_session(request)
    return {"message": "Logged out"}


@router.get("/auth/user", response_model=User)
async def api_current_user(request: Request):
    """Return the logged-in user."""
    user_id = get_current_user_id(request)
    user = await get_user(user_id) if user_id else None
    if not user:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return User(**user)
