"""
api/routes/v1/auth.py -- Session endpoints.

Routes:
  POST /api/v1/auth/login    -- password login; returns a bearer token
  GET  /api/v1/auth/profile  -- current identity (requires auth)
  GET  /api/v1/auth/verify   -- token check for clients (requires auth)
  POST /api/v1/auth/logout   -- acknowledgement only (requires auth)

Security:
  POST /login is rate-limited per source IP (LOGIN_RATE_LIMIT). The limiter
  rejects excess attempts before the handler runs, so they never reach the
  credential check and are not audited as login attempts.
  Every attempt that does reach the handler writes exactly one audit event,
  including attempts with malformed input.
  Unknown email and wrong password share one response; see
  auth.tokens.authenticate_user() for the timing equalization.
  Cache-Control: no-store on login responses.
  Logout cannot revoke a token. Clients drop it; it expires on its own.
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.body import json_body, validate_body
from api.limiter import LOGIN_RATE_LIMIT, limiter
from api.models import (
    LoginRequest,
    LoginResponse,
    MessageResponse,
    ProfileResponse,
    UserInfo,
    VerifyResponse,
)
from auth import operations
from auth.dependencies import client_info, get_pipeline, require
from auth.pipeline import RequestContext
from core.config import get_settings
from core.errors import PortalError

router = APIRouter()


def _user_info(subject) -> UserInfo:
    return UserInfo(id=subject.id, email=subject.email, role=subject.role, status=subject.status)


# ---------------------------------------------------------------------------
# POST /auth/login -- public
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(LOGIN_RATE_LIMIT)  # @router outermost: FastAPI must register the limited wrapper
def login(request: Request, body: Any = Depends(json_body)) -> JSONResponse:
    """Authenticate with email and password and return a session token.

    The body is validated here rather than by FastAPI so that a malformed
    attempt still produces a login.fail audit event with whatever email was
    supplied.
    """
    pipeline = get_pipeline(request)
    client = client_info(request)

    try:
        credentials = validate_body(LoginRequest, body)
    except PortalError:
        attempted: Optional[str] = None
        if isinstance(body, dict) and isinstance(body.get("email"), str):
            attempted = body["email"][:255]
        pipeline.reject_login(attempted, client, "Validation failed")
        raise

    user, token = pipeline.login(credentials.email, credentials.password, client)
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            token=token,
            token_type="Bearer",  # noqa: S106 # nosec B106 -- token scheme, not a password
            expires_in=get_settings().token_expire_seconds,
            user=_user_info(user),
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/profile", response_model=ProfileResponse)
def profile(request: Request, ctx: RequestContext = Depends(require(operations.PROFILE_VIEW))) -> ProfileResponse:
    """Return the caller's identity as currently stored."""
    pipeline = get_pipeline(request)
    user = pipeline.perform(
        ctx,
        operations.PROFILE_VIEW,
        lambda: pipeline.users.find_by_id(ctx.identity.id),
        entity_id=ctx.identity.id,
    )
    return ProfileResponse(**_user_info(user).model_dump(), created_at=user.created_at)


@router.get("/auth/verify", response_model=VerifyResponse)
def verify(request: Request, ctx: RequestContext = Depends(require(operations.TOKEN_VERIFY))) -> VerifyResponse:
    """Confirm the presented token is valid and its subject is still active."""
    get_pipeline(request).perform(ctx, operations.TOKEN_VERIFY, lambda: None, entity_id=ctx.identity.id)
    return VerifyResponse(valid=True, user=_user_info(ctx.identity))


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, ctx: RequestContext = Depends(require(operations.LOGOUT))) -> MessageResponse:
    """Acknowledge a logout. The token stays valid until it expires."""
    get_pipeline(request).perform(ctx, operations.LOGOUT, lambda: None, entity_id=ctx.identity.id)
    return MessageResponse(message="Logged out successfully")
