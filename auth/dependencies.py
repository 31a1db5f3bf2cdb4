"""
auth/dependencies.py -- FastAPI Depends() helpers for the authorization pipeline.

Only one auth method exists: an "Authorization: Bearer <token>" header.
There is no cookie session and no API key, so there is nothing to protect
against CSRF.

require(op) builds a dependency that runs the first two pipeline stages
(authenticate, role) and hands the route a RequestContext. The route then
calls pipeline.perform() for the ownership check, the delegated operation
and the success audit record.

Layer rule: no imports from tracker/. auth/dependencies.py may import from
fastapi (for Request) because this module is part of the FastAPI dependency
injection system.
"""

from __future__ import annotations

from typing import Callable, Optional

from fastapi import Request

from auth.models import ClientInfo
from auth.operations import Operation
from auth.pipeline import AuthorizationPipeline, RequestContext


def bearer_token(request: Request) -> Optional[str]:
    """Return the token from the Authorization header, or None."""
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def client_info(request: Request) -> ClientInfo:
    """Source IP and user agent of the request, for audit records."""
    ip = request.client.host if request.client else None
    return ClientInfo(ip=ip, user_agent=request.headers.get("User-Agent"))


def get_pipeline(request: Request) -> AuthorizationPipeline:
    return request.app.state.pipeline


def require(op: Operation) -> Callable[[Request], RequestContext]:
    """Dependency factory: authenticate the caller and check op's roles.

    Use as a FastAPI dependency:
        @router.get("/projects")
        def route(ctx: RequestContext = Depends(require(operations.PROJECT_LIST))): ...
    """

    def _dependency(request: Request) -> RequestContext:
        pipeline = get_pipeline(request)
        ctx = pipeline.authenticate(bearer_token(request), client_info(request), op)
        pipeline.authorize_role(ctx, op)
        return ctx

    return _dependency
