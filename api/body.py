"""
api/body.py -- Request bodies that are validated inside the handler.

FastAPI parses and validates declared body parameters before any dependency
runs, so a bad body would be refused before the caller is authenticated and
without an audit record. Routes that must audit rejected input instead take
the raw JSON through json_body() and call validate_body() themselves, inside
the pipeline's execute stage.
"""

import json
from typing import Any, TypeVar

from fastapi import Request
from pydantic import BaseModel, ValidationError

from api.models import validation_details
from core.errors import ErrorKind, PortalError

ModelT = TypeVar("ModelT", bound=BaseModel)

# Marker returned by json_body() when the bytes are not JSON at all.
UNPARSABLE = object()


async def json_body(request: Request) -> Any:
    """Dependency: the decoded JSON body, None when empty, or UNPARSABLE."""
    raw = await request.body()
    if not raw.strip():
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return UNPARSABLE


def validate_body(model: type[ModelT], payload: Any) -> ModelT:
    """Validate a json_body() payload, raising VALIDATION_FAILED (400) on bad input."""
    if payload is UNPARSABLE:
        raise PortalError(
            ErrorKind.VALIDATION_FAILED,
            "Validation failed",
            details=[{"loc": ["body"], "msg": "Request body is not valid JSON", "type": "json_invalid"}],
        )
    try:
        return model.model_validate(payload if payload is not None else {})
    except ValidationError as exc:
        raise PortalError(
            ErrorKind.VALIDATION_FAILED,
            "Validation failed",
            details=validation_details(exc.errors()),
        ) from exc
