"""Request parsing and response envelope helpers shared by the health routers."""

from __future__ import annotations

import json
from typing import Any, TypeVar

from fastapi import Request
from pydantic import BaseModel, TypeAdapter, ValidationError

from healthsync.errors import HealthValidationError

M = TypeVar("M", bound=BaseModel)

DEFAULT_TIMEZONE = "UTC"


def format_validation_error(exc: ValidationError | Any) -> str:
    """One readable line for the first pydantic error, e.g. ``samples.0.unit: Field required``."""
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    msg = str(first.get("msg", "Invalid value")).removeprefix("Value error, ")
    loc = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body",))
    return f"{loc}: {msg}" if loc else msg


async def read_json_body(request: Request) -> Any:
    try:
        return json.loads(await request.body())
    except (ValueError, UnicodeDecodeError):
        raise HealthValidationError("Invalid JSON body") from None


def parse_body(model: type[M] | TypeAdapter, body: Any) -> Any:
    """Validate a decoded JSON body against a model or type adapter."""
    if not isinstance(body, dict):
        raise HealthValidationError("Body must be an object")
    try:
        if isinstance(model, TypeAdapter):
            return model.validate_python(body)
        return model.model_validate(body)
    except ValidationError as exc:
        raise HealthValidationError(format_validation_error(exc)) from None


def resolve_query_timezone(value: str | None) -> str:
    if value is None or not value.strip():
        return DEFAULT_TIMEZONE
    return value.strip()


def envelope(data: Any, **meta: Any) -> dict:
    return {"data": data, "meta": meta}
