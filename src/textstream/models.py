"""Request and error-envelope models for the streaming endpoint."""

from __future__ import annotations

import json
from typing import Any

import pydantic
from pydantic import BaseModel, Field, field_validator

from textstream.errors import ValidationError

MAX_QUERY_LENGTH = 10_000


class StreamRequest(BaseModel):
    """Body of the single POST that opens a stream."""

    query: str

    @field_validator("query")
    @classmethod
    def _check_query(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Query cannot be empty")
        if len(value) > MAX_QUERY_LENGTH:
            raise ValueError("Query too long")
        return value


class ErrorDetail(BaseModel):
    message: str = "Request failed"
    code: str | None = None
    status: int | None = None
    details: Any = None


class ErrorEnvelope(BaseModel):
    """Non-streaming ``{success: false, error: {...}}`` response body."""

    success: bool = False
    error: ErrorDetail = Field(default_factory=ErrorDetail)


def build_request(query: Any) -> StreamRequest:
    """Validate *query*, raising ``ValidationError`` with a readable message."""
    try:
        return StreamRequest(query=query)
    except pydantic.ValidationError as e:
        errors = e.errors()
        message = "Invalid request format"
        if errors:
            ctx_error = errors[0].get("ctx", {}).get("error")
            message = str(ctx_error) if ctx_error else errors[0].get("msg", message)
        raise ValidationError(message) from e


def parse_error_envelope(body: bytes | str) -> ErrorEnvelope | None:
    """Return the envelope if *body* is a JSON ``success: false`` document."""
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError, ValueError):
        return None
    if not isinstance(data, dict) or data.get("success", True) is not False:
        return None
    try:
        return ErrorEnvelope.model_validate(data)
    except pydantic.ValidationError:
        return ErrorEnvelope()
