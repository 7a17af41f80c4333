"""Schemas Pydantic pour validation des donnees."""

from app.schemas.responses import (
    COMMON_RESPONSES,
    build_responses,
    read_responses,
    session_responses,
)

__all__ = [
    "COMMON_RESPONSES",
    "build_responses",
    "read_responses",
    "session_responses",
]
