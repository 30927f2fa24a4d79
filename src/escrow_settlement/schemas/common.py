"""Shared response schemas."""

from __future__ import annotations

from pydantic import BaseModel


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: str
    gateway_mode: str


class ErrorResponse(BaseModel):
    """Body of every error produced by ErrorHandlerMiddleware."""

    error: str
    message: str
    retryable: bool = False
