"""Common API response models."""

from __future__ import annotations

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str
    version: str
    max_concurrent: int


class ErrorResponse(BaseModel):
    detail: str
