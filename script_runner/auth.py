"""Shared-secret check for the command endpoints."""

from __future__ import annotations

import secrets

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

from script_runner.config import settings

API_KEY_HEADER = "X-API-Key"

_key_header = APIKeyHeader(
    name=API_KEY_HEADER,
    auto_error=False,
    description="Required when RUNNER_API_KEY is set",
)


def key_matches(presented: str | None, expected: str) -> bool:
    if presented is None:
        return False
    return secrets.compare_digest(presented.encode(), expected.encode())


async def require_api_key(presented: str | None = Security(_key_header)) -> None:
    """Reject the request unless it carries the configured key.

    An empty ``runner_api_key`` turns authentication off, which is how local
    runs and the test suite use the API.
    """
    expected = settings.runner_api_key
    if expected and not key_matches(presented, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing or wrong {API_KEY_HEADER} header",
            headers={"WWW-Authenticate": "APIKey"},
        )
