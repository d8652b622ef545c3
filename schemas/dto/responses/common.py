"""
Response bodies shared by every router.

ErrorResponse    — what the AppError handler writes
HealthResponse   — GET /health
MessageResponse  — {success, message} for endpoints with nothing else to return
"""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict

HealthStatus = Literal["healthy", "degraded", "unhealthy"]
CheckStatus = Literal["ok", "error", "not_configured"]


class ErrorResponse(BaseModel):
    """Body of every AppError response; see errors.AppError.to_dict()."""

    model_config = ConfigDict(populate_by_name=True)

    error: str
    code: str
    field: Optional[str] = None
    details: Optional[Any] = None


class HealthResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: HealthStatus
    # mongodb / redis
    checks: dict[str, CheckStatus]


class MessageResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    message: Optional[str] = None
