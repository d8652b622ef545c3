"""
Administrative lockout endpoints (platform_admin only).

GET    /admin/lockout/{identifier}  — current counter and lock state
DELETE /admin/lockout/{identifier}  — clear the counter and any lock
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from dependencies import get_lockout_service, require_role
from schemas.dto.responses.auth import LockoutInfoResponse
from schemas.dto.responses.common import MessageResponse
from schemas.models.token import AccessTokenClaims
from schemas.models.user import ROLE_PLATFORM_ADMIN
from services.lockout_service import LockoutService
from shared.logging import get_logger
from shared.masking import mask_identifier
from shared.validators import normalize_identifier

log = get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])

_admin_only = require_role(ROLE_PLATFORM_ADMIN)


@router.get("/lockout/{identifier}", response_model=LockoutInfoResponse)
async def get_lockout(
    identifier: str,
    claims: AccessTokenClaims = Depends(_admin_only),
    lockout: LockoutService = Depends(get_lockout_service),
) -> LockoutInfoResponse:
    info = await lockout.get_attempt_info(identifier)
    return LockoutInfoResponse(
        identifier=normalize_identifier(identifier),
        attempts=info.attempts,
        max_attempts=info.max_attempts,
        locked=info.locked,
        locked_until=info.locked_until,
        remaining_seconds=info.remaining_seconds,
    )


@router.delete("/lockout/{identifier}", response_model=MessageResponse)
async def clear_lockout(
    identifier: str,
    claims: AccessTokenClaims = Depends(_admin_only),
    lockout: LockoutService = Depends(get_lockout_service),
) -> MessageResponse:
    existed = await lockout.unlock(identifier)
    log.info(
        "admin_lockout_cleared",
        admin_id=claims.sub,
        identifier=mask_identifier(normalize_identifier(identifier)),
    )
    return MessageResponse(
        success=True,
        message="Lockout cleared" if existed else "No lockout record found",
    )
