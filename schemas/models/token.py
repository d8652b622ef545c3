"""
Access-token claim set.

Access tokens are stateless JWTs; this model is the only shape they may
carry. ``ver`` is bumped whenever the claim layout changes so old tokens
are rejected instead of being half-understood. Unknown claims are refused.

``role`` is None for a federated user who has not picked a role yet;
route dependencies refuse such tokens everywhere except
complete-registration.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict

from schemas.models.user import Role

CLAIMS_VERSION = 1


class AccessTokenClaims(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    ver: int = CLAIMS_VERSION
    sub: str
    email: str
    role: Optional[Role] = None
    tenant_id: Optional[str] = None
    iss: str
    aud: str
    iat: int
    exp: int

    @property
    def user_id(self) -> str:
        return self.sub

    @property
    def is_pending(self) -> bool:
        return self.role is None
