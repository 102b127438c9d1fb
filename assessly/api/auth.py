from fastapi import APIRouter
from pydantic import BaseModel, Field, field_validator
from typing import List
from assessly.core.auth import KNOWN_ROLES, create_token
from assessly.core.config import settings

router = APIRouter()

class MockLogin(BaseModel):
    user_id: str = Field(min_length=1, max_length=255)
    roles: List[str] = Field(min_length=1)

    @field_validator("roles")
    @classmethod
    def known_roles(cls, roles: List[str]) -> List[str]:
        unknown = sorted(set(roles) - set(KNOWN_ROLES))
        if unknown:
            raise ValueError(f"Unknown roles: {', '.join(unknown)}")
        return sorted(set(roles))

@router.post("/mock-login")
def mock_login(payload: MockLogin):
    """Development-only token issuance; there is no password check."""
    token = create_token(payload.user_id, payload.roles)
    return {
        "access_token": token,
        "token_type": "bearer",
        "expires_in": settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        "user_id": payload.user_id,
        "roles": payload.roles,
    }
