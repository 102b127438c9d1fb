"""
Bearer-token authentication for the author side of the API.

Candidates never authenticate; every author/admin route depends on
``require_author`` (or ``require_roles`` for narrower checks).
"""
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from assessly.core.config import settings

AUTHOR_ROLES = ("author", "admin")
KNOWN_ROLES = AUTHOR_ROLES + ("candidate",)

bearer = HTTPBearer(auto_error=False)


class Principal(BaseModel):
    sub: str
    roles: List[str]

    def has_any_role(self, *roles: str) -> bool:
        return bool(set(self.roles).intersection(roles))


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail, headers={"WWW-Authenticate": "Bearer"})


def create_token(user_id: str, roles: List[str], ttl_minutes: Optional[int] = None) -> str:
    now = datetime.now(timezone.utc)
    ttl = ttl_minutes if ttl_minutes is not None else settings.ACCESS_TOKEN_EXPIRE_MINUTES
    claims = {"sub": user_id, "roles": list(roles), "iat": now, "exp": now + timedelta(minutes=ttl)}
    return jwt.encode(claims, settings.SECRET_KEY.get_secret_value(), algorithm=settings.ALGORITHM)


def decode_token(token: str) -> Principal:
    try:
        claims = jwt.decode(token, settings.SECRET_KEY.get_secret_value(), algorithms=[settings.ALGORITHM],
                            options={"require": ["sub", "exp"]})
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Token has expired")
    except jwt.PyJWTError:
        raise _unauthorized("Invalid token")
    return Principal(sub=claims["sub"], roles=claims.get("roles") or [])


def get_current_user(creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer)) -> Principal:
    if creds is None:
        raise _unauthorized("Missing bearer token")
    return decode_token(creds.credentials)


def require_roles(*required: str):
    def checker(user: Principal = Depends(get_current_user)) -> Principal:
        if not user.has_any_role(*required):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Requires one of roles: {', '.join(required)}")
        return user
    return checker


require_author = require_roles(*AUTHOR_ROLES)
