from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import ExpiredSignatureError, JWTError, jwt

from dispatch.config import get_settings

settings = get_settings()
bearer_scheme = HTTPBearer(auto_error=False)

ROLES = ("customer", "provider", "admin")


def create_access_token(subject: str, role: str = "customer", expires_minutes: Optional[int] = None) -> str:
    """Sign a JWT for *subject* carrying its dispatch role and an expiry."""
    if role not in ROLES:
        raise ValueError(f"Unknown role '{role}'")
    expire = datetime.now(timezone.utc) + timedelta(
        minutes=expires_minutes if expires_minutes is not None else settings.access_token_expire_minutes
    )
    claims = {"sub": subject, "role": role, "exp": expire}
    return jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_algorithm)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> dict:
    if credentials is None:
        raise _unauthorized("Missing Bearer token")
    try:
        claims = jwt.decode(
            credentials.credentials,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except ExpiredSignatureError:
        raise _unauthorized("Token expired")
    except JWTError:
        raise _unauthorized("Invalid token")
    if not claims.get("sub"):
        raise _unauthorized("Invalid token payload")
    return claims


async def get_current_user_id(claims: dict = Depends(get_current_user)) -> str:
    """Caller id for customer and provider endpoints; the booking decides which side it is on."""
    return claims["sub"]


async def require_admin(claims: dict = Depends(get_current_user)) -> str:
    if claims.get("role") != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin role required")
    return claims["sub"]
