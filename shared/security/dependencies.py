from dataclasses import dataclass

from fastapi import Depends, HTTPException, status, Request
from fastapi.security import OAuth2PasswordBearer, APIKeyHeader
from .jwt_handler import verify_access_token
from .api_key import verify_api_key

# Defines the expected header format (Bearer <token>)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login", auto_error=False)

# Defines the expected internal service header
api_key_header = APIKeyHeader(name="X-Internal-API-Key", auto_error=False)


@dataclass(frozen=True)
class AdminPrincipal:
    user_id: str
    username: str


def _decode_or_401(token: str | None) -> dict:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if not token:
        raise credentials_exception

    payload = verify_access_token(token)
    if payload is None or payload.get("sub") is None:
        raise credentials_exception
    return payload


async def get_current_user(request: Request, token: str = Depends(oauth2_scheme)) -> str:
    """Dependency to validate JWT and return the user ID (sub)."""
    payload = _decode_or_401(token)
    user_id: str = payload["sub"]

    # Store in request state for downstream use (like rate limiting)
    request.state.user_id = user_id
    return user_id


async def get_current_admin(request: Request, token: str = Depends(oauth2_scheme)) -> AdminPrincipal:
    """Dependency for admin-only endpoints. Requires a token with role=admin."""
    payload = _decode_or_401(token)
    if payload.get("role") != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )
    request.state.user_id = payload["sub"]
    return AdminPrincipal(
        user_id=str(payload["sub"]),
        username=payload.get("username") or str(payload["sub"]),
    )


async def verify_internal_api_key(api_key: str = Depends(api_key_header)) -> bool:
    """Dependency to validate service-to-service internal requests."""
    if not verify_api_key(api_key):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or missing X-Internal-API-Key header"
        )
    return True
