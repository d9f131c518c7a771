"""
HS256 bearer tokens.

Tokens are issued by the storefront's account service; this side only needs
to mint them for admin tooling and tests, and to verify them on every
protected endpoint. Claims: ``sub`` (user id), ``role`` (``user`` or
``admin``) and, for staff, ``username`` which is stamped on decisions.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from shared.config.settings import ACCESS_TOKEN_EXPIRE_MINUTES, JWT_ALGORITHM, JWT_SECRET_KEY

if not JWT_SECRET_KEY:
    raise ValueError("FATAL ERROR: JWT_SECRET_KEY is not set in the environment!")


def create_access_token(
    subject: str,
    role: str = "user",
    username: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    claims = {"sub": str(subject), "role": role, "exp": expire}
    if username:
        claims["username"] = username
    return jwt.encode(claims, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def verify_access_token(token: str) -> dict | None:
    """Returns the claims, or None when the token is malformed, forged or expired."""
    try:
        return jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError:
        return None
