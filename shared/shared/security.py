import os
from datetime import datetime, timedelta, timezone

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

JWT_SECRET = os.getenv("JWT_SECRET")
if not JWT_SECRET:
    raise RuntimeError("JWT_SECRET environment variable is not set")

JWT_ALGORITHM = os.getenv("JWT_ALGORITHM") or "HS256"
ACCESS_TOKEN_TTL_MINUTES = int(os.getenv("ACCESS_TOKEN_TTL_MINUTES") or "1440")
CHALLENGE_TOKEN_TTL_MINUTES = int(os.getenv("CHALLENGE_TOKEN_TTL_MINUTES") or "10")

CHALLENGE_CLAIM = "2fa_pending"

bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def create_access_token(sub: str, roles: list[str]) -> str:
    expires = datetime.now(timezone.utc) + timedelta(minutes=ACCESS_TOKEN_TTL_MINUTES)
    claims = {"sub": sub, "roles": list(roles or ["user"]), "exp": expires}
    return jwt.encode(claims, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    """Verified claims of a bearer token; 401 when it cannot be trusted."""
    try:
        claims = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError:
        raise _unauthorized("Invalid or expired token")

    if not claims.get("sub"):
        raise _unauthorized("Token subject missing")
    return claims


def create_challenge_token(sub: str) -> str:
    """Short-lived proof that sub passed the password step of a 2FA login."""
    expires = datetime.now(timezone.utc) + timedelta(minutes=CHALLENGE_TOKEN_TTL_MINUTES)
    claims = {"sub": sub, CHALLENGE_CLAIM: True, "exp": expires}
    return jwt.encode(claims, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_challenge_token(token: str) -> dict:
    claims = decode_token(token)
    if claims.get(CHALLENGE_CLAIM) is not True:
        raise _unauthorized("Not a two-factor challenge token")
    return claims


def get_current_user(
    request: Request,
    creds: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> dict:
    if not creds or creds.scheme.lower() != "bearer" or not creds.credentials:
        raise _unauthorized("Missing Bearer token")

    claims = decode_token(creds.credentials)
    if claims.get(CHALLENGE_CLAIM):
        raise _unauthorized("Two-factor verification pending")

    # picked up by the access log
    request.state.user_sub = claims["sub"]
    request.state.user_roles = claims.get("roles")
    return claims
