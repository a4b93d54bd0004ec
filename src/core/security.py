from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt

from core.config import Settings, get_settings
from core.exceptions import UnauthenticatedError
from schemas.auth import TokenData


def _settings() -> Settings:  # lazy accessor to allow tests to set env first
    return get_settings()


def create_access_token(
    data: dict[str, Any], expires_delta: timedelta | None = None
) -> str:
    """Encodes a JWT with `sub` (subject) and expiry"""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(UTC) + expires_delta
    else:
        expire = datetime.now(UTC) + timedelta(
            minutes=_settings().ACCESS_TOKEN_EXPIRE_MINUTES
        )
    to_encode.update({"exp": expire})
    s = _settings()
    encoded_jwt = jwt.encode(to_encode, s.SECRET_KEY, algorithm=s.ALGORITHM)
    return encoded_jwt


def decode_token(token: str) -> TokenData:
    """Decode and validate a JWT, returning TokenData.

    Expects a `sub` claim (user identifier). Also supports optional `scopes`.

    Raises:
        UnauthenticatedError: If the token is invalid, expired or has no subject.
    """
    try:
        s = _settings()
        payload = jwt.decode(
            token,
            s.SECRET_KEY,
            algorithms=[s.ALGORITHM],
            options={"verify_aud": False},
        )
    except JWTError as err:
        raise UnauthenticatedError("Could not validate credentials") from err

    sub = payload.get("sub")
    scopes = payload.get("scopes", [])
    if sub is None:
        raise UnauthenticatedError("Token missing subject")
    return TokenData(
        sub=str(sub),
        scopes=list(scopes) if isinstance(scopes, list) else [],
    )
