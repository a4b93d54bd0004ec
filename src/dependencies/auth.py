from __future__ import annotations

import logging
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.exc import SQLAlchemyError

from core.exceptions import UnauthenticatedError
from core.security import decode_token
from crud.user import get_user_by_id
from dependencies.db import DbSession
from models.users import User


LOGGER = logging.getLogger(__name__)

PROVIDER_KEY_HEADER = "X-Provider-Api-Key"

# Tokens are issued by the external identity provider; auto_error=False lets
# a missing header surface as our own 401 envelope.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token", auto_error=False)


async def get_current_user(
    db: DbSession,
    token: Annotated[str | None, Depends(oauth2_scheme)],
) -> User:
    """
    Resolve the currently authenticated user from a JWT.

    Raises
    ------
    UnauthenticatedError
        If the token is missing, malformed, expired, or the user does not exist.
    """
    if not token:
        raise UnauthenticatedError()

    # `decode_token` raises UnauthenticatedError on failure
    token_data = decode_token(token)

    sub = token_data.sub
    if not sub:
        LOGGER.debug("Token missing 'sub' claim")
        raise UnauthenticatedError()

    try:
        user_id = UUID(sub)
    except ValueError as exc:
        LOGGER.debug("Token 'sub' is not a valid UUID", exc_info=exc)
        raise UnauthenticatedError() from exc

    try:
        user = await get_user_by_id(db, user_id)
    except SQLAlchemyError as exc:  # pragma: no cover - DB errors should be explicit
        LOGGER.error("DB lookup failed", exc_info=exc)
        raise

    if user is None:
        LOGGER.debug("User not found for sub=%s", sub)
        raise UnauthenticatedError()

    return user


CurrentUser = Annotated[User, Depends(get_current_user)]


async def get_provider_api_key(
    x_provider_api_key: Annotated[str | None, Header(alias=PROVIDER_KEY_HEADER)] = None,
) -> str | None:
    """Caller-supplied model provider key (bring-your-own-key), if any.

    Requests carrying a key are not charged iteration credits.
    """
    if x_provider_api_key is None:
        return None
    key = x_provider_api_key.strip()
    return key or None


ProviderApiKey = Annotated[str | None, Depends(get_provider_api_key)]
