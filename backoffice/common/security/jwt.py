from datetime import timedelta
from typing import Annotated, Any

import jwt

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select

from backoffice.app.tenant.model import User
from backoffice.common.exception.errors import TokenError
from backoffice.core.conf import settings
from backoffice.database.db import CurrentSession
from backoffice.utils.timezone import timezone


class CustomHTTPBearer(HTTPBearer):
    """
    HTTPBearer that answers 401 instead of 403 when the header is missing

    Issues: https://github.com/tiangolo/fastapi/issues/10177
    """

    async def __call__(self, request: Request) -> HTTPAuthorizationCredentials | None:
        try:
            return await super().__call__(request)
        except Exception:
            raise TokenError()


# JWT authorizes dependency injection
DependsJwtAuth = Depends(CustomHTTPBearer())


def create_access_token(user_id: str, *, expires_seconds: int | None = None, **extra: Any) -> str:
    """
    Issue a signed access token.

    :param user_id: subject of the token
    :param expires_seconds: lifetime, defaults to TOKEN_EXPIRE_SECONDS
    :param extra: additional claims
    :return:
    """
    expire = timezone.now() + timedelta(seconds=expires_seconds or settings.TOKEN_EXPIRE_SECONDS)
    payload = {'sub': user_id, 'exp': expire, **extra}
    return jwt.encode(payload, settings.TOKEN_SECRET_KEY, settings.TOKEN_ALGORITHM)


def jwt_decode(token: str) -> str:
    """
    Decode a token and return its user id.

    :param token: JWT token
    :return:
    """
    try:
        payload = jwt.decode(
            token,
            settings.TOKEN_SECRET_KEY,
            algorithms=[settings.TOKEN_ALGORITHM],
            options={'verify_exp': True},
        )
    except jwt.ExpiredSignatureError:
        raise TokenError(msg='Token expired')
    except jwt.InvalidTokenError:
        raise TokenError(msg='Invalid token')

    user_id = payload.get('sub')
    if not user_id:
        raise TokenError(msg='Invalid token')
    return str(user_id)


async def get_current_user(
    db: CurrentSession,
    credentials: HTTPAuthorizationCredentials = DependsJwtAuth,
) -> User:
    """
    Resolve the active user behind the bearer token.

    :param db: database session
    :param credentials: bearer credentials
    :return:
    """
    user_id = jwt_decode(credentials.credentials)
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalars().first()
    if not user:
        raise TokenError(msg='User not found')
    if not user.is_active:
        raise TokenError(msg='User is disabled')
    return user


CurrentUser = Annotated[User, Depends(get_current_user)]
