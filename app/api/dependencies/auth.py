"""
Authentication dependency for FastAPI routes.

Tokens are issued by the identity service; this only verifies them and
loads the matching active user.
"""

import uuid

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import UnauthorizedException
from app.core.security import verify_token
from app.db.deps import get_db
from app.models.user import User

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login")


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    try:
        subject = verify_token(token)
        if subject is None:
            raise UnauthorizedException()
        user_id = uuid.UUID(subject)
    except (JWTError, ValueError):
        raise UnauthorizedException()

    user = await db.get(User, user_id)
    if user is None or not user.is_active:
        raise UnauthorizedException()
    return user
