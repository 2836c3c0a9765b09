import logging
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .config import get_settings
from .database import async_session
from .domain.errors import ForbiddenError, InternalError, UnauthorizedError
from .models import User, UserRole
from .utils.auth import decode_access_token

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Actor:
    user_id: str
    role: UserRole


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=UnauthorizedError(message).to_dict(),
        headers={"WWW-Authenticate": "Bearer"},
    )


def _bearer_token(authorization: str | None) -> str:
    if not authorization:
        raise _unauthorized("Authorization header required")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise _unauthorized("Bearer token required")
    return token.strip()


async def get_current_actor(
    authorization: str | None = Header(default=None),
    session: AsyncSession = Depends(get_session),
) -> Actor:
    token = _bearer_token(authorization)
    settings = get_settings()
    try:
        user_id = decode_access_token(token, secret=settings.auth_secret, algorithms=[settings.auth_algorithm])
    except ValueError as exc:
        raise _unauthorized("invalid or expired token") from exc

    try:
        role = await session.scalar(select(User.role).where(User.id == user_id))
    except SQLAlchemyError as exc:
        logger.exception("failed to resolve user %s", user_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=InternalError("could not resolve user").to_dict(),
        ) from exc
    finally:
        # End the read transaction so handlers can open their own with session.begin().
        await session.rollback()

    if role is None:
        raise _unauthorized("user not found")
    return Actor(user_id=user_id, role=UserRole(role))


def require_role(role: UserRole) -> Callable[..., Awaitable[Actor]]:
    async def _require_role(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role != role:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=ForbiddenError(f"{role.value} role required").to_dict(),
            )
        return actor

    return _require_role


require_admin = require_role(UserRole.ADMIN)
require_candidate = require_role(UserRole.CANDIDATE)
