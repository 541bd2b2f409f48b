import logging
import random
from typing import AsyncIterator

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .config import get_settings
from .database import async_session
from .domain.actors import Actor, Role
from .domain.lottery import RandomSource
from .domain.notifications import NotificationDispatcher
from .infrastructure.notifications import build_dispatcher
from .models import Admin, Student
from .utils.auth import decode_access_token

logger = logging.getLogger(__name__)

_BEARER_CHALLENGE = {"WWW-Authenticate": "Bearer"}


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """For jobs that open a fresh session per retry attempt."""
    return async_session


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail, headers=_BEARER_CHALLENGE)


async def get_current_actor(
    authorization: str | None = Header(default=None),
    session: AsyncSession = Depends(get_session),
) -> Actor:
    if authorization is None:
        raise _unauthorized("Bearer token required")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise _unauthorized("Bearer token required")

    settings = get_settings()
    try:
        actor = decode_access_token(token, secret=settings.auth_secret, algorithms=[settings.auth_algorithm])
    except ValueError as exc:
        raise _unauthorized("invalid token") from exc

    model = Admin if actor.role == Role.ADMIN else Student
    try:
        exists = await session.scalar(select(model.id).where(model.id == actor.user_id))
    except DBAPIError as exc:
        await session.rollback()
        logger.exception("Failed to resolve token subject")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="identity lookup failed") from exc
    # Handlers open their own transaction with session.begin().
    await session.rollback()
    if exists is None:
        raise _unauthorized("unknown user")
    return actor


async def require_student(actor: Actor = Depends(get_current_actor)) -> Actor:
    if actor.role != Role.STUDENT:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="student account required")
    return actor


async def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="admin account required")
    return actor


def get_notification_dispatcher() -> NotificationDispatcher:
    return build_dispatcher(get_settings())


def get_random_source() -> RandomSource:
    return random.SystemRandom()
