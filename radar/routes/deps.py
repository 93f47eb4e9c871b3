"""
Shared FastAPI dependencies: current user and pipeline components.

Identity is established upstream by the auth gateway, which forwards the
verified user id (and email) as headers.
"""

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from radar.config import Capabilities, get_capabilities
from radar.database import get_db, get_session_factory
from radar.models import User
from radar.services.audit_runner import AuditRunner
from radar.services.dispatcher import Dispatcher


async def get_current_user(
    x_user_id: str | None = Header(None),
    x_user_email: str | None = Header(None),
    session: AsyncSession = Depends(get_db),
) -> User:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")

    user = await session.get(User, x_user_id)
    if user is None:
        # First request before the identity webhook synced the account
        user = User(id=x_user_id, email=x_user_email or "")
        session.add(user)
        await session.commit()
    elif x_user_email and not user.email:
        user.email = x_user_email
        await session.commit()
    return user


def get_runner(
    session_factory: async_sessionmaker = Depends(get_session_factory),
    capabilities: Capabilities = Depends(get_capabilities),
) -> AuditRunner:
    return AuditRunner(session_factory, capabilities)


def get_dispatcher(
    session_factory: async_sessionmaker = Depends(get_session_factory),
    capabilities: Capabilities = Depends(get_capabilities),
    runner: AuditRunner = Depends(get_runner),
) -> Dispatcher:
    return Dispatcher(session_factory, capabilities, runner)
