from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.db.models.users import User, UserRole


class UsersRepo:
    @staticmethod
    async def get_by_id(session: AsyncSession, user_id: int) -> User | None:
        return await session.get(User, user_id)

    @staticmethod
    async def get_by_id_for_update(session: AsyncSession, user_id: int) -> User | None:
        stmt = select(User).where(User.id == user_id).with_for_update()
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_utorid(session: AsyncSession, utorid: str) -> User | None:
        stmt = select(User).where(User.utorid == utorid)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def find_by_utorid_or_email(
        session: AsyncSession,
        *,
        utorid: str,
        email: str,
    ) -> User | None:
        stmt = select(User).where(or_(User.utorid == utorid, User.email == email)).limit(1)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def create(
        session: AsyncSession,
        *,
        utorid: str,
        name: str,
        email: str,
        is_activated: bool,
        now_utc: datetime,
        is_verified: bool = False,
    ) -> User:
        user = User(
            utorid=utorid,
            name=name,
            email=email,
            is_activated=is_activated,
            is_suspicious=False,
            is_verified=is_verified,
            token_version=0,
            created_at=now_utc,
        )
        session.add(user)
        await session.flush()
        return user

    @staticmethod
    async def list_role_names(session: AsyncSession, user_id: int) -> list[str]:
        stmt = select(UserRole.role).where(UserRole.user_id == user_id).order_by(UserRole.id)
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def replace_roles(
        session: AsyncSession,
        *,
        user_id: int,
        roles: Iterable[str],
        now_utc: datetime,
    ) -> None:
        await session.execute(delete(UserRole).where(UserRole.user_id == user_id))
        session.add_all(
            [UserRole(user_id=user_id, role=role, assigned_at=now_utc) for role in sorted(set(roles))]
        )
        await session.flush()

    @staticmethod
    async def bump_token_version(session: AsyncSession, user_id: int) -> int:
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(token_version=User.token_version + 1)
            .execution_options(synchronize_session=False)
        )
        await session.execute(stmt)
        result = await session.execute(select(User.token_version).where(User.id == user_id))
        return int(result.scalar_one())
