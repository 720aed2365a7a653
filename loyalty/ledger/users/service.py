from __future__ import annotations

from datetime import datetime

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from loyalty.core.clock import utc_now
from loyalty.core.config import Settings, get_settings
from loyalty.db.models.users import User
from loyalty.db.repo.accounts_repo import AccountsRepo
from loyalty.db.repo.users_repo import UsersRepo
from loyalty.ledger.accounts import AccountLedger
from loyalty.ledger.errors import AuthorizationError, ConflictError, NotFoundError
from loyalty.ledger.roles import (
    Actor,
    Role,
    assignable_roles,
    can_modify,
    can_view,
    effective_role,
    parse_role,
    require_role,
)
from loyalty.ledger.users.types import UserProfile
from loyalty.ledger.users.validation import validate_email, validate_name, validate_utorid
from loyalty.services.cache import LedgerCache

logger = structlog.get_logger("loyalty.ledger.users")


async def _get_user_for_update(session: AsyncSession, user_id: int) -> User:
    user = await UsersRepo.get_by_id_for_update(session, user_id)
    if user is None:
        raise NotFoundError(f"user {user_id} not found")
    return user


async def _role_of(session: AsyncSession, user_id: int) -> Role:
    return effective_role(await UsersRepo.list_role_names(session, user_id))


async def _build_profile(session: AsyncSession, user: User) -> UserProfile:
    account = await AccountsRepo.get_by_user_id(session, user.id)
    return UserProfile(
        user_id=user.id,
        utorid=user.utorid,
        name=user.name,
        email=user.email,
        role=await _role_of(session, user.id),
        is_activated=user.is_activated,
        is_suspicious=user.is_suspicious,
        is_verified=user.is_verified,
        token_version=user.token_version,
        account_id=None if account is None else account.id,
        points=0 if account is None else account.points_cached,
    )


async def _create_user(
    session: AsyncSession,
    *,
    utorid: str,
    name: str,
    email: str,
    role: Role,
    is_activated: bool,
    now_utc: datetime,
    is_verified: bool = False,
) -> User:
    if await UsersRepo.find_by_utorid_or_email(session, utorid=utorid, email=email) is not None:
        raise ConflictError("a user with this utorid or email already exists")
    try:
        user = await UsersRepo.create(
            session,
            utorid=utorid,
            name=name,
            email=email,
            is_activated=is_activated,
            now_utc=now_utc,
            is_verified=is_verified,
        )
    except IntegrityError as exc:
        raise ConflictError("a user with this utorid or email already exists") from exc
    await UsersRepo.replace_roles(session, user_id=user.id, roles=[role.value], now_utc=now_utc)
    await AccountLedger.open_account(session, user_id=user.id, now_utc=now_utc)
    return user


class UserAdministration:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        cache: LedgerCache | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._cache = cache

    async def _invalidate(self, profile: UserProfile) -> None:
        if self._cache is None or profile.account_id is None:
            return
        await self._cache.invalidate_accounts([profile.account_id])

    async def register(
        self,
        actor: Actor,
        *,
        utorid: str,
        name: str,
        email: str,
        now_utc: datetime | None = None,
    ) -> UserProfile:
        require_role(actor.role, Role.CASHIER)
        utorid = validate_utorid(utorid)
        name = validate_name(name)
        email = validate_email(email)
        now_utc = now_utc or utc_now()

        async with self._session_factory.begin() as session:
            user = await _create_user(
                session,
                utorid=utorid,
                name=name,
                email=email,
                role=Role.REGULAR,
                is_activated=False,
                now_utc=now_utc,
            )
            profile = await _build_profile(session, user)

        logger.info("user_registered", user_id=profile.user_id, registered_by=actor.user_id)
        return profile

    async def bootstrap_superuser(
        self,
        *,
        utorid: str,
        name: str,
        email: str,
        now_utc: datetime | None = None,
    ) -> UserProfile:
        now_utc = now_utc or utc_now()
        async with self._session_factory.begin() as session:
            user = await UsersRepo.get_by_utorid(session, utorid)
            if user is None:
                user = await _create_user(
                    session,
                    utorid=validate_utorid(utorid),
                    name=validate_name(name),
                    email=validate_email(email),
                    role=Role.SUPERUSER,
                    is_activated=True,
                    is_verified=True,
                    now_utc=now_utc,
                )
                logger.info("superuser_created", user_id=user.id)
            elif await _role_of(session, user.id) is not Role.SUPERUSER:
                await UsersRepo.replace_roles(
                    session,
                    user_id=user.id,
                    roles=[Role.SUPERUSER.value],
                    now_utc=now_utc,
                )
                logger.info("superuser_role_restored", user_id=user.id)
            return await _build_profile(session, user)

    async def bootstrap_from_settings(self, settings: Settings | None = None) -> UserProfile | None:
        settings = settings or get_settings()
        if not settings.superuser_utorid:
            return None
        return await self.bootstrap_superuser(
            utorid=settings.superuser_utorid,
            name=settings.superuser_name or settings.superuser_utorid,
            email=settings.superuser_email,
        )

    async def get_user(self, actor: Actor, user_id: int) -> UserProfile:
        async with self._session_factory() as session:
            user = await UsersRepo.get_by_id(session, user_id)
            if user is None:
                raise NotFoundError(f"user {user_id} not found")
            if actor.user_id != user_id and not can_view(actor.role, await _role_of(session, user_id)):
                raise AuthorizationError("insufficient role to view this user")
            return await _build_profile(session, user)

    async def change_role(
        self,
        actor: Actor,
        user_id: int,
        role: str | Role,
        *,
        now_utc: datetime | None = None,
    ) -> UserProfile:
        new_role = parse_role(role)
        now_utc = now_utc or utc_now()

        async with self._session_factory.begin() as session:
            user = await _get_user_for_update(session, user_id)
            current_role = await _role_of(session, user_id)
            if not can_modify(actor.role, current_role):
                raise AuthorizationError(f"{actor.role.value} cannot modify a {current_role.value}")
            if new_role not in assignable_roles(actor.role):
                raise AuthorizationError(f"{actor.role.value} cannot assign the {new_role.value} role")

            await UsersRepo.replace_roles(session, user_id=user_id, roles=[new_role.value], now_utc=now_utc)
            await UsersRepo.bump_token_version(session, user_id)
            await session.refresh(user)
            profile = await _build_profile(session, user)

        logger.info(
            "user_role_changed",
            user_id=user_id,
            previous_role=current_role.value,
            role=new_role.value,
            changed_by=actor.user_id,
        )
        await self._invalidate(profile)
        return profile

    async def set_suspicious(self, actor: Actor, user_id: int, suspicious: bool) -> UserProfile:
        require_role(actor.role, Role.MANAGER)
        async with self._session_factory.begin() as session:
            user = await _get_user_for_update(session, user_id)
            user.is_suspicious = suspicious
            await session.flush()
            profile = await _build_profile(session, user)

        logger.info(
            "user_suspicious_flag_set",
            user_id=user_id,
            suspicious=suspicious,
            changed_by=actor.user_id,
        )
        await self._invalidate(profile)
        return profile

    async def set_activation(self, actor: Actor, user_id: int, activated: bool) -> UserProfile:
        async with self._session_factory.begin() as session:
            user = await _get_user_for_update(session, user_id)
            target_role = await _role_of(session, user_id)
            if not can_modify(actor.role, target_role):
                raise AuthorizationError(f"{actor.role.value} cannot modify a {target_role.value}")
            user.is_activated = activated
            await session.flush()
            if not activated:
                await UsersRepo.bump_token_version(session, user_id)
                await session.refresh(user)
            profile = await _build_profile(session, user)

        logger.info(
            "user_activation_set",
            user_id=user_id,
            activated=activated,
            changed_by=actor.user_id,
        )
        await self._invalidate(profile)
        return profile

    async def set_verified(self, actor: Actor, user_id: int, verified: bool) -> UserProfile:
        require_role(actor.role, Role.MANAGER)
        async with self._session_factory.begin() as session:
            user = await _get_user_for_update(session, user_id)
            user.is_verified = verified
            await session.flush()
            profile = await _build_profile(session, user)

        logger.info(
            "user_verified_flag_set",
            user_id=user_id,
            verified=verified,
            changed_by=actor.user_id,
        )
        await self._invalidate(profile)
        return profile
