from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.db.models.events import Event, EventGuest, EventOrganizer


class EventsRepo:
    @staticmethod
    async def get_by_id(session: AsyncSession, event_id: int) -> Event | None:
        return await session.get(Event, event_id)

    @staticmethod
    async def get_by_id_for_update(session: AsyncSession, event_id: int) -> Event | None:
        stmt = select(Event).where(Event.id == event_id).with_for_update()
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def reserve_points(session: AsyncSession, *, event_id: int, amount: int) -> bool:
        stmt = (
            update(Event)
            .where(
                Event.id == event_id,
                Event.points_awarded + amount <= Event.points_pool,
            )
            .values(points_awarded=Event.points_awarded + amount)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return (result.rowcount or 0) == 1

    @staticmethod
    async def get_pool_totals(session: AsyncSession, event_id: int) -> tuple[int, int] | None:
        stmt = select(Event.points_pool, Event.points_awarded).where(Event.id == event_id)
        row = (await session.execute(stmt)).one_or_none()
        if row is None:
            return None
        return int(row[0]), int(row[1])

    @staticmethod
    async def is_organizer(session: AsyncSession, *, event_id: int, user_id: int) -> bool:
        stmt = select(EventOrganizer.id).where(
            EventOrganizer.event_id == event_id,
            EventOrganizer.user_id == user_id,
        )
        return (await session.execute(stmt)).first() is not None

    @staticmethod
    async def is_guest(session: AsyncSession, *, event_id: int, user_id: int) -> bool:
        stmt = select(EventGuest.id).where(
            EventGuest.event_id == event_id,
            EventGuest.user_id == user_id,
        )
        return (await session.execute(stmt)).first() is not None

    @staticmethod
    async def list_guest_user_ids(session: AsyncSession, event_id: int) -> list[int]:
        stmt = (
            select(EventGuest.user_id)
            .where(EventGuest.event_id == event_id)
            .order_by(EventGuest.user_id)
        )
        result = await session.execute(stmt)
        return [int(value) for value in result.scalars().all()]

    @staticmethod
    async def count_guests(session: AsyncSession, event_id: int) -> int:
        stmt = select(func.count(EventGuest.id)).where(EventGuest.event_id == event_id)
        return int((await session.execute(stmt)).scalar_one() or 0)

    @staticmethod
    async def create(
        session: AsyncSession,
        *,
        name: str,
        points_pool: int,
        starts_at: datetime,
        ends_at: datetime,
        capacity: int | None,
        now_utc: datetime,
    ) -> Event:
        event = Event(
            name=name,
            capacity=capacity,
            points_pool=points_pool,
            points_awarded=0,
            starts_at=starts_at,
            ends_at=ends_at,
            created_at=now_utc,
        )
        session.add(event)
        await session.flush()
        return event

    @staticmethod
    async def add_guest(
        session: AsyncSession,
        *,
        event_id: int,
        user_id: int,
        now_utc: datetime,
    ) -> EventGuest:
        guest = EventGuest(event_id=event_id, user_id=user_id, joined_at=now_utc)
        session.add(guest)
        await session.flush()
        return guest

    @staticmethod
    async def add_organizer(
        session: AsyncSession,
        *,
        event_id: int,
        user_id: int,
        now_utc: datetime,
    ) -> EventOrganizer:
        organizer = EventOrganizer(event_id=event_id, user_id=user_id, added_at=now_utc)
        session.add(organizer)
        await session.flush()
        return organizer
