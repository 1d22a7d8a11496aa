"""Parameterized SQL access for links and clicks.

``LinkRepository`` and ``ClickRepository`` operate on a caller-owned session
(one per request). ``SQLClickStore`` implements the click pipeline's
``ClickStore`` port and opens a fresh session per call, since workers outlive
any request.
"""

import datetime
import logging
from collections.abc import Callable

from sqlalchemy import delete, distinct, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shortlink.exceptions import LinkCodeExistsError, LinkNotFoundError
from shortlink.models import Click, Link
from shortlink.schemas import ClickRecord, ClickStats, DailyClickStats

__all__ = ["LinkRepository", "ClickRepository", "SQLClickStore"]

logger = logging.getLogger(__name__)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class LinkRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, link: Link) -> Link:
        self._session.add(link)
        try:
            await self._session.commit()
        except IntegrityError as exc:
            await self._session.rollback()
            raise LinkCodeExistsError(link.short_code) from exc
        await self._session.refresh(link)
        return link

    async def get_by_short_code(self, short_code: str) -> Link:
        """Return the link unless it is missing or already expired."""
        result = await self._session.execute(
            select(Link).where(
                Link.short_code == short_code,
                or_(Link.expires_at.is_(None), Link.expires_at > _utcnow()),
            )
        )
        link = result.scalar_one_or_none()
        if link is None:
            raise LinkNotFoundError(short_code)
        return link

    async def delete(self, short_code: str) -> None:
        result = await self._session.execute(delete(Link).where(Link.short_code == short_code))
        await self._session.commit()
        if result.rowcount == 0:
            raise LinkNotFoundError(short_code)

    async def get_link_id(self, short_code: str) -> int:
        result = await self._session.execute(select(Link.id).where(Link.short_code == short_code))
        link_id = result.scalar_one_or_none()
        if link_id is None:
            raise LinkNotFoundError(short_code)
        return link_id


class ClickRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record_click(self, record: ClickRecord) -> None:
        self._session.add(
            Click(
                link_id=record.link_id,
                ip_address=record.ip_address,
                user_agent=record.user_agent,
                referer=record.referer,
                country=record.country,
                clicked_at=record.clicked_at,
            )
        )
        await self._session.commit()

    async def get_stats(self, short_code: str) -> ClickStats:
        link_id = await LinkRepository(self._session).get_link_id(short_code)
        result = await self._session.execute(
            select(func.count(Click.id), func.count(distinct(Click.ip_address))).where(Click.link_id == link_id)
        )
        total, unique = result.one()
        return ClickStats(short_code=short_code, total_clicks=total, unique_clicks=unique)

    async def get_daily_stats(self, short_code: str, days: int) -> list[DailyClickStats]:
        link_id = await LinkRepository(self._session).get_link_id(short_code)
        day = func.date(Click.clicked_at).label("day")
        result = await self._session.execute(
            select(day, func.count(Click.id))
            .where(
                Click.link_id == link_id,
                Click.clicked_at >= _utcnow() - datetime.timedelta(days=days),
            )
            .group_by(day)
            .order_by(day.desc())
        )
        return [DailyClickStats(date=row_day, clicks=clicks) for row_day, clicks in result.all()]


class SQLClickStore:
    """``ClickStore`` backed by the relational database."""

    def __init__(self, session_factory: Callable[[], AsyncSession]) -> None:
        self._session_factory = session_factory

    async def resolve_link_id(self, short_code: str) -> int:
        async with self._session_factory() as session:
            return await LinkRepository(session).get_link_id(short_code)

    async def record_click(self, record: ClickRecord) -> None:
        async with self._session_factory() as session:
            await ClickRepository(session).record_click(record)
