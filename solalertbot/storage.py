from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import DATABASE_URL, DB_ECHO
from .constants import QUEUE_PENDING
from .logging_setup import get_logger
from .models import Alert, Base, NotificationQueueEntry, User

log = get_logger("storage")


class Database:
    """Owns the async engine and hands out sessions."""

    def __init__(self, url: str = DATABASE_URL, echo: bool = DB_ECHO, engine: Optional[AsyncEngine] = None):
        self.url = url
        self.engine = engine or create_async_engine(url, echo=echo)
        self.sessions = async_sessionmaker(self.engine, expire_on_commit=False)

    def session(self) -> AsyncSession:
        return self.sessions()

    async def init(self):
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        log.info(f"Database ready ({self.engine.url.get_backend_name()})")

    async def dispose(self):
        await self.engine.dispose()


# ---- Alerts ----

def _active():
    return (Alert.is_active.is_(True), Alert.is_triggered.is_(False))

async def active_alerts(session: AsyncSession, token: Optional[str] = None) -> List[Alert]:
    q = select(Alert).where(*_active())
    if token:
        q = q.where(Alert.token_address == token)
    res = await session.execute(q.order_by(Alert.created_at, Alert.id))
    return list(res.scalars())

async def get_alert(session: AsyncSession, alert_id: str) -> Optional[Alert]:
    return await session.get(Alert, alert_id)

async def get_user(session: AsyncSession, user_id: str) -> Optional[User]:
    return await session.get(User, user_id)

async def trigger_alert(session: AsyncSession, alert_id: str, now: datetime) -> bool:
    """Flip one alert to triggered. Returns False when another path already did."""
    res = await session.execute(
        update(Alert)
        .where(Alert.id == alert_id, *_active())
        .values(is_triggered=True, is_active=False, triggered_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1

async def fill_token_info(session: AsyncSession, alert_id: str, name: str, symbol: str):
    if not (name or symbol):
        return
    # only fills blanks; a known name or symbol is never overwritten
    await session.execute(
        update(Alert)
        .where(Alert.id == alert_id, (Alert.token_name.is_(None)) | (Alert.token_symbol.is_(None)))
        .values(token_name=func.coalesce(Alert.token_name, name or None),
                token_symbol=func.coalesce(Alert.token_symbol, symbol or None))
        .execution_options(synchronize_session=False)
    )

async def count_active_for_token(session: AsyncSession, token: str) -> int:
    res = await session.execute(
        select(func.count()).select_from(Alert).where(Alert.token_address == token, *_active())
    )
    return int(res.scalar_one())

async def tokens_with_active_alerts(session: AsyncSession, exclude: Sequence[str] = ()) -> List[str]:
    """Distinct tokens with live alerts, ordered by their oldest alert."""
    q = (select(Alert.token_address, func.min(Alert.created_at).label("first"))
         .where(*_active()).group_by(Alert.token_address))
    if exclude:
        q = q.where(Alert.token_address.not_in(list(exclude)))
    res = await session.execute(q.order_by("first", Alert.token_address))
    return [row[0] for row in res.all()]

async def oldest_active_alert(session: AsyncSession) -> Optional[Alert]:
    res = await session.execute(
        select(Alert).where(*_active()).order_by(Alert.created_at, Alert.id).limit(1)
    )
    return res.scalars().first()

async def alert_counts(session: AsyncSession) -> dict:
    total = (await session.execute(select(func.count()).select_from(Alert))).scalar_one()
    active = (await session.execute(select(func.count()).select_from(Alert).where(*_active()))).scalar_one()
    triggered = (await session.execute(
        select(func.count()).select_from(Alert).where(Alert.is_triggered.is_(True)))).scalar_one()
    tokens = (await session.execute(
        select(func.count(func.distinct(Alert.token_address))).where(*_active()))).scalar_one()
    return {"total": int(total), "active": int(active), "triggered": int(triggered), "unique_tokens": int(tokens)}


# ---- Notification queue ----

async def pending_entries(session: AsyncSession, limit: int, max_attempts: int,
                          channels: Optional[Sequence[str]] = None) -> List[NotificationQueueEntry]:
    """Oldest retryable entries, restricted to ``channels`` when given."""
    q = select(NotificationQueueEntry).where(NotificationQueueEntry.status == QUEUE_PENDING,
                                             NotificationQueueEntry.attempts < max_attempts)
    if channels is not None:
        q = q.where(NotificationQueueEntry.channel.in_(list(channels)))
    res = await session.execute(
        q
        .order_by(NotificationQueueEntry.created_at, NotificationQueueEntry.id)
        .limit(limit)
    )
    return list(res.scalars())

async def entries_for_alert(session: AsyncSession, alert_id: str) -> List[NotificationQueueEntry]:
    res = await session.execute(
        select(NotificationQueueEntry).where(NotificationQueueEntry.alert_id == alert_id)
    )
    return list(res.scalars())
