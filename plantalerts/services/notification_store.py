"""Durable, append-ordered notification log on top of the async SQLAlchemy session."""
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from plantalerts.core.config import settings
from plantalerts.models.notification import Notification
from plantalerts.schemas.notification import NotificationDraft, NotificationItem, NotificationPage
from plantalerts.services.cursor import decode_cursor, encode_cursor

DEFAULT_PAGE_SIZE = settings.FEED_PAGE_SIZE


async def create_notification(db: AsyncSession, draft: NotificationDraft) -> NotificationItem:
    notif = Notification(**draft.model_dump())
    db.add(notif)
    await db.commit()
    await db.refresh(notif)
    return NotificationItem.model_validate(notif)


async def list_notifications(
    db: AsyncSession,
    operator_id: str,
    scope: str = "all",
    unread: bool | None = None,
    cursor: str | None = None,
    limit: int = DEFAULT_PAGE_SIZE,
) -> NotificationPage:
    """Returns one page, newest first.

    ``unread`` only applies to the ``mine`` scope: True keeps unread rows,
    False keeps read rows, None keeps both.
    """
    query = select(Notification)
    if scope == "mine":
        query = query.where(Notification.operator_id == operator_id)
        if unread is not None:
            query = query.where(Notification.read == (not unread))

    if cursor:
        query = query.where(Notification.id < decode_cursor(cursor, scope))

    result = await db.execute(query.order_by(Notification.id.desc()).limit(limit + 1))
    rows = result.scalars().all()

    has_more = len(rows) > limit
    rows = rows[:limit]

    return NotificationPage(
        data=[NotificationItem.model_validate(n) for n in rows],
        next_cursor=encode_cursor(scope, rows[-1].id) if has_more else None,
        has_more=has_more,
    )


async def count_unread(db: AsyncSession, operator_id: str) -> int:
    result = await db.execute(
        select(func.count())
        .select_from(Notification)
        .where(Notification.operator_id == operator_id, Notification.read == False)  # noqa: E712
    )
    return result.scalar() or 0


async def mark_read(db: AsyncSession, operator_id: str, notification_id: int) -> bool:
    result = await db.execute(
        select(Notification).where(Notification.id == notification_id, Notification.operator_id == operator_id)
    )
    notif = result.scalar_one_or_none()
    if not notif:
        return False

    notif.read = True
    await db.commit()
    return True


async def mark_all_read(db: AsyncSession, operator_id: str) -> int:
    result = await db.execute(
        update(Notification)
        .where(Notification.operator_id == operator_id, Notification.read == False)  # noqa: E712
        .values(read=True)
    )
    await db.commit()
    return result.rowcount
