"""Repository helpers for in-app notifications."""

from __future__ import annotations

import datetime
import logging
import uuid

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cadence.core.database import get_session_factory
from cadence.notifications.contracts import InAppNotificationEntry, NotificationStore, StoredNotification
from cadence.schema.notifications import InAppNotification

logger = logging.getLogger(__name__)


class InAppNotificationRepository(NotificationStore):
  """Persist in-app notifications to Postgres."""

  async def insert(self, entry: InAppNotificationEntry) -> None:
    """Insert a new in-app notification row."""
    session_factory = get_session_factory()
    if session_factory is None:
      return
    async with session_factory() as session:
      await self._insert_with_session(session=session, entry=entry)

  async def _insert_with_session(self, *, session: AsyncSession, entry: InAppNotificationEntry) -> None:
    record = InAppNotification(user_id=entry.user_id, kind=entry.kind, template_id=entry.template_id, title=entry.title, body=entry.body, data_json=entry.data, read=False)
    session.add(record)
    await session.commit()

  async def list_for_user(self, user_id: str, *, unread_only: bool = False, limit: int = 50) -> list[StoredNotification]:
    session_factory = get_session_factory()
    if session_factory is None:
      return []
    async with session_factory() as session:
      stmt = select(InAppNotification).where(InAppNotification.user_id == user_id)
      if unread_only:
        stmt = stmt.where(InAppNotification.read.is_(False))
      stmt = stmt.order_by(InAppNotification.created_at.desc()).limit(limit)
      rows = (await session.execute(stmt)).scalars().all()
      return [_row_to_notification(row) for row in rows]

  async def mark_read(self, notification_id: str, *, user_id: str) -> bool:
    session_factory = get_session_factory()
    if session_factory is None:
      return False
    try:
      parsed_id = uuid.UUID(notification_id)
    except ValueError:
      return False
    async with session_factory() as session:
      stmt = update(InAppNotification).where(InAppNotification.id == parsed_id, InAppNotification.user_id == user_id).values(read=True)
      result = await session.execute(stmt)
      await session.commit()
      return bool(result.rowcount)


class NullInAppNotificationRepository(InAppNotificationRepository):
  """No-op repository when persistence is unavailable."""

  async def insert(self, entry: InAppNotificationEntry) -> None:
    logger.debug("In-app notification persistence disabled; dropping kind=%s template_id=%s", entry.kind, entry.template_id)

  async def list_for_user(self, user_id: str, *, unread_only: bool = False, limit: int = 50) -> list[StoredNotification]:
    return []

  async def mark_read(self, notification_id: str, *, user_id: str) -> bool:
    return False


def _row_to_notification(row: InAppNotification) -> StoredNotification:
  created_at = row.created_at or datetime.datetime.now(datetime.UTC)
  return StoredNotification(
    id=str(row.id),
    user_id=row.user_id,
    kind=row.kind,  # type: ignore[arg-type]
    title=row.title,
    body=row.body,
    template_id=row.template_id,
    data=dict(row.data_json or {}),
    read=bool(row.read),
    created_at=created_at.astimezone(datetime.UTC).strftime("%Y-%m-%dT%H:%M:%SZ"),
  )
