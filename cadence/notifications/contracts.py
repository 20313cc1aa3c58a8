"""Contracts for user notification delivery."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

NotificationKind = Literal["success", "error", "info"]


@dataclass(frozen=True)
class InAppNotificationEntry:
  """Capture a single in-app notification before it is persisted."""

  user_id: str
  kind: NotificationKind
  title: str
  body: str
  template_id: str | None = None
  data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StoredNotification:
  """An in-app notification as clients read it back."""

  id: str
  user_id: str
  kind: NotificationKind
  title: str
  body: str
  template_id: str | None
  data: dict[str, Any]
  read: bool
  created_at: str


class NotificationError(Exception):
  """Base class for all notification delivery failures."""


class NotificationStore(Protocol):
  """Persistence contract for in-app notifications."""

  async def insert(self, entry: InAppNotificationEntry) -> None:
    """Persist one notification."""

  async def list_for_user(self, user_id: str, *, unread_only: bool = False, limit: int = 50) -> list[StoredNotification]:
    """Return recent notifications for a user, newest first."""

  async def mark_read(self, notification_id: str, *, user_id: str) -> bool:
    """Mark a notification read; returns False when it does not belong to the user."""
