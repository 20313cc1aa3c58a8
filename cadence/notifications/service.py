"""Notification orchestration for user-facing job events."""

from __future__ import annotations

import logging
from typing import Any

from cadence.jobs.models import GenerationJob
from cadence.notifications.contracts import InAppNotificationEntry, NotificationKind, NotificationStore, StoredNotification
from cadence.notifications.in_app_templates import render_in_app_template

logger = logging.getLogger(__name__)


class NotificationService:
  """Emits in-app notifications; delivery failures never propagate to callers."""

  def __init__(self, *, in_app_repo: NotificationStore, enabled: bool = True) -> None:
    self._in_app_repo = in_app_repo
    self._enabled = enabled

  async def notify(self, *, owner_id: str, title: str, body: str, kind: NotificationKind, template_id: str | None = None, data: dict[str, Any] | None = None) -> None:
    """Persist one notification on a best-effort basis."""
    # Avoid writing notifications when the feature is switched off.
    if not self._enabled:
      return

    entry = InAppNotificationEntry(user_id=owner_id, kind=kind, title=title, body=body, template_id=template_id, data=dict(data or {}))
    try:
      await self._in_app_repo.insert(entry)
    except Exception as exc:  # noqa: BLE001
      logger.error("In-app notification insert failed owner_id=%s kind=%s error=%s", owner_id, kind, exc, exc_info=True)

  async def notify_job_finished(self, job: GenerationJob) -> None:
    """Emit the success or failure notification for a job that just reached a terminal status."""
    if job.status == "succeeded":
      template_id = "job_succeeded_v1"
      data: dict[str, Any] = {"job_id": job.job_id, "title": job.title}
    elif job.status == "failed":
      template_id = "job_failed_v1"
      reason = (job.error_detail or {}).get("reason") or "unknown error"
      data = {"job_id": job.job_id, "title": job.title, "reason": reason}
    else:
      logger.warning("Refusing to notify for non-terminal job_id=%s status=%s", job.job_id, job.status)
      return

    try:
      kind, title, body = render_in_app_template(template_id=template_id, data=data)
    except Exception as exc:  # noqa: BLE001
      logger.error("In-app template render failed template_id=%s error=%s", template_id, exc, exc_info=True)
      return

    await self.notify(owner_id=job.owner_id, title=title, body=body, kind=kind, template_id=template_id, data=data)

  async def list_for_user(self, user_id: str, *, unread_only: bool = False, limit: int = 50) -> list[StoredNotification]:
    return await self._in_app_repo.list_for_user(user_id, unread_only=unread_only, limit=limit)

  async def mark_read(self, notification_id: str, *, user_id: str) -> bool:
    return await self._in_app_repo.mark_read(notification_id, user_id=user_id)
