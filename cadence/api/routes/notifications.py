from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from cadence.api.deps import get_job_services, require_owner_id
from cadence.api.models import NotificationView
from cadence.jobs.factory import JobServices

router = APIRouter()


@router.get("", response_model=list[NotificationView])
async def list_notifications(
  owner_id: str = Depends(require_owner_id),  # noqa: B008
  services: JobServices = Depends(get_job_services),  # noqa: B008
  unread_only: bool = Query(False),  # noqa: B008
  limit: int = Query(20, ge=1, le=100),  # noqa: B008
) -> list[NotificationView]:
  """
  Poll for recent notifications for the caller.

  - **unread_only**: Only return notifications that were not marked read.
  - **limit**: Max number of notifications to return.
  """
  notifications = await services.notifications.list_for_user(owner_id, unread_only=unread_only, limit=limit)
  return [NotificationView.from_notification(item) for item in notifications]


@router.post("/{notification_id}/read", status_code=status.HTTP_204_NO_CONTENT)
async def mark_notification_read(notification_id: str, owner_id: str = Depends(require_owner_id), services: JobServices = Depends(get_job_services)) -> Response:  # noqa: B008
  """Mark one notification as read."""
  updated = await services.notifications.mark_read(notification_id, user_id=owner_id)
  if not updated:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
  return Response(status_code=status.HTTP_204_NO_CONTENT)
