from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from cadence.notifications.in_app_templates import render_in_app_template
from cadence.notifications.service import NotificationService
from conftest import make_job


@pytest.fixture
def mock_in_app_repo():
  repo = MagicMock()
  repo.insert = AsyncMock()
  return repo


@pytest.fixture
def notification_service(mock_in_app_repo):
  return NotificationService(in_app_repo=mock_in_app_repo, enabled=True)


@pytest.mark.anyio
async def test_notify_swallows_insert_failure(notification_service, mock_in_app_repo):
  # Setup: the store is down
  mock_in_app_repo.insert.side_effect = RuntimeError("connection reset")

  # Test: no exception reaches the caller
  await notification_service.notify(owner_id="user-1", title="Music ready", body="done", kind="success")

  # Verify
  mock_in_app_repo.insert.assert_awaited_once()


@pytest.mark.anyio
async def test_notify_job_finished_renders_success_template(notification_service, mock_in_app_repo):
  job = make_job(status="succeeded", title="Night Drive")

  await notification_service.notify_job_finished(job)

  entry = mock_in_app_repo.insert.call_args[0][0]
  assert entry.user_id == "user-1"
  assert entry.kind == "success"
  assert entry.template_id == "job_succeeded_v1"
  assert entry.body == '"Night Drive" is ready to play.'
  assert entry.data == {"job_id": "job-1", "title": "Night Drive"}


@pytest.mark.anyio
async def test_notify_job_finished_includes_failure_reason(notification_service, mock_in_app_repo):
  job = make_job(status="failed", title="Night Drive", error_detail={"code": "timeout", "reason": "timeout"})

  await notification_service.notify_job_finished(job)

  entry = mock_in_app_repo.insert.call_args[0][0]
  assert entry.kind == "error"
  assert entry.body == '"Night Drive" could not be generated: timeout'


@pytest.mark.anyio
async def test_notify_job_finished_skips_processing_jobs(notification_service, mock_in_app_repo):
  await notification_service.notify_job_finished(make_job(status="processing"))

  mock_in_app_repo.insert.assert_not_called()


@pytest.mark.anyio
async def test_render_failure_is_logged_not_raised(notification_service, mock_in_app_repo):
  with patch("cadence.notifications.service.render_in_app_template") as mock_render:
    mock_render.side_effect = ValueError("Missing placeholders")

    await notification_service.notify_job_finished(make_job(status="succeeded"))

  mock_in_app_repo.insert.assert_not_called()


@pytest.mark.anyio
async def test_disabled_service_writes_nothing(mock_in_app_repo):
  service = NotificationService(in_app_repo=mock_in_app_repo, enabled=False)

  await service.notify_job_finished(make_job(status="succeeded"))

  mock_in_app_repo.insert.assert_not_called()


def test_render_requires_placeholders():
  with pytest.raises(ValueError, match="reason"):
    render_in_app_template(template_id="job_failed_v1", data={"job_id": "job-1", "title": "T"})
