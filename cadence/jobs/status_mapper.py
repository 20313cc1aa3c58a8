"""Translate provider task statuses into job status, progress and message."""

from __future__ import annotations

from cadence.jobs.models import StatusUpdate
from cadence.provider.schemas import UpstreamStatus

# Non-terminal provider states with a fixed progress value and label.
_FIXED_STAGES: dict[str, tuple[int, str]] = {
  "preparing": (15, "preparing resources"),
  "queued": (30, "queued"),
  "streaming": (85, "finalizing"),
}

UPSTREAM_FAILURE_STATUSES = frozenset({"failed", "timeouted", "cancelled"})

RUNNING_BASE_PROGRESS = 30
RUNNING_FALLBACK_PROGRESS = 60


def _running_progress(upstream_progress: float | None) -> int:
  """Scale upstream running progress (0-100) into the 30-80 band."""
  if upstream_progress is None:
    return RUNNING_FALLBACK_PROGRESS
  clamped = min(max(float(upstream_progress), 0.0), 100.0)
  return int(RUNNING_BASE_PROGRESS + clamped * 0.5)


def default_failure_reason(status: str) -> str:
  return f"generation failed with status: {status}"


def map_upstream_status(upstream: UpstreamStatus) -> StatusUpdate:
  """Return the job-level view of one upstream status report."""
  status = upstream.status
  if status in _FIXED_STAGES:
    progress, message = _FIXED_STAGES[status]
    return StatusUpdate(status="processing", progress=progress, message=message)

  if status == "running":
    return StatusUpdate(status="processing", progress=_running_progress(upstream.progress), message="generating audio")

  if status == "succeeded":
    return StatusUpdate(status="succeeded", progress=100, message="done")

  if status in UPSTREAM_FAILURE_STATUSES:
    reason = upstream.failed_reason or default_failure_reason(status)
    return StatusUpdate(status="failed", progress=100, message=reason, failure_reason=reason)

  # Unrecognized states keep polling and leave the stored progress and message alone.
  return StatusUpdate(status="processing", progress=None, message=None)
