"""Submission flow: preconditions, credit charging and hand-off to polling."""

from __future__ import annotations

import httpx
import pytest
from cadence.credits.ledger import InsufficientBalanceError
from cadence.jobs.errors import InvalidSubmissionError, NotConfiguredError, UnauthenticatedError, UpstreamCallFailedError
from cadence.jobs.requests import UPLOAD_FALLBACK_PROMPT, SubmissionPayload, UploadedAudio
from conftest import make_job, succeeded

SONG = SubmissionPayload(title="Night Drive", prompt_or_style="synthwave", lyrics="la la")
AUDIO = UploadedAudio(filename="ref.mp3", content=b"ID3", content_type="audio/mpeg")


@pytest.mark.anyio
async def test_song_submission_charges_once_and_polls(make_services, jobs_repo, ledger, provider, notification_store):
  services = make_services()
  provider.task_ids = ["t1"]
  provider.script("t1", succeeded())

  job = await services.submitter.submit("user-1", "song", SONG)
  await services.scheduler.wait_for_idle()

  assert job.status == "processing"
  assert job.external_task_id == "t1"
  assert job.upstream_family == "song"
  assert provider.calls_of("generate") == [("generate", "song", {"prompt": "synthwave", "model": "auto", "n": 1, "lyrics": "la la"})]
  consumptions = ledger.consumptions_for(job.job_id)
  assert len(consumptions) == 1
  assert consumptions[0].amount == -1
  assert consumptions[0].description == 'Song generation: "Night Drive"'
  assert ledger.balances["user-1"] == 4
  assert jobs_repo.jobs[job.job_id].status == "succeeded"
  assert len(notification_store.for_job(job.job_id)) == 1


@pytest.mark.anyio
async def test_missing_identity_creates_nothing(make_services, jobs_repo, ledger, provider):
  services = make_services()

  with pytest.raises(UnauthenticatedError):
    await services.submitter.submit("  ", "song", SONG)

  assert jobs_repo.jobs == {}
  assert ledger.transactions == []
  assert provider.calls == []


@pytest.mark.anyio
async def test_unconfigured_provider_creates_nothing(make_services, jobs_repo):
  services = make_services(with_provider=False)

  with pytest.raises(NotConfiguredError):
    await services.submitter.submit("user-1", "song", SONG)

  assert jobs_repo.jobs == {}


@pytest.mark.anyio
async def test_invalid_payload_creates_nothing(make_services, jobs_repo):
  services = make_services()

  with pytest.raises(InvalidSubmissionError):
    await services.submitter.submit("user-1", "voice_clone", SubmissionPayload(title="Cover", prompt_or_style="pop"))

  assert jobs_repo.jobs == {}


@pytest.mark.anyio
async def test_empty_balance_rejects_before_record(make_services, jobs_repo, ledger, provider):
  ledger.balances["user-1"] = 0
  services = make_services()

  with pytest.raises(InsufficientBalanceError):
    await services.submitter.submit("user-1", "song", SONG)

  assert jobs_repo.jobs == {}
  assert provider.calls == []


@pytest.mark.anyio
async def test_provider_rejection_fails_job_without_charging(make_services, jobs_repo, ledger, provider, notification_store):
  provider.generate_error = UpstreamCallFailedError(status=400, detail="prompt rejected")
  services = make_services()

  job = await services.submitter.submit("user-1", "song", SONG)

  assert job.status == "failed"
  assert job.error_detail["code"] == "upstream_call_failed"
  assert job.error_detail["status"] == 400
  assert ledger.consumptions_for(job.job_id) == []
  assert ledger.balances["user-1"] == 5
  assert len(notification_store.for_job(job.job_id)) == 1
  assert services.scheduler.active_count == 0


@pytest.mark.anyio
async def test_network_failure_during_submit_is_classified(make_services, provider):
  provider.generate_error = httpx.ConnectTimeout("slow")
  services = make_services()

  job = await services.submitter.submit("user-1", "instrumental", SubmissionPayload(title="T", prompt_or_style="ambient"))

  assert job.status == "failed"
  assert job.error_detail["code"] == "timeout"


@pytest.mark.anyio
async def test_credit_race_fails_job_after_task_started(make_services, jobs_repo, ledger, provider):
  ledger.consume_error = InsufficientBalanceError(user_id="user-1", balance=0, required=1)
  provider.task_ids = ["t1"]
  services = make_services()

  job = await services.submitter.submit("user-1", "song", SONG)

  assert job.status == "failed"
  assert job.external_task_id == "t1"
  assert job.error_detail == {"code": "unknown", "reason": "insufficient credit balance"}
  assert services.scheduler.active_count == 0


@pytest.mark.anyio
async def test_upload_uses_analysis_as_prompt(make_services, jobs_repo, provider, observer):
  provider.task_ids = ["t1"]
  provider.describe_result = "lo-fi, piano"
  provider.script("t1", succeeded())
  services = make_services()

  job = await services.submitter.submit("user-1", "upload_derived", SubmissionPayload(title="Ref", audio=AUDIO))
  await services.scheduler.wait_for_idle()

  generate = provider.calls_of("generate")[0]
  assert generate[1] == "instrumental"
  assert generate[2]["file_id"] == "file-1"
  assert generate[2]["prompt"] == "lo-fi, piano"
  assert job.source_reference == "file-1"
  assert observer.progress_for(job.job_id)[:4] == [0, 5, 20, 20]


@pytest.mark.anyio
async def test_upload_analysis_failure_falls_back_to_default_prompt(make_services, provider):
  provider.task_ids = ["t1"]
  provider.describe_error = RuntimeError("analysis unavailable")
  provider.script("t1", succeeded())
  services = make_services()

  job = await services.submitter.submit("user-1", "upload_derived", SubmissionPayload(title="Ref", audio=AUDIO))
  await services.scheduler.wait_for_idle()

  assert job.status == "processing"
  assert provider.calls_of("generate")[0][2]["prompt"] == UPLOAD_FALLBACK_PROMPT


@pytest.mark.anyio
async def test_upload_failure_fails_job(make_services, provider, ledger):
  provider.upload_error = UpstreamCallFailedError(status=413, detail="file too large")
  services = make_services()

  job = await services.submitter.submit("user-1", "voice_clone", SubmissionPayload(title="Cover", prompt_or_style="pop", lyrics="hey", audio=AUDIO))

  assert job.status == "failed"
  assert provider.calls_of("generate") == []
  assert ledger.consumptions_for(job.job_id) == []


@pytest.mark.anyio
async def test_extend_uses_source_task_and_family(make_services, jobs_repo, provider):
  await jobs_repo.create_job(make_job("src-1", status="succeeded", external_task_id="t0", kind="instrumental", upstream_family="instrumental", title="Calm"))
  provider.task_ids = ["t1"]
  provider.script("t1", succeeded())
  services = make_services()

  job = await services.submitter.submit("user-1", "extend", SubmissionPayload(source_job_id="src-1", duration_seconds=30))
  await services.scheduler.wait_for_idle()

  assert provider.calls_of("extend") == [("extend", "instrumental", {"id": "t0", "duration": 30})]
  assert job.title == "Calm (Extended)"
  assert job.source_reference == "src-1"
  assert provider.calls_of("query") == [("query", "instrumental", "t1")]


@pytest.mark.anyio
async def test_extend_rejects_foreign_source(make_services, jobs_repo):
  await jobs_repo.create_job(make_job("src-1", owner_id="someone-else", status="succeeded"))
  services = make_services()

  with pytest.raises(InvalidSubmissionError, match="source job not found"):
    await services.submitter.submit("user-1", "extend", SubmissionPayload(source_job_id="src-1", duration_seconds=30))

  assert list(jobs_repo.jobs) == ["src-1"]


@pytest.mark.anyio
async def test_youtube_submission_records_source_url(make_services, provider):
  provider.task_ids = ["t1"]
  provider.script("t1", succeeded())
  services = make_services()

  job = await services.submitter.submit("user-1", "youtube_derived", SubmissionPayload(title="Cover", youtube_url="https://youtu.be/abc"))
  await services.scheduler.wait_for_idle()

  assert job.lyrics_or_description == "Generated from: https://youtu.be/abc"
  assert provider.calls_of("generate")[0][2]["audio_url"] == "https://youtu.be/abc"
