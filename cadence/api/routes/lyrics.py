from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from cadence.api.deps import get_lyrics_writer, get_owner_id
from cadence.api.models import LyricsRequest, LyricsResponse
from cadence.jobs.errors import InvalidSubmissionError, UnauthenticatedError, classify_error
from cadence.lyrics.client import LyricsWriter

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("", response_model=LyricsResponse)
async def write_lyrics(request: LyricsRequest, owner_id: str | None = Depends(get_owner_id), writer: LyricsWriter = Depends(get_lyrics_writer)) -> LyricsResponse:  # noqa: B008
  """Draft lyrics for a song idea; nothing is stored and no credits are consumed."""
  if owner_id is None:
    raise UnauthenticatedError()
  idea = request.prompt.strip()
  if not idea:
    raise InvalidSubmissionError("prompt must not be blank")
  try:
    lyrics = await writer.write(idea)
  except Exception as exc:
    error = classify_error(exc)
    logger.warning("Lyrics request failed code=%s reason=%s", error.code, error.reason)
    if error is exc:
      raise
    raise error from exc
  return LyricsResponse(lyrics=lyrics)
