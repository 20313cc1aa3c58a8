from __future__ import annotations

from sqlalchemy import Index, Integer, String, Text, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from cadence.core.database import Base

_UTC_NOW_ISO = text("""to_char((now() AT TIME ZONE 'UTC'), 'YYYY-MM-DD"T"HH24:MI:SS"Z"')""")


class GenerationJobRow(Base):
  __tablename__ = "generation_jobs"
  __table_args__ = (
    Index("ix_generation_jobs_owner_created", "owner_id", "created_at"),
    Index("ix_generation_jobs_processing_task", "external_task_id", postgresql_where=text("status = 'processing'")),
    Index("ix_generation_jobs_public_feed", "completed_at", postgresql_where=text("visibility = 'public' AND status = 'succeeded'")),
  )

  job_id: Mapped[str] = mapped_column(String, primary_key=True)
  owner_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
  kind: Mapped[str] = mapped_column(String, nullable=False)
  title: Mapped[str] = mapped_column(String, nullable=False)
  prompt_or_style: Mapped[str] = mapped_column(Text, nullable=False)
  lyrics_or_description: Mapped[str | None] = mapped_column(Text, nullable=True)
  visibility: Mapped[str] = mapped_column(String, nullable=False, server_default="private")
  status: Mapped[str] = mapped_column(String, nullable=False, index=True)
  external_task_id: Mapped[str | None] = mapped_column(String, nullable=True)
  upstream_family: Mapped[str | None] = mapped_column(String, nullable=True)
  progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
  status_message: Mapped[str | None] = mapped_column(Text, nullable=True)
  result_audio_url: Mapped[str | None] = mapped_column(Text, nullable=True)
  result_metadata: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  error_detail: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  source_reference: Mapped[str | None] = mapped_column(String, nullable=True)
  created_at: Mapped[str] = mapped_column(String, nullable=False, server_default=_UTC_NOW_ISO)
  updated_at: Mapped[str] = mapped_column(String, nullable=False, server_default=_UTC_NOW_ISO)
  completed_at: Mapped[str | None] = mapped_column(String, nullable=True)
