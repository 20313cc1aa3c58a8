from cadence.schema.jobs import GenerationJobRow
from cadence.storage.postgres_jobs_repo import progress_update_values
from sqlalchemy import update
from sqlalchemy.dialects import postgresql


def _compile(values) -> str:
  stmt = update(GenerationJobRow).values(**values)
  return str(stmt.compile(dialect=postgresql.dialect(), compile_kwargs={"literal_binds": True}))


def test_progress_uses_greatest_and_guards_message():
  sql = " ".join(_compile(progress_update_values(30, "queued")).lower().split())

  assert "greatest(" in sql
  assert "case when" in sql
  assert "progress <= 30" in sql
  assert "then 'queued' else" in sql
  assert "status_message end" in sql


def test_message_without_progress_is_written_directly():
  values = progress_update_values(None, "reviewing")

  assert values == {"status_message": "reviewing"}


def test_nothing_to_write():
  assert progress_update_values(None, None) == {}
