import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from cadence.credits.ledger import InsufficientBalanceError, consume_credits
from cadence.schema.credits import CreditTransactionRow


def _result(value):
  result = MagicMock()
  result.scalar_one_or_none.return_value = value
  return result


@pytest.fixture
def mock_session():
  session = MagicMock()
  session.execute = AsyncMock()
  session.scalar = AsyncMock(return_value=0)
  session.flush = AsyncMock()
  session.in_transaction.return_value = True
  return session


@pytest.mark.anyio
async def test_consume_debits_and_appends_row(mock_session):
  # Setup: no prior consumption, guarded update leaves 4 credits
  mock_session.execute.side_effect = [_result(None), _result(4)]

  transaction = await consume_credits(mock_session, user_id="user-1", amount=1, reason='Song generation: "T"', job_ref="job-1")

  # Verify
  assert transaction.type == "consumption"
  assert transaction.amount == -1
  assert transaction.job_reference == "job-1"
  row = mock_session.add.call_args[0][0]
  assert isinstance(row, CreditTransactionRow)
  assert row.amount == -1
  mock_session.flush.assert_awaited_once()


@pytest.mark.anyio
async def test_consume_is_idempotent_per_job(mock_session):
  existing = CreditTransactionRow(user_id="user-1", type="consumption", amount=-1, description="earlier", job_reference="job-1", created_at=datetime.datetime(2026, 1, 1, tzinfo=datetime.UTC))
  mock_session.execute.side_effect = [_result(existing)]

  transaction = await consume_credits(mock_session, user_id="user-1", amount=1, reason="again", job_ref="job-1")

  assert transaction.description == "earlier"
  assert transaction.timestamp == "2026-01-01T00:00:00Z"
  assert mock_session.execute.await_count == 1
  mock_session.add.assert_not_called()


@pytest.mark.anyio
async def test_consume_rejects_insufficient_balance(mock_session):
  # Guarded update matches no row when the balance is too low.
  mock_session.execute.side_effect = [_result(None), _result(None)]
  mock_session.scalar.return_value = 0

  with pytest.raises(InsufficientBalanceError) as exc_info:
    await consume_credits(mock_session, user_id="user-1", amount=1, reason="r", job_ref="job-1")

  assert exc_info.value.balance == 0
  assert exc_info.value.required == 1
  mock_session.add.assert_not_called()


@pytest.mark.anyio
async def test_consume_rejects_non_positive_amount(mock_session):
  with pytest.raises(ValueError):
    await consume_credits(mock_session, user_id="user-1", amount=0, reason="r", job_ref="job-1")
