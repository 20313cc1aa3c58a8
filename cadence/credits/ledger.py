"""Credit balances and the append-only credit transaction log."""

from __future__ import annotations

import datetime
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Literal, Protocol

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cadence.schema.credits import CreditTransactionRow, UserCredits

logger = logging.getLogger(__name__)

TransactionType = Literal["consumption", "grant"]


class InsufficientBalanceError(RuntimeError):
  """Raised when a user does not hold enough credits for a consumption."""

  def __init__(self, *, user_id: str, balance: int, required: int) -> None:
    self.user_id = user_id
    self.balance = balance
    self.required = required
    super().__init__(f"insufficient credit balance ({balance} available, {required} required)")


@dataclass(frozen=True)
class CreditTransaction:
  """One entry of the credit log; consumption amounts are negative."""

  user_id: str
  type: TransactionType
  amount: int
  description: str
  job_reference: str | None
  timestamp: str


class CreditLedger(Protocol):
  """Contract used by job submission and the credits API."""

  async def balance(self, user_id: str) -> int:
    """Return the current spendable balance."""

  async def consume(self, user_id: str, amount: int, reason: str, job_ref: str) -> CreditTransaction:
    """Atomically debit amount for job_ref, at most once per job_ref."""

  async def grant(self, user_id: str, amount: int, reason: str) -> CreditTransaction:
    """Credit amount to the user's balance."""

  async def list_transactions(self, user_id: str, *, limit: int = 50) -> list[CreditTransaction]:
    """Return the most recent transactions, newest first."""


def _utc_now() -> datetime.datetime:
  return datetime.datetime.now(datetime.UTC)


def _iso(value: datetime.datetime | None) -> str:
  if value is None:
    value = _utc_now()
  return value.astimezone(datetime.UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def _row_to_transaction(row: CreditTransactionRow) -> CreditTransaction:
  return CreditTransaction(user_id=row.user_id, type=row.type, amount=int(row.amount), description=row.description, job_reference=row.job_reference, timestamp=_iso(row.created_at))  # type: ignore[arg-type]


@asynccontextmanager
async def _ledger_transaction(session: AsyncSession):
  """Start a transaction appropriate for the current session state."""
  # Use a savepoint when the caller already opened a transaction.
  if session.in_transaction():
    async with session.begin_nested():
      yield
    return
  async with session.begin():
    yield


async def get_balance(session: AsyncSession, *, user_id: str) -> int:
  """Return the stored balance, treating a missing row as zero."""
  result = await session.scalar(select(UserCredits.balance).where(UserCredits.user_id == user_id))
  return int(result or 0)


async def find_consumption(session: AsyncSession, *, job_ref: str) -> CreditTransaction | None:
  stmt = select(CreditTransactionRow).where(CreditTransactionRow.job_reference == job_ref, CreditTransactionRow.type == "consumption")
  row = (await session.execute(stmt)).scalar_one_or_none()
  if row is None:
    return None
  return _row_to_transaction(row)


async def consume_credits(session: AsyncSession, *, user_id: str, amount: int, reason: str, job_ref: str) -> CreditTransaction:
  """Debit credits for one job and append the consumption row in the same transaction.

  The caller owns the outer transaction and commits it; the debit itself runs in a savepoint so a
  rejected duplicate or an insufficient balance leaves the session usable.
  """
  if amount <= 0:
    raise ValueError("amount must be positive.")

  # Repeat calls for the same job return the original consumption.
  existing = await find_consumption(session, job_ref=job_ref)
  if existing is not None:
    return existing

  try:
    async with _ledger_transaction(session):
      # Guarded decrement: a balance below amount matches no row.
      stmt = update(UserCredits).where(UserCredits.user_id == user_id, UserCredits.balance >= amount).values(balance=UserCredits.balance - amount).returning(UserCredits.balance)
      remaining = (await session.execute(stmt)).scalar_one_or_none()
      if remaining is None:
        balance = await get_balance(session, user_id=user_id)
        raise InsufficientBalanceError(user_id=user_id, balance=balance, required=amount)

      row = CreditTransactionRow(user_id=user_id, type="consumption", amount=-amount, description=reason, job_reference=job_ref, created_at=_utc_now())
      session.add(row)
      # Flush inside the transaction so the unique index rejects a concurrent duplicate and undoes the decrement.
      await session.flush()
      transaction = _row_to_transaction(row)
  except IntegrityError:
    logger.info("Concurrent credit consumption detected job_ref=%s; returning existing row", job_ref)
    existing = await find_consumption(session, job_ref=job_ref)
    if existing is None:
      raise
    return existing

  logger.info("Consumed credits user_id=%s amount=%s job_ref=%s remaining=%s", user_id, amount, job_ref, remaining)
  return transaction


async def grant_credits(session: AsyncSession, *, user_id: str, amount: int, reason: str) -> CreditTransaction:
  """Add credits to a user's balance, creating the balance row on first grant."""
  if amount <= 0:
    raise ValueError("amount must be positive.")

  async with _ledger_transaction(session):
    stmt = insert(UserCredits).values(user_id=user_id, balance=amount).on_conflict_do_update(index_elements=[UserCredits.user_id], set_={"balance": UserCredits.balance + amount})
    await session.execute(stmt)
    row = CreditTransactionRow(user_id=user_id, type="grant", amount=amount, description=reason, job_reference=None, created_at=_utc_now())
    session.add(row)
    await session.flush()
    transaction = _row_to_transaction(row)

  logger.info("Granted credits user_id=%s amount=%s", user_id, amount)
  return transaction


async def list_credit_transactions(session: AsyncSession, *, user_id: str, limit: int = 50) -> list[CreditTransaction]:
  stmt = select(CreditTransactionRow).where(CreditTransactionRow.user_id == user_id).order_by(CreditTransactionRow.created_at.desc(), CreditTransactionRow.id.desc()).limit(limit)
  rows = (await session.execute(stmt)).scalars().all()
  return [_row_to_transaction(row) for row in rows]


class PostgresCreditLedger(CreditLedger):
  """Session-per-call ledger backed by the credit tables."""

  def __init__(self, session_factory) -> None:  # type: ignore[no-untyped-def]
    if session_factory is None:
      raise RuntimeError("Database not initialized")
    self._session_factory = session_factory

  async def balance(self, user_id: str) -> int:
    async with self._session_factory() as session:
      return await get_balance(session, user_id=user_id)

  async def consume(self, user_id: str, amount: int, reason: str, job_ref: str) -> CreditTransaction:
    async with self._session_factory() as session:
      transaction = await consume_credits(session, user_id=user_id, amount=amount, reason=reason, job_ref=job_ref)
      await session.commit()
      return transaction

  async def grant(self, user_id: str, amount: int, reason: str) -> CreditTransaction:
    async with self._session_factory() as session:
      transaction = await grant_credits(session, user_id=user_id, amount=amount, reason=reason)
      await session.commit()
      return transaction

  async def list_transactions(self, user_id: str, *, limit: int = 50) -> list[CreditTransaction]:
    async with self._session_factory() as session:
      return await list_credit_transactions(session, user_id=user_id, limit=limit)
