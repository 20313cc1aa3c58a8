"""SQLAlchemy models for credit balances and the credit transaction log."""

from __future__ import annotations

import datetime

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, String, Text, func, text
from sqlalchemy.orm import Mapped, mapped_column

from cadence.core.database import Base


class UserCredits(Base):
  """Current spendable balance per user."""

  __tablename__ = "user_credits"
  __table_args__ = (CheckConstraint("balance >= 0", name="ck_user_credits_balance_non_negative"),)

  user_id: Mapped[str] = mapped_column(String, primary_key=True)
  balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
  updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class CreditTransactionRow(Base):
  """Append-only audit log of credit grants and consumptions."""

  __tablename__ = "credit_transactions"
  __table_args__ = (
    # One consumption per job even under concurrent submissions or retries.
    Index("ux_credit_transactions_consumption_job", "job_reference", unique=True, postgresql_where=text("type = 'consumption'")),
    Index("ix_credit_transactions_user_created", "user_id", "created_at"),
  )

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  user_id: Mapped[str] = mapped_column(String, nullable=False)
  type: Mapped[str] = mapped_column(String, nullable=False)
  amount: Mapped[int] = mapped_column(Integer, nullable=False)
  description: Mapped[str] = mapped_column(Text, nullable=False)
  job_reference: Mapped[str | None] = mapped_column(String, nullable=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
