from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from cadence.api.deps import get_job_services, require_owner_id
from cadence.api.models import CreditsResponse, CreditTransactionView
from cadence.jobs.factory import JobServices

router = APIRouter()


@router.get("", response_model=CreditsResponse)
async def get_credits(
  owner_id: str = Depends(require_owner_id),  # noqa: B008
  services: JobServices = Depends(get_job_services),  # noqa: B008
  limit: int = Query(50, ge=1, le=200),  # noqa: B008
) -> CreditsResponse:
  """Return the caller's balance and recent credit history."""
  balance = await services.ledger.balance(owner_id)
  transactions = await services.ledger.list_transactions(owner_id, limit=limit)
  return CreditsResponse(balance=balance, transactions=[CreditTransactionView.from_transaction(item) for item in transactions])
