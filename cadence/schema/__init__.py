"""Schema package exports."""

from .credits import CreditTransactionRow, UserCredits
from .jobs import GenerationJobRow
from .notifications import InAppNotification

__all__ = ["CreditTransactionRow", "GenerationJobRow", "InAppNotification", "UserCredits"]
