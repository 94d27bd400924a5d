"""Models for on-chain payment verification."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class VerificationReason(str, Enum):
    INVALID_FORMAT = "INVALID_FORMAT"
    NOT_FOUND = "NOT_FOUND"
    EXPIRED = "EXPIRED"
    CHAIN_FAILURE = "CHAIN_FAILURE"
    WRONG_RECIPIENT = "WRONG_RECIPIENT"
    AMOUNT_MISMATCH = "AMOUNT_MISMATCH"
    # Infrastructure fault mapped by the admission controller
    RPC_UNAVAILABLE = "RPC_UNAVAILABLE"

    @property
    def retryable(self) -> bool:
        return self in (VerificationReason.NOT_FOUND, VerificationReason.RPC_UNAVAILABLE)


class VerificationResult(BaseModel):
    """Verdict on a submitted transaction signature."""
    valid: bool
    signature: str
    reason: Optional[VerificationReason] = None
    message: Optional[str] = None
    payer_address: Optional[str] = None
    recipient: Optional[str] = None
    paid_sol: Optional[float] = None
    paid_usd: Optional[float] = None
    expected_sol: Optional[float] = None
    sol_price: Optional[float] = None
    confirmed_at: Optional[datetime] = None

    @classmethod
    def reject(cls, signature: str, reason: VerificationReason, message: str, **extra) -> "VerificationResult":
        return cls(valid=False, signature=signature, reason=reason, message=message, **extra)
