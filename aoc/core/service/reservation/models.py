"""Models for NFT reservations."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from aoc.infra.config.settings import Settings


class NFTTier(str, Enum):
    """Reservation tiers, cheapest first."""
    NORMIE = "NORMIE"
    SIGMA = "SIGMA"
    CHAD = "CHAD"

    @classmethod
    def parse(cls, value: str) -> "NFTTier":
        """Case-insensitive lookup; raises ValueError for unknown tiers."""
        return cls(str(value).strip().upper())


class ReservationKind(str, Enum):
    PURCHASE = "purchase"
    INVITE_GRANT = "invite_grant"


class TierPolicy(BaseModel):
    """Business contract of one tier."""
    tier: NFTTier
    price_usd: float = Field(..., gt=0)
    supply_cap: int = Field(..., ge=0)
    user_cap: int = Field(..., ge=0)


def load_tier_policies(settings: Settings) -> Dict[NFTTier, TierPolicy]:
    """Build the tier table from configuration; every tier must be configured."""
    policies = {}
    for tier in NFTTier:
        try:
            policies[tier] = TierPolicy(
                tier=tier,
                price_usd=settings.TIER_PRICES_USD[tier.value],
                supply_cap=settings.TIER_SUPPLY_CAPS[tier.value],
                user_cap=settings.TIER_USER_CAPS[tier.value],
            )
        except KeyError as e:
            raise ValueError(f"Tier {tier.value} is missing from configuration: {e}") from e
    return policies


# Field names used by earlier versions of the stored documents
_LEGACY_FIELDS = {
    "userId": "user_id",
    "nftType": "tier",
    "type": "tier",
    "txHash": "signature",
    "walletAddress": "payer_address",
    "solAmount": "paid_sol",
    "amount": "paid_usd",
    "price": "paid_usd",
    "confirmed": "verified",
    "timestamp": "created_at",
    "createdAt": "created_at",
}


class ReservationRecord(BaseModel):
    """A committed reservation as stored in the ledger."""
    signature: str
    user_id: str
    tier: NFTTier
    kind: ReservationKind = ReservationKind.PURCHASE
    recipient: Optional[str] = None
    payer_address: Optional[str] = None
    paid_sol: float = Field(default=0.0, ge=0)
    paid_usd: float = Field(default=0.0, ge=0)
    sol_price: Optional[float] = None
    verified: bool = False
    created_at: datetime

    @model_validator(mode="before")
    @classmethod
    def coerce_legacy_shape(cls, data: Any) -> Any:
        """Map legacy camelCase documents onto the current field names."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for legacy, current in _LEGACY_FIELDS.items():
            if legacy in data:
                value = data.pop(legacy)
                if current not in data and value is not None:
                    data[current] = value
        if "paid_sol" in data and isinstance(data["paid_sol"], str):
            data["paid_sol"] = float(data["paid_sol"] or 0)
        created_at = data.get("created_at")
        if isinstance(created_at, (int, float)):
            # Legacy documents stored milliseconds since epoch
            seconds = created_at / 1000 if created_at > 1e11 else created_at
            data["created_at"] = datetime.fromtimestamp(seconds, tz=timezone.utc)
        elif created_at is None:
            data["created_at"] = datetime.fromtimestamp(0, tz=timezone.utc)
        return data

    @field_validator("tier", mode="before")
    @classmethod
    def normalize_tier(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v


class ReserveRequest(BaseModel):
    """Request body for creating a reservation."""
    tier: str = Field(..., description="NFT tier (NORMIE, SIGMA, CHAD)")
    signature: str = Field(..., min_length=1, max_length=128, description="Solana transaction signature")
    claimedUSD: float = Field(..., gt=0, allow_inf_nan=False, description="USD amount the client says it paid")

    @field_validator("signature")
    @classmethod
    def strip_signature(cls, v: str) -> str:
        return v.strip()


class VerifyRequest(ReserveRequest):
    """Request body for a verification dry run."""


class TierSupply(BaseModel):
    tier: NFTTier
    price_usd: float
    supply: int
    sold: int
    remaining: int
    per_user_limit: int


class SupplyResponse(BaseModel):
    tiers: List[TierSupply]


class QuoteResponse(BaseModel):
    tier: NFTTier
    price_usd: float
    sol_price: float
    sol_amount: float
    recipient: str
    estimated: bool = Field(..., description="True when the fallback SOL price was used")
