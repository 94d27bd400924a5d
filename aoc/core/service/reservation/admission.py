"""
NFT reservation admission.

Turns a claimed payment into a reservation record. Pre-checks (replay,
supply, per-user cap) run before the chain call so doomed requests never
hit the RPC; the ledger commit re-checks all of them atomically.
"""

import math
from typing import Dict, List, Optional

from aoc.core.exceptions.base import (
    ChainRPCError,
    DuplicateSignatureError,
    InvalidInputError,
    TierSoldOutError,
    UserTierLimitError,
    VerificationFailedError,
)
from aoc.core.logger.logger import get_logger
from aoc.core.service.chain.models import VerificationReason, VerificationResult
from aoc.core.service.chain.verifier import SolanaVerifier, is_valid_signature_format
from aoc.core.service.pricing.price_oracle import PriceOracle, sol_amount_for
from aoc.core.service.reservation.models import (
    NFTTier,
    QuoteResponse,
    ReservationRecord,
    SupplyResponse,
    TierPolicy,
    TierSupply,
)
from aoc.infra.repository.reservation_ledger import ReservationLedger

logger = get_logger(__name__)


class AdmissionController:
    """Admits reservations against supply caps, per-user caps and on-chain proof of payment."""

    def __init__(
        self,
        price_oracle: PriceOracle,
        verifier: SolanaVerifier,
        ledger: ReservationLedger,
        policies: Dict[NFTTier, TierPolicy],
        tolerance_percent: float,
        grant_milestones: Optional[List[int]] = None,
        grant_tier: NFTTier = NFTTier.NORMIE,
    ):
        self.price_oracle = price_oracle
        self.verifier = verifier
        self.ledger = ledger
        self.policies = policies
        self.tolerance = tolerance_percent / 100
        self.grant_milestones = sorted(grant_milestones or [])
        self.grant_tier = grant_tier

    def _validate(self, tier: str, signature: str, claimed_usd: float) -> TierPolicy:
        try:
            nft_tier = NFTTier.parse(tier)
        except ValueError:
            raise InvalidInputError(
                f"Unknown tier: {tier}",
                details={"supported_tiers": [t.value for t in NFTTier]}
            )
        if not is_valid_signature_format(signature):
            raise InvalidInputError(
                "Invalid transaction signature format",
                details={"signature": signature}
            )
        if claimed_usd is None or not math.isfinite(claimed_usd):
            raise InvalidInputError("Claimed amount must be a finite number", details={"claimedUSD": str(claimed_usd)})
        if claimed_usd <= 0:
            raise InvalidInputError("Claimed amount must be a positive number", details={"claimedUSD": claimed_usd})

        policy = self.policies[nft_tier]
        if abs(claimed_usd - policy.price_usd) > policy.price_usd * self.tolerance:
            raise InvalidInputError(
                f"Claimed amount does not match the {nft_tier.value} price of ${policy.price_usd:g}",
                details={"claimedUSD": claimed_usd, "price_usd": policy.price_usd}
            )
        return policy

    async def _pre_check(self, user_id: str, policy: TierPolicy, signature: str) -> None:
        if await self.ledger.is_signature_used(signature):
            existing = await self.ledger.get(signature)
            # Only echo the original record back to its owner
            raise DuplicateSignatureError(
                signature,
                existing if existing and existing.user_id == user_id else None
            )
        if await self.ledger.count_by_tier(policy.tier) >= policy.supply_cap:
            raise TierSoldOutError(policy.tier.value, policy.supply_cap)
        if await self.ledger.count_by_user_and_tier(user_id, policy.tier) >= policy.user_cap:
            raise UserTierLimitError(policy.tier.value, policy.user_cap)

    async def _verify(self, signature: str, policy: TierPolicy, claimed_usd: float) -> VerificationResult:
        # One price for the whole admission; PriceUnavailableError propagates
        sol_price = await self.price_oracle.get_current_price()
        try:
            return await self.verifier.verify(signature, claimed_usd, policy.tier.value, sol_price=sol_price)
        except ChainRPCError as e:
            raise VerificationFailedError(
                VerificationReason.RPC_UNAVAILABLE.value,
                "the Solana network could not be reached. Please retry in a moment.",
                retryable=True,
            ) from e

    async def reserve(self, user_id: str, tier: str, signature: str, claimed_usd: float) -> ReservationRecord:
        """
        Admit one reservation.

        Raises:
            InvalidInputError, DuplicateSignatureError, TierSoldOutError,
            UserTierLimitError, VerificationFailedError, PriceUnavailableError,
            InfrastructureError
        """
        if not user_id or not user_id.strip():
            raise InvalidInputError("User id is required")
        policy = self._validate(tier, signature, claimed_usd)
        await self._pre_check(user_id, policy, signature)

        result = await self._verify(signature, policy, claimed_usd)
        if not result.valid:
            details = {}
            if result.expected_sol is not None:
                details["expected_sol"] = round(result.expected_sol, 6)
            if result.paid_sol is not None:
                details["actual_sol"] = round(result.paid_sol, 6)
            raise VerificationFailedError(
                result.reason.value,
                result.message,
                retryable=result.reason.retryable,
                details=details,
            )

        # Everything persisted comes from the chain, never from the request body
        try:
            return await self.ledger.commit(
                signature=signature,
                user_id=user_id,
                tier=policy.tier,
                payer_address=result.payer_address,
                paid_sol=result.paid_sol,
                paid_usd=result.paid_usd,
                supply_cap=policy.supply_cap,
                user_cap=policy.user_cap,
                recipient=result.recipient,
                sol_price=result.sol_price,
            )
        except DuplicateSignatureError as e:
            if e.existing is not None and e.existing.user_id != user_id:
                raise DuplicateSignatureError(signature) from e
            raise

    async def verify_only(self, tier: str, signature: str, claimed_usd: float) -> VerificationResult:
        """Run the chain checks without touching the ledger."""
        policy = self._validate(tier, signature, claimed_usd)
        try:
            return await self._verify(signature, policy, claimed_usd)
        except VerificationFailedError as e:
            return VerificationResult.reject(
                signature, VerificationReason.RPC_UNAVAILABLE, e.message
            )

    async def supply(self) -> SupplyResponse:
        sold = await self.ledger.supply(self.policies.keys())
        return SupplyResponse(tiers=[
            TierSupply(
                tier=policy.tier,
                price_usd=policy.price_usd,
                supply=policy.supply_cap,
                sold=sold[tier],
                remaining=max(policy.supply_cap - sold[tier], 0),
                per_user_limit=policy.user_cap,
            )
            for tier, policy in self.policies.items()
        ])

    async def quote(self, tier: str) -> QuoteResponse:
        """SOL amount to display before payment. Uses the fallback price policy."""
        try:
            policy = self.policies[NFTTier.parse(tier)]
        except ValueError:
            raise InvalidInputError(f"Unknown tier: {tier}")
        sol_price, estimated = await self.price_oracle.get_price_estimate()
        return QuoteResponse(
            tier=policy.tier,
            price_usd=policy.price_usd,
            sol_price=sol_price,
            sol_amount=round(sol_amount_for(policy.price_usd, sol_price), 6),
            recipient=self.verifier.recipient,
            estimated=estimated,
        )

    async def list_by_user(self, user_id: str) -> List[ReservationRecord]:
        return await self.ledger.list_by_user(user_id)

    async def list_all(self) -> List[ReservationRecord]:
        return await self.ledger.list_all()

    async def grant_invite_rewards(self, user_id: str, invite_count: int) -> List[ReservationRecord]:
        """
        Grant the free reservation for every milestone reached so far.
        Idempotent per (user, milestone); bypasses payment verification and the
        per-user cap but not the supply cap.
        """
        policy = self.policies[self.grant_tier]
        granted = []
        for milestone in self.grant_milestones:
            if invite_count < milestone:
                break
            try:
                record, created = await self.ledger.grant(user_id, policy.tier, milestone, policy.supply_cap)
            except TierSoldOutError:
                logger.warning(
                    "Invite milestone reached but grant tier is sold out",
                    extra={"user_id": user_id, "milestone": milestone, "tier": policy.tier.value}
                )
                continue
            if created:
                granted.append(record)
        return granted
