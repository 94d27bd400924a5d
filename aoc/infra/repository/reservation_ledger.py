"""
Reservation ledger on Redis.

Layout (prefix `nft:` by default):
    reservation:{signature}     JSON record, the uniqueness key
    tier:{TIER}:count           committed reservations per tier
    user:{uid}:tier:{TIER}      signatures per user and tier
    user:{uid}:order            signatures per user, creation order
    all                         every signature, creation order
    grant:{uid}:{milestone}     JSON record of an invite grant

All writes go through one Lua script so the uniqueness check, the cap
checks and every index update happen atomically.
"""

from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from aoc.core.exceptions.base import (
    DuplicateSignatureError,
    InfrastructureError,
    TierSoldOutError,
    UserTierLimitError,
)
from aoc.core.logger.logger import get_logger
from aoc.core.service.reservation.models import NFTTier, ReservationKind, ReservationRecord
from aoc.infra.config.settings import get_settings

logger = get_logger(__name__)
settings = get_settings()

# KEYS: record, tier count, user-tier index, user order, all, [grant]
# ARGV: record json, signature, supply cap, user cap (-1 = no per-user cap)
COMMIT_SCRIPT = """
local existing = redis.call('GET', KEYS[1])
if existing then
    return {'DUPLICATE', existing}
end
if #KEYS >= 6 then
    local granted = redis.call('GET', KEYS[6])
    if granted then
        return {'GRANTED', granted}
    end
end
local sold = tonumber(redis.call('GET', KEYS[2]) or '0')
if sold >= tonumber(ARGV[3]) then
    return {'SOLD_OUT', ''}
end
local user_cap = tonumber(ARGV[4])
if user_cap >= 0 and redis.call('LLEN', KEYS[3]) >= user_cap then
    return {'USER_LIMIT', ''}
end
redis.call('SET', KEYS[1], ARGV[1])
redis.call('INCR', KEYS[2])
redis.call('RPUSH', KEYS[3], ARGV[2])
redis.call('RPUSH', KEYS[4], ARGV[2])
redis.call('RPUSH', KEYS[5], ARGV[2])
if #KEYS >= 6 then
    redis.call('SET', KEYS[6], ARGV[1])
end
return {'OK', ARGV[1]}
"""


class ReservationLedger:
    """Append-only reservation store keyed by transaction signature."""

    def __init__(self, redis_client: Redis, key_prefix: Optional[str] = None):
        self.redis = redis_client
        self.key_prefix = key_prefix if key_prefix is not None else settings.LEDGER_KEY_PREFIX
        self._commit = self.redis.register_script(COMMIT_SCRIPT)

    def _record_key(self, signature: str) -> str:
        return f"{self.key_prefix}reservation:{signature}"

    def _tier_count_key(self, tier: NFTTier) -> str:
        return f"{self.key_prefix}tier:{tier.value}:count"

    def _user_tier_key(self, user_id: str, tier: NFTTier) -> str:
        return f"{self.key_prefix}user:{user_id}:tier:{tier.value}"

    def _user_order_key(self, user_id: str) -> str:
        return f"{self.key_prefix}user:{user_id}:order"

    def _all_key(self) -> str:
        return f"{self.key_prefix}all"

    def _grant_key(self, user_id: str, milestone: int) -> str:
        return f"{self.key_prefix}grant:{user_id}:{milestone}"

    @staticmethod
    def grant_signature(user_id: str, milestone: int) -> str:
        """Ledger key of an invite grant. Contains '-', so it never collides with base58."""
        return f"grant-{user_id}-{milestone}"

    def _deserialize(self, data: Optional[str], signature: Optional[str] = None) -> Optional[ReservationRecord]:
        """Validate a stored document; legacy shapes are coerced, broken ones skipped."""
        if not data:
            return None
        try:
            record = ReservationRecord.model_validate_json(data)
        except ValidationError as e:
            logger.warning(
                "Skipping unreadable reservation record",
                extra={"signature": signature, "error": str(e)}
            )
            return None
        if signature and record.signature != signature:
            logger.warning(
                "Reservation record signature does not match its key",
                extra={"signature": signature, "stored_signature": record.signature}
            )
        return record

    async def is_signature_used(self, signature: str) -> bool:
        try:
            return bool(await self.redis.exists(self._record_key(signature)))
        except RedisError as e:
            raise self._store_error("is_signature_used", e, signature=signature)

    async def get(self, signature: str) -> Optional[ReservationRecord]:
        try:
            data = await self.redis.get(self._record_key(signature))
        except RedisError as e:
            raise self._store_error("get", e, signature=signature)
        return self._deserialize(data, signature)

    async def count_by_tier(self, tier: NFTTier) -> int:
        try:
            value = await self.redis.get(self._tier_count_key(tier))
        except RedisError as e:
            raise self._store_error("count_by_tier", e, tier=tier.value)
        return int(value) if value else 0

    async def count_by_user_and_tier(self, user_id: str, tier: NFTTier) -> int:
        try:
            return int(await self.redis.llen(self._user_tier_key(user_id, tier)))
        except RedisError as e:
            raise self._store_error("count_by_user_and_tier", e, user_id=user_id, tier=tier.value)

    async def supply(self, tiers: Iterable[NFTTier]) -> Dict[NFTTier, int]:
        """Sold count per tier in one round trip."""
        tiers = list(tiers)
        try:
            values = await self.redis.mget([self._tier_count_key(tier) for tier in tiers])
        except RedisError as e:
            raise self._store_error("supply", e)
        return {tier: int(value) if value else 0 for tier, value in zip(tiers, values)}

    async def commit(
        self,
        signature: str,
        user_id: str,
        tier: NFTTier,
        payer_address: Optional[str],
        paid_sol: float,
        paid_usd: float,
        supply_cap: int,
        user_cap: int,
        recipient: Optional[str] = None,
        sol_price: Optional[float] = None,
    ) -> ReservationRecord:
        """
        Atomically record a verified purchase.

        Raises:
            DuplicateSignatureError: signature already backs a reservation
            TierSoldOutError: tier supply exhausted
            UserTierLimitError: user reached the per-tier cap
            InfrastructureError: Redis unreachable
        """
        record = ReservationRecord(
            signature=signature,
            user_id=user_id,
            tier=tier,
            kind=ReservationKind.PURCHASE,
            recipient=recipient,
            payer_address=payer_address,
            paid_sol=paid_sol,
            paid_usd=paid_usd,
            sol_price=sol_price,
            verified=True,
            created_at=datetime.now(timezone.utc),
        )
        status, payload = await self._run_commit(record, supply_cap, user_cap)

        if status == "DUPLICATE":
            raise DuplicateSignatureError(signature, self._deserialize(payload, signature))
        if status == "SOLD_OUT":
            raise TierSoldOutError(tier.value, supply_cap)
        if status == "USER_LIMIT":
            raise UserTierLimitError(tier.value, user_cap)

        logger.info(
            "Reservation committed",
            extra={
                "signature": signature,
                "user_id": user_id,
                "tier": tier.value,
                "payer_address": payer_address,
                "paid_sol": paid_sol,
            }
        )
        return record

    async def grant(
        self,
        user_id: str,
        tier: NFTTier,
        milestone: int,
        supply_cap: int,
    ) -> Tuple[ReservationRecord, bool]:
        """
        Record a free reservation for an invite milestone, at most once per
        (user, milestone). Ignores the per-user cap, respects supply.

        Returns:
            (record, created) - created is False when the grant already existed

        Raises:
            TierSoldOutError: tier supply exhausted
            InfrastructureError: Redis unreachable
        """
        signature = self.grant_signature(user_id, milestone)
        record = ReservationRecord(
            signature=signature,
            user_id=user_id,
            tier=tier,
            kind=ReservationKind.INVITE_GRANT,
            verified=False,
            created_at=datetime.now(timezone.utc),
        )
        status, payload = await self._run_commit(record, supply_cap, -1, grant_key=self._grant_key(user_id, milestone))

        if status in ("DUPLICATE", "GRANTED"):
            existing = self._deserialize(payload, signature)
            return existing or record, False
        if status == "SOLD_OUT":
            raise TierSoldOutError(tier.value, supply_cap)

        logger.info(
            "Invite milestone reservation granted",
            extra={"user_id": user_id, "tier": tier.value, "milestone": milestone}
        )
        return record, True

    async def _run_commit(
        self,
        record: ReservationRecord,
        supply_cap: int,
        user_cap: int,
        grant_key: Optional[str] = None,
    ) -> Tuple[str, str]:
        keys = [
            self._record_key(record.signature),
            self._tier_count_key(record.tier),
            self._user_tier_key(record.user_id, record.tier),
            self._user_order_key(record.user_id),
            self._all_key(),
        ]
        if grant_key:
            keys.append(grant_key)
        args = [record.model_dump_json(), record.signature, supply_cap, user_cap]
        try:
            status, payload = await self._commit(keys=keys, args=args)
        except RedisError as e:
            raise self._store_error("commit", e, signature=record.signature, user_id=record.user_id)
        if isinstance(status, bytes):
            status = status.decode()
        if isinstance(payload, bytes):
            payload = payload.decode()
        return status, payload

    async def _load(self, signatures: List[str]) -> List[ReservationRecord]:
        if not signatures:
            return []
        try:
            documents = await self.redis.mget([self._record_key(sig) for sig in signatures])
        except RedisError as e:
            raise self._store_error("load", e)
        records = []
        for signature, document in zip(signatures, documents):
            record = self._deserialize(document, signature)
            if record:
                records.append(record)
        return records

    async def list_by_user(self, user_id: str) -> List[ReservationRecord]:
        """User's reservations in creation order."""
        try:
            signatures = await self.redis.lrange(self._user_order_key(user_id), 0, -1)
        except RedisError as e:
            raise self._store_error("list_by_user", e, user_id=user_id)
        return await self._load(signatures)

    async def list_all(self) -> List[ReservationRecord]:
        """Every reservation in creation order (administrative)."""
        try:
            signatures = await self.redis.lrange(self._all_key(), 0, -1)
        except RedisError as e:
            raise self._store_error("list_all", e)
        return await self._load(signatures)

    def _store_error(self, operation: str, error: Exception, **context) -> InfrastructureError:
        context.update({"operation": operation, "error": str(error), "error_type": type(error).__name__})
        logger.error("Reservation ledger unavailable", extra=context)
        return InfrastructureError(context=context)
