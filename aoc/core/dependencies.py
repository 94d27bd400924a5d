"""
FastAPI dependency injection functions.
Every external client is built here once and handed to the services explicitly.
"""

import secrets
from functools import lru_cache
from typing import Dict, Optional

from fastapi import Depends, Header
from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession

from aoc.core.exceptions.base import ForbiddenError, InfrastructureError
from aoc.core.logger.logger import get_logger
from aoc.core.service.chain.verifier import SolanaVerifier
from aoc.core.service.pricing.price_oracle import PriceOracle
from aoc.core.service.reservation.admission import AdmissionController
from aoc.core.service.reservation.models import NFTTier, TierPolicy, load_tier_policies
from aoc.core.service.rewards.rewards_service import RewardsService
from aoc.infra.config.redis import get_redis
from aoc.infra.config.settings import get_settings
from aoc.infra.database import get_async_session
from aoc.infra.repository.reservation_ledger import ReservationLedger
from aoc.infra.repository.task_repository import TaskRepository
from aoc.infra.repository.user_repository import UserRepository

logger = get_logger(__name__)
settings = get_settings()


async def get_redis_client() -> Redis:
    """Get Redis client dependency."""
    try:
        return await get_redis()
    except (RedisError, OSError) as e:
        raise InfrastructureError(context={"error": str(e)}) from e


@lru_cache()
def get_price_oracle() -> PriceOracle:
    """Process-wide price oracle (owns its HTTP client)."""
    return PriceOracle()


@lru_cache()
def get_chain_verifier() -> SolanaVerifier:
    """Process-wide Solana verifier (owns its HTTP client)."""
    return SolanaVerifier(get_price_oracle())


@lru_cache()
def get_tier_policies() -> Dict[NFTTier, TierPolicy]:
    return load_tier_policies(settings)


async def get_reservation_ledger(redis_client: Redis = Depends(get_redis_client)) -> ReservationLedger:
    """Get reservation ledger with Redis dependency."""
    return ReservationLedger(redis_client)


async def get_admission_controller(
    ledger: ReservationLedger = Depends(get_reservation_ledger),
    price_oracle: PriceOracle = Depends(get_price_oracle),
    verifier: SolanaVerifier = Depends(get_chain_verifier),
) -> AdmissionController:
    """Get admission controller with oracle, verifier and ledger dependencies."""
    return AdmissionController(
        price_oracle=price_oracle,
        verifier=verifier,
        ledger=ledger,
        policies=get_tier_policies(),
        tolerance_percent=settings.AMOUNT_TOLERANCE_PERCENT,
        grant_milestones=settings.INVITE_GRANT_MILESTONES,
        grant_tier=NFTTier.parse(settings.INVITE_GRANT_TIER),
    )


async def get_user_repository(session: AsyncSession = Depends(get_async_session)) -> UserRepository:
    """Get user repository with SQLAlchemy session dependency."""
    return UserRepository(session)


async def get_task_repository(session: AsyncSession = Depends(get_async_session)) -> TaskRepository:
    """Get task repository with SQLAlchemy session dependency."""
    return TaskRepository(session)


async def get_rewards_service(
    users: UserRepository = Depends(get_user_repository),
    tasks: TaskRepository = Depends(get_task_repository),
    admission: AdmissionController = Depends(get_admission_controller),
) -> RewardsService:
    """Get rewards service with repositories and admission controller."""
    return RewardsService(
        users=users,
        tasks=tasks,
        admission=admission,
        invite_bonus_points=settings.INVITE_BONUS_POINTS,
        default_task_points=settings.DEFAULT_TASK_POINTS,
        referral_code_length=settings.REFERRAL_CODE_LENGTH,
    )


async def require_admin(x_admin_key: Optional[str] = Header(None)) -> None:
    """Guard for administrative endpoints."""
    if not settings.ADMIN_API_KEY:
        raise ForbiddenError("Administrative access is not configured")
    if not x_admin_key or not secrets.compare_digest(x_admin_key, settings.ADMIN_API_KEY):
        logger.warning("Rejected administrative request")
        raise ForbiddenError("Invalid admin key")
