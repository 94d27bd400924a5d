"""
User repository using SQLAlchemy ORM
"""

from typing import Optional
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from aoc.core.exceptions.base import InfrastructureError, InvalidInputError, UserAlreadyExistsError
from aoc.core.exceptions.handler import ServiceErrorCode
from aoc.core.service.rewards.models import User
from aoc.infra.models import UserModel
from aoc.core.logger.logger import get_logger

logger = get_logger(__name__)


class UserRepository:
    """Repository for user database operations using SQLAlchemy ORM"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _model_to_entity(self, model: UserModel) -> User:
        """Convert SQLAlchemy model to Pydantic entity"""
        return User(
            uid=model.uid,
            email=model.email,
            referral_code=model.referral_code,
            invite_code=model.invite_code,
            points=model.points or 0,
            invite_count=model.invite_count or 0,
            multiplier=model.multiplier or 1,
            created_at=model.created_at
        )

    async def _fail(self, operation: str, error: Exception, **context) -> InfrastructureError:
        await self.session.rollback()
        context.update({"operation": operation, "error": str(error)})
        logger.error("User store unavailable", extra=context)
        return InfrastructureError(context=context)

    async def get_user(self, uid: str) -> Optional[User]:
        """Get user by external auth id"""
        try:
            user_model = await self.session.get(UserModel, uid, populate_existing=True)
        except SQLAlchemyError as e:
            raise await self._fail("get_user", e, uid=uid)
        return self._model_to_entity(user_model) if user_model else None

    async def get_by_referral_code(self, referral_code: str) -> Optional[User]:
        """Get user owning a referral code"""
        try:
            stmt = (
                select(UserModel)
                .where(UserModel.referral_code == referral_code)
                .execution_options(populate_existing=True)
            )
            result = await self.session.execute(stmt)
            user_model = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise await self._fail("get_by_referral_code", e, referral_code=referral_code)
        return self._model_to_entity(user_model) if user_model else None

    async def create_user(
        self,
        uid: str,
        email: str,
        referral_code: str,
        invite_code: Optional[str] = None,
        invite_bonus_points: int = 0
    ) -> Optional[User]:
        """
        Insert a new user and, when `invite_code` is given, credit its owner
        with one invite and `invite_bonus_points` in the same transaction

        Returns:
            User, or None if the referral code collided with an existing one

        Raises:
            UserAlreadyExistsError: uid is already registered
            InvalidInputError: no user owns `invite_code`
        """
        if await self.get_user(uid):
            raise UserAlreadyExistsError(uid)

        new_user = UserModel(
            uid=uid,
            email=email,
            referral_code=referral_code,
            invite_code=invite_code,
            points=0,
            invite_count=0,
            multiplier=1
        )
        try:
            self.session.add(new_user)
            await self.session.flush()
            if invite_code and not await self._credit_inviter(invite_code, invite_bonus_points):
                await self.session.rollback()
                raise InvalidInputError(
                    "Invite code not found",
                    details={"invite_code": invite_code},
                    code=ServiceErrorCode.INVALID_INVITE_CODE
                )
            await self.session.commit()
            await self.session.refresh(new_user)
        except IntegrityError as e:
            await self.session.rollback()
            if await self.get_user(uid):
                raise UserAlreadyExistsError(uid) from e
            logger.warning(
                "Referral code collision, retrying",
                extra={"uid": uid, "referral_code": referral_code}
            )
            return None
        except SQLAlchemyError as e:
            raise await self._fail("create_user", e, uid=uid, invite_code=invite_code)

        logger.info(
            "New user created in database",
            extra={"uid": uid, "referral_code": referral_code, "invite_code": invite_code}
        )
        if invite_code:
            logger.info("Invite recorded", extra={"uid": uid, "invite_code": invite_code, "bonus_points": invite_bonus_points})
        return self._model_to_entity(new_user)

    async def _credit_inviter(self, referral_code: str, bonus_points: int) -> bool:
        """Add one invite and the bonus to the owner of `referral_code`; the caller commits"""
        stmt = (
            update(UserModel)
            .where(UserModel.referral_code == referral_code)
            .values(
                invite_count=UserModel.invite_count + 1,
                points=UserModel.points + bonus_points
            )
        )
        result = await self.session.execute(stmt)
        return bool(result.rowcount)
