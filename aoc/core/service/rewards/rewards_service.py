"""Sign-up, referral and task reward logic."""

import secrets
import string
from typing import List, Optional

from aoc.core.exceptions.base import InfrastructureError, InvalidInputError, NotFoundError
from aoc.core.exceptions.handler import ServiceErrorCode
from aoc.core.logger.logger import get_logger
from aoc.core.service.reservation.admission import AdmissionController
from aoc.core.service.rewards.models import Task, TaskCompletionResponse, User, UserTask
from aoc.infra.repository.task_repository import TaskRepository
from aoc.infra.repository.user_repository import UserRepository

logger = get_logger(__name__)

REFERRAL_ALPHABET = string.ascii_uppercase + string.digits
MAX_REFERRAL_ATTEMPTS = 10


def generate_referral_code(length: int = 6) -> str:
    return "".join(secrets.choice(REFERRAL_ALPHABET) for _ in range(length))


class RewardsService:
    """Users, invites and task completion points."""

    def __init__(
        self,
        users: UserRepository,
        tasks: TaskRepository,
        admission: Optional[AdmissionController] = None,
        invite_bonus_points: int = 100,
        default_task_points: int = 1000,
        referral_code_length: int = 6,
    ):
        self.users = users
        self.tasks = tasks
        self.admission = admission
        self.invite_bonus_points = invite_bonus_points
        self.default_task_points = default_task_points
        self.referral_code_length = referral_code_length

    async def get_user(self, uid: str) -> User:
        user = await self.users.get_user(uid)
        if not user:
            raise NotFoundError("User not found", details={"uid": uid}, code=ServiceErrorCode.USER_NOT_FOUND)
        return user

    async def create_user(self, uid: str, email: str, invite_code: Optional[str] = None) -> User:
        """
        Register a user on first sign-in.

        The invite code is recorded once and never changes. Its owner gets
        +1 invite, the bonus points, and any invite-milestone grants.
        """
        if invite_code and not await self.users.get_by_referral_code(invite_code):
            raise InvalidInputError(
                "Invite code not found",
                details={"invite_code": invite_code},
                code=ServiceErrorCode.INVALID_INVITE_CODE,
            )

        user = None
        for _ in range(MAX_REFERRAL_ATTEMPTS):
            user = await self.users.create_user(
                uid=uid,
                email=email,
                referral_code=generate_referral_code(self.referral_code_length),
                invite_code=invite_code,
                invite_bonus_points=self.invite_bonus_points,
            )
            if user:
                break
        if not user:
            raise InfrastructureError("Could not allocate a referral code. Please try again.")

        if invite_code:
            await self._grant_inviter_rewards(invite_code)
        return user

    async def _grant_inviter_rewards(self, invite_code: str) -> None:
        if not self.admission:
            return
        inviter = await self.users.get_by_referral_code(invite_code)
        if not inviter:
            return
        try:
            await self.admission.grant_invite_rewards(inviter.uid, inviter.invite_count)
        except InfrastructureError as e:
            # The invite is already committed; grants are idempotent and retried on the next invite
            logger.error(
                "Failed to grant invite milestone reservation",
                extra={"inviter_uid": inviter.uid, "invite_count": inviter.invite_count, "error": e.message}
            )

    async def list_tasks(self) -> List[Task]:
        await self.tasks.seed_default_tasks(self.default_task_points)
        return await self.tasks.list_tasks()

    async def get_user_tasks(self, uid: str) -> List[UserTask]:
        await self.get_user(uid)
        return await self.tasks.get_user_tasks(uid)

    async def complete_task(self, uid: str, task_id: str) -> TaskCompletionResponse:
        """Record a completion; awards task points times the user's multiplier exactly once."""
        user = await self.get_user(uid)
        task = await self.tasks.get_task(task_id)
        if not task or not task.is_active:
            raise NotFoundError("Task not found", details={"task_id": task_id}, code=ServiceErrorCode.TASK_NOT_FOUND)

        points = task.points * user.multiplier
        user_task = await self.tasks.complete_task(uid, task_id, points)
        updated = await self.get_user(uid)
        return TaskCompletionResponse(
            user_task=user_task,
            points_awarded=points,
            total_points=updated.points,
        )
