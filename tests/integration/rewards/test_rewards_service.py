"""Integration tests for sign-up, referrals and task rewards on SQLite."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from aoc.core.exceptions.base import (
    InfrastructureError,
    InvalidInputError,
    NotFoundError,
    TaskAlreadyCompletedError,
    UserAlreadyExistsError,
)
from aoc.core.exceptions.handler import ServiceErrorCode
from aoc.core.service.rewards.models import CreateUserRequest
from aoc.core.service.rewards.rewards_service import RewardsService, generate_referral_code
from aoc.infra.models import UserModel
from aoc.infra.repository.task_repository import DEFAULT_TASKS, TaskRepository
from aoc.infra.repository.user_repository import UserRepository


@pytest.fixture
def admission():
    mock = MagicMock()
    mock.grant_invite_rewards = AsyncMock(return_value=[])
    return mock


@pytest.fixture
def rewards(db_session, admission):
    return RewardsService(
        users=UserRepository(db_session),
        tasks=TaskRepository(db_session),
        admission=admission,
        invite_bonus_points=100,
        default_task_points=1000,
        referral_code_length=6,
    )


def test_referral_code_alphabet():
    code = generate_referral_code(6)

    assert len(code) == 6
    assert all(c.isdigit() or ("A" <= c <= "Z") for c in code)


def test_create_user_request_normalizes_invite_code():
    request = CreateUserRequest(uid=" user-1 ", email="a@b.io", inviteCode=" ab12cd ")
    assert request.uid == "user-1"
    assert request.invite_code == "AB12CD"

    assert CreateUserRequest(uid="user-2", email="c@d.io", inviteCode="").invite_code is None


@pytest.mark.asyncio
class TestSignUp:
    """User creation and invites."""

    async def test_create_user(self, rewards):
        user = await rewards.create_user("user-1", "one@aoc.game")

        assert user.uid == "user-1"
        assert len(user.referral_code) == 6
        assert user.points == 0
        assert user.invite_count == 0
        assert user.multiplier == 1
        assert user.invite_code is None

    async def test_duplicate_user(self, rewards):
        await rewards.create_user("user-1", "one@aoc.game")

        with pytest.raises(UserAlreadyExistsError) as exc_info:
            await rewards.create_user("user-1", "one@aoc.game")
        assert exc_info.value.status_code == 409

    async def test_unknown_invite_code(self, rewards, admission):
        with pytest.raises(InvalidInputError) as exc_info:
            await rewards.create_user("user-1", "one@aoc.game", invite_code="NOPE00")

        assert exc_info.value.code == ServiceErrorCode.INVALID_INVITE_CODE
        admission.grant_invite_rewards.assert_not_awaited()

    async def test_invite_credits_inviter(self, rewards, admission):
        inviter = await rewards.create_user("inviter", "inviter@aoc.game")

        invitee = await rewards.create_user("invitee", "invitee@aoc.game", invite_code=inviter.referral_code)

        assert invitee.invite_code == inviter.referral_code
        updated = await rewards.get_user("inviter")
        assert updated.invite_count == 1
        assert updated.points == 100
        admission.grant_invite_rewards.assert_awaited_once_with("inviter", 1)

    async def test_invite_counts_accumulate(self, rewards, admission):
        inviter = await rewards.create_user("inviter", "inviter@aoc.game")

        for i in range(3):
            await rewards.create_user(f"invitee-{i}", f"{i}@aoc.game", invite_code=inviter.referral_code)

        updated = await rewards.get_user("inviter")
        assert updated.invite_count == 3
        assert updated.points == 300
        assert admission.grant_invite_rewards.await_args.args == ("inviter", 3)

    async def test_grant_failure_does_not_fail_sign_up(self, rewards, admission):
        admission.grant_invite_rewards.side_effect = InfrastructureError()
        inviter = await rewards.create_user("inviter", "inviter@aoc.game")

        invitee = await rewards.create_user("invitee", "invitee@aoc.game", invite_code=inviter.referral_code)

        assert invitee.uid == "invitee"
        assert (await rewards.get_user("inviter")).invite_count == 1

    async def test_failed_invite_credit_leaves_no_user(self, rewards, admission, monkeypatch):
        inviter = await rewards.create_user("inviter", "inviter@aoc.game")
        monkeypatch.setattr(
            UserRepository,
            "_credit_inviter",
            AsyncMock(side_effect=OperationalError("UPDATE users", {}, Exception("disk I/O error"))),
        )

        with pytest.raises(InfrastructureError):
            await rewards.create_user("invitee", "invitee@aoc.game", invite_code=inviter.referral_code)

        assert await rewards.users.get_user("invitee") is None
        unchanged = await rewards.get_user("inviter")
        assert unchanged.invite_count == 0
        assert unchanged.points == 0
        admission.grant_invite_rewards.assert_not_awaited()

    async def test_vanished_invite_code_leaves_no_user(self, db_session):
        users = UserRepository(db_session)

        with pytest.raises(InvalidInputError) as exc_info:
            await users.create_user(
                "invitee", "invitee@aoc.game", "CCCCCC", invite_code="GONE00", invite_bonus_points=100
            )

        assert exc_info.value.code == ServiceErrorCode.INVALID_INVITE_CODE
        assert await users.get_user("invitee") is None

    async def test_referral_code_collision_is_retried(self, rewards, monkeypatch):
        codes = iter(["AAAAAA", "AAAAAA", "BBBBBB"])
        monkeypatch.setattr(
            "aoc.core.service.rewards.rewards_service.generate_referral_code",
            lambda length: next(codes),
        )

        first = await rewards.create_user("user-1", "one@aoc.game")
        second = await rewards.create_user("user-2", "two@aoc.game")

        assert first.referral_code == "AAAAAA"
        assert second.referral_code == "BBBBBB"

    async def test_unknown_user(self, rewards):
        with pytest.raises(NotFoundError) as exc_info:
            await rewards.get_user("ghost")
        assert exc_info.value.code == ServiceErrorCode.USER_NOT_FOUND


@pytest.mark.asyncio
class TestTasks:
    """Task catalogue and completions."""

    async def test_default_tasks_are_seeded_once(self, rewards):
        first = await rewards.list_tasks()
        second = await rewards.list_tasks()

        assert len(first) == len(DEFAULT_TASKS) == 3
        assert [t.id for t in second] == [t.id for t in first]
        assert all(t.points == 1000 for t in first)
        assert {t.platform for t in first} == {"twitter", "instagram", "telegram"}

    async def test_complete_task_awards_points(self, rewards):
        await rewards.create_user("user-1", "one@aoc.game")
        task = (await rewards.list_tasks())[0]

        response = await rewards.complete_task("user-1", task.id)

        assert response.points_awarded == 1000
        assert response.total_points == 1000
        assert response.user_task.task_id == task.id
        completed = await rewards.get_user_tasks("user-1")
        assert [c.task_id for c in completed] == [task.id]

    async def test_multiplier_scales_points(self, rewards, db_session):
        await rewards.create_user("user-1", "one@aoc.game")
        await db_session.execute(update(UserModel).where(UserModel.uid == "user-1").values(multiplier=2))
        await db_session.commit()
        task = (await rewards.list_tasks())[0]

        response = await rewards.complete_task("user-1", task.id)

        assert response.points_awarded == 2000
        assert response.total_points == 2000

    async def test_task_completes_once(self, rewards):
        await rewards.create_user("user-1", "one@aoc.game")
        task = (await rewards.list_tasks())[0]
        await rewards.complete_task("user-1", task.id)

        with pytest.raises(TaskAlreadyCompletedError):
            await rewards.complete_task("user-1", task.id)

        assert (await rewards.get_user("user-1")).points == 1000

    async def test_unknown_task(self, rewards):
        await rewards.create_user("user-1", "one@aoc.game")

        with pytest.raises(NotFoundError) as exc_info:
            await rewards.complete_task("user-1", "missing-task")
        assert exc_info.value.code == ServiceErrorCode.TASK_NOT_FOUND

    async def test_tasks_of_unknown_user(self, rewards):
        with pytest.raises(NotFoundError):
            await rewards.get_user_tasks("ghost")
