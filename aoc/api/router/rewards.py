"""Users, referrals and tasks router."""

from typing import List

from fastapi import APIRouter, Depends, status

from aoc.core.dependencies import get_rewards_service
from aoc.core.service.rewards.models import (
    CreateUserRequest,
    Task,
    TaskCompletionResponse,
    User,
    UserTask,
)
from aoc.core.service.rewards.rewards_service import RewardsService

router = APIRouter(prefix="/api/v1", tags=["rewards"])


@router.post("/users", response_model=User, status_code=status.HTTP_201_CREATED, summary="Register a user")
async def create_user(
    request: CreateUserRequest,
    rewards: RewardsService = Depends(get_rewards_service)
) -> User:
    """Create the user on first sign-in and credit the inviter, if any."""
    return await rewards.create_user(request.uid, request.email, request.invite_code)


@router.get("/users/{uid}", response_model=User, summary="Get a user")
async def get_user(uid: str, rewards: RewardsService = Depends(get_rewards_service)) -> User:
    return await rewards.get_user(uid)


@router.get("/tasks", response_model=List[Task], summary="List active tasks")
async def list_tasks(rewards: RewardsService = Depends(get_rewards_service)) -> List[Task]:
    return await rewards.list_tasks()


@router.get("/users/{uid}/tasks", response_model=List[UserTask], summary="List a user's completed tasks")
async def list_user_tasks(uid: str, rewards: RewardsService = Depends(get_rewards_service)) -> List[UserTask]:
    return await rewards.get_user_tasks(uid)


@router.post(
    "/users/{uid}/tasks/{task_id}",
    response_model=TaskCompletionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Complete a task"
)
async def complete_task(
    uid: str,
    task_id: str,
    rewards: RewardsService = Depends(get_rewards_service)
) -> TaskCompletionResponse:
    """Mark a task completed and award its points once."""
    return await rewards.complete_task(uid, task_id)
