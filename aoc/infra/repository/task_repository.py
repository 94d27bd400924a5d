"""
Task and task completion repository using SQLAlchemy ORM
"""

from datetime import datetime, timezone
from typing import List, Optional
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from aoc.core.exceptions.base import InfrastructureError, TaskAlreadyCompletedError
from aoc.core.service.rewards.models import Task, UserTask
from aoc.infra.models import TaskModel, UserModel, UserTaskModel
from aoc.core.logger.logger import get_logger

logger = get_logger(__name__)

DEFAULT_TASKS = [
    {
        "name": "Follow on X",
        "description": "Follow our official X account",
        "platform": "twitter",
        "url": "https://x.com/DogByteLabz",
    },
    {
        "name": "Follow on Instagram",
        "description": "Follow our Instagram for updates",
        "platform": "instagram",
        "url": "https://instagram.com/aoc.offical",
    },
    {
        "name": "Join Telegram",
        "description": "Join our official Telegram channel",
        "platform": "telegram",
        "url": "https://t.me/AOCoffical",
    },
]


class TaskRepository:
    """Repository for tasks and per-user completions"""

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _task_to_entity(model: TaskModel) -> Task:
        return Task(
            id=model.id,
            name=model.name,
            description=model.description,
            platform=model.platform,
            url=model.url,
            points=model.points,
            is_active=model.is_active
        )

    @staticmethod
    def _user_task_to_entity(model: UserTaskModel) -> UserTask:
        return UserTask(
            id=model.id,
            user_id=model.user_id,
            task_id=model.task_id,
            completed=model.completed,
            completed_at=model.completed_at
        )

    async def _fail(self, operation: str, error: Exception, **context) -> InfrastructureError:
        await self.session.rollback()
        context.update({"operation": operation, "error": str(error)})
        logger.error("Task store unavailable", extra=context)
        return InfrastructureError(context=context)

    async def seed_default_tasks(self, points: int) -> None:
        """Insert the default tasks when the table is empty"""
        try:
            count = await self.session.scalar(select(func.count()).select_from(TaskModel))
            if count:
                return
            for task in DEFAULT_TASKS:
                self.session.add(TaskModel(points=points, is_active=True, **task))
            await self.session.commit()
        except IntegrityError:
            # Another worker seeded concurrently
            await self.session.rollback()
            return
        except SQLAlchemyError as e:
            raise await self._fail("seed_default_tasks", e)
        logger.info("Default tasks seeded", extra={"count": len(DEFAULT_TASKS)})

    async def list_tasks(self, active_only: bool = True) -> List[Task]:
        try:
            stmt = select(TaskModel).order_by(TaskModel.name)
            if active_only:
                stmt = stmt.where(TaskModel.is_active.is_(True))
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            raise await self._fail("list_tasks", e)
        return [self._task_to_entity(model) for model in result.scalars().all()]

    async def get_task(self, task_id: str) -> Optional[Task]:
        try:
            model = await self.session.get(TaskModel, task_id)
        except SQLAlchemyError as e:
            raise await self._fail("get_task", e, task_id=task_id)
        return self._task_to_entity(model) if model else None

    async def get_user_tasks(self, uid: str) -> List[UserTask]:
        try:
            stmt = (
                select(UserTaskModel)
                .where(UserTaskModel.user_id == uid)
                .order_by(UserTaskModel.completed_at)
            )
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            raise await self._fail("get_user_tasks", e, uid=uid)
        return [self._user_task_to_entity(model) for model in result.scalars().all()]

    async def complete_task(self, uid: str, task_id: str, points: int) -> UserTask:
        """
        Record the completion and award points in one transaction

        Raises:
            TaskAlreadyCompletedError: the (user, task) pair already exists
        """
        completion = UserTaskModel(
            user_id=uid,
            task_id=task_id,
            completed=True,
            completed_at=datetime.now(timezone.utc)
        )
        try:
            self.session.add(completion)
            await self.session.flush()
            await self.session.execute(
                update(UserModel)
                .where(UserModel.uid == uid)
                .values(points=UserModel.points + points)
            )
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            raise TaskAlreadyCompletedError(uid, task_id) from e
        except SQLAlchemyError as e:
            raise await self._fail("complete_task", e, uid=uid, task_id=task_id)

        logger.info(
            "Task completed",
            extra={"uid": uid, "task_id": task_id, "points": points}
        )
        return self._user_task_to_entity(completion)
