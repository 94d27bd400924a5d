"""
SQLAlchemy ORM models for database tables
"""

from datetime import datetime, timezone
from sqlalchemy import Column, String, Integer, DateTime, Boolean, Index, ForeignKey
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
import uuid

Base = declarative_base()


def _new_id() -> str:
    return str(uuid.uuid4())


class UserModel(Base):
    """SQLAlchemy ORM model for users table"""

    __tablename__ = "users"

    uid = Column(String(128), primary_key=True)  # External auth subject id
    email = Column(String(255), nullable=False)
    referral_code = Column(String(16), nullable=False)
    invite_code = Column(String(16), nullable=True)
    points = Column(Integer, default=0, nullable=False)
    invite_count = Column(Integer, default=0, nullable=False)
    multiplier = Column(Integer, default=1, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        Index('idx_users_referral_code', 'referral_code', unique=True),
        Index('idx_users_invite_code', 'invite_code'),
    )

    def __repr__(self):
        return f"<User(uid='{self.uid}', referral_code='{self.referral_code}', points={self.points})>"


class TaskModel(Base):
    """SQLAlchemy ORM model for tasks table"""

    __tablename__ = "tasks"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(255), nullable=False)
    description = Column(String(1024), nullable=False)
    platform = Column(String(50), nullable=False)
    url = Column(String(1024), nullable=False)
    points = Column(Integer, default=1000, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    __table_args__ = (
        Index('idx_tasks_name', 'name', unique=True),
    )

    def __repr__(self):
        return f"<Task(id='{self.id}', name='{self.name}', points={self.points})>"


class UserTaskModel(Base):
    """SQLAlchemy ORM model for user_tasks table"""

    __tablename__ = "user_tasks"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(128), ForeignKey("users.uid"), nullable=False)
    task_id = Column(String(36), ForeignKey("tasks.id"), nullable=False)
    completed = Column(Boolean, default=True, nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        Index('idx_user_tasks_user_task', 'user_id', 'task_id', unique=True),
        Index('idx_user_tasks_user', 'user_id'),
    )

    def __repr__(self):
        return f"<UserTask(user_id='{self.user_id}', task_id='{self.task_id}')>"
