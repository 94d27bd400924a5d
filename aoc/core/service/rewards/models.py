"""
Models for users, tasks and task completions
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class User(BaseModel):
    """User entity"""
    uid: str
    email: str
    referral_code: str
    invite_code: Optional[str] = None
    points: int = Field(default=0, ge=0)
    invite_count: int = Field(default=0, ge=0)
    multiplier: int = Field(default=1, ge=1)
    created_at: Optional[datetime] = None


class Task(BaseModel):
    """Task entity"""
    id: str
    name: str
    description: str
    platform: str
    url: str
    points: int = Field(default=1000, ge=0)
    is_active: bool = True


class UserTask(BaseModel):
    """Completion of one task by one user"""
    id: str
    user_id: str
    task_id: str
    completed: bool = True
    completed_at: datetime


class CreateUserRequest(BaseModel):
    """Request body for registering a user after first sign-in."""
    uid: str = Field(..., min_length=1, max_length=128, description="External auth subject id")
    email: str = Field(..., min_length=3, max_length=255)
    invite_code: Optional[str] = Field(None, alias="inviteCode", description="Referral code of the inviter")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("uid")
    @classmethod
    def validate_uid(cls, v):
        if not v.strip():
            raise ValueError("uid cannot be empty")
        return v.strip()

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        v = v.strip()
        if "@" not in v:
            raise ValueError("Invalid email address")
        return v

    @field_validator("invite_code")
    @classmethod
    def normalize_invite_code(cls, v):
        # Empty strings from the sign-up form mean "no invite"
        if v is None or not v.strip():
            return None
        return v.strip().upper()


class TaskCompletionResponse(BaseModel):
    user_task: UserTask
    points_awarded: int
    total_points: int
