"""Account schemas."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class RegisterRequest(BaseModel):
    email: str = Field(..., description="Email address")
    password: str = Field(..., min_length=8, description="Password (min 8 characters)")
    display_name: str = Field(..., description="Display name")

    model_config = {
        "json_schema_extra": {
            "examples": [{"email": "ana@example.com", "password": "securepass", "display_name": "Ana"}]
        }
    }


class LoginRequest(BaseModel):
    email: str
    password: str


class RoleRequest(BaseModel):
    role: str = Field(..., description="New role: admin, max, paid or free")


class UserResponse(BaseModel):
    user_id: str
    display_name: str
    email: Optional[str] = None
    role: str
    is_active: bool
    songs_created: int = 0
    songs_this_month: int = 0
    credits_used: int = 0
    credits_remaining: int = 0
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class LoginResponse(BaseModel):
    token: str
    user: UserResponse


class MeResponse(BaseModel):
    user: UserResponse
    can_create_songs: bool
    # None means unlimited
    remaining_songs: Optional[int] = None
