"""Typed schemas for account IO."""

from __future__ import annotations

from typing import List, Optional, TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from wayfarer.core.users.models import User


class UserUpdateRequest(BaseModel):
    """Profile fields a client may edit; ledger fields are rejected upstream."""

    display_name: Optional[str] = Field(default=None, max_length=255)
    home_city: Optional[str] = Field(default=None, max_length=128)
    timezone: Optional[str] = Field(default=None, max_length=64)

    model_config = ConfigDict(extra="forbid")


class UserResponse(BaseModel):
    id: int
    email: str
    display_name: Optional[str] = None
    home_city: Optional[str] = None
    timezone: Optional[str] = None
    is_active: bool
    credits: int
    bonus_claimed: bool
    role_codes: List[str] = []

    model_config = ConfigDict(from_attributes=True)


def serialize_user(user: "User") -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        display_name=user.display_name,
        home_city=user.home_city,
        timezone=user.timezone,
        is_active=user.is_active,
        credits=user.credits,
        bonus_claimed=user.bonus_claimed,
        role_codes=user.role_codes,
    )
