"""Pydantic schemas for account resources"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class SignupRequest(BaseModel):
    """Payload for creating an account."""

    email: Optional[str] = Field(default=None, description="Account email")
    password: Optional[str] = Field(default=None, description="Plain-text password")
    name: Optional[str] = Field(default=None, description="Display name")


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class AccountRead(BaseModel):
    """Public view of an account."""

    id: int
    email: str
    name: Optional[str] = None
    subscription_tier: str
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class AuthResponse(BaseModel):
    success: bool = True
    token: str
    user: AccountRead
