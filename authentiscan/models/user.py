"""
user.py — Pydantic schemas for user-related request / response bodies.

  UserSyncRequest — profile fields pushed after an identity-provider login
  UserOut         — what the API returns
  DashboardOut    — credits + most recent scans
  TrialOut        — result of POST /api/users/trial
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from authentiscan.models.scan import ScanSummary


class Plan(str, Enum):
    TRIAL = "trial"
    STARTER = "starter"
    GROWTH = "growth"
    ENTERPRISE = "enterprise"


class UserSyncRequest(BaseModel):
    """Payload for POST /api/users/sync."""
    email: EmailStr
    full_name: str = Field(min_length=1, max_length=128)
    image_url: Optional[str] = None


class UserOut(BaseModel):
    external_id: str
    email: EmailStr
    full_name: str
    image_url: Optional[str] = None
    credits: int = Field(ge=0)
    plan: Plan = Plan.TRIAL
    created_at: datetime
    updated_at: Optional[datetime] = None


class DashboardOut(BaseModel):
    credits: int
    scans: list[ScanSummary]
    page: int
    limit: int


class TrialOut(BaseModel):
    success: bool = True
    credits: int
    plan: Plan = Plan.TRIAL
