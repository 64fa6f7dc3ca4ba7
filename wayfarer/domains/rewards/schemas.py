"""Request/response schemas for the rewards API."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class FingerprintRequest(BaseModel):
    """Body of both the eligibility and the claim request.

    The account is never part of the body; it comes from the access token.
    """

    fingerprint: str = Field(min_length=1, max_length=128)

    model_config = ConfigDict(extra="ignore")


class ClaimRecordResponse(BaseModel):
    fingerprint: str
    claiming_account_id: int
    bonus_amount: int
    claimed_at: datetime

    model_config = ConfigDict(from_attributes=True)
