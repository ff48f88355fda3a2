"""Shared response envelopes."""
from typing import Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    success: bool = False
    error: str


class LimitInfo(BaseModel):
    current: int
    max: int
    window: str
    unit: Optional[str] = None


class RateLimitedResponse(ErrorResponse):
    limit: LimitInfo
