"""
Market Relay - Subscription Schemas
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, field_validator

from market_relay.data_providers.adapters.base import DataSource


def _auto_to_none(v):
    if isinstance(v, str) and v.lower() == "auto":
        return None
    return v


class SubscribeRequestSchema(BaseModel):
    """Subscribe a batch of instruments sharing the same metadata."""
    instrument_ids: list[str] = Field(..., min_length=1, description="Exchange-qualified instrument ids")
    throttle_seconds: Optional[float] = Field(None, description="Minimum seconds between refreshes; configured default when omitted")
    provider: Optional[DataSource] = Field(None, description="Explicit provider, or null/'auto' for suffix routing")
    granularities: list[str] = Field(default_factory=lambda: ["1min"], description="Requested granularities, first is used")
    group_id: Optional[str] = Field(None, description="Correlation id; generated when omitted")

    @field_validator("provider", mode="before")
    @classmethod
    def parse_provider(cls, v):
        return _auto_to_none(v)


class CryptoSubscribeRequest(BaseModel):
    """Subscribe crypto instruments (always served by the crypto provider)."""
    instrument_ids: list[str] = Field(..., min_length=1, description="Crypto codes, e.g. BTC, ETH")
    throttle_seconds: Optional[float] = Field(None, description="Minimum seconds between refreshes")
    group_id: Optional[str] = None


class SubscribeResponse(BaseModel):
    """Aggregate result of a subscribe call."""
    success: bool
    message: str
    group_id: str
    accepted_ids: list[str]
    rejected: dict[str, str] = {}


class UnsubscribeResponse(BaseModel):
    success: bool
    message: str
    instrument_id: str


class SubscriptionEntry(BaseModel):
    instrument_id: str
    group_id: str
    provider: str
    throttle_seconds: float
    granularities: list[str]
    created_at: datetime


class SubscriptionList(BaseModel):
    count: int
    entries: list[SubscriptionEntry]


class ThrottleUpdateRequest(BaseModel):
    throttle_seconds: float = Field(..., description="New minimum seconds between refreshes")
