"""
Market Relay - Admin Schemas
"""
from typing import Optional
from pydantic import BaseModel, Field, field_validator

from market_relay.data_providers.adapters.base import DataSource
from market_relay.schemas.subscription import _auto_to_none


class IntervalUpdateRequest(BaseModel):
    """Change the fetch tick interval."""
    interval_seconds: int = Field(..., description="Seconds between fetch cycles")


class IntervalResponse(BaseModel):
    interval_seconds: int
    previous_interval_seconds: Optional[int] = None
    estimated_cycles_per_hour: int


class RoutingUpdateRequest(BaseModel):
    """Replace the suffix routing lists. An empty list disables that provider."""
    real_time_suffixes: list[str] = Field(default_factory=list)
    delayed_suffixes: list[str] = Field(default_factory=list)


class SwitchProviderRequest(BaseModel):
    """Pin existing subscriptions to a provider ('auto' restores suffix routing)."""
    instrument_ids: list[str] = Field(..., min_length=1)
    provider: Optional[DataSource] = Field(..., description="Provider name or 'auto'")

    @field_validator("provider", mode="before")
    @classmethod
    def parse_provider(cls, v):
        return _auto_to_none(v)


class SyntheticConfigUpdate(BaseModel):
    """Random-walk parameters. Omitted fields are left unchanged."""
    base_price: Optional[float] = Field(None, gt=0)
    volatility: Optional[float] = Field(None, ge=0)
    drift: Optional[float] = None
