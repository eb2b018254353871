"""
Market Relay - Pydantic Schemas
"""
from market_relay.schemas.subscription import (
    SubscribeRequestSchema,
    CryptoSubscribeRequest,
    SubscribeResponse,
    UnsubscribeResponse,
    SubscriptionEntry,
    SubscriptionList,
    ThrottleUpdateRequest,
)
from market_relay.schemas.admin import (
    IntervalUpdateRequest,
    IntervalResponse,
    RoutingUpdateRequest,
    SwitchProviderRequest,
    SyntheticConfigUpdate,
)

__all__ = [
    # Subscription schemas
    "SubscribeRequestSchema",
    "CryptoSubscribeRequest",
    "SubscribeResponse",
    "UnsubscribeResponse",
    "SubscriptionEntry",
    "SubscriptionList",
    "ThrottleUpdateRequest",
    # Admin schemas
    "IntervalUpdateRequest",
    "IntervalResponse",
    "RoutingUpdateRequest",
    "SwitchProviderRequest",
    "SyntheticConfigUpdate",
]
