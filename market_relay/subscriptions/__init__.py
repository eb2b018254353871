"""
Subscriptions Package

In-memory subscription state driving the fetch cycle.
"""
from market_relay.subscriptions.registry import (
    Subscription,
    SubscribeRequest,
    SubscribeOutcome,
    SubscriptionRegistry,
)

__all__ = [
    "Subscription",
    "SubscribeRequest",
    "SubscribeOutcome",
    "SubscriptionRegistry",
]
