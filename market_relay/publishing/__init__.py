"""
Publishing Package

Downstream delivery of normalized quotes.
"""
from market_relay.publishing.publisher import QuotePublisher, build_topic

__all__ = ["QuotePublisher", "build_topic"]
