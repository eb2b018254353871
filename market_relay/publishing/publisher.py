"""
Market Relay - Quote Publisher

Publishes normalized quotes to Redis pub/sub.
Connection is lazy; failures are logged and never raised to the caller.
"""
import json
import re
from typing import Callable, Optional
import redis.asyncio as redis
from loguru import logger

from market_relay.data_providers.adapters.base import QuoteRecord


_DISALLOWED = re.compile(r"[^A-Za-z0-9_\-]")


def build_topic(prefix: str, instrument_id: str) -> str:
    """Topic for an instrument: prefix + instrument id with disallowed characters replaced."""
    sanitized = _DISALLOWED.sub("_", instrument_id)
    return f"{prefix}.{sanitized}" if prefix else sanitized


class QuotePublisher:
    """
    Redis publish sink for quote records.

    With `enabled=False` the publisher runs in simulated mode: publishes are
    logged and counted but nothing is sent.
    """

    def __init__(
        self,
        enabled: bool,
        redis_url: str = "redis://localhost:6379/0",
        topic_prefix: str = "market.data",
        client_name: str = "market-relay-publisher",
        client_factory: Optional[Callable[[], redis.Redis]] = None,
    ):
        self.enabled = enabled
        self.redis_url = redis_url
        self.topic_prefix = topic_prefix
        self.client_name = client_name
        self._client_factory = client_factory
        self._client: redis.Redis | None = None
        self._connected = False
        self._topics: dict[str, str] = {}
        self._published = 0
        self._dropped = 0
        self._last_error: Optional[str] = None

    def _create_client(self) -> redis.Redis:
        if self._client_factory:
            return self._client_factory()
        return redis.from_url(
            self.redis_url,
            encoding="utf-8",
            decode_responses=True,
            client_name=self.client_name,
        )

    @property
    def _display_url(self) -> str:
        return self.redis_url.split('@')[-1] if '@' in self.redis_url else self.redis_url

    async def connect(self) -> bool:
        """(Re)connect to Redis. Returns the resulting connection state."""
        if not self.enabled:
            logger.info("Bus publishing is disabled via configuration (simulated mode)")
            return False

        if self._client is not None:
            await self._discard(self._client)
            self._client = None

        client = None
        try:
            client = self._create_client()
            await client.ping()
        except Exception as e:
            self._connected = False
            self._last_error = str(e)
            logger.warning(f"Failed to connect to Redis at {self._display_url}: {e}")
            if client is not None:
                await self._discard(client)
            return False

        self._client = client
        self._connected = True
        self._last_error = None
        logger.info(f"✅ Publisher connected to Redis: {self._display_url}")
        return True

    async def _discard(self, client: redis.Redis) -> None:
        """Release a client's connection pool, ignoring errors from a dead bus."""
        try:
            await client.aclose()
        except Exception as e:
            logger.debug(f"Error releasing stale Redis client: {e}")

    async def close(self) -> None:
        """Close Redis connection."""
        if self._client:
            try:
                await self._client.aclose()
                logger.info("Publisher disconnected from Redis")
            except Exception as e:
                logger.error(f"Error disconnecting from Redis: {e}")
        self._client = None
        self._connected = False

    def topic_for(self, instrument_id: str) -> str:
        topic = self._topics.get(instrument_id)
        if topic is None:
            topic = build_topic(self.topic_prefix, instrument_id)
            self._topics[instrument_id] = topic
        return topic

    def forget(self, instrument_id: str) -> None:
        """Drop the cached topic of an unsubscribed instrument."""
        self._topics.pop(instrument_id, None)

    async def publish(self, record: QuoteRecord) -> bool:
        """
        Publish one quote record.

        Returns True if the record was handed to the bus (or simulated),
        False if it was dropped.
        """
        topic = self.topic_for(record.instrument_id)
        payload = json.dumps(record.to_dict())

        if not self.enabled:
            self._published += 1
            logger.debug(f"[simulated] {topic}: price={record.price}")
            return True

        if not self._connected:
            logger.debug("Publisher not connected, attempting to reconnect")
            if not await self.connect():
                self._dropped += 1
                logger.error(f"Dropping publish for {record.instrument_id}: bus unavailable")
                return False

        try:
            await self._client.publish(topic, payload)
        except Exception as e:
            self._connected = False
            self._dropped += 1
            self._last_error = str(e)
            logger.error(f"Failed to publish market data for {record.instrument_id}: {e}")
            return False

        self._published += 1
        logger.info(
            f"Published market data for {record.instrument_id} to topic {topic}: price={record.price}"
        )
        return True

    def is_connected(self) -> bool:
        return self._connected

    def connection_status(self) -> dict:
        return {
            "enabled": self.enabled,
            "mode": "redis" if self.enabled else "simulated",
            "connected": self._connected,
            "server": self._display_url,
            "topic_prefix": self.topic_prefix,
            "published": self._published,
            "dropped": self._dropped,
            "cached_topics": len(self._topics),
            "last_error": self._last_error,
        }
