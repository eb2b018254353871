"""
Base Provider Adapter Interface

Defines the abstract interface that all quote provider adapters implement,
plus the normalized quote record they return.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, Any, AsyncIterator, Iterable
import asyncio
import aiohttp
from loguru import logger

from market_relay.utils.exceptions import UpstreamError, ResponseFormatError


class DataSource(str, Enum):
    """Upstream quote sources."""
    ALPHA_VANTAGE = "alpha_vantage"        # delayed quotes
    ALL_TICK = "all_tick"                  # real-time quotes
    COIN_MARKET_CAP = "coin_market_cap"    # crypto quotes
    GAUSSIAN_RANDOM = "gaussian_random"    # synthetic random walk


@dataclass
class ProviderConfig:
    """Configuration for a quote provider."""
    name: str
    api_key: Optional[str] = None
    base_url: str = ""
    timeout_seconds: float = 10.0
    default_granularity: str = "1min"


@dataclass
class QuoteRecord:
    """Normalized quote for one instrument."""
    instrument_id: str
    symbol: str
    price: Optional[Decimal]
    data_source: DataSource
    granularity: str = "1min"
    open: Optional[Decimal] = None
    high: Optional[Decimal] = None
    low: Optional[Decimal] = None
    volume: Optional[int] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    # Synthetic substitutes are tagged so consumers can tell them apart
    synthetic: bool = False
    fallback_for: Optional[DataSource] = None

    @property
    def has_price(self) -> bool:
        """False for the absent / zero sentinel."""
        return self.price is not None and self.price > 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "instrument_id": self.instrument_id,
            "symbol": self.symbol,
            "price": float(self.price) if self.price is not None else None,
            "open": float(self.open) if self.open is not None else None,
            "high": float(self.high) if self.high is not None else None,
            "low": float(self.low) if self.low is not None else None,
            "volume": self.volume,
            "timestamp": self.timestamp.isoformat(),
            "data_source": self.data_source.value,
            "granularity": self.granularity,
            "synthetic": self.synthetic,
            "fallback_for": self.fallback_for.value if self.fallback_for else None,
            "no_data": not self.has_price,
        }


@dataclass
class ProviderStatus:
    """Status information for a provider."""
    name: str
    is_healthy: bool = True
    last_success: Optional[datetime] = None
    last_error: Optional[datetime] = None
    last_error_message: Optional[str] = None
    error_count: int = 0
    success_count: int = 0
    avg_latency_ms: float = 0.0


class BaseAdapter(ABC):
    """
    Abstract base class for quote provider adapters.

    Each adapter must implement:
    - convert_symbol(): instrument id -> provider symbol
    - fetch_one(): quote for a single instrument

    `fetch_many()` is provided on top of `fetch_one()`; it yields one record
    per instrument that succeeded and skips the ones that failed.
    """

    data_source: DataSource

    def __init__(self, config: ProviderConfig):
        self.config = config
        self.name = config.name
        self._status = ProviderStatus(name=config.name)

    @property
    def status(self) -> ProviderStatus:
        """Get current provider status."""
        return self._status

    async def initialize(self) -> None:
        """Initialize the adapter (create sessions)."""

    async def close(self) -> None:
        """Clean up resources."""

    @abstractmethod
    def convert_symbol(self, instrument_id: str) -> str:
        """Map an instrument id to the provider's symbol format."""

    @abstractmethod
    async def fetch_one(self, instrument_id: str, granularity: Optional[str] = None) -> QuoteRecord:
        """
        Get the latest quote for one instrument.

        Raises:
            UpstreamError: transport or HTTP failure
            ResponseFormatError: payload shape not recognized
        """

    async def fetch_many(
        self,
        instrument_ids: Iterable[str],
        granularity: Optional[str] = None,
    ) -> AsyncIterator[QuoteRecord]:
        """
        Fetch quotes one instrument at a time.

        A failed instrument is logged and yields nothing; the rest continue.
        """
        for instrument_id in instrument_ids:
            try:
                yield await self.fetch_one(instrument_id, granularity)
            except Exception as e:
                logger.error(f"{self.name}: error fetching {instrument_id}: {e}")

    # Helper methods
    def _record_success(self, latency_ms: float) -> None:
        """Record a successful request."""
        self._status.success_count += 1
        self._status.last_success = datetime.utcnow()

        # Exponential moving average
        alpha = 0.1
        self._status.avg_latency_ms = (
            alpha * latency_ms + (1 - alpha) * self._status.avg_latency_ms
        )

        self._status.error_count = 0
        self._status.is_healthy = True

    def _record_error(self, error: Exception) -> None:
        """Record a failed request."""
        self._status.error_count += 1
        self._status.last_error = datetime.utcnow()
        self._status.last_error_message = str(error)

        if self._status.error_count >= 5:
            self._status.is_healthy = False
            logger.warning(f"Provider {self.name} marked as unhealthy after {self._status.error_count} errors")

    def get_status(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "is_healthy": self._status.is_healthy,
            "success_count": self._status.success_count,
            "error_count": self._status.error_count,
            "avg_latency_ms": round(self._status.avg_latency_ms, 2),
            "last_error_message": self._status.last_error_message,
        }

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name={self.name}, healthy={self._status.is_healthy})>"


class RestAdapter(BaseAdapter):
    """
    Base for adapters backed by a JSON-over-HTTP API.

    Owns the aiohttp session. Every call is bounded by the configured timeout.
    """

    def __init__(self, config: ProviderConfig):
        super().__init__(config)
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def _headers(self) -> dict[str, str]:
        """Authentication headers sent with every request."""
        return {}

    async def initialize(self) -> None:
        """Initialize HTTP session."""
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout_seconds)
            self._session = aiohttp.ClientSession(
                headers=self._headers,
                timeout=timeout,
            )
            logger.info(f"{self.name} adapter initialized")

    async def close(self) -> None:
        """Close HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None
        logger.info(f"{self.name} adapter closed")

    async def _get_json(self, url: str, params: Optional[dict[str, Any]] = None) -> Any:
        """
        GET a JSON document.

        Raises:
            UpstreamError: transport failure, timeout or non-200 status
            ResponseFormatError: body is not JSON
        """
        if self._session is None:
            await self.initialize()

        start_time = datetime.now()
        try:
            async with self._session.get(url, params=params) as response:
                if response.status != 200:
                    body = await response.text()
                    error = UpstreamError(self.name, response.status, body)
                    self._record_error(error)
                    raise error
                try:
                    data = await response.json(content_type=None)
                except ValueError as e:
                    raise ResponseFormatError(self.name, f"Invalid JSON: {e}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            error = UpstreamError(self.name, None, f"Connection error: {e}")
            self._record_error(error)
            raise error from e

        latency_ms = (datetime.now() - start_time).total_seconds() * 1000
        self._record_success(latency_ms)
        return data
