"""
Market Relay - Test Configuration
Shared fixtures and test doubles.
"""
import asyncio
import os
import sys
from decimal import Decimal
from typing import Optional
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Set test environment
os.environ["APP_ENV"] = "testing"
os.environ["BUS_ENABLED"] = "false"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["LOG_TO_FILE"] = "false"

from market_relay.config import Settings
from market_relay.data_providers.adapters.base import (
    BaseAdapter,
    DataSource,
    ProviderConfig,
    QuoteRecord,
)
from market_relay.publishing.publisher import QuotePublisher


# =========================
# Time
# =========================

class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def no_sleep(seconds: float) -> None:
    """Sleep replacement that only yields control."""
    await asyncio.sleep(0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# =========================
# Adapters
# =========================

class StubAdapter(BaseAdapter):
    """
    Adapter returning canned prices or raising canned errors.

    `responses` maps instrument id to a price (number/Decimal/None) or an
    exception instance. `gate` (an asyncio.Event) holds every fetch until set.
    """

    def __init__(
        self,
        data_source: DataSource,
        responses: Optional[dict] = None,
        default_price: Optional[str] = "10.00",
        gate: Optional[asyncio.Event] = None,
    ):
        super().__init__(ProviderConfig(name=data_source.value))
        self.data_source = data_source
        self.responses = responses or {}
        self.default_price = default_price
        self.gate = gate
        self.calls: list[str] = []

    def convert_symbol(self, instrument_id: str) -> str:
        return instrument_id

    async def fetch_one(self, instrument_id: str, granularity: Optional[str] = None) -> QuoteRecord:
        self.calls.append(instrument_id)
        if self.gate is not None:
            await self.gate.wait()
        response = self.responses.get(instrument_id, self.default_price)
        if isinstance(response, Exception):
            raise response
        return QuoteRecord(
            instrument_id=instrument_id,
            symbol=instrument_id,
            price=Decimal(str(response)) if response is not None else None,
            data_source=self.data_source,
            granularity=granularity or "1min",
        )


def make_adapters(**responses) -> dict[DataSource, StubAdapter]:
    """Stub adapters for the three upstream providers."""
    return {
        DataSource.ALPHA_VANTAGE: StubAdapter(
            DataSource.ALPHA_VANTAGE, responses.get("alpha_vantage")
        ),
        DataSource.ALL_TICK: StubAdapter(DataSource.ALL_TICK, responses.get("all_tick")),
        DataSource.COIN_MARKET_CAP: StubAdapter(
            DataSource.COIN_MARKET_CAP, responses.get("coin_market_cap")
        ),
    }


# =========================
# Publisher
# =========================

class RecordingPublisher(QuotePublisher):
    """Simulated-mode publisher that keeps every record it is given."""

    def __init__(self):
        super().__init__(enabled=False)
        self.records: list[QuoteRecord] = []

    async def publish(self, record: QuoteRecord) -> bool:
        self.records.append(record)
        return await super().publish(record)

    def ids(self) -> list[str]:
        return [r.instrument_id for r in self.records]


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


# =========================
# Settings
# =========================

def make_settings(**overrides) -> Settings:
    values = {
        "SCHEDULER_ENABLED": False,
        "BUS_ENABLED": False,
        "REAL_TIME_SUFFIXES": [".HK", ".T"],
        "DELAYED_SUFFIXES": [""],
        "RETRY_BASE_DELAY_MS": 1,
        "RETRY_MAX_DELAY_MS": 5,
        "GAUSSIAN_SEED": 42,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def test_settings() -> Settings:
    return make_settings()
