"""
Gaussian Random Adapter

Synthetic quotes from a per-instrument Gaussian random walk.
Used as a standalone source and as the fallback for failing providers.
"""
import math
import random
from decimal import Decimal
from typing import Optional, Any
from loguru import logger

from market_relay.data_providers.adapters.base import (
    BaseAdapter,
    DataSource,
    ProviderConfig,
    QuoteRecord,
)


PRICE_FLOOR = 0.01


def create_gaussian_config() -> ProviderConfig:
    """Create configuration for the synthetic adapter."""
    return ProviderConfig(
        name=DataSource.GAUSSIAN_RANDOM.value,
        default_granularity="synthetic",
    )


class GaussianRandomAdapter(BaseAdapter):
    """
    Random-walk price generator.

    next = max(previous * (1 + drift + volatility * z), 0.01)

    `z` is a standard normal sample from the Box-Muller transform. Each
    transform produces two independent samples; the second is cached and
    returned by the following call.
    """

    data_source = DataSource.GAUSSIAN_RANDOM

    def __init__(
        self,
        config: Optional[ProviderConfig] = None,
        base_price: float = 100.0,
        volatility: float = 0.02,
        drift: float = 0.0001,
        seed: Optional[int] = None,
    ):
        super().__init__(config or create_gaussian_config())
        self._validate_base_price(base_price)
        self._validate_volatility(volatility)
        self.base_price = base_price
        self.volatility = volatility
        self.drift = drift
        self._rng = random.Random(seed)
        self._spare: Optional[float] = None
        self._prices: dict[str, float] = {}

    def convert_symbol(self, instrument_id: str) -> str:
        return instrument_id

    # ==================== Generation ====================

    def _next_gaussian(self) -> float:
        if self._spare is not None:
            spare, self._spare = self._spare, None
            return spare

        u1 = self._rng.random()
        while u1 <= 0.0:
            u1 = self._rng.random()
        u2 = self._rng.random()

        magnitude = math.sqrt(-2.0 * math.log(u1))
        angle = 2.0 * math.pi * u2
        self._spare = magnitude * math.sin(angle)
        return magnitude * math.cos(angle)

    def generate(self, instrument_id: str) -> float:
        """Advance the walk for one instrument and return the new price."""
        previous = self._prices.get(instrument_id, self.base_price)
        sample = self._next_gaussian()
        price = previous * (1 + self.drift + self.volatility * sample)
        price = max(price, PRICE_FLOOR)
        self._prices[instrument_id] = price
        return price

    async def fetch_one(self, instrument_id: str, granularity: Optional[str] = None) -> QuoteRecord:
        price = self.generate(instrument_id)
        logger.debug(f"Generated price {price:.4f} for {instrument_id}")
        return QuoteRecord(
            instrument_id=instrument_id,
            symbol=instrument_id,
            price=Decimal(str(round(price, 4))),
            data_source=self.data_source,
            granularity=granularity or self.config.default_granularity,
            synthetic=True,
        )

    # ==================== State ====================

    def reset_price(self, instrument_id: str) -> None:
        if self._prices.pop(instrument_id, None) is not None:
            logger.debug(f"Reset price history for {instrument_id}")

    def reset_all(self) -> None:
        self._prices.clear()
        logger.info("Reset all price histories")

    def current_price(self, instrument_id: str) -> Optional[float]:
        return self._prices.get(instrument_id)

    def all_prices(self) -> dict[str, float]:
        return dict(self._prices)

    # ==================== Configuration ====================

    @staticmethod
    def _validate_base_price(value: float) -> None:
        if value <= 0:
            raise ValueError("Base price must be positive")

    @staticmethod
    def _validate_volatility(value: float) -> None:
        if value < 0:
            raise ValueError("Volatility must be non-negative")

    def update_base_price(self, value: float) -> None:
        self._validate_base_price(value)
        self.base_price = value
        logger.info(f"Updated base price to {value}")

    def update_volatility(self, value: float) -> None:
        self._validate_volatility(value)
        self.volatility = value
        logger.info(f"Updated volatility to {value}")

    def update_drift(self, value: float) -> None:
        self.drift = value
        logger.info(f"Updated drift to {value}")

    def configuration(self) -> dict[str, Any]:
        return {
            "base_price": self.base_price,
            "volatility": self.volatility,
            "drift": self.drift,
            "price_floor": PRICE_FLOOR,
            "active_instruments": len(self._prices),
        }
