"""
AllTick Adapter

Real-time tick quotes for Asian exchanges. Bearer-token authenticated,
no modeled rate ceiling.
"""
import asyncio
from typing import Optional, AsyncIterator, Iterable
from loguru import logger

from market_relay.data_providers.adapters.base import (
    DataSource,
    ProviderConfig,
    QuoteRecord,
    RestAdapter,
)
from market_relay.data_providers.normalizer import FieldKeys, ResponseNormalizer


ALLTICK_BASE_URL = "https://quote.alltick.io"

SUFFIX_MAP = {
    ".HK": ".HKEX",
    ".T": ".TSE",
}

FIELD_KEYS = FieldKeys(
    price=["last_price", "latest_price"],
    open=["open_price", "open"],
    high=["high_price", "high"],
    low=["low_price", "low"],
    volume=["volume", "vol"],
    timestamp=["tick_time", "timestamp", "time"],
)


def create_alltick_config(
    api_key: str,
    base_url: str = ALLTICK_BASE_URL,
    timeout_seconds: float = 10.0,
) -> ProviderConfig:
    """Create configuration for AllTick adapter."""
    return ProviderConfig(
        name=DataSource.ALL_TICK.value,
        api_key=api_key,
        base_url=base_url,
        timeout_seconds=timeout_seconds,
        default_granularity="realtime",
    )


class AllTickAdapter(RestAdapter):
    """AllTick real-time quote adapter."""

    data_source = DataSource.ALL_TICK

    def __init__(self, config: ProviderConfig):
        super().__init__(config)
        self._normalizer = ResponseNormalizer(self.name, FIELD_KEYS)

    @property
    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.config.api_key or ''}"}

    def convert_symbol(self, instrument_id: str) -> str:
        for suffix, replacement in SUFFIX_MAP.items():
            if instrument_id.endswith(suffix):
                return instrument_id[: -len(suffix)] + replacement
        return instrument_id

    async def fetch_one(self, instrument_id: str, granularity: Optional[str] = None) -> QuoteRecord:
        granularity = granularity or self.config.default_granularity
        symbol = self.convert_symbol(instrument_id)
        url = f"{self.config.base_url}/v1/quote"

        logger.debug(f"Fetching {instrument_id} from AllTick")
        data = await self._get_json(url, params={"symbol": symbol})
        return self._normalizer.normalize(
            data, instrument_id, symbol, self.data_source, granularity
        )

    async def fetch_many(
        self,
        instrument_ids: Iterable[str],
        granularity: Optional[str] = None,
    ) -> AsyncIterator[QuoteRecord]:
        """Fetch concurrently, yielding records as they complete."""
        ids = list(instrument_ids)

        async def fetch_safe(instrument_id: str) -> Optional[QuoteRecord]:
            try:
                return await self.fetch_one(instrument_id, granularity)
            except Exception as e:
                logger.error(f"Error fetching AllTick data for {instrument_id}: {e}")
                return None

        for next_done in asyncio.as_completed([fetch_safe(i) for i in ids]):
            record = await next_done
            if record is not None:
                yield record
        logger.debug(f"Completed AllTick fetch for {len(ids)} instruments")
