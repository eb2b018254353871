"""
CoinMarketCap Adapter

Crypto quotes from the CoinMarketCap Pro API.

API Documentation: https://coinmarketcap.com/api/documentation/v1/
"""
from typing import Optional
from loguru import logger

from market_relay.data_providers.adapters.base import (
    DataSource,
    ProviderConfig,
    QuoteRecord,
    RestAdapter,
)
from market_relay.data_providers.normalizer import FieldKeys, ResponseNormalizer
from market_relay.utils.exceptions import UpstreamError


COINMARKETCAP_BASE_URL = "https://pro-api.coinmarketcap.com"

QUOTE_SUFFIXES = ("-USD", "/USD", "USDT")

FIELD_KEYS = FieldKeys(
    price=["price"],
    volume=["volume_24h", "volume"],
    timestamp=["last_updated"],
)


def create_coinmarketcap_config(
    api_key: str,
    base_url: str = COINMARKETCAP_BASE_URL,
    timeout_seconds: float = 10.0,
) -> ProviderConfig:
    """Create configuration for CoinMarketCap adapter."""
    return ProviderConfig(
        name=DataSource.COIN_MARKET_CAP.value,
        api_key=api_key,
        base_url=base_url,
        timeout_seconds=timeout_seconds,
        default_granularity="realtime",
    )


class CoinMarketCapAdapter(RestAdapter):
    """CoinMarketCap crypto quote adapter."""

    data_source = DataSource.COIN_MARKET_CAP

    def __init__(self, config: ProviderConfig, convert: str = "USD"):
        super().__init__(config)
        self.convert = convert.upper()
        self._normalizer = ResponseNormalizer(self.name, FIELD_KEYS)

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "X-CMC_PRO_API_KEY": self.config.api_key or "",
            "Accept": "application/json",
        }

    def convert_symbol(self, instrument_id: str) -> str:
        symbol = instrument_id.upper()
        for suffix in QUOTE_SUFFIXES:
            if symbol.endswith(suffix) and len(symbol) > len(suffix):
                return symbol[: -len(suffix)]
        return symbol

    async def fetch_one(self, instrument_id: str, granularity: Optional[str] = None) -> QuoteRecord:
        granularity = granularity or self.config.default_granularity
        symbol = self.convert_symbol(instrument_id)
        url = f"{self.config.base_url}/v1/cryptocurrency/quotes/latest"

        logger.debug(f"Fetching {instrument_id} from CoinMarketCap")
        data = await self._get_json(url, params={"symbol": symbol, "convert": self.convert})

        status = data.get("status") if isinstance(data, dict) else None
        if isinstance(status, dict) and status.get("error_code"):
            raise UpstreamError(
                self.name,
                status.get("error_code"),
                str(status.get("error_message") or "Unknown error"),
            )

        located = self._normalizer.locate(data, symbol)
        # data.<SYMBOL>.quote.<CONVERT>
        quote = located.data.get("quote")
        if isinstance(quote, dict) and isinstance(quote.get(self.convert), dict):
            located.data = quote[self.convert]

        record = self._normalizer.build_record(
            located, instrument_id, symbol, self.data_source, granularity
        )
        if record.price is not None and record.price <= 0:
            record.price = None
        return record
