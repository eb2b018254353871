"""
Alpha Vantage Adapter

Delayed-quote provider. The free tier allows only a handful of calls per
minute, so the fetch cycle drives it in small rotating batches.

API Documentation: https://www.alphavantage.co/documentation/
"""
from typing import Optional, Any
from loguru import logger

from market_relay.data_providers.adapters.base import (
    DataSource,
    ProviderConfig,
    QuoteRecord,
    RestAdapter,
)
from market_relay.data_providers.normalizer import FieldKeys, ResponseNormalizer
from market_relay.utils.exceptions import UpstreamError


ALPHA_VANTAGE_BASE_URL = "https://www.alphavantage.co/query"

INTRADAY_INTERVALS = ("1min", "5min", "15min", "30min", "60min")
SERIES_FUNCTIONS = {
    "daily": "TIME_SERIES_DAILY",
    "weekly": "TIME_SERIES_WEEKLY",
    "monthly": "TIME_SERIES_MONTHLY",
}

# Instrument suffix -> Alpha Vantage exchange suffix
SUFFIX_MAP = {
    ".HK": ".HKG",
    ".T": ".TYO",
}

FIELD_KEYS = FieldKeys(
    price=["05. price", "4. close"],
    open=["02. open", "1. open", "open"],
    high=["03. high", "2. high", "high"],
    low=["04. low", "3. low", "low"],
    volume=["06. volume", "5. volume", "volume"],
    timestamp=["07. latest trading day", "timestamp"],
)


def create_alpha_vantage_config(
    api_key: str,
    base_url: str = ALPHA_VANTAGE_BASE_URL,
    timeout_seconds: float = 10.0,
) -> ProviderConfig:
    """Create configuration for Alpha Vantage adapter."""
    return ProviderConfig(
        name=DataSource.ALPHA_VANTAGE.value,
        api_key=api_key,
        base_url=base_url,
        timeout_seconds=timeout_seconds,
        default_granularity="1min",
    )


def determine_function(granularity: str) -> str:
    """Map a granularity label to an Alpha Vantage API function."""
    if granularity in INTRADAY_INTERVALS:
        return "TIME_SERIES_INTRADAY"
    return SERIES_FUNCTIONS.get(granularity, "GLOBAL_QUOTE")


class AlphaVantageAdapter(RestAdapter):
    """
    Alpha Vantage delayed-quote adapter.

    Usage:
        adapter = AlphaVantageAdapter(create_alpha_vantage_config("your_api_key"))
        await adapter.initialize()
        record = await adapter.fetch_one("AAPL", "5min")
    """

    data_source = DataSource.ALPHA_VANTAGE

    def __init__(self, config: ProviderConfig):
        super().__init__(config)
        self._normalizer = ResponseNormalizer(self.name, FIELD_KEYS)

    def convert_symbol(self, instrument_id: str) -> str:
        for suffix, replacement in SUFFIX_MAP.items():
            if instrument_id.endswith(suffix):
                return instrument_id[: -len(suffix)] + replacement
        return instrument_id

    def build_params(self, symbol: str, granularity: str) -> dict[str, Any]:
        function = determine_function(granularity)
        params = {
            "function": function,
            "symbol": symbol,
            "apikey": self.config.api_key,
        }
        if function == "TIME_SERIES_INTRADAY":
            params["interval"] = granularity
        return params

    async def fetch_one(self, instrument_id: str, granularity: Optional[str] = None) -> QuoteRecord:
        granularity = granularity or self.config.default_granularity
        symbol = self.convert_symbol(instrument_id)
        params = self.build_params(symbol, granularity)

        logger.debug(f"Fetching {instrument_id} from Alpha Vantage ({params['function']})")
        data = await self._get_json(self.config.base_url, params=params)

        if isinstance(data, dict):
            # Rate limit notices come back as 200 with a note
            note = data.get("Note") or data.get("Information")
            if note:
                raise UpstreamError(self.name, 429, str(note))
            if "Error Message" in data:
                raise UpstreamError(self.name, 400, str(data["Error Message"]))

        record = self._normalizer.normalize(
            data, instrument_id, symbol, self.data_source, granularity
        )
        logger.debug(f"Fetched {instrument_id} from Alpha Vantage: price={record.price}")
        return record
