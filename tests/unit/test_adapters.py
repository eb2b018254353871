"""
Unit Tests - Provider Adapters
Symbol conversion, request building and response handling with a mocked
aiohttp session.
"""
import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock
import aiohttp
import pytest

from market_relay.data_providers.adapters.alltick import AllTickAdapter, create_alltick_config
from market_relay.data_providers.adapters.alpha_vantage import (
    AlphaVantageAdapter,
    create_alpha_vantage_config,
    determine_function,
)
from market_relay.data_providers.adapters.base import DataSource
from market_relay.data_providers.adapters.coinmarketcap import (
    CoinMarketCapAdapter,
    create_coinmarketcap_config,
)
from market_relay.utils.exceptions import ResponseFormatError, UpstreamError


def mock_session(payload=None, status=200, text="", json_error=None):
    """aiohttp-like session whose get() yields one canned response."""
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=payload, side_effect=json_error)
    response.text = AsyncMock(return_value=text)

    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=response)
    context.__aexit__ = AsyncMock(return_value=False)

    session = MagicMock()
    session.get = MagicMock(return_value=context)
    session.close = AsyncMock()
    return session


class TestAlphaVantageAdapter:
    """Tests for AlphaVantageAdapter."""

    @pytest.fixture
    def adapter(self):
        return AlphaVantageAdapter(create_alpha_vantage_config("test-key"))

    @pytest.mark.parametrize("instrument_id,symbol", [
        ("AAPL", "AAPL"),
        ("0700.HK", "0700.HKG"),
        ("7203.T", "7203.TYO"),
    ])
    def test_convert_symbol(self, adapter, instrument_id, symbol):
        assert adapter.convert_symbol(instrument_id) == symbol

    def test_determine_function(self):
        assert determine_function("5min") == "TIME_SERIES_INTRADAY"
        assert determine_function("daily") == "TIME_SERIES_DAILY"
        assert determine_function("latest") == "GLOBAL_QUOTE"

    def test_build_params_intraday(self, adapter):
        params = adapter.build_params("AAPL", "5min")
        assert params == {
            "function": "TIME_SERIES_INTRADAY",
            "symbol": "AAPL",
            "apikey": "test-key",
            "interval": "5min",
        }

    @pytest.mark.asyncio
    async def test_fetch_one_global_quote(self, adapter):
        adapter._session = mock_session({
            "Global Quote": {
                "01. symbol": "AAPL",
                "02. open": "100.00",
                "05. price": "101.2500",
                "06. volume": "123456",
                "07. latest trading day": "2024-01-02",
            }
        })

        record = await adapter.fetch_one("AAPL", "latest")

        assert record.price == Decimal("101.2500")
        assert record.open == Decimal("100.00")
        assert record.volume == 123456
        assert record.data_source == DataSource.ALPHA_VANTAGE
        assert record.granularity == "latest"
        params = adapter._session.get.call_args.kwargs["params"]
        assert params["function"] == "GLOBAL_QUOTE"

    @pytest.mark.asyncio
    async def test_rate_limit_note_is_upstream_error(self, adapter):
        adapter._session = mock_session({"Note": "Thank you for using Alpha Vantage! 5 calls per minute"})

        with pytest.raises(UpstreamError) as exc_info:
            await adapter.fetch_one("AAPL")
        assert exc_info.value.status == 429

    @pytest.mark.asyncio
    async def test_http_error(self, adapter):
        adapter._session = mock_session(status=503, text="Service Unavailable")

        with pytest.raises(UpstreamError) as exc_info:
            await adapter.fetch_one("AAPL")
        assert exc_info.value.status == 503
        assert exc_info.value.body == "Service Unavailable"
        assert adapter.status.error_count == 1

    @pytest.mark.asyncio
    async def test_timeout_is_upstream_error_without_status(self, adapter):
        session = mock_session()
        session.get = MagicMock(side_effect=asyncio.TimeoutError())
        adapter._session = session

        with pytest.raises(UpstreamError) as exc_info:
            await adapter.fetch_one("AAPL")
        assert exc_info.value.status is None

    @pytest.mark.asyncio
    async def test_client_error_is_upstream_error(self, adapter):
        session = mock_session()
        session.get = MagicMock(side_effect=aiohttp.ClientConnectionError("refused"))
        adapter._session = session

        with pytest.raises(UpstreamError):
            await adapter.fetch_one("AAPL")

    @pytest.mark.asyncio
    async def test_invalid_json_is_format_error(self, adapter):
        adapter._session = mock_session(json_error=ValueError("Expecting value"))

        with pytest.raises(ResponseFormatError):
            await adapter.fetch_one("AAPL")

    @pytest.mark.asyncio
    async def test_fetch_many_isolates_failures(self, adapter):
        async def fake_fetch(instrument_id, granularity=None):
            if instrument_id == "BAD":
                raise UpstreamError("alpha_vantage", 500)
            return MagicMock(instrument_id=instrument_id)

        adapter.fetch_one = fake_fetch
        results = [r.instrument_id async for r in adapter.fetch_many(["AAPL", "BAD", "MSFT"])]
        assert results == ["AAPL", "MSFT"]


class TestAllTickAdapter:
    """Tests for AllTickAdapter."""

    @pytest.fixture
    def adapter(self):
        return AllTickAdapter(create_alltick_config("token-123"))

    def test_bearer_header(self, adapter):
        assert adapter._headers == {"Authorization": "Bearer token-123"}

    def test_convert_symbol(self, adapter):
        assert adapter.convert_symbol("0700.HK") == "0700.HKEX"
        assert adapter.convert_symbol("7203.T") == "7203.TSE"

    @pytest.mark.asyncio
    async def test_fetch_one_tick_list(self, adapter):
        adapter._session = mock_session({
            "ret": 200,
            "data": {"tick_list": [{"code": "0700.HKEX", "last_price": "350.00", "tick_time": "1704164645000"}]},
        })

        record = await adapter.fetch_one("0700.HK")

        assert record.price == Decimal("350.00")
        assert record.symbol == "0700.HKEX"
        assert record.data_source == DataSource.ALL_TICK
        url = adapter._session.get.call_args.args[0]
        assert url == "https://quote.alltick.io/v1/quote"

    @pytest.mark.asyncio
    async def test_fetch_many_concurrent(self, adapter):
        async def fake_fetch(instrument_id, granularity=None):
            if instrument_id == "BAD.HK":
                raise UpstreamError("all_tick", None, "timeout")
            return MagicMock(instrument_id=instrument_id)

        adapter.fetch_one = fake_fetch
        results = {r.instrument_id async for r in adapter.fetch_many(["0700.HK", "BAD.HK", "9988.HK"])}
        assert results == {"0700.HK", "9988.HK"}


class TestCoinMarketCapAdapter:
    """Tests for CoinMarketCapAdapter."""

    @pytest.fixture
    def adapter(self):
        return CoinMarketCapAdapter(create_coinmarketcap_config("cmc-key"), convert="usd")

    def test_headers(self, adapter):
        assert adapter._headers["X-CMC_PRO_API_KEY"] == "cmc-key"

    @pytest.mark.parametrize("instrument_id,symbol", [
        ("btc", "BTC"),
        ("BTC-USD", "BTC"),
        ("ETH/USD", "ETH"),
        ("SOLUSDT", "SOL"),
    ])
    def test_convert_symbol(self, adapter, instrument_id, symbol):
        assert adapter.convert_symbol(instrument_id) == symbol

    @pytest.mark.asyncio
    async def test_fetch_one_nested_quote(self, adapter):
        adapter._session = mock_session({
            "status": {"error_code": 0, "error_message": None},
            "data": {"BTC": {"symbol": "BTC", "quote": {"USD": {
                "price": 43250.5,
                "volume_24h": 1000,
                "last_updated": "2024-01-02T03:04:05.000Z",
            }}}},
        })

        record = await adapter.fetch_one("BTC")

        assert record.price == Decimal("43250.5")
        assert record.volume == 1000
        assert record.data_source == DataSource.COIN_MARKET_CAP
        params = adapter._session.get.call_args.kwargs["params"]
        assert params == {"symbol": "BTC", "convert": "USD"}

    @pytest.mark.asyncio
    async def test_status_error_code(self, adapter):
        adapter._session = mock_session({"status": {"error_code": 1002, "error_message": "API key missing."}})

        with pytest.raises(UpstreamError) as exc_info:
            await adapter.fetch_one("BTC")
        assert exc_info.value.status == 1002

    @pytest.mark.asyncio
    async def test_zero_price_is_no_data(self, adapter):
        adapter._session = mock_session({
            "status": {"error_code": 0},
            "data": {"BTC": {"quote": {"USD": {"price": 0}}}},
        })

        record = await adapter.fetch_one("BTC")
        assert record.price is None
        assert record.has_price is False
