"""
Unit Tests - Quote Publisher
"""
import json
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock
import pytest

from market_relay.data_providers.adapters.base import DataSource, QuoteRecord
from market_relay.publishing.publisher import QuotePublisher, build_topic


def make_record(instrument_id="AAPL", price="101.25"):
    return QuoteRecord(
        instrument_id=instrument_id,
        symbol=instrument_id,
        price=Decimal(price),
        data_source=DataSource.ALPHA_VANTAGE,
    )


def make_client(ping_error=None, publish_error=None):
    client = MagicMock()
    client.ping = AsyncMock(side_effect=ping_error)
    client.publish = AsyncMock(side_effect=publish_error)
    client.aclose = AsyncMock()
    return client


class TestBuildTopic:
    """Tests for topic naming."""

    @pytest.mark.parametrize("instrument_id,topic", [
        ("AAPL", "market.data.AAPL"),
        ("0700.HK", "market.data.0700_HK"),
        ("BTC/USD", "market.data.BTC_USD"),
        ("BRK-B", "market.data.BRK-B"),
    ])
    def test_sanitizes_instrument_id(self, instrument_id, topic):
        assert build_topic("market.data", instrument_id) == topic

    def test_empty_prefix(self):
        assert build_topic("", "0700.HK") == "0700_HK"


class TestQuotePublisher:
    """Tests for QuotePublisher."""

    @pytest.mark.asyncio
    async def test_simulated_mode(self):
        publisher = QuotePublisher(enabled=False)

        assert await publisher.connect() is False
        assert await publisher.publish(make_record()) is True

        status = publisher.connection_status()
        assert status["mode"] == "simulated"
        assert status["published"] == 1

    @pytest.mark.asyncio
    async def test_publish_sends_json_to_topic(self):
        client = make_client()
        publisher = QuotePublisher(enabled=True, client_factory=lambda: client)

        assert await publisher.publish(make_record()) is True

        client.publish.assert_awaited_once()
        topic, payload = client.publish.call_args.args
        assert topic == "market.data.AAPL"
        assert json.loads(payload)["price"] == 101.25
        assert publisher.is_connected() is True

    @pytest.mark.asyncio
    async def test_reconnect_failure_drops_record(self):
        client = make_client(ping_error=ConnectionError("refused"))
        publisher = QuotePublisher(enabled=True, client_factory=lambda: client)

        assert await publisher.publish(make_record()) is False

        client.publish.assert_not_awaited()
        status = publisher.connection_status()
        assert status["dropped"] == 1
        assert status["last_error"] == "refused"

    @pytest.mark.asyncio
    async def test_publish_error_is_swallowed(self):
        client = make_client(publish_error=ConnectionError("broken pipe"))
        publisher = QuotePublisher(enabled=True, client_factory=lambda: client)

        assert await publisher.publish(make_record()) is False
        assert publisher.is_connected() is False

        # Next publish reconnects lazily
        client.publish.side_effect = None
        assert await publisher.publish(make_record()) is True
        assert client.ping.await_count == 2

    @pytest.mark.asyncio
    async def test_topics_cached(self):
        publisher = QuotePublisher(enabled=False, topic_prefix="quotes")

        await publisher.publish(make_record("0700.HK"))
        await publisher.publish(make_record("0700.HK"))

        assert publisher.topic_for("0700.HK") == "quotes.0700_HK"
        assert publisher.connection_status()["cached_topics"] == 1

    @pytest.mark.asyncio
    async def test_close(self):
        client = make_client()
        publisher = QuotePublisher(enabled=True, client_factory=lambda: client)
        await publisher.connect()

        await publisher.close()

        client.aclose.assert_awaited_once()
        assert publisher.is_connected() is False

    @pytest.mark.asyncio
    async def test_failed_reconnects_release_clients(self):
        created = []

        def factory():
            client = make_client(ping_error=ConnectionError("refused"))
            created.append(client)
            return client

        publisher = QuotePublisher(enabled=True, client_factory=factory)
        for _ in range(5):
            assert await publisher.publish(make_record()) is False
        await publisher.close()

        assert len(created) == 5
        assert all(c.aclose.await_count == 1 for c in created)

    @pytest.mark.asyncio
    async def test_reconnect_after_publish_error_closes_old_client(self):
        broken = make_client(publish_error=ConnectionError("broken pipe"))
        healthy = make_client()
        clients = iter([broken, healthy])
        publisher = QuotePublisher(enabled=True, client_factory=lambda: next(clients))

        assert await publisher.publish(make_record()) is False
        assert await publisher.publish(make_record()) is True

        broken.aclose.assert_awaited_once()
        healthy.aclose.assert_not_awaited()
        healthy.publish.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_forget_drops_cached_topic(self):
        publisher = QuotePublisher(enabled=False)
        await publisher.publish(make_record("AAPL"))

        publisher.forget("AAPL")
        publisher.forget("MSFT")

        assert publisher.connection_status()["cached_topics"] == 0
