"""
Integration Tests - API Endpoints
REST surface over a MarketDataService wired with stub adapters.
"""
import pytest
from fastapi.testclient import TestClient

from conftest import RecordingPublisher, make_adapters, make_settings, no_sleep
from market_relay.main import create_application
from market_relay.services.market_data_service import MarketDataService


API = "/api/v1"


@pytest.fixture
def service(clock):
    return MarketDataService(
        make_settings(),
        clock=clock,
        publisher=RecordingPublisher(),
        adapters=make_adapters(),
        sleep=no_sleep,
    )


@pytest.fixture
def client(service):
    app = create_application(service)
    with TestClient(app) as test_client:
        yield test_client


class TestHealthEndpoints:
    """Tests for liveness and component health."""

    def test_liveness(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "Up"

    def test_api_root(self, client):
        response = client.get(f"{API}/")

        assert response.status_code == 200
        assert response.json()["version"] == "v1"

    def test_component_health(self, client):
        response = client.get(f"{API}/health/components")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "DEGRADED"
        assert set(data["components"]) == {
            "alpha_vantage", "all_tick", "coin_market_cap", "publisher", "scheduler"
        }
        assert data["summary"]["overall_status"] == "DEGRADED"

    def test_effective_config(self, client):
        response = client.get(f"{API}/config")

        assert response.status_code == 200
        assert response.json()["routing"]["real_time_suffixes"] == [".HK", ".T"]


class TestSubscriptionEndpoints:
    """Tests for /market-data."""

    def test_subscribe_and_list(self, client):
        response = client.post(
            f"{API}/market-data/subscribe",
            json={"instrument_ids": ["AAPL", "0700.HK"], "throttle_seconds": 10},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["accepted_ids"] == ["AAPL", "0700.HK"]
        assert data["group_id"]

        listing = client.get(f"{API}/market-data/subscriptions").json()
        assert listing["count"] == 2
        assert {e["provider"] for e in listing["entries"]} == {"auto"}

    def test_subscribe_uses_configured_default_throttle(self, clock):
        service = MarketDataService(
            make_settings(DEFAULT_THROTTLE_SECONDS=60),
            clock=clock,
            publisher=RecordingPublisher(),
            adapters=make_adapters(),
            sleep=no_sleep,
        )
        with TestClient(create_application(service)) as test_client:
            response = test_client.post(
                f"{API}/market-data/subscribe", json={"instrument_ids": ["AAPL"]}
            )

        assert response.status_code == 200
        assert service.registry.get("AAPL").throttle_seconds == 60.0
        assert service.rate_gate.get_stats("AAPL")["min_interval_seconds"] == 60.0

    def test_subscribe_unroutable_is_400(self, client, service):
        service.update_routing([".HK"], [".T"])

        response = client.post(f"{API}/market-data/subscribe", json={"instrument_ids": ["AAPL"]})

        assert response.status_code == 400
        data = response.json()
        assert data["success"] is False
        assert "AAPL" in data["rejected"]

    def test_subscribe_invalid_throttle_is_400(self, client):
        response = client.post(
            f"{API}/market-data/subscribe",
            json={"instrument_ids": ["AAPL"], "throttle_seconds": 0},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_INTERVAL"

    def test_subscribe_empty_list_is_422(self, client):
        response = client.post(f"{API}/market-data/subscribe", json={"instrument_ids": []})

        assert response.status_code == 422

    def test_subscribe_explicit_provider(self, client):
        response = client.post(
            f"{API}/market-data/subscribe",
            json={"instrument_ids": ["AAPL"], "provider": "all_tick"},
        )

        assert response.status_code == 200
        entry = client.get(f"{API}/market-data/subscriptions").json()["entries"][0]
        assert entry["provider"] == "all_tick"

    def test_unsubscribe(self, client):
        client.post(f"{API}/market-data/subscribe", json={"instrument_ids": ["AAPL"]})

        response = client.delete(f"{API}/market-data/unsubscribe/AAPL")
        assert response.status_code == 200
        assert response.json()["success"] is True

        response = client.delete(f"{API}/market-data/unsubscribe/AAPL")
        assert response.status_code == 200
        assert response.json()["success"] is False

    def test_update_throttle(self, client):
        client.post(f"{API}/market-data/subscribe", json={"instrument_ids": ["AAPL"]})

        response = client.put(
            f"{API}/market-data/subscriptions/AAPL/throttle", json={"throttle_seconds": 60}
        )
        assert response.status_code == 200
        assert response.json()["throttle_seconds"] == 60.0

        response = client.put(
            f"{API}/market-data/subscriptions/NOPE/throttle", json={"throttle_seconds": 60}
        )
        assert response.status_code == 404


class TestCryptoEndpoints:
    """Tests for /crypto."""

    def test_crypto_lifecycle(self, client):
        response = client.post(f"{API}/crypto/subscribe", json={"instrument_ids": ["BTC", "ETH"]})
        assert response.status_code == 200

        listing = client.get(f"{API}/crypto/subscriptions").json()
        assert listing["count"] == 2

        response = client.delete(f"{API}/crypto/unsubscribe/BTC")
        assert response.json()["success"] is True
        assert client.get(f"{API}/crypto/subscriptions").json()["count"] == 1

    def test_crypto_unsubscribe_ignores_equities(self, client):
        client.post(f"{API}/market-data/subscribe", json={"instrument_ids": ["AAPL"]})

        response = client.delete(f"{API}/crypto/unsubscribe/AAPL")

        assert response.json()["success"] is False
        assert client.get(f"{API}/market-data/subscriptions").json()["count"] == 1


class TestDataSourceEndpoints:
    """Tests for /datasource."""

    def test_routing_update_and_status(self, client):
        client.post(f"{API}/market-data/subscribe", json={"instrument_ids": ["AAPL", "0700.HK"]})

        response = client.put(
            f"{API}/datasource/routing",
            json={"real_time_suffixes": [".HK"], "delayed_suffixes": []},
        )
        assert response.status_code == 200
        assert response.json()["delayed_enabled"] is False

        status = client.get(f"{API}/datasource/status").json()
        assert status["subscriptions"]["unknown"] == ["AAPL"]
        assert status["subscriptions"]["counts"]["all_tick"] == 1

    def test_switch_provider(self, client):
        client.post(f"{API}/market-data/subscribe", json={"instrument_ids": ["0700.HK"]})

        response = client.post(
            f"{API}/datasource/stock",
            json={"instrument_ids": ["0700.HK", "MISSING"], "provider": "alpha_vantage"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["switched"] == ["0700.HK"]
        assert data["not_found"] == ["MISSING"]

        response = client.post(
            f"{API}/datasource/stock",
            json={"instrument_ids": ["0700.HK"], "provider": "auto"},
        )
        assert response.json()["provider"] == "auto"


class TestSchedulerEndpoints:
    """Tests for /scheduler."""

    def test_interval_roundtrip(self, client):
        assert client.get(f"{API}/scheduler/interval").json()["interval_seconds"] == 30

        response = client.post(f"{API}/scheduler/interval", json={"interval_seconds": 10})

        assert response.status_code == 200
        assert response.json()["interval_seconds"] == 10
        assert response.json()["estimated_cycles_per_hour"] == 360
        assert client.get(f"{API}/scheduler/interval").json()["interval_seconds"] == 10

    @pytest.mark.parametrize("seconds", [0, 3601])
    def test_interval_out_of_range(self, client, seconds):
        response = client.post(f"{API}/scheduler/interval", json={"interval_seconds": seconds})

        assert response.status_code == 400
        assert client.get(f"{API}/scheduler/interval").json()["interval_seconds"] == 30

    def test_scheduler_status(self, client):
        response = client.get(f"{API}/scheduler/status")

        assert response.status_code == 200
        data = response.json()
        assert data["enabled"] is False
        assert data["batching"]["batch_size"] == 5


class TestStatusEndpoints:
    """Tests for /status."""

    def test_status(self, client):
        client.post(f"{API}/market-data/subscribe", json={"instrument_ids": ["AAPL", "0700.HK"]})

        data = client.get(f"{API}/status").json()

        assert data["total_subscriptions"] == 2
        assert data["per_provider_counts"]["alpha_vantage"] == 1
        assert data["per_provider_counts"]["all_tick"] == 1
        assert data["rate_gate"]["total_keys"] == 2

    def test_circuit_breaker_reset(self, client, service):
        for _ in range(5):
            service.breakers.record_failure("all_tick", "boom")
        assert client.get(f"{API}/status/circuit-breakers").json()["open"] == 1

        response = client.post(f"{API}/status/circuit-breakers/all_tick/reset")

        assert response.status_code == 200
        assert response.json()["state"] == "CLOSED"

    def test_circuit_breaker_reset_unknown(self, client):
        response = client.post(f"{API}/status/circuit-breakers/nope/reset")

        assert response.status_code == 404


class TestSyntheticEndpoints:
    """Tests for /synthetic."""

    def test_update_config(self, client):
        response = client.put(f"{API}/synthetic/config", json={"base_price": 250.0, "drift": 0.0})

        assert response.status_code == 200
        assert response.json()["base_price"] == 250.0
        assert client.get(f"{API}/synthetic/config").json()["drift"] == 0.0

    def test_invalid_config_is_422(self, client):
        response = client.put(f"{API}/synthetic/config", json={"volatility": -1})

        assert response.status_code == 422
