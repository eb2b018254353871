"""
Unit Tests - Gaussian Random Adapter
"""
import math
import pytest

from market_relay.data_providers.adapters.base import DataSource
from market_relay.data_providers.adapters.gaussian_random import (
    GaussianRandomAdapter,
    PRICE_FLOOR,
)


class TestGaussianRandomAdapter:
    """Tests for the random-walk generator."""

    @pytest.fixture
    def adapter(self):
        return GaussianRandomAdapter(base_price=100.0, volatility=0.02, drift=0.0, seed=7)

    def test_first_price_walks_from_base(self, adapter):
        price = adapter.generate("AAPL")
        # 5 sigma band around the base price
        assert 90.0 < price < 110.0
        assert adapter.current_price("AAPL") == price

    def test_reset_price_restarts_from_base(self):
        a = GaussianRandomAdapter(base_price=100.0, seed=1)
        b = GaussianRandomAdapter(base_price=100.0, seed=1)
        for _ in range(10):
            a.generate("AAPL")
        a.reset_price("AAPL")
        assert a.current_price("AAPL") is None

        # Same random stream position on a fresh generator with history of another id
        for _ in range(10):
            b.generate("OTHER")
        assert a.generate("AAPL") == b.generate("AAPL")

    def test_reset_all(self, adapter):
        adapter.generate("AAPL")
        adapter.generate("MSFT")
        adapter.reset_all()
        assert adapter.all_prices() == {}

    def test_price_never_below_floor(self):
        adapter = GaussianRandomAdapter(base_price=0.02, volatility=5.0, drift=-0.5, seed=3)
        for _ in range(500):
            assert adapter.generate("PENNY") >= PRICE_FLOOR

    def test_box_muller_caches_second_sample(self, adapter):
        first = adapter._next_gaussian()
        spare = adapter._spare
        assert spare is not None
        assert adapter._next_gaussian() == spare
        assert adapter._spare is None
        assert math.isfinite(first)

    def test_zero_volatility_is_pure_drift(self):
        adapter = GaussianRandomAdapter(base_price=100.0, volatility=0.0, drift=0.01, seed=1)
        assert adapter.generate("X") == pytest.approx(101.0)
        assert adapter.generate("X") == pytest.approx(102.01)

    @pytest.mark.asyncio
    async def test_fetch_one_is_tagged_synthetic(self, adapter):
        record = await adapter.fetch_one("AAPL")
        assert record.synthetic is True
        assert record.data_source == DataSource.GAUSSIAN_RANDOM
        assert record.has_price

    def test_configuration_updates(self, adapter):
        adapter.update_base_price(50.0)
        adapter.update_volatility(0.0)
        adapter.update_drift(0.001)
        config = adapter.configuration()
        assert config["base_price"] == 50.0
        assert config["volatility"] == 0.0
        assert config["drift"] == 0.001

    @pytest.mark.parametrize("method,value", [
        ("update_base_price", 0),
        ("update_base_price", -1),
        ("update_volatility", -0.1),
    ])
    def test_invalid_configuration(self, adapter, method, value):
        with pytest.raises(ValueError):
            getattr(adapter, method)(value)
