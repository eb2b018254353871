"""
Provider Adapters Package

Contains adapters for all supported quote providers.
Each adapter implements the BaseAdapter interface for consistent data access.
"""
from market_relay.data_providers.adapters.base import (
    BaseAdapter,
    RestAdapter,
    ProviderConfig,
    ProviderStatus,
    DataSource,
    QuoteRecord,
)
# Delayed equities
from market_relay.data_providers.adapters.alpha_vantage import (
    AlphaVantageAdapter,
    create_alpha_vantage_config,
)
# Real-time equities
from market_relay.data_providers.adapters.alltick import (
    AllTickAdapter,
    create_alltick_config,
)
# Crypto
from market_relay.data_providers.adapters.coinmarketcap import (
    CoinMarketCapAdapter,
    create_coinmarketcap_config,
)
# Synthetic
from market_relay.data_providers.adapters.gaussian_random import (
    GaussianRandomAdapter,
    create_gaussian_config,
)

__all__ = [
    # Base
    "BaseAdapter",
    "RestAdapter",
    "ProviderConfig",
    "ProviderStatus",
    "DataSource",
    "QuoteRecord",
    # Providers
    "AlphaVantageAdapter",
    "create_alpha_vantage_config",
    "AllTickAdapter",
    "create_alltick_config",
    "CoinMarketCapAdapter",
    "create_coinmarketcap_config",
    "GaussianRandomAdapter",
    "create_gaussian_config",
]
