"""
Data Source Routing

Maps an instrument id to the provider that serves it, using suffix rules.
"""
from dataclasses import dataclass, field
from typing import Iterable
from loguru import logger

from market_relay.data_providers.adapters.base import DataSource
from market_relay.utils.exceptions import UnroutableInstrumentError


@dataclass
class RoutingConfig:
    """
    Suffix lists per provider.

    A provider is enabled iff its list is non-empty. An empty-string suffix
    matches every instrument id.
    """
    real_time_suffixes: list[str] = field(default_factory=list)
    delayed_suffixes: list[str] = field(default_factory=list)

    @property
    def real_time_enabled(self) -> bool:
        return bool(self.real_time_suffixes)

    @property
    def delayed_enabled(self) -> bool:
        return bool(self.delayed_suffixes)

    def to_dict(self) -> dict:
        return {
            "real_time_suffixes": list(self.real_time_suffixes),
            "delayed_suffixes": list(self.delayed_suffixes),
            "real_time_enabled": self.real_time_enabled,
            "delayed_enabled": self.delayed_enabled,
        }


def determine_provider(instrument_id: str, config: RoutingConfig) -> DataSource:
    """
    Resolve the provider for an instrument.

    Real-time suffixes are checked before delayed ones; within a list the
    first matching suffix wins. Matching is a case-sensitive endswith.

    Raises:
        UnroutableInstrumentError: no suffix matches
    """
    for suffix in config.real_time_suffixes:
        if instrument_id.endswith(suffix):
            return DataSource.ALL_TICK
    for suffix in config.delayed_suffixes:
        if instrument_id.endswith(suffix):
            return DataSource.ALPHA_VANTAGE
    raise UnroutableInstrumentError(
        instrument_id, config.real_time_suffixes, config.delayed_suffixes
    )


class DataSourceRouter:
    """Holds the live routing config. Every call reads the current config."""

    def __init__(self, config: RoutingConfig):
        self._config = config

    @property
    def config(self) -> RoutingConfig:
        return self._config

    def determine(self, instrument_id: str) -> DataSource:
        return determine_provider(instrument_id, self._config)

    def update(
        self,
        real_time_suffixes: Iterable[str],
        delayed_suffixes: Iterable[str],
    ) -> RoutingConfig:
        self._config = RoutingConfig(
            real_time_suffixes=list(real_time_suffixes),
            delayed_suffixes=list(delayed_suffixes),
        )
        logger.info(
            f"Routing updated: real-time={self._config.real_time_suffixes}, "
            f"delayed={self._config.delayed_suffixes}"
        )
        return self._config
