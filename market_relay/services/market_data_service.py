"""
Market Relay - Market Data Service

Owns every stateful store of the relay (registry, rate gate, circuit
breakers, adapters, publisher, fetch cycle, scheduler) and exposes the
operations the API layer calls.

Usage:
    service = MarketDataService(settings)
    await service.start()
    service.subscribe(SubscribeRequest(["AAPL", "0700.HK"]))
    ...
    await service.stop()
"""
import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Optional
from loguru import logger

from market_relay.config import Settings, settings as default_settings
from market_relay.data_providers.adapters.alpha_vantage import (
    AlphaVantageAdapter,
    create_alpha_vantage_config,
)
from market_relay.data_providers.adapters.alltick import AllTickAdapter, create_alltick_config
from market_relay.data_providers.adapters.base import BaseAdapter, DataSource
from market_relay.data_providers.adapters.coinmarketcap import (
    CoinMarketCapAdapter,
    create_coinmarketcap_config,
)
from market_relay.data_providers.adapters.gaussian_random import GaussianRandomAdapter
from market_relay.data_providers.circuit_breaker import (
    BreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
)
from market_relay.data_providers.rate_gate import RateGate
from market_relay.data_providers.retry import RetryConfig, RetryExecutor
from market_relay.data_providers.source_router import DataSourceRouter, RoutingConfig
from market_relay.publishing.publisher import QuotePublisher
from market_relay.scheduler.fetch_cycle import FetchCycle, ProviderPolicy
from market_relay.scheduler.fetch_scheduler import FetchScheduler
from market_relay.subscriptions.registry import (
    SubscribeOutcome,
    SubscribeRequest,
    SubscriptionRegistry,
)


class HealthStatus(str, Enum):
    HEALTHY = "HEALTHY"
    DEGRADED = "DEGRADED"
    UNHEALTHY = "UNHEALTHY"


@dataclass
class ComponentHealth:
    """Health of one component."""
    name: str
    status: HealthStatus
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "message": self.message,
            **self.details,
        }


_BREAKER_HEALTH = {
    CircuitState.CLOSED: HealthStatus.HEALTHY,
    CircuitState.HALF_OPEN: HealthStatus.DEGRADED,
    CircuitState.OPEN: HealthStatus.UNHEALTHY,
}


def overall_status(statuses: Iterable[HealthStatus]) -> HealthStatus:
    """Worst status wins."""
    statuses = list(statuses)
    if HealthStatus.UNHEALTHY in statuses:
        return HealthStatus.UNHEALTHY
    if HealthStatus.DEGRADED in statuses:
        return HealthStatus.DEGRADED
    return HealthStatus.HEALTHY


def health_recommendation(status: HealthStatus, unhealthy: int, degraded: int) -> str:
    if status == HealthStatus.UNHEALTHY:
        return (
            f"System has critical issues with {unhealthy} unhealthy components. "
            "Immediate attention required"
        )
    if status == HealthStatus.DEGRADED:
        return (
            f"System is experiencing minor issues with {degraded} degraded components. "
            "Monitor closely"
        )
    return "System is operating normally"


def build_default_adapters(config: Settings) -> dict[DataSource, BaseAdapter]:
    """One adapter per provider, configured from settings."""
    return {
        DataSource.ALPHA_VANTAGE: AlphaVantageAdapter(
            create_alpha_vantage_config(
                api_key=config.ALPHA_VANTAGE_API_KEY,
                base_url=config.ALPHA_VANTAGE_BASE_URL,
                timeout_seconds=config.UPSTREAM_TIMEOUT_SECONDS,
            )
        ),
        DataSource.ALL_TICK: AllTickAdapter(
            create_alltick_config(
                api_key=config.ALLTICK_API_KEY,
                base_url=config.ALLTICK_BASE_URL,
                timeout_seconds=config.UPSTREAM_TIMEOUT_SECONDS,
            )
        ),
        DataSource.COIN_MARKET_CAP: CoinMarketCapAdapter(
            create_coinmarketcap_config(
                api_key=config.COINMARKETCAP_API_KEY,
                base_url=config.COINMARKETCAP_BASE_URL,
                timeout_seconds=config.UPSTREAM_TIMEOUT_SECONDS,
            ),
            convert=config.COINMARKETCAP_CONVERT,
        ),
        DataSource.GAUSSIAN_RANDOM: GaussianRandomAdapter(
            base_price=config.GAUSSIAN_BASE_PRICE,
            volatility=config.GAUSSIAN_VOLATILITY,
            drift=config.GAUSSIAN_DRIFT,
            seed=config.GAUSSIAN_SEED,
        ),
    }


class MarketDataService:
    """
    Container for the relay's stores and the operations on them.

    Every store is built once here and handed to its dependents; nothing
    is a module-level singleton. Tests inject a clock, a sleep, adapters
    and a publisher.
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        clock: Callable[[], float] = time.monotonic,
        publisher: Optional[QuotePublisher] = None,
        adapters: Optional[dict[DataSource, BaseAdapter]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or default_settings
        cfg = self.config

        self.rate_gate = RateGate(
            min_interval=cfg.MIN_THROTTLE_SECONDS,
            max_interval=cfg.MAX_THROTTLE_SECONDS,
            clock=clock,
        )
        self.router = DataSourceRouter(
            RoutingConfig(
                real_time_suffixes=list(cfg.REAL_TIME_SUFFIXES),
                delayed_suffixes=list(cfg.DELAYED_SUFFIXES),
            )
        )
        self.breakers = CircuitBreakerRegistry(
            BreakerConfig(
                failure_threshold=cfg.CIRCUIT_FAILURE_THRESHOLD,
                open_seconds=cfg.CIRCUIT_OPEN_SECONDS,
            ),
            clock=clock,
        )
        self.retry = RetryExecutor(
            self.breakers,
            RetryConfig(
                max_retries=cfg.RETRY_MAX_ATTEMPTS,
                retry_delay_base=cfg.RETRY_BASE_DELAY_MS / 1000,
                retry_delay_max=cfg.RETRY_MAX_DELAY_MS / 1000,
            ),
            sleep=sleep,
        )

        self.adapters = adapters if adapters is not None else build_default_adapters(cfg)
        gaussian = self.adapters.get(DataSource.GAUSSIAN_RANDOM)
        if gaussian is None:
            gaussian = GaussianRandomAdapter(
                base_price=cfg.GAUSSIAN_BASE_PRICE,
                volatility=cfg.GAUSSIAN_VOLATILITY,
                drift=cfg.GAUSSIAN_DRIFT,
                seed=cfg.GAUSSIAN_SEED,
            )
        self.gaussian: GaussianRandomAdapter = gaussian

        self.registry = SubscriptionRegistry(
            self.router,
            self.rate_gate,
            on_remove=[self.gaussian.reset_price],
            default_throttle_seconds=cfg.DEFAULT_THROTTLE_SECONDS,
        )
        self.publisher = publisher or QuotePublisher(
            enabled=cfg.BUS_ENABLED,
            redis_url=cfg.REDIS_URL,
            topic_prefix=cfg.BUS_TOPIC_PREFIX,
            client_name=cfg.BUS_CLIENT_NAME,
        )
        self.registry.add_cleanup_hook(self.publisher.forget)

        resilient = set(cfg.RESILIENT_PROVIDERS)
        for name in resilient:
            self.breakers.configure(name)

        self.cycle = FetchCycle(
            registry=self.registry,
            rate_gate=self.rate_gate,
            publisher=self.publisher,
            policies=self._build_policies(resilient, set(cfg.FALLBACK_PROVIDERS)),
            retry=self.retry,
            fallback=self.gaussian,
            max_concurrency=cfg.MAX_CONCURRENT_FETCHES,
            suppress_zero_price=cfg.SUPPRESS_ZERO_PRICE,
        )
        self.scheduler = FetchScheduler(
            self.cycle.tick,
            interval_seconds=cfg.FETCH_INTERVAL_SECONDS,
            min_interval=cfg.MIN_THROTTLE_SECONDS,
            max_interval=cfg.MAX_THROTTLE_SECONDS,
        )
        self._started_at: Optional[datetime] = None

    def _build_policies(self, resilient: set[str], fallback: set[str]) -> list[ProviderPolicy]:
        cfg = self.config
        policies = []
        for source, adapter in self.adapters.items():
            policy = ProviderPolicy(
                data_source=source,
                adapter=adapter,
                resilient=source.value in resilient,
                fallback_enabled=source.value in fallback,
            )
            if source == DataSource.ALPHA_VANTAGE:
                # Free tier: fixed-size rotating batch per tick
                policy.batch_size = cfg.ALPHA_VANTAGE_BATCH_SIZE
                policy.min_batch_interval = cfg.ALPHA_VANTAGE_MIN_BATCH_INTERVAL_SECONDS
            elif source == DataSource.COIN_MARKET_CAP:
                policy.throttled = False
            elif source == DataSource.GAUSSIAN_RANDOM:
                policy.resilient = False
                policy.fallback_enabled = False
            policies.append(policy)
        return policies

    # ==================== Lifecycle ====================

    async def start(self) -> None:
        for adapter in self.adapters.values():
            await adapter.initialize()
        await self.publisher.connect()
        if self.config.SCHEDULER_ENABLED:
            self.scheduler.start()
        else:
            logger.warning("Scheduler disabled via configuration, no data will be fetched")
        self._started_at = datetime.utcnow()
        logger.info(
            f"Market data service started: {len(self.adapters)} providers, "
            f"tick every {self.scheduler.interval_seconds}s"
        )

    async def stop(self) -> None:
        self.scheduler.stop()
        await self.cycle.shutdown()
        self.breakers.close_all()
        for adapter in self.adapters.values():
            try:
                await adapter.close()
            except Exception as e:
                logger.warning(f"Error closing {adapter.name}: {e}")
        await self.publisher.close()
        logger.info("Market data service stopped")

    # ==================== Subscriptions ====================

    def subscribe(self, request: SubscribeRequest) -> SubscribeOutcome:
        outcome = self.registry.subscribe(request)
        logger.info(f"{outcome.message} (group={outcome.group_id}, rejected={len(outcome.rejected)})")
        return outcome

    def subscribe_crypto(
        self,
        instrument_ids: list[str],
        throttle_seconds: Optional[float] = None,
        group_id: Optional[str] = None,
    ) -> SubscribeOutcome:
        """Crypto subscriptions are pinned to the crypto provider (no suffix routing)."""
        request = SubscribeRequest(
            instrument_ids=instrument_ids,
            throttle_seconds=throttle_seconds,
            provider=DataSource.COIN_MARKET_CAP,
            granularities=["latest"],
            group_id=group_id,
        )
        return self.subscribe(request)

    def unsubscribe(self, instrument_id: str) -> bool:
        return self.registry.unsubscribe(instrument_id)

    def list_subscriptions(self, provider: Optional[DataSource] = None) -> dict:
        entries = [
            s.to_dict() for s in self.registry.list()
            if provider is None or s.provider == provider
        ]
        return {"count": len(entries), "entries": entries}

    def update_throttle(self, instrument_id: str, seconds: float) -> dict:
        subscription = self.registry.update_throttle(instrument_id, seconds)
        return subscription.to_dict()

    # ==================== Data Source Admin ====================

    def switch_provider(self, instrument_ids: list[str], provider: Optional[DataSource]) -> dict:
        if provider is not None and provider not in self.adapters:
            logger.warning(f"Pinning instruments to disabled provider {provider.value}")
        return self.registry.switch_provider(instrument_ids, provider)

    def update_routing(self, real_time_suffixes: list[str], delayed_suffixes: list[str]) -> dict:
        config = self.router.update(real_time_suffixes, delayed_suffixes)
        for name, enabled in (
            (DataSource.ALL_TICK.value, config.real_time_enabled),
            (DataSource.ALPHA_VANTAGE.value, config.delayed_enabled),
        ):
            if not enabled:
                logger.warning(f"{name} has no routing suffixes, auto-routed instruments will not use it")
        return config.to_dict()

    def datasource_status(self) -> dict:
        return {
            "routing": self.router.config.to_dict(),
            "subscriptions": self.registry.status_by_provider(),
            "providers": {
                source.value: adapter.get_status() for source, adapter in self.adapters.items()
            },
        }

    # ==================== Scheduler ====================

    def update_fetch_interval(self, seconds: int) -> dict:
        """Raises InvalidIntervalError outside the allowed bounds."""
        previous = self.scheduler.interval_seconds
        interval = self.scheduler.update_interval(seconds)
        return {"previous_interval_seconds": previous, "interval_seconds": interval}

    def scheduler_status(self) -> dict:
        cfg = self.config
        status = self.scheduler.get_status()
        cycle = self.cycle.get_status()
        alpha_vantage = cycle["providers"].get(DataSource.ALPHA_VANTAGE.value)
        batching = None
        if alpha_vantage is not None:
            due = cycle["due"].get(DataSource.ALPHA_VANTAGE.value, {})
            batching = {
                "batch_size": alpha_vantage["batch_size"],
                "current_batch_index": alpha_vantage["current_cursor"],
                "total_instruments": due.get("subscribed", 0),
                "min_batch_interval_seconds": alpha_vantage["min_batch_interval"],
            }
        return {
            **status,
            "enabled": cfg.SCHEDULER_ENABLED,
            "config": {
                "real_time_enabled": self.router.config.real_time_enabled,
                "delayed_enabled": self.router.config.delayed_enabled,
                "real_time_suffixes": list(self.router.config.real_time_suffixes),
                "delayed_suffixes": list(self.router.config.delayed_suffixes),
            },
            "batching": batching,
            "cycle": cycle,
        }

    # ==================== Status & Health ====================

    def get_status(self) -> dict:
        by_provider = self.registry.status_by_provider()
        return {
            "per_provider_counts": by_provider["counts"],
            "unknown_provider_count": by_provider["unknown_count"],
            "total_subscriptions": by_provider["total"],
            "circuit_breakers": self.breakers.get_summary(),
            "rate_gate": self.rate_gate.get_status(),
            "publisher": self.publisher.connection_status(),
            "scheduler": self.scheduler.get_status(),
            "timestamp": datetime.utcnow().isoformat(),
        }

    def reset_circuit_breaker(self, service: str) -> Optional[dict]:
        """Force a breaker closed. None if the service has no breaker."""
        if service not in self.breakers.services():
            return None
        self.breakers.reset(service)
        return self.breakers.get_status(service)

    def check_components(self) -> dict[str, ComponentHealth]:
        components: dict[str, ComponentHealth] = {}

        for service in self.breakers.services():
            state = self.breakers.state(service)
            components[service] = ComponentHealth(
                name=service,
                status=_BREAKER_HEALTH[state],
                message=f"Circuit breaker is {state.value}",
                details={"circuit_state": state.value},
            )

        publisher = self.publisher.connection_status()
        if not publisher["enabled"]:
            status, message = HealthStatus.HEALTHY, "Publisher running in simulated mode"
        elif publisher["connected"]:
            status, message = HealthStatus.HEALTHY, "Publisher connected"
        else:
            status, message = HealthStatus.DEGRADED, "Publisher disconnected, will reconnect on next publish"
        components["publisher"] = ComponentHealth("publisher", status, message, {
            "connected": publisher["connected"],
            "mode": publisher["mode"],
        })

        if self.scheduler.is_running:
            status, message = HealthStatus.HEALTHY, "Scheduler running"
        elif not self.config.SCHEDULER_ENABLED:
            status, message = HealthStatus.DEGRADED, "Scheduler disabled via configuration"
        else:
            status, message = HealthStatus.UNHEALTHY, "Scheduler not running"
        components["scheduler"] = ComponentHealth("scheduler", status, message, {
            "interval_seconds": self.scheduler.interval_seconds,
        })

        return components

    def health(self) -> dict:
        components = self.check_components()
        statuses = [c.status for c in components.values()]
        status = overall_status(statuses)
        unhealthy = statuses.count(HealthStatus.UNHEALTHY)
        degraded = statuses.count(HealthStatus.DEGRADED)
        return {
            "status": status.value,
            "timestamp": datetime.utcnow().isoformat(),
            "components": {name: c.to_dict() for name, c in components.items()},
            "summary": {
                "total_components": len(components),
                "healthy": statuses.count(HealthStatus.HEALTHY),
                "degraded": degraded,
                "unhealthy": unhealthy,
                "overall_status": status.value,
                "recommendation": health_recommendation(status, unhealthy, degraded),
            },
        }

    # ==================== Synthetic ====================

    def synthetic_config(self) -> dict:
        return {
            **self.gaussian.configuration(),
            "prices": {k: round(v, 4) for k, v in self.gaussian.all_prices().items()},
        }

    def update_synthetic_config(
        self,
        base_price: Optional[float] = None,
        volatility: Optional[float] = None,
        drift: Optional[float] = None,
    ) -> dict:
        """Raises ValueError for a non-positive base price or negative volatility."""
        if base_price is not None:
            self.gaussian.update_base_price(base_price)
        if volatility is not None:
            self.gaussian.update_volatility(volatility)
        if drift is not None:
            self.gaussian.update_drift(drift)
        return self.synthetic_config()

    def effective_config(self) -> dict:
        """Non-secret configuration."""
        cfg = self.config
        return {
            "app_name": cfg.APP_NAME,
            "environment": cfg.APP_ENV,
            "routing": self.router.config.to_dict(),
            "throttle": {
                "min_seconds": cfg.MIN_THROTTLE_SECONDS,
                "max_seconds": cfg.MAX_THROTTLE_SECONDS,
                "default_seconds": cfg.DEFAULT_THROTTLE_SECONDS,
            },
            "scheduler": {
                "enabled": cfg.SCHEDULER_ENABLED,
                "interval_seconds": self.scheduler.interval_seconds,
                "max_concurrent_fetches": cfg.MAX_CONCURRENT_FETCHES,
                "alpha_vantage_batch_size": cfg.ALPHA_VANTAGE_BATCH_SIZE,
            },
            "resilience": {
                "failure_threshold": cfg.CIRCUIT_FAILURE_THRESHOLD,
                "open_seconds": cfg.CIRCUIT_OPEN_SECONDS,
                "retry_max_attempts": cfg.RETRY_MAX_ATTEMPTS,
                "retry_base_delay_ms": cfg.RETRY_BASE_DELAY_MS,
                "retry_max_delay_ms": cfg.RETRY_MAX_DELAY_MS,
                "resilient_providers": list(cfg.RESILIENT_PROVIDERS),
                "fallback_providers": list(cfg.FALLBACK_PROVIDERS),
                "suppress_zero_price": cfg.SUPPRESS_ZERO_PRICE,
            },
            "bus": {
                "enabled": cfg.BUS_ENABLED,
                "topic_prefix": cfg.BUS_TOPIC_PREFIX,
            },
        }
