"""
Fetch Cycle

One tick of the subscription-driven fetch-and-publish pipeline.

Per tick:
1. Snapshot the registry (empty -> return, batching cursors untouched).
2. Partition subscriptions by resolved provider.
3. Keep the instruments that are due (rate gate) and not already in flight.
4. Rate-limited providers take a rotating fixed-size batch; the rest
   dispatch every due instrument.
5. Each instrument runs as its own task: fetch (optionally through retry
   and circuit breaker), fall back to synthetic data if configured, publish.

Dispatch only creates tasks; the tick returns without waiting for fetches.
"""
import asyncio
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, Iterable
from loguru import logger

from market_relay.data_providers.adapters.base import BaseAdapter, DataSource, QuoteRecord
from market_relay.data_providers.adapters.gaussian_random import GaussianRandomAdapter
from market_relay.data_providers.rate_gate import RateGate
from market_relay.data_providers.retry import RetryExecutor
from market_relay.publishing.publisher import QuotePublisher
from market_relay.subscriptions.registry import Subscription, SubscriptionRegistry
from market_relay.utils.exceptions import (
    CircuitOpenError,
    ResponseFormatError,
    RetryExhaustedError,
    UnroutableInstrumentError,
    UpstreamError,
)


class FetchStatus(str, Enum):
    """Outcome of one instrument's fetch."""
    PUBLISHED = "published"
    PUBLISHED_FALLBACK = "published_fallback"
    PUBLISHED_ZERO_PRICE = "published_zero_price"
    SUPPRESSED = "suppressed"
    FAILED = "failed"
    CIRCUIT_OPEN = "circuit_open"
    SKIPPED_IN_FLIGHT = "skipped_in_flight"
    SKIPPED_UNSUBSCRIBED = "skipped_unsubscribed"


@dataclass
class FetchOutcome:
    """Tagged result for one instrument."""
    instrument_id: str
    data_source: DataSource
    status: FetchStatus
    price: Optional[Decimal] = None
    delivered: bool = False
    error: Optional[str] = None


@dataclass
class ProviderPolicy:
    """How the cycle drives one provider."""
    data_source: DataSource
    adapter: BaseAdapter
    throttled: bool = True                 # per-instrument rate gate applies
    batch_size: Optional[int] = None       # None = dispatch every due instrument
    resilient: bool = False                # wrap in retry + circuit breaker
    fallback_enabled: bool = False         # synthesize on failure
    min_batch_interval: Optional[int] = None  # provider-wide gate between batches

    @property
    def batched(self) -> bool:
        return self.batch_size is not None and self.batch_size > 0

    @property
    def gate_key(self) -> str:
        return f"provider:{self.data_source.value}"


@dataclass
class CycleReport:
    """What one tick dispatched."""
    tick: int
    started_at: datetime
    subscriptions: int = 0
    dispatched: dict[str, list[str]] = field(default_factory=dict)
    skipped_in_flight: list[str] = field(default_factory=list)
    unroutable: list[str] = field(default_factory=list)

    @property
    def dispatched_count(self) -> int:
        return sum(len(ids) for ids in self.dispatched.values())


class FetchCycle:
    """
    Scheduler tick body, parameterized by a list of provider policies.

    Carry-over state between ticks is limited to the batching cursors, the
    in-flight set, and the rate-gate / breaker state owned elsewhere.
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        rate_gate: RateGate,
        publisher: QuotePublisher,
        policies: Iterable[ProviderPolicy],
        retry: Optional[RetryExecutor] = None,
        fallback: Optional[GaussianRandomAdapter] = None,
        max_concurrency: int = 10,
        suppress_zero_price: bool = False,
    ):
        self.registry = registry
        self.rate_gate = rate_gate
        self.publisher = publisher
        self.retry = retry
        self.fallback = fallback
        self.suppress_zero_price = suppress_zero_price
        self._policies: dict[DataSource, ProviderPolicy] = {p.data_source: p for p in policies}
        self._max_concurrency = max(1, max_concurrency)
        self._semaphore: Optional[asyncio.Semaphore] = None

        self._cursors: dict[DataSource, int] = {}
        self._in_flight: set[str] = set()
        self._tasks: set[asyncio.Task] = set()
        self._tick_count = 0
        self._last_tick_at: Optional[datetime] = None
        self._outcome_counts: Counter = Counter()
        self.recent_outcomes: deque[FetchOutcome] = deque(maxlen=200)

        for policy in self._policies.values():
            if policy.batched and policy.min_batch_interval:
                rate_gate.configure(policy.gate_key, policy.min_batch_interval)

    @property
    def policies(self) -> dict[DataSource, ProviderPolicy]:
        return dict(self._policies)

    # ==================== Tick ====================

    async def tick(self) -> CycleReport:
        """
        Run one cycle. Returns once fetches are dispatched.

        Dispatch never awaits, so ticks on one loop cannot interleave; the
        scheduler job runs with max_instances=1.
        """
        self._tick_count += 1
        report = CycleReport(tick=self._tick_count, started_at=datetime.now(timezone.utc))
        try:
            self._run(report)
        finally:
            self._last_tick_at = report.started_at
        return report

    def _run(self, report: CycleReport) -> None:
        subscriptions = self.registry.list()
        report.subscriptions = len(subscriptions)
        if not subscriptions:
            logger.debug("No active subscriptions to fetch")
            return

        partitions = self._partition(subscriptions, report)

        for source, members in partitions.items():
            policy = self._policies[source]
            due = []
            for subscription in members:
                if subscription.instrument_id in self._in_flight:
                    report.skipped_in_flight.append(subscription.instrument_id)
                    self._outcome_counts[FetchStatus.SKIPPED_IN_FLIGHT.value] += 1
                    logger.debug(f"{subscription.instrument_id} still in flight, skipping")
                elif self._is_due(policy, subscription):
                    due.append(subscription)

            if not due:
                continue

            if policy.batched:
                if self.rate_gate.is_configured(policy.gate_key):
                    if not self.rate_gate.can_proceed(policy.gate_key):
                        logger.debug(
                            f"{source.value} batch gate closed, "
                            f"{self.rate_gate.remaining_seconds(policy.gate_key):.1f}s remaining"
                        )
                        continue
                    self.rate_gate.record_success(policy.gate_key)
                batch = self._next_batch(source, due, policy.batch_size)
                logger.debug(
                    f"Fetching {source.value} batch: {len(batch)}/{len(due)} due "
                    f"({', '.join(s.instrument_id for s in batch)})"
                )
            else:
                batch = due
                logger.debug(f"Fetching {len(batch)} instruments from {source.value}")

            for subscription in batch:
                self._dispatch(policy, subscription)
            report.dispatched[source.value] = [s.instrument_id for s in batch]

    def _partition(
        self,
        subscriptions: list[Subscription],
        report: CycleReport,
    ) -> dict[DataSource, list[Subscription]]:
        partitions: dict[DataSource, list[Subscription]] = {}
        disabled: Counter = Counter()
        for subscription in subscriptions:
            try:
                source = self.registry.resolve_provider(subscription)
            except UnroutableInstrumentError as e:
                report.unroutable.append(subscription.instrument_id)
                logger.warning(e.message)
                continue
            if source not in self._policies:
                disabled[source] += 1
                continue
            partitions.setdefault(source, []).append(subscription)

        for source, count in disabled.items():
            logger.warning(f"{count} instruments routed to {source.value} but the provider is disabled")
        return partitions

    def _is_due(self, policy: ProviderPolicy, subscription: Subscription) -> bool:
        if not policy.throttled:
            return True
        return self.rate_gate.can_proceed(subscription.instrument_id)

    def _next_batch(
        self,
        source: DataSource,
        due: list[Subscription],
        batch_size: int,
    ) -> list[Subscription]:
        """
        Slice the next batch from a rotating cursor.

        The cursor advances by the batch size and returns to 0 after the
        slice that reaches the end of the list.
        """
        total = len(due)
        start = self._cursors.get(source, 0) % total
        end = min(start + batch_size, total)
        self._cursors[source] = end if end < total else 0
        return due[start:end]

    # ==================== Dispatch ====================

    def _dispatch(self, policy: ProviderPolicy, subscription: Subscription) -> bool:
        instrument_id = subscription.instrument_id
        if instrument_id in self._in_flight:
            return False
        self._in_flight.add(instrument_id)

        task = asyncio.create_task(
            self._run_fetch(policy, subscription),
            name=f"fetch:{instrument_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def _run_fetch(self, policy: ProviderPolicy, subscription: Subscription) -> FetchOutcome:
        instrument_id = subscription.instrument_id
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self._max_concurrency)
        try:
            async with self._semaphore:
                if not self.registry.is_subscribed(instrument_id):
                    outcome = FetchOutcome(
                        instrument_id, policy.data_source, FetchStatus.SKIPPED_UNSUBSCRIBED
                    )
                else:
                    outcome = await self._fetch_and_publish(policy, subscription)
        except Exception as e:
            logger.exception(f"Unexpected error processing {instrument_id}: {e}")
            outcome = FetchOutcome(
                instrument_id, policy.data_source, FetchStatus.FAILED, error=str(e)
            )
        finally:
            self._in_flight.discard(instrument_id)

        self._outcome_counts[outcome.status.value] += 1
        self.recent_outcomes.append(outcome)
        return outcome

    async def _fetch(self, policy: ProviderPolicy, instrument_id: str, granularity: Optional[str]) -> QuoteRecord:
        adapter = policy.adapter
        if policy.resilient and self.retry is not None:
            return await self.retry.execute_with_retry(
                lambda: adapter.fetch_one(instrument_id, granularity),
                policy.data_source.value,
            )
        return await adapter.fetch_one(instrument_id, granularity)

    async def _fetch_and_publish(self, policy: ProviderPolicy, subscription: Subscription) -> FetchOutcome:
        instrument_id = subscription.instrument_id
        source = policy.data_source
        granularity = subscription.granularity

        try:
            record = await self._fetch(policy, instrument_id, granularity)
        except CircuitOpenError as e:
            logger.warning(f"Skipping {instrument_id}: {e.message}")
            return await self._on_failure(policy, subscription, e, FetchStatus.CIRCUIT_OPEN)
        except Exception as e:
            logger.error(f"Error fetching {instrument_id} from {source.value}: {e}")
            return await self._on_failure(policy, subscription, e, FetchStatus.FAILED)

        if record.has_price:
            delivered = await self.publisher.publish(record)
            self._record_gate(policy, instrument_id)
            return FetchOutcome(
                instrument_id, source, FetchStatus.PUBLISHED, record.price, delivered
            )

        logger.warning(f"No price obtained for {instrument_id} from {source.value}")

        if self._fallback_available(policy, instrument_id):
            return await self._publish_fallback(policy, subscription, error="no price")

        self._record_gate(policy, instrument_id)
        if self.suppress_zero_price:
            logger.warning(f"Suppressing zero-price quote for {instrument_id}")
            return FetchOutcome(instrument_id, source, FetchStatus.SUPPRESSED, record.price)

        logger.warning(f"Publishing zero-price quote for {instrument_id} (no fallback configured)")
        delivered = await self.publisher.publish(record)
        return FetchOutcome(
            instrument_id, source, FetchStatus.PUBLISHED_ZERO_PRICE, record.price, delivered
        )

    async def _on_failure(
        self,
        policy: ProviderPolicy,
        subscription: Subscription,
        error: Exception,
        status: FetchStatus,
    ) -> FetchOutcome:
        instrument_id = subscription.instrument_id
        if self._fallback_available(policy, instrument_id):
            return await self._publish_fallback(policy, subscription, error=str(error))

        if _upstream_responded(error):
            self._record_gate(policy, instrument_id)
        return FetchOutcome(instrument_id, policy.data_source, status, error=str(error))

    def _fallback_available(self, policy: ProviderPolicy, instrument_id: str) -> bool:
        # Unsubscribed while in flight: do not recreate synthetic state
        return (
            policy.fallback_enabled
            and self.fallback is not None
            and self.registry.is_subscribed(instrument_id)
        )

    async def _publish_fallback(
        self,
        policy: ProviderPolicy,
        subscription: Subscription,
        error: Optional[str],
    ) -> FetchOutcome:
        instrument_id = subscription.instrument_id
        record = await self.fallback.fetch_one(instrument_id, subscription.granularity)
        record.fallback_for = policy.data_source
        logger.info(
            f"Using synthetic fallback for {instrument_id} "
            f"({policy.data_source.value} failed): price={record.price}"
        )
        delivered = await self.publisher.publish(record)
        self._record_gate(policy, instrument_id)
        return FetchOutcome(
            instrument_id,
            policy.data_source,
            FetchStatus.PUBLISHED_FALLBACK,
            record.price,
            delivered,
            error,
        )

    def _record_gate(self, policy: ProviderPolicy, instrument_id: str) -> None:
        if policy.throttled:
            self.rate_gate.record_update(instrument_id)

    # ==================== Introspection ====================

    async def wait_idle(self) -> None:
        """Wait until every dispatched fetch has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._in_flight.clear()

    def in_flight(self) -> list[str]:
        return sorted(self._in_flight)

    def cursor(self, source: DataSource) -> int:
        return self._cursors.get(source, 0)

    def due_counts(self) -> dict[str, dict[str, int]]:
        """Subscribed and currently-due counts per enabled provider. No side effects."""
        counts = {
            source.value: {"subscribed": 0, "due": 0} for source in self._policies
        }
        for subscription in self.registry.list():
            try:
                source = self.registry.resolve_provider(subscription)
            except UnroutableInstrumentError:
                continue
            policy = self._policies.get(source)
            if policy is None:
                continue
            counts[source.value]["subscribed"] += 1
            if subscription.instrument_id not in self._in_flight and self._is_due(policy, subscription):
                counts[source.value]["due"] += 1
        return counts

    def get_status(self) -> dict:
        providers = {}
        for source, policy in self._policies.items():
            providers[source.value] = {
                "adapter": policy.adapter.name,
                "throttled": policy.throttled,
                "batched": policy.batched,
                "batch_size": policy.batch_size,
                "current_cursor": self._cursors.get(source, 0),
                "resilient": policy.resilient,
                "fallback_enabled": policy.fallback_enabled,
                "min_batch_interval": policy.min_batch_interval,
            }
        return {
            "ticks": self._tick_count,
            "last_tick_at": self._last_tick_at.isoformat() if self._last_tick_at else None,
            "in_flight": self.in_flight(),
            "suppress_zero_price": self.suppress_zero_price,
            "outcomes": dict(self._outcome_counts),
            "providers": providers,
            "due": self.due_counts(),
        }


def _upstream_responded(error: Exception) -> bool:
    """True if the upstream actually answered (the call consumed budget)."""
    if isinstance(error, RetryExhaustedError):
        return error.last_error is not None and _upstream_responded(error.last_error)
    if isinstance(error, UpstreamError):
        return error.status is not None
    return isinstance(error, ResponseFormatError)
