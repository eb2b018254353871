"""
Subscription Registry

Authoritative in-memory map of active subscriptions (instrument id -> metadata).
One instrument has at most one entry; re-subscribing overwrites it.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional, Iterable
from loguru import logger

from market_relay.data_providers.adapters.base import DataSource
from market_relay.data_providers.rate_gate import RateGate
from market_relay.data_providers.source_router import DataSourceRouter
from market_relay.utils.exceptions import UnroutableInstrumentError, SubscriptionNotFoundError


@dataclass
class Subscription:
    """One active subscription."""
    instrument_id: str
    group_id: str
    provider: Optional[DataSource]  # None = routed by suffix on every tick
    throttle_seconds: float
    granularities: list[str] = field(default_factory=lambda: ["1min"])
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def auto_routed(self) -> bool:
        return self.provider is None

    @property
    def granularity(self) -> Optional[str]:
        """Primary granularity used for fetches."""
        return self.granularities[0] if self.granularities else None

    def to_dict(self) -> dict:
        return {
            "instrument_id": self.instrument_id,
            "group_id": self.group_id,
            "provider": self.provider.value if self.provider else "auto",
            "throttle_seconds": self.throttle_seconds,
            "granularities": list(self.granularities),
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class SubscribeRequest:
    """A batch of instruments sharing the same metadata."""
    instrument_ids: list[str]
    throttle_seconds: Optional[float] = None
    provider: Optional[DataSource] = None
    granularities: list[str] = field(default_factory=lambda: ["1min"])
    group_id: Optional[str] = None


@dataclass
class SubscribeOutcome:
    """Aggregate result of a subscribe call."""
    success: bool
    message: str
    group_id: str
    accepted_ids: list[str] = field(default_factory=list)
    rejected: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "message": self.message,
            "group_id": self.group_id,
            "accepted_ids": list(self.accepted_ids),
            "rejected": dict(self.rejected),
        }


class SubscriptionRegistry:
    """
    Owns subscription entries and their per-instrument rate-gate entries.

    Removal runs every registered cleanup hook (e.g. resetting synthetic
    price memory) so a later resubscription starts from a clean state.
    """

    def __init__(
        self,
        router: DataSourceRouter,
        rate_gate: RateGate,
        on_remove: Optional[Iterable[Callable[[str], None]]] = None,
        default_throttle_seconds: float = 5,
    ):
        self._router = router
        self._rate_gate = rate_gate
        self._on_remove: list[Callable[[str], None]] = list(on_remove or [])
        self.default_throttle_seconds = default_throttle_seconds
        self._subscriptions: dict[str, Subscription] = {}

    def add_cleanup_hook(self, hook: Callable[[str], None]) -> None:
        self._on_remove.append(hook)

    # ==================== Mutation ====================

    def subscribe(self, request: SubscribeRequest) -> SubscribeOutcome:
        """
        Add or overwrite subscriptions.

        An omitted throttle falls back to `default_throttle_seconds`.
        Each instrument is resolved independently; unroutable ones are
        reported in `rejected` and the rest still succeed.

        Raises:
            InvalidIntervalError: throttle outside the allowed bounds
        """
        requested = request.throttle_seconds
        if requested is None:
            requested = self.default_throttle_seconds
        throttle = self._rate_gate.validate_interval(requested)
        group_id = request.group_id or str(uuid.uuid4())
        granularities = list(request.granularities) or ["1min"]

        accepted: list[str] = []
        rejected: dict[str, str] = {}

        # Preserve order, drop duplicates
        for instrument_id in dict.fromkeys(request.instrument_ids):
            if not instrument_id:
                rejected[instrument_id] = "Empty instrument id"
                continue
            try:
                if request.provider is None:
                    self._router.determine(instrument_id)
            except UnroutableInstrumentError as e:
                logger.warning(f"Skipping {instrument_id}: {e.message}")
                rejected[instrument_id] = e.message
                continue

            self._subscriptions[instrument_id] = Subscription(
                instrument_id=instrument_id,
                group_id=group_id,
                provider=request.provider,
                throttle_seconds=throttle,
                granularities=granularities,
            )
            self._rate_gate.configure(instrument_id, throttle)
            accepted.append(instrument_id)
            logger.info(
                f"Subscribed {instrument_id} (provider={request.provider.value if request.provider else 'auto'}, "
                f"throttle={throttle:g}s, group={group_id})"
            )

        if accepted:
            message = f"Successfully subscribed to {len(accepted)} instruments"
        else:
            message = "Failed to subscribe to any instruments"

        return SubscribeOutcome(
            success=bool(accepted),
            message=message,
            group_id=group_id,
            accepted_ids=accepted,
            rejected=rejected,
        )

    def unsubscribe(self, instrument_id: str) -> bool:
        """Remove a subscription and all per-instrument state. Returns False if absent."""
        subscription = self._subscriptions.pop(instrument_id, None)
        if subscription is None:
            logger.warning(f"Instrument {instrument_id} was not subscribed")
            return False

        self._rate_gate.remove(instrument_id)
        for hook in self._on_remove:
            try:
                hook(instrument_id)
            except Exception as e:
                logger.error(f"Cleanup hook failed for {instrument_id}: {e}")

        logger.info(f"Unsubscribed {instrument_id}")
        return True

    def switch_provider(
        self,
        instrument_ids: Iterable[str],
        provider: Optional[DataSource],
    ) -> dict[str, list[str]]:
        """Pin (or un-pin, with None) the provider of existing subscriptions."""
        switched, missing = [], []
        for instrument_id in instrument_ids:
            subscription = self._subscriptions.get(instrument_id)
            if subscription is None:
                missing.append(instrument_id)
                continue
            subscription.provider = provider
            switched.append(instrument_id)
        if switched:
            logger.info(
                f"Switched {len(switched)} instruments to "
                f"{provider.value if provider else 'auto'}"
            )
        return {"switched": switched, "not_found": missing}

    def update_throttle(self, instrument_id: str, seconds: float) -> Subscription:
        subscription = self._subscriptions.get(instrument_id)
        if subscription is None:
            raise SubscriptionNotFoundError(instrument_id)
        self._rate_gate.update_interval(instrument_id, seconds)
        subscription.throttle_seconds = float(seconds)
        return subscription

    # ==================== Reads ====================

    def get(self, instrument_id: str) -> Optional[Subscription]:
        return self._subscriptions.get(instrument_id)

    def is_subscribed(self, instrument_id: str) -> bool:
        return instrument_id in self._subscriptions

    def list(self) -> list[Subscription]:
        """Snapshot of current entries."""
        return list(dict(self._subscriptions).values())

    def __len__(self) -> int:
        return len(self._subscriptions)

    def resolve_provider(self, subscription: Subscription) -> DataSource:
        """
        Explicit provider, or the router's choice under the current config.

        Raises:
            UnroutableInstrumentError: auto-routed and no suffix matches
        """
        if subscription.provider is not None:
            return subscription.provider
        return self._router.determine(subscription.instrument_id)

    def status_by_provider(self) -> dict:
        """
        Partition current entries by resolved provider.

        Never raises: unroutable entries are counted under `unknown`.
        """
        by_provider: dict[str, list[str]] = {source.value: [] for source in DataSource}
        unknown: list[str] = []
        for subscription in self.list():
            try:
                source = self.resolve_provider(subscription)
            except UnroutableInstrumentError:
                unknown.append(subscription.instrument_id)
                continue
            by_provider[source.value].append(subscription.instrument_id)

        return {
            "total": sum(len(ids) for ids in by_provider.values()) + len(unknown),
            "counts": {name: len(ids) for name, ids in by_provider.items()},
            "by_provider": by_provider,
            "unknown_count": len(unknown),
            "unknown": unknown,
        }
