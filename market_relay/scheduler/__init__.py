"""
Task Scheduler

Fetch cycle and the recurring timer that drives it.
"""
from market_relay.scheduler.fetch_cycle import (
    CycleReport,
    FetchCycle,
    FetchOutcome,
    FetchStatus,
    ProviderPolicy,
)
from market_relay.scheduler.fetch_scheduler import FetchScheduler, FETCH_JOB_ID

__all__ = [
    "CycleReport",
    "FetchCycle",
    "FetchOutcome",
    "FetchStatus",
    "ProviderPolicy",
    "FetchScheduler",
    "FETCH_JOB_ID",
]
