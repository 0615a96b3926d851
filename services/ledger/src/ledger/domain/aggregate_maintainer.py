"""Incremental per-address aggregate maintenance (write path).

Events are applied exactly once per dedup key: the event row and the aggregate
update are written in one transaction, and the event insert is
``ON CONFLICT DO NOTHING``, so a re-delivered event changes nothing.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator

from sqlalchemy.engine import Engine

from services.ledger.src.ledger.db.aggregates_repository import AggregatesRepository
from services.ledger.src.ledger.db.events_repository import EventsRepository
from services.ledger.src.ledger.domain.events import (
    AddressAggregate,
    CanonicalEvent,
    EventKind,
    LiquidationEvent,
)

logger = logging.getLogger(__name__)


class ApplyResult(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    REJECTED = "rejected"


@dataclass
class ApplyStats:
    applied: int = 0
    duplicates: int = 0
    rejected: int = 0

    def record(self, result: ApplyResult) -> None:
        if result == ApplyResult.APPLIED:
            self.applied += 1
        elif result == ApplyResult.DUPLICATE:
            self.duplicates += 1
        else:
            self.rejected += 1


class AddressLockRegistry:
    """One lock per canonical address; serializes writers from different streams.

    A lock lives only while some thread holds or waits on it, so the registry
    stays as small as the set of addresses currently being written.
    """

    def __init__(self) -> None:
        self._locks: dict[str, threading.Lock] = {}
        self._holders: dict[str, int] = {}
        self._guard = threading.Lock()

    @contextmanager
    def hold(self, address: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(address, threading.Lock())
            self._holders[address] = self._holders.get(address, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._holders[address] -= 1
                if not self._holders[address]:
                    del self._holders[address]
                    del self._locks[address]

    def __len__(self) -> int:
        return len(self._locks)


def _is_amount(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def validate_amounts(event: CanonicalEvent) -> str | None:
    """Return the name of the first malformed amount field, or None."""
    fields = ["amount_raw", "amount_usd"]
    if isinstance(event, LiquidationEvent):
        fields += ["debt_to_cover", "liquidated_collateral_amount", "liquidated_collateral_usd"]
    for name in fields:
        if not _is_amount(getattr(event, name)):
            return name
    return None


def apply_effect(aggregate: AddressAggregate, event: CanonicalEvent) -> None:
    """Mutate the aggregate with one event. Repay/withdraw leave the USD tallies alone."""
    if event.kind == EventKind.BORROW:
        aggregate.total_borrowed_usd += event.amount_usd
    elif event.kind == EventKind.SUPPLY:
        aggregate.total_supplied_usd += event.amount_usd
    elif event.kind == EventKind.LIQUIDATION:
        aggregate.total_liquidations += 1

    aggregate.event_count += 1
    if aggregate.first_seen_block is None or event.block_number < aggregate.first_seen_block:
        aggregate.first_seen_block = event.block_number
    if aggregate.last_seen_block is None or event.block_number > aggregate.last_seen_block:
        aggregate.last_seen_block = event.block_number


class AggregateMaintainer:
    """Applies canonical events to the event store and the per-address aggregates."""

    def __init__(self, engine: Engine, locks: AddressLockRegistry | None = None):
        self.engine = engine
        self.events = EventsRepository(engine)
        self.aggregates = AggregatesRepository(engine)
        self.locks = locks or AddressLockRegistry()
        # SQLite has a single writer; serialize all writes to avoid busy errors
        self._store_lock = threading.Lock() if "sqlite" in str(engine.url) else None

    @contextmanager
    def _write_guard(self, address: str) -> Iterator[None]:
        with self.locks.hold(address):
            if self._store_lock is None:
                yield
            else:
                with self._store_lock:
                    yield

    def apply(self, event: CanonicalEvent) -> ApplyResult:
        bad_field = validate_amounts(event)
        if bad_field is not None:
            logger.warning(
                f"Rejected {event.kind.value} {event.id} for {event.address}: "
                f"malformed {bad_field}={getattr(event, bad_field)!r}"
            )
            return ApplyResult.REJECTED

        with self._write_guard(event.address):
            with self.engine.begin() as conn:
                if not self.events.insert_event(conn, event):
                    logger.debug(f"Duplicate event {event.id} ignored")
                    return ApplyResult.DUPLICATE

                if self.aggregates.ensure(conn, event.address, event.block_number):
                    logger.debug(f"Created aggregate for {event.address}")
                aggregate = self.aggregates.load(conn, event.address)
                apply_effect(aggregate, event)
                self.aggregates.save(conn, aggregate)

        return ApplyResult.APPLIED

    def apply_all(self, events: Iterable[CanonicalEvent]) -> ApplyStats:
        stats = ApplyStats()
        for event in events:
            stats.record(self.apply(event))
        return stats
