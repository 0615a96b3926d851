"""Repository for canonical lending events."""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Connection, Engine

from services.ledger.src.ledger.db.models import lending_events
from services.ledger.src.ledger.domain.events import (
    EVENT_CLASSES,
    AddressHistory,
    BorrowEvent,
    CanonicalEvent,
    DedupKey,
    EventKind,
    LiquidationEvent,
    Protocol,
)


def event_to_row(event: CanonicalEvent) -> dict[str, Any]:
    row = {
        "id": event.id,
        "chain_id": event.dedup_key.chain_id,
        "block_number": event.block_number,
        "log_index": event.dedup_key.log_index,
        "event_type": event.kind.value,
        "protocol": event.protocol.value,
        "timestamp": event.timestamp,
        "tx_hash": event.transaction_hash,
        "user_address": event.address,
        "sender_address": event.sender,
        "asset": event.asset,
        "asset_address": event.asset_address,
        "amount_raw": event.amount_raw,
        "amount_usd": event.amount_usd,
        "borrow_rate": None,
        "liquidator_address": None,
        "collateral_asset": None,
        "debt_asset": None,
        "debt_to_cover": None,
        "liquidated_collateral_amount": None,
        "liquidated_collateral_usd": None,
        "created_at": datetime.now(timezone.utc),
    }
    if isinstance(event, BorrowEvent):
        row["borrow_rate"] = event.borrow_rate
    if isinstance(event, LiquidationEvent):
        row.update({
            "liquidator_address": event.liquidator,
            "collateral_asset": event.collateral_asset,
            "debt_asset": event.debt_asset,
            "debt_to_cover": event.debt_to_cover,
            "liquidated_collateral_amount": event.liquidated_collateral_amount,
            "liquidated_collateral_usd": event.liquidated_collateral_usd,
        })
    return row


def row_to_event(row: Any) -> CanonicalEvent:
    kind = EventKind(row.event_type)
    fields: dict[str, Any] = {
        "dedup_key": DedupKey(row.chain_id, row.block_number, row.log_index),
        "address": row.user_address,
        "sender": row.sender_address,
        "protocol": Protocol(row.protocol),
        "asset": row.asset,
        "asset_address": row.asset_address,
        "amount_raw": row.amount_raw,
        "amount_usd": row.amount_usd,
        "timestamp": row.timestamp,
        "block_number": row.block_number,
        "transaction_hash": row.tx_hash,
    }
    if kind == EventKind.BORROW:
        fields["borrow_rate"] = row.borrow_rate
    elif kind == EventKind.LIQUIDATION:
        fields.update({
            "liquidator": row.liquidator_address or "",
            "collateral_asset": row.collateral_asset or "",
            "debt_asset": row.debt_asset or "",
            "debt_to_cover": row.debt_to_cover or 0,
            "liquidated_collateral_amount": row.liquidated_collateral_amount or 0,
            "liquidated_collateral_usd": row.liquidated_collateral_usd or 0,
        })
    return EVENT_CLASSES[kind](**fields)


class EventsRepository:
    """Repository for canonical event database operations."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self._is_sqlite = "sqlite" in str(engine.url)

    def insert_event(self, conn: Connection, event: CanonicalEvent) -> bool:
        """
        Insert one event inside the caller's transaction.

        Uses INSERT ... ON CONFLICT DO NOTHING on the dedup id.

        Returns:
            True if the row was written, False if the dedup id already existed
        """
        insert = sqlite_insert if self._is_sqlite else pg_insert
        stmt = insert(lending_events).values(event_to_row(event))
        stmt = stmt.on_conflict_do_nothing(index_elements=["id"])
        result = conn.execute(stmt)
        return result.rowcount == 1

    def get_events_for_address(
        self, address: str, protocol: Protocol | None = None
    ) -> list[CanonicalEvent]:
        """All events for an address in (block, log index) order."""
        stmt = select(lending_events).where(lending_events.c.user_address == address)
        if protocol is not None:
            stmt = stmt.where(lending_events.c.protocol == protocol.value)
        stmt = stmt.order_by(lending_events.c.block_number, lending_events.c.log_index)

        with self.engine.connect() as conn:
            return [row_to_event(row) for row in conn.execute(stmt)]

    def get_history(self, address: str, protocol: Protocol | None = None) -> AddressHistory:
        return AddressHistory.from_events(
            address, self.get_events_for_address(address, protocol)
        )

    def get_max_block(self, protocol: Protocol) -> int | None:
        """
        Get the latest block stored for a protocol (ingestion cursor).

        Returns:
            The maximum block number, or None if no events exist for the protocol
        """
        stmt = select(func.max(lending_events.c.block_number)).where(
            lending_events.c.protocol == protocol.value
        )

        with self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
            if row is None or row[0] is None:
                return None
            return int(row[0])

    def exists(self, dedup_key: DedupKey) -> bool:
        stmt = select(lending_events.c.id).where(lending_events.c.id == dedup_key.id)
        with self.engine.connect() as conn:
            return conn.execute(stmt).fetchone() is not None

    def get_event_counts(self, protocol: Protocol | None = None) -> dict[str, int]:
        """
        Get count of events by type (useful for verification).

        Returns:
            Dict mapping event_type to count
        """
        stmt = select(
            lending_events.c.event_type,
            func.count().label("count"),
        ).group_by(lending_events.c.event_type)
        if protocol is not None:
            stmt = stmt.where(lending_events.c.protocol == protocol.value)

        with self.engine.connect() as conn:
            result = conn.execute(stmt)
            return {row.event_type: row.count for row in result}

    def get_recent_events(
        self, limit: int = 50, event_type: EventKind | None = None
    ) -> list[CanonicalEvent]:
        """
        Get the most recent events across all types or filtered by type.

        Returns:
            Events ordered by block number descending
        """
        stmt = select(lending_events)
        if event_type is not None:
            stmt = stmt.where(lending_events.c.event_type == event_type.value)
        stmt = stmt.order_by(
            lending_events.c.block_number.desc(), lending_events.c.log_index.desc()
        ).limit(limit)

        with self.engine.connect() as conn:
            return [row_to_event(row) for row in conn.execute(stmt)]
