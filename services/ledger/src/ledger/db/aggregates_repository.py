"""Repository for per-address aggregate rows."""

from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Connection, Engine

from services.ledger.src.ledger.db.models import address_aggregates
from services.ledger.src.ledger.domain.events import AddressAggregate


def _row_to_aggregate(row) -> AddressAggregate:
    return AddressAggregate(
        address=row.address,
        total_borrowed_usd=row.total_borrowed_usd,
        total_supplied_usd=row.total_supplied_usd,
        total_liquidations=row.total_liquidations,
        event_count=row.event_count,
        first_seen_block=row.first_seen_block,
        last_seen_block=row.last_seen_block,
    )


class AggregatesRepository:
    """Reads never create rows; only the aggregate maintainer writes here."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self._is_sqlite = "sqlite" in str(engine.url)

    def get(self, address: str) -> AddressAggregate | None:
        stmt = select(address_aggregates).where(address_aggregates.c.address == address)
        with self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
            return _row_to_aggregate(row) if row is not None else None

    def count(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(address_aggregates)).scalar_one()

    def ensure(self, conn: Connection, address: str, block_number: int) -> bool:
        """Insert a zeroed row if none exists. Returns True if it was created."""
        now = datetime.now(timezone.utc)
        insert = sqlite_insert if self._is_sqlite else pg_insert
        stmt = insert(address_aggregates).values(
            address=address,
            total_borrowed_usd=0,
            total_supplied_usd=0,
            total_liquidations=0,
            event_count=0,
            first_seen_block=block_number,
            last_seen_block=block_number,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_nothing(index_elements=["address"])
        return conn.execute(stmt).rowcount == 1

    def load(self, conn: Connection, address: str) -> AddressAggregate:
        stmt = select(address_aggregates).where(address_aggregates.c.address == address)
        if not self._is_sqlite:
            stmt = stmt.with_for_update()
        row = conn.execute(stmt).fetchone()
        if row is None:
            raise LookupError(f"No aggregate row for {address}")
        return _row_to_aggregate(row)

    def save(self, conn: Connection, aggregate: AddressAggregate) -> None:
        stmt = (
            update(address_aggregates)
            .where(address_aggregates.c.address == aggregate.address)
            .values(
                total_borrowed_usd=aggregate.total_borrowed_usd,
                total_supplied_usd=aggregate.total_supplied_usd,
                total_liquidations=aggregate.total_liquidations,
                event_count=aggregate.event_count,
                first_seen_block=aggregate.first_seen_block,
                last_seen_block=aggregate.last_seen_block,
                updated_at=datetime.now(timezone.utc),
            )
        )
        conn.execute(stmt)
