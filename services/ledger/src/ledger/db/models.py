from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
)
from sqlalchemy.types import TypeDecorator


class BigIntText(TypeDecorator):
    """Arbitrary-precision integer stored as base-10 text.

    NUMERIC columns round-trip through float on SQLite, which loses precision
    above 2**53.
    """

    impl = String(80)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(int(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return int(value)


metadata = MetaData()

lending_events = Table(
    "lending_events",
    metadata,
    # "{chain_id}-{block_number}-{log_index}"
    Column("id", String(100), primary_key=True),
    Column("chain_id", Integer, nullable=False),
    Column("block_number", BigInteger, nullable=False),
    Column("log_index", Integer, nullable=False),
    Column("event_type", String(20), nullable=False),
    Column("protocol", String(20), nullable=False),
    # Raw timestamp (unix seconds UTC)
    Column("timestamp", BigInteger, nullable=False),
    Column("tx_hash", String(66), nullable=False),
    # Beneficiary (borrower/supplier/liquidated) and the caller when delegated
    Column("user_address", String(42), nullable=False),
    Column("sender_address", String(42), nullable=True),
    # Asset info (primary; debt side for liquidations)
    Column("asset", String(42), nullable=False),
    Column("asset_address", String(42), nullable=False),
    Column("amount_raw", BigIntText, nullable=False),
    Column("amount_usd", BigIntText, nullable=False),
    # Borrow-specific
    Column("borrow_rate", BigIntText, nullable=True),
    # Liquidation-specific
    Column("liquidator_address", String(42), nullable=True),
    Column("collateral_asset", String(42), nullable=True),
    Column("debt_asset", String(42), nullable=True),
    Column("debt_to_cover", BigIntText, nullable=True),
    Column("liquidated_collateral_amount", BigIntText, nullable=True),
    Column("liquidated_collateral_usd", BigIntText, nullable=True),
    # Metadata
    Column("created_at", DateTime(timezone=True), nullable=True),
    Index("idx_events_user", "user_address", "block_number", "log_index"),
    Index("idx_events_cursor", "protocol", "block_number", "log_index"),
    Index("idx_events_type", "event_type", "timestamp"),
)

address_aggregates = Table(
    "address_aggregates",
    metadata,
    Column("address", String(42), primary_key=True),
    Column("total_borrowed_usd", BigIntText, nullable=False),
    Column("total_supplied_usd", BigIntText, nullable=False),
    Column("total_liquidations", Integer, nullable=False),
    Column("event_count", Integer, nullable=False),
    Column("first_seen_block", BigInteger, nullable=True),
    Column("last_seen_block", BigInteger, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=True),
    Column("updated_at", DateTime(timezone=True), nullable=True),
)
