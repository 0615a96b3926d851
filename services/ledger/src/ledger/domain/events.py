"""Canonical lending events shared by every protocol adapter."""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

ADDRESS_PATTERN = re.compile(r"^0x[0-9a-f]{40}$")


class InvalidAddressError(ValueError):
    """Raised when a string is not a 20-byte hex address."""

    def __init__(self, value: object):
        self.value = value
        super().__init__(f"Invalid address: {value!r}")


def canonicalize_address(value: str) -> str:
    """Lowercase and validate an address. 0xABC... and 0xabc... are the same account."""
    if not isinstance(value, str):
        raise InvalidAddressError(value)
    address = value.strip().lower()
    if not ADDRESS_PATTERN.match(address):
        raise InvalidAddressError(value)
    return address


class Protocol(str, Enum):
    AAVE_V3 = "AAVE_V3"
    SPARK = "SPARK"
    COMPOUND_V3 = "COMPOUND_V3"


class EventKind(str, Enum):
    BORROW = "borrow"
    REPAY = "repay"
    SUPPLY = "supply"
    WITHDRAW = "withdraw"
    LIQUIDATION = "liquidation"


@dataclass(frozen=True, order=True)
class DedupKey:
    """(chain, block, log index) - unique per emitted log, stable across re-delivery."""

    chain_id: int
    block_number: int
    log_index: int

    @property
    def id(self) -> str:
        return f"{self.chain_id}-{self.block_number}-{self.log_index}"

    @classmethod
    def parse(cls, value: str) -> "DedupKey":
        parts = value.split("-")
        if len(parts) != 3:
            raise ValueError(f"Malformed dedup key: {value}")
        chain_id, block_number, log_index = (int(p) for p in parts)
        return cls(chain_id, block_number, log_index)


@dataclass(frozen=True)
class CanonicalEvent:
    """One on-chain lending action, normalized across protocols."""

    dedup_key: DedupKey
    address: str  # beneficiary, lowercase
    protocol: Protocol
    asset: str
    asset_address: str
    amount_raw: int  # smallest unit of the asset
    amount_usd: int  # USD-cent-equivalent fixed point
    timestamp: int
    block_number: int
    transaction_hash: str
    # caller when it differs from the beneficiary (delegated actions)
    sender: Optional[str] = None

    kind = None  # set by each subclass

    @property
    def id(self) -> str:
        return self.dedup_key.id


@dataclass(frozen=True)
class BorrowEvent(CanonicalEvent):
    borrow_rate: Optional[int] = None  # RAY-scaled, as emitted

    kind = EventKind.BORROW


@dataclass(frozen=True)
class RepayEvent(CanonicalEvent):
    kind = EventKind.REPAY


@dataclass(frozen=True)
class SupplyEvent(CanonicalEvent):
    kind = EventKind.SUPPLY


@dataclass(frozen=True)
class WithdrawEvent(CanonicalEvent):
    kind = EventKind.WITHDRAW


@dataclass(frozen=True)
class LiquidationEvent(CanonicalEvent):
    """Liquidation of ``address``. asset/amount fields describe the debt side."""

    liquidator: str = ""
    collateral_asset: str = ""
    debt_asset: str = ""
    debt_to_cover: int = 0
    liquidated_collateral_amount: int = 0
    liquidated_collateral_usd: int = 0

    kind = EventKind.LIQUIDATION


EVENT_CLASSES: dict[EventKind, type[CanonicalEvent]] = {
    EventKind.BORROW: BorrowEvent,
    EventKind.REPAY: RepayEvent,
    EventKind.SUPPLY: SupplyEvent,
    EventKind.WITHDRAW: WithdrawEvent,
    EventKind.LIQUIDATION: LiquidationEvent,
}


@dataclass
class AddressHistory:
    """All canonical events recorded for one address."""

    address: str
    borrows: list[BorrowEvent] = field(default_factory=list)
    repays: list[RepayEvent] = field(default_factory=list)
    supplies: list[SupplyEvent] = field(default_factory=list)
    withdraws: list[WithdrawEvent] = field(default_factory=list)
    liquidations: list[LiquidationEvent] = field(default_factory=list)

    @classmethod
    def from_events(cls, address: str, events: list[CanonicalEvent]) -> "AddressHistory":
        history = cls(address=address)
        for event in events:
            history.add(event)
        return history

    def add(self, event: CanonicalEvent) -> None:
        buckets = {
            EventKind.BORROW: self.borrows,
            EventKind.REPAY: self.repays,
            EventKind.SUPPLY: self.supplies,
            EventKind.WITHDRAW: self.withdraws,
            EventKind.LIQUIDATION: self.liquidations,
        }
        buckets[event.kind].append(event)

    @property
    def is_empty(self) -> bool:
        return not (
            self.borrows or self.repays or self.supplies or self.withdraws or self.liquidations
        )

    def all_events(self) -> list[CanonicalEvent]:
        events: list[CanonicalEvent] = [
            *self.borrows, *self.repays, *self.supplies, *self.withdraws, *self.liquidations
        ]
        return sorted(events, key=lambda e: e.dedup_key)


@dataclass
class AddressAggregate:
    """Cumulative per-address counters. Append-only tallies, not live balances."""

    address: str
    total_borrowed_usd: int = 0
    total_supplied_usd: int = 0
    total_liquidations: int = 0
    event_count: int = 0
    first_seen_block: Optional[int] = None
    last_seen_block: Optional[int] = None

    @classmethod
    def empty(cls, address: str) -> "AddressAggregate":
        """Zero-valued aggregate for reads of an address that was never indexed."""
        return cls(address=address)
