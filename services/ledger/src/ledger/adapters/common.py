"""Shared validation for raw protocol logs.

Raw logs arrive in the shape of the indexer's ``raw_events`` table:

    {
        "chain_id": 1,
        "block_number": 19000000,
        "log_index": 42,
        "block_timestamp": 1700000000,
        "transaction_hash": "0x...",
        "event_name": "Borrow",
        "params": {...decoded event arguments...},
    }
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Optional

from services.ledger.src.ledger.domain.events import (
    CanonicalEvent,
    DedupKey,
    InvalidAddressError,
    Protocol,
    canonicalize_address,
)
from services.ledger.src.ledger.domain.pricing import DEFAULT_ESTIMATOR, PriceEstimator


class TransformationError(Exception):
    """Raised when a raw log does not match the expected schema."""

    def __init__(self, field: str, reason: str = "missing required field"):
        self.field = field
        self.reason = reason
        super().__init__(f"{reason}: {field}")


def _get_field(data: dict[str, Any], key: str, required: bool = True, default: Any = None) -> Any:
    """Get a field from dict, optionally raising if missing."""
    if key not in data or data[key] is None:
        if required:
            raise TransformationError(key)
        return default
    return data[key]


def _to_int(value: Any, key: str) -> int:
    """Parse an integer from an int or a base-10 / 0x-prefixed string. Floats are rejected."""
    if isinstance(value, bool):
        raise TransformationError(key, "not an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            if text.lower().startswith(("0x", "-0x")):
                return int(text, 16)
            return int(text, 10)
        except ValueError:
            raise TransformationError(key, "not an integer") from None
    raise TransformationError(key, "not an integer")


def _get_int(data: dict[str, Any], key: str) -> int:
    return _to_int(_get_field(data, key), key)


def _get_amount(data: dict[str, Any], key: str) -> int:
    """Non-negative raw amount."""
    amount = _get_int(data, key)
    if amount < 0:
        raise TransformationError(key, "negative amount")
    return amount


def _get_address(data: dict[str, Any], key: str, required: bool = True) -> Optional[str]:
    value = _get_field(data, key, required=required)
    if value is None:
        return None
    try:
        return canonicalize_address(value)
    except InvalidAddressError:
        raise TransformationError(key, "malformed address") from None


@dataclass(frozen=True)
class LogContext:
    """Block and transaction context shared by every event kind."""

    dedup_key: DedupKey
    timestamp: int
    block_number: int
    transaction_hash: str

    @classmethod
    def from_raw(cls, raw: dict[str, Any]) -> "LogContext":
        chain_id = _get_int(raw, "chain_id")
        block_number = _get_int(raw, "block_number")
        log_index = _get_int(raw, "log_index")
        tx_hash = _get_field(raw, "transaction_hash")
        if not isinstance(tx_hash, str) or not tx_hash.startswith("0x"):
            raise TransformationError("transaction_hash", "malformed hash")
        return cls(
            dedup_key=DedupKey(chain_id, block_number, log_index),
            timestamp=_get_int(raw, "block_timestamp"),
            block_number=block_number,
            transaction_hash=tx_hash.lower(),
        )

    def common(self) -> dict[str, Any]:
        return {
            "dedup_key": self.dedup_key,
            "timestamp": self.timestamp,
            "block_number": self.block_number,
            "transaction_hash": self.transaction_hash,
        }


Handler = Callable[[dict[str, Any], LogContext], CanonicalEvent]


class ProtocolAdapter(ABC):
    """Translates one protocol's raw logs into canonical events. Holds no state."""

    protocol: Protocol

    def __init__(self, estimator: PriceEstimator | None = None):
        self.estimator = estimator or DEFAULT_ESTIMATOR

    @abstractmethod
    def handlers(self) -> dict[str, Handler]:
        """Map tracked event names to their handler."""

    @property
    def tracked_events(self) -> frozenset[str]:
        return frozenset(self.handlers())

    def transform(self, raw: dict[str, Any]) -> CanonicalEvent | None:
        """Transform one raw log, or return None for untracked event names.

        Raises:
            TransformationError: If the log does not match the expected schema.
        """
        if not isinstance(raw, dict):
            raise TransformationError("log", "not an object")
        event_name = _get_field(raw, "event_name")
        if not isinstance(event_name, str):
            raise TransformationError("event_name", "not a string")
        handler = self.handlers().get(event_name)
        if handler is None:
            return None
        params = _get_field(raw, "params")
        if not isinstance(params, dict):
            raise TransformationError("params", "not an object")
        context = LogContext.from_raw(raw)
        return handler(params, context)

    def estimate(self, asset_address: str, amount: int) -> int:
        return self.estimator.price(asset_address, amount)

    @staticmethod
    def sender_if_delegated(sender: Optional[str], beneficiary: str) -> Optional[str]:
        if sender and sender != beneficiary:
            return sender
        return None
