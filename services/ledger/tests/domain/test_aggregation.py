"""Tests for AggregationFacade."""

import threading
import time

import pytest

from services.ledger.src.ledger.adapters.indexer import IndexerError, MockIndexerClient
from services.ledger.src.ledger.domain.aggregation import TIMED_OUT, AggregationFacade
from services.ledger.src.ledger.domain.events import BorrowEvent, DedupKey, Protocol
from services.ledger.src.ledger.domain.risk import LoanSummary, RiskMetricCalculator

A1 = "0x" + "a1" * 20
A2 = "0x" + "a2" * 20
A3 = "0x" + "a3" * 20
USDC = "0x" + "aa" * 20


def make_borrow(address: str, amount: int, log_index: int = 0, protocol=Protocol.AAVE_V3):
    return BorrowEvent(
        dedup_key=DedupKey(1, 100, log_index),
        address=address,
        protocol=protocol,
        asset=USDC,
        asset_address=USDC,
        amount_raw=amount,
        amount_usd=amount,
        timestamp=1,
        block_number=100,
        transaction_hash="0x01",
    )


class StubCalculator:
    """Returns fixed summaries; blocks on addresses listed in ``hang``."""

    def __init__(self, borrowed: dict[str, int], hang=(), delay: float = 0.0):
        self.borrowed = borrowed
        self.hang = set(hang)
        self.delay = delay
        self.release = threading.Event()
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def compute_for_address(self, address, protocol=None):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if address in self.hang:
                self.release.wait(5)
            if self.delay:
                time.sleep(self.delay)
            if address not in self.borrowed:
                raise IndexerError(f"no data for {address}")
            return LoanSummary(
                address=address,
                total_loans=1,
                active_loans=1,
                total_borrowed_usd=self.borrowed[address],
                outstanding_debt_usd=self.borrowed[address],
            )
        finally:
            with self._lock:
                self.active -= 1


class TestAggregate:

    def test_timed_out_address_is_zero_filled(self):
        calculator = StubCalculator({A1: 8_000, A2: 1_000}, hang=[A2])
        facade = AggregationFacade(calculator, max_workers=4, timeout_seconds=0.2)

        try:
            result = facade.aggregate([A1, A2])
        finally:
            calculator.release.set()

        assert result.total_borrowed_usd == 8_000
        assert result.failed_addresses == [A2]
        failed = result.per_address[1]
        assert failed.succeeded is False
        assert failed.error == TIMED_OUT
        assert failed.summary.total_borrowed_usd == 0
        assert failed.summary.total_loans == 0

    def test_exception_is_zero_filled_with_message(self):
        calculator = StubCalculator({A1: 8_000})
        facade = AggregationFacade(calculator)

        result = facade.aggregate([A1, A2])

        assert result.total_borrowed_usd == 8_000
        assert result.failed_addresses == [A2]
        assert "IndexerError" in result.per_address[1].error
        assert A2 in result.per_address[1].error

    def test_all_failures_still_return_result(self):
        facade = AggregationFacade(StubCalculator({}))

        result = facade.aggregate([A1, A2])

        assert result.total_borrowed_usd == 0
        assert result.failed_addresses == [A1, A2]

    def test_sums_exactly_beyond_float_precision(self):
        big = 2**64
        facade = AggregationFacade(StubCalculator({A1: big, A2: 1}))

        result = facade.aggregate([A1, A2])

        assert result.total_borrowed_usd == big + 1
        assert result.outstanding_debt_usd == big + 1
        assert result.total_active_loans == 2

    def test_preserves_input_order(self):
        facade = AggregationFacade(StubCalculator({A1: 1, A2: 2, A3: 3}))

        result = facade.aggregate([A3, A1, A2])

        assert [b.address for b in result.per_address] == [A3, A1, A2]

    def test_deduplicates_case_insensitively(self):
        calculator = StubCalculator({"0x" + "ab" * 20: 5})
        facade = AggregationFacade(calculator)

        result = facade.aggregate(["0x" + "AB" * 20, "0x" + "ab" * 20])

        assert result.addresses == ["0x" + "ab" * 20]
        assert result.total_borrowed_usd == 5

    def test_invalid_address_is_failed_entry(self):
        facade = AggregationFacade(StubCalculator({A1: 10}))

        result = facade.aggregate(["not-an-address", A1])

        assert result.total_borrowed_usd == 10
        assert result.addresses == ["not-an-address", A1]
        assert result.failed_addresses == ["not-an-address"]
        assert result.per_address[0].error == "invalid address"

    def test_empty_input(self):
        result = AggregationFacade(StubCalculator({})).aggregate([])

        assert result.per_address == []
        assert result.total_borrowed_usd == 0

    def test_never_exceeds_max_workers(self):
        addresses = ["0x" + f"{i:02x}" * 20 for i in range(1, 9)]
        calculator = StubCalculator({a: 1 for a in addresses}, delay=0.05)
        facade = AggregationFacade(calculator, max_workers=2, timeout_seconds=5)

        result = facade.aggregate(addresses)

        assert result.total_borrowed_usd == 8
        assert calculator.max_active <= 2

    def test_rejects_zero_workers(self):
        with pytest.raises(ValueError):
            AggregationFacade(StubCalculator({}), max_workers=0)


class TestAggregateWithCalculator:

    def test_combines_real_summaries(self):
        source = MockIndexerClient([
            make_borrow(A1, 8_000),
            make_borrow(A2, 2_000, log_index=1, protocol=Protocol.SPARK),
        ])
        facade = AggregationFacade(RiskMetricCalculator(source))

        result = facade.aggregate([A1, A2])

        assert result.total_borrowed_usd == 10_000
        assert result.total_loans == 2

    def test_protocol_filter_is_forwarded(self):
        source = MockIndexerClient([
            make_borrow(A1, 8_000),
            make_borrow(A2, 2_000, log_index=1, protocol=Protocol.SPARK),
        ])
        facade = AggregationFacade(RiskMetricCalculator(source))

        result = facade.aggregate([A1, A2], Protocol.SPARK)

        assert result.total_borrowed_usd == 2_000

    def test_source_failure_is_isolated(self):
        source = MockIndexerClient([make_borrow(A1, 8_000)])
        source.fail_for(A2, IndexerError("query service down"))
        facade = AggregationFacade(RiskMetricCalculator(source))

        result = facade.aggregate([A1, A2])

        assert result.total_borrowed_usd == 8_000
        assert result.failed_addresses == [A2]
