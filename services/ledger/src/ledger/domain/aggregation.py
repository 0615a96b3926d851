"""Combine loan summaries across every address linked to one identity."""

import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Iterable, Optional

from services.ledger.src.ledger.domain.events import (
    InvalidAddressError,
    Protocol,
    canonicalize_address,
)
from services.ledger.src.ledger.domain.risk import LoanSummary, RiskMetricCalculator

logger = logging.getLogger(__name__)

TIMED_OUT = "timed out"


@dataclass
class AddressBreakdown:
    address: str
    succeeded: bool
    summary: LoanSummary
    error: Optional[str] = None


@dataclass
class AggregatedSummary:
    addresses: list[str] = field(default_factory=list)
    total_borrowed_usd: int = 0
    total_repaid_usd: int = 0
    outstanding_debt_usd: int = 0
    total_loans: int = 0
    total_active_loans: int = 0
    total_liquidations: int = 0
    per_address: list[AddressBreakdown] = field(default_factory=list)

    @property
    def failed_addresses(self) -> list[str]:
        return [b.address for b in self.per_address if not b.succeeded]

    def add(self, breakdown: AddressBreakdown) -> None:
        self.per_address.append(breakdown)
        if not breakdown.succeeded:
            return
        summary = breakdown.summary
        self.total_borrowed_usd += summary.total_borrowed_usd
        self.total_repaid_usd += summary.total_repaid_usd
        self.outstanding_debt_usd += summary.outstanding_debt_usd
        self.total_loans += summary.total_loans
        self.total_active_loans += summary.active_loans
        self.total_liquidations += summary.total_liquidations


def _dedupe(addresses: Iterable[str]) -> list[tuple[str, bool]]:
    """(address, is_valid) in first-seen order. Valid addresses are canonical and unique."""
    entries: list[tuple[str, bool]] = []
    seen: set[str] = set()
    for raw in addresses:
        try:
            address = canonicalize_address(raw)
        except InvalidAddressError:
            entries.append((str(raw), False))
            continue
        if address not in seen:
            seen.add(address)
            entries.append((address, True))
    return entries


class AggregationFacade:
    """Fans a calculator out over many addresses with bounded concurrency.

    Never raises for missing or failed addresses: each failure is replaced by
    a zero summary and reported in the breakdown.
    """

    def __init__(
        self,
        calculator: RiskMetricCalculator,
        max_workers: int = 8,
        timeout_seconds: float = 10.0,
    ):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.calculator = calculator
        self.max_workers = max_workers
        self.timeout_seconds = timeout_seconds

    def aggregate(
        self, addresses: Iterable[str], protocol: Protocol | None = None
    ) -> AggregatedSummary:
        entries = _dedupe(addresses)
        valid = [address for address, is_valid in entries if is_valid]
        result = AggregatedSummary(addresses=[address for address, _ in entries])

        outcomes = self._fan_out(valid, protocol) if valid else {}
        for address, is_valid in entries:
            if not is_valid:
                logger.warning(f"Zero-filling invalid address {address!r}")
                result.add(
                    AddressBreakdown(address, False, LoanSummary.zero(address), "invalid address")
                )
                continue
            summary, error = outcomes[address]
            if error is not None:
                logger.warning(f"Zero-filling {address}: {error}")
                result.add(AddressBreakdown(address, False, LoanSummary.zero(address), error))
            else:
                result.add(AddressBreakdown(address, True, summary))

        return result

    def _fan_out(
        self, addresses: list[str], protocol: Protocol | None
    ) -> dict[str, tuple[Optional[LoanSummary], Optional[str]]]:
        executor = ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(addresses)),
            thread_name_prefix="aggregate",
        )
        futures: dict[Future, str] = {}
        try:
            for address in addresses:
                future = executor.submit(self.calculator.compute_for_address, address, protocol)
                futures[future] = address
            done, _not_done = wait(futures, timeout=self.timeout_seconds)
        finally:
            # Do not wait for stragglers; their results are discarded
            executor.shutdown(wait=False, cancel_futures=True)

        outcomes: dict[str, tuple[Optional[LoanSummary], Optional[str]]] = {}
        for future, address in futures.items():
            if future not in done:
                outcomes[address] = (None, TIMED_OUT)
                continue
            error = future.exception()
            if error is not None:
                outcomes[address] = (None, f"{type(error).__name__}: {error}")
            else:
                outcomes[address] = (future.result(), None)
        return outcomes
