"""Loan positions, LTV and health factor derived from an address's event history.

All amounts are integer USD-cent-equivalents. Ratios are computed with integer
arithmetic and only converted to ``Decimal`` for presentation.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional, Protocol as TypingProtocol

from services.ledger.src.ledger.db.events_repository import EventsRepository
from services.ledger.src.ledger.domain.events import (
    AddressHistory,
    CanonicalEvent,
    LiquidationEvent,
    Protocol,
    RepayEvent,
    canonicalize_address,
)
from services.ledger.src.ledger.domain.pricing import PriceEstimator

logger = logging.getLogger(__name__)

BPS = 10_000
WAD = 10**18
NO_DEBT_HEALTH_FACTOR = "healthy"


class HealthStatus(str, Enum):
    NO_DEBT = "no_debt"
    HEALTHY = "healthy"
    AT_RISK = "at_risk"  # HF < 1, liquidatable


class HistorySource(TypingProtocol):
    def fetch_history(self, address: str) -> AddressHistory:
        ...


def loan_to_value_bps(debt: int, collateral: int) -> int:
    if collateral <= 0:
        return 0
    return debt * BPS // collateral


def health_factor(debt: int, collateral: int) -> Optional[Decimal]:
    """collateral / debt as a Decimal with 18 places, None when there is no debt."""
    if debt <= 0:
        return None
    wad = collateral * WAD // debt
    return Decimal(wad).scaleb(-18)


def format_health_factor(hf: Optional[Decimal]) -> str:
    """Plain decimal string, or "healthy" when there is no debt."""
    if hf is None:
        return NO_DEBT_HEALTH_FACTOR
    return format(hf.normalize(), "f")


def health_status(hf: Optional[Decimal]) -> HealthStatus:
    if hf is None:
        return HealthStatus.NO_DEBT
    if hf < 1:
        return HealthStatus.AT_RISK
    return HealthStatus.HEALTHY


@dataclass
class LoanPosition:
    """Derived state of one (address, protocol, asset) borrow partition."""

    address: str
    protocol: Protocol
    asset: str
    asset_address: str
    borrowed_usd: int
    repaid_usd: int
    net_borrowed_usd: int
    collateral_usd: int
    loan_to_value_bps: int
    health_factor: Optional[Decimal]
    liquidation_count: int
    is_active: bool
    opened_at: int
    last_activity_at: int
    transaction_hash: str
    borrow_rate: Optional[int] = None

    @property
    def health_status(self) -> HealthStatus:
        return health_status(self.health_factor)

    @property
    def health_factor_display(self) -> str:
        return format_health_factor(self.health_factor)


@dataclass
class LoanSummary:
    """Per-address risk summary. All-zero when the address has no history."""

    address: str
    total_loans: int = 0
    active_loans: int = 0
    total_borrowed_usd: int = 0  # cumulative borrows
    outstanding_debt_usd: int = 0  # net debt of active positions
    total_repaid_usd: int = 0
    total_collateral_usd: int = 0
    total_liquidations: int = 0
    loan_to_value_bps: int = 0
    health_factor: Optional[Decimal] = None
    loans: list[LoanPosition] = field(default_factory=list)
    repayments: list[RepayEvent] = field(default_factory=list)
    liquidations: list[LiquidationEvent] = field(default_factory=list)

    @classmethod
    def zero(cls, address: str) -> "LoanSummary":
        return cls(address=address)

    @property
    def average_loan_to_value(self) -> Decimal:
        """LTV as a percentage (bps / 100)."""
        return Decimal(self.loan_to_value_bps).scaleb(-2)

    @property
    def health_status(self) -> HealthStatus:
        return health_status(self.health_factor)

    @property
    def health_factor_display(self) -> str:
        return format_health_factor(self.health_factor)


def _usd(event: CanonicalEvent, estimator: Optional[PriceEstimator]) -> int:
    if estimator is None:
        return event.amount_usd
    return estimator.price(event.asset_address, event.amount_raw)


def _liquidated_usd(event: LiquidationEvent, estimator: Optional[PriceEstimator]) -> int:
    if estimator is None:
        return event.liquidated_collateral_usd
    return estimator.price(event.collateral_asset, event.liquidated_collateral_amount)


def _collateral_pools(
    history: AddressHistory, estimator: Optional[PriceEstimator]
) -> tuple[dict[Protocol, int], set[Protocol]]:
    """Net collateral per protocol, and the protocols whose collateral was fully absorbed."""
    per_asset: dict[tuple[Protocol, str], int] = defaultdict(int)
    for event in history.supplies:
        per_asset[(event.protocol, event.asset_address)] += _usd(event, estimator)
    for event in history.withdraws:
        per_asset[(event.protocol, event.asset_address)] -= _usd(event, estimator)
    for event in history.liquidations:
        per_asset[(event.protocol, event.collateral_asset)] -= _liquidated_usd(event, estimator)

    pools: dict[Protocol, int] = defaultdict(int)
    for (protocol, _asset), amount in per_asset.items():
        pools[protocol] += max(amount, 0)

    liquidated = {event.protocol for event in history.liquidations}
    absorbed = {protocol for protocol in liquidated if pools.get(protocol, 0) == 0}
    return pools, absorbed


def _allocate(pool: int, debts: list[int]) -> list[int]:
    """Split a collateral pool pro rata by debt; the remainder goes to the largest debtor."""
    total = sum(debts)
    if total == 0 or not debts:
        return [0] * len(debts)
    shares = [pool * debt // total for debt in debts]
    remainder = pool - sum(shares)
    largest = max(range(len(debts)), key=lambda i: debts[i])
    shares[largest] += remainder
    return shares


def compute_loan_summary(
    address: str,
    history: AddressHistory,
    protocol: Protocol | None = None,
    estimator: Optional[PriceEstimator] = None,
    close_on_full_absorption: bool = False,
) -> LoanSummary:
    """
    Derive positions and risk metrics from one address's history.

    Args:
        address: Canonical address
        history: Every event recorded for the address
        protocol: Restrict to one protocol
        estimator: Re-price amounts from amount_raw instead of stored USD values
        close_on_full_absorption: Treat positions as closed once a liquidation
            leaves their protocol with no collateral, even if net debt remains

    Returns:
        LoanSummary; all zero when there is no history
    """
    if protocol is not None:
        history = AddressHistory.from_events(
            address, [e for e in history.all_events() if e.protocol == protocol]
        )
    if history.is_empty:
        return LoanSummary.zero(address)

    borrows_by_key: dict[tuple[Protocol, str], list] = defaultdict(list)
    repaid_by_key: dict[tuple[Protocol, str], int] = defaultdict(int)
    last_repay_at: dict[tuple[Protocol, str], int] = {}
    for event in history.borrows:
        borrows_by_key[(event.protocol, event.asset_address)].append(event)
    for event in history.repays:
        key = (event.protocol, event.asset_address)
        repaid_by_key[key] += _usd(event, estimator)
        last_repay_at[key] = max(last_repay_at.get(key, 0), event.timestamp)

    liquidations_by_protocol: dict[Protocol, int] = defaultdict(int)
    for event in history.liquidations:
        liquidations_by_protocol[event.protocol] += 1

    pools, absorbed = _collateral_pools(history, estimator)

    positions: list[LoanPosition] = []
    for key in sorted(borrows_by_key, key=lambda k: (k[0].value, k[1])):
        borrows = sorted(borrows_by_key[key], key=lambda e: e.dedup_key)
        borrowed = sum(_usd(e, estimator) for e in borrows)
        repaid = repaid_by_key.get(key, 0)
        net = max(borrowed - repaid, 0)
        is_active = net > 0
        if close_on_full_absorption and key[0] in absorbed:
            is_active = False
        positions.append(
            LoanPosition(
                address=address,
                protocol=key[0],
                asset=borrows[0].asset,
                asset_address=key[1],
                borrowed_usd=borrowed,
                repaid_usd=repaid,
                net_borrowed_usd=net,
                collateral_usd=0,
                loan_to_value_bps=0,
                health_factor=None,
                liquidation_count=liquidations_by_protocol.get(key[0], 0),
                is_active=is_active,
                opened_at=borrows[0].timestamp,
                last_activity_at=max(borrows[-1].timestamp, last_repay_at.get(key, 0)),
                transaction_hash=borrows[0].transaction_hash,
                borrow_rate=borrows[-1].borrow_rate,
            )
        )

    for proto in {p.protocol for p in positions}:
        active = [p for p in positions if p.protocol == proto and p.is_active]
        shares = _allocate(pools.get(proto, 0), [p.net_borrowed_usd for p in active])
        for position, share in zip(active, shares):
            position.collateral_usd = share
            position.loan_to_value_bps = loan_to_value_bps(position.net_borrowed_usd, share)
            position.health_factor = health_factor(position.net_borrowed_usd, share)

    active_positions = [p for p in positions if p.is_active]
    outstanding = sum(p.net_borrowed_usd for p in active_positions)
    collateral = sum(p.collateral_usd for p in active_positions)

    return LoanSummary(
        address=address,
        total_loans=len(positions),
        active_loans=len(active_positions),
        total_borrowed_usd=sum(p.borrowed_usd for p in positions),
        outstanding_debt_usd=outstanding,
        total_repaid_usd=sum(_usd(e, estimator) for e in history.repays),
        total_collateral_usd=collateral,
        total_liquidations=len(history.liquidations),
        loan_to_value_bps=loan_to_value_bps(outstanding, collateral),
        health_factor=health_factor(outstanding, collateral),
        loans=positions,
        repayments=sorted(history.repays, key=lambda e: e.dedup_key, reverse=True),
        liquidations=sorted(history.liquidations, key=lambda e: e.dedup_key, reverse=True),
    )


class RiskMetricCalculator:
    """Computes LoanSummary for an address from an injected history source."""

    def __init__(
        self,
        source: HistorySource,
        estimator: Optional[PriceEstimator] = None,
        close_on_full_absorption: bool = False,
    ):
        self.source = source
        self.estimator = estimator
        self.close_on_full_absorption = close_on_full_absorption

    def compute_for_address(self, address: str, protocol: Protocol | None = None) -> LoanSummary:
        address = canonicalize_address(address)
        history = self.source.fetch_history(address)
        summary = compute_loan_summary(
            address,
            history,
            protocol=protocol,
            estimator=self.estimator,
            close_on_full_absorption=self.close_on_full_absorption,
        )
        if summary.health_status == HealthStatus.AT_RISK:
            logger.info(f"{address} health factor {summary.health_factor_display} below 1")
        return summary


class RepositoryHistorySource:
    """History source backed by the local event store."""

    def __init__(self, repository: EventsRepository):
        self.repository = repository

    def fetch_history(self, address: str) -> AddressHistory:
        return self.repository.get_history(address)
