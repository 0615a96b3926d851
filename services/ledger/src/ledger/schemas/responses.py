"""API response models.

USD amounts are arbitrary-precision integers (USD-cent-equivalents) and are
serialized as decimal strings so JSON consumers never round them.
"""

from pydantic import BaseModel, Field

from services.ledger.src.ledger.domain.aggregation import AddressBreakdown, AggregatedSummary
from services.ledger.src.ledger.domain.events import (
    AddressAggregate,
    CanonicalEvent,
    LiquidationEvent,
    Protocol,
    RepayEvent,
)
from services.ledger.src.ledger.domain.risk import (
    HealthStatus,
    LoanPosition,
    LoanSummary,
)


class LoanPositionResponse(BaseModel):
    """One (protocol, asset) borrow position."""

    protocol: Protocol
    asset: str
    asset_address: str
    borrowed_usd: str
    repaid_usd: str
    net_borrowed_usd: str
    collateral_usd: str
    loan_to_value_bps: int
    health_factor: str
    health_status: HealthStatus
    liquidation_count: int
    is_active: bool
    opened_at: int
    last_activity_at: int
    transaction_hash: str
    borrow_rate: str | None = None


class RepaymentResponse(BaseModel):
    id: str
    protocol: Protocol
    asset: str
    amount_usd: str
    timestamp: int
    transaction_hash: str
    repayer: str | None = None


class LiquidationResponse(BaseModel):
    id: str
    protocol: Protocol
    liquidator: str
    collateral_asset: str
    debt_asset: str
    debt_to_cover: str
    liquidated_collateral_amount: str
    liquidated_collateral_usd: str
    timestamp: int
    transaction_hash: str


class LoanSummaryResponse(BaseModel):
    """Risk summary for a single address."""

    address: str
    total_loans: int
    active_loans: int
    total_borrowed_usd: str
    outstanding_debt_usd: str
    total_repaid_usd: str
    total_collateral_usd: str
    total_liquidations: int
    loan_to_value_bps: int
    average_loan_to_value: str  # percent
    health_factor: str  # "healthy" when there is no debt
    health_status: HealthStatus
    loans: list[LoanPositionResponse]
    repayments: list[RepaymentResponse]
    liquidations: list[LiquidationResponse]


class AddressAggregateResponse(BaseModel):
    address: str
    total_borrowed_usd: str
    total_supplied_usd: str
    total_liquidations: int
    event_count: int
    first_seen_block: int | None = None
    last_seen_block: int | None = None


class AddressBreakdownResponse(BaseModel):
    address: str
    succeeded: bool
    error: str | None = None
    summary: LoanSummaryResponse


class AggregatedSummaryResponse(BaseModel):
    """Totals across every address of one identity."""

    addresses: list[str]
    total_borrowed_usd: str
    total_repaid_usd: str
    outstanding_debt_usd: str
    total_loans: int
    total_active_loans: int
    total_liquidations: int
    failed_addresses: list[str]
    per_address: list[AddressBreakdownResponse]


class IdentityAggregateRequest(BaseModel):
    addresses: list[str] = Field(min_length=1, max_length=100)
    protocol: Protocol | None = None


class EventResponse(BaseModel):
    """Canonical event as stored."""

    id: str
    event_type: str
    protocol: Protocol
    address: str
    sender: str | None = None
    asset: str
    asset_address: str
    amount_raw: str
    amount_usd: str
    block_number: int
    timestamp: int
    transaction_hash: str


def position_to_response(position: LoanPosition) -> LoanPositionResponse:
    return LoanPositionResponse(
        protocol=position.protocol,
        asset=position.asset,
        asset_address=position.asset_address,
        borrowed_usd=str(position.borrowed_usd),
        repaid_usd=str(position.repaid_usd),
        net_borrowed_usd=str(position.net_borrowed_usd),
        collateral_usd=str(position.collateral_usd),
        loan_to_value_bps=position.loan_to_value_bps,
        health_factor=position.health_factor_display,
        health_status=position.health_status,
        liquidation_count=position.liquidation_count,
        is_active=position.is_active,
        opened_at=position.opened_at,
        last_activity_at=position.last_activity_at,
        transaction_hash=position.transaction_hash,
        borrow_rate=str(position.borrow_rate) if position.borrow_rate is not None else None,
    )


def repayment_to_response(event: RepayEvent) -> RepaymentResponse:
    return RepaymentResponse(
        id=event.id,
        protocol=event.protocol,
        asset=event.asset,
        amount_usd=str(event.amount_usd),
        timestamp=event.timestamp,
        transaction_hash=event.transaction_hash,
        repayer=event.sender,
    )


def liquidation_to_response(event: LiquidationEvent) -> LiquidationResponse:
    return LiquidationResponse(
        id=event.id,
        protocol=event.protocol,
        liquidator=event.liquidator,
        collateral_asset=event.collateral_asset,
        debt_asset=event.debt_asset,
        debt_to_cover=str(event.debt_to_cover),
        liquidated_collateral_amount=str(event.liquidated_collateral_amount),
        liquidated_collateral_usd=str(event.liquidated_collateral_usd),
        timestamp=event.timestamp,
        transaction_hash=event.transaction_hash,
    )


def summary_to_response(summary: LoanSummary) -> LoanSummaryResponse:
    return LoanSummaryResponse(
        address=summary.address,
        total_loans=summary.total_loans,
        active_loans=summary.active_loans,
        total_borrowed_usd=str(summary.total_borrowed_usd),
        outstanding_debt_usd=str(summary.outstanding_debt_usd),
        total_repaid_usd=str(summary.total_repaid_usd),
        total_collateral_usd=str(summary.total_collateral_usd),
        total_liquidations=summary.total_liquidations,
        loan_to_value_bps=summary.loan_to_value_bps,
        average_loan_to_value=format(summary.average_loan_to_value, "f"),
        health_factor=summary.health_factor_display,
        health_status=summary.health_status,
        loans=[position_to_response(p) for p in summary.loans],
        repayments=[repayment_to_response(e) for e in summary.repayments],
        liquidations=[liquidation_to_response(e) for e in summary.liquidations],
    )


def aggregate_to_response(aggregate: AddressAggregate) -> AddressAggregateResponse:
    return AddressAggregateResponse(
        address=aggregate.address,
        total_borrowed_usd=str(aggregate.total_borrowed_usd),
        total_supplied_usd=str(aggregate.total_supplied_usd),
        total_liquidations=aggregate.total_liquidations,
        event_count=aggregate.event_count,
        first_seen_block=aggregate.first_seen_block,
        last_seen_block=aggregate.last_seen_block,
    )


def breakdown_to_response(breakdown: AddressBreakdown) -> AddressBreakdownResponse:
    return AddressBreakdownResponse(
        address=breakdown.address,
        succeeded=breakdown.succeeded,
        error=breakdown.error,
        summary=summary_to_response(breakdown.summary),
    )


def aggregated_to_response(result: AggregatedSummary) -> AggregatedSummaryResponse:
    return AggregatedSummaryResponse(
        addresses=result.addresses,
        total_borrowed_usd=str(result.total_borrowed_usd),
        total_repaid_usd=str(result.total_repaid_usd),
        outstanding_debt_usd=str(result.outstanding_debt_usd),
        total_loans=result.total_loans,
        total_active_loans=result.total_active_loans,
        total_liquidations=result.total_liquidations,
        failed_addresses=result.failed_addresses,
        per_address=[breakdown_to_response(b) for b in result.per_address],
    )


def event_to_response(event: CanonicalEvent) -> EventResponse:
    return EventResponse(
        id=event.id,
        event_type=event.kind.value,
        protocol=event.protocol,
        address=event.address,
        sender=event.sender,
        asset=event.asset,
        asset_address=event.asset_address,
        amount_raw=str(event.amount_raw),
        amount_usd=str(event.amount_usd),
        block_number=event.block_number,
        timestamp=event.timestamp,
        transaction_hash=event.transaction_hash,
    )
