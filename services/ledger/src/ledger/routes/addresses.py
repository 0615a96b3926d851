import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from services.ledger.src.ledger.adapters.indexer import IndexerError
from services.ledger.src.ledger.domain.events import (
    AddressAggregate,
    InvalidAddressError,
    Protocol,
    canonicalize_address,
)
from services.ledger.src.ledger.domain.risk import LoanSummary, RiskMetricCalculator
from services.ledger.src.ledger.routes.dependencies import (
    AggregateReader,
    get_aggregate_reader,
    get_calculator,
)
from services.ledger.src.ledger.schemas.responses import (
    AddressAggregateResponse,
    LoanSummaryResponse,
    aggregate_to_response,
    summary_to_response,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/addresses", tags=["addresses"])


def _canonical(address: str) -> str:
    try:
        return canonicalize_address(address)
    except InvalidAddressError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.get("/{address}/summary", response_model=LoanSummaryResponse)
def get_summary(
    address: str,
    protocol: Protocol | None = Query(None, description="Restrict to one protocol"),
    calculator: RiskMetricCalculator = Depends(get_calculator),
) -> LoanSummaryResponse:
    """
    Loans, repayments, liquidations and risk metrics for an address.

    An address with no recorded events, or whose history the query service
    failed to return, gets an all-zero summary.
    """
    address = _canonical(address)
    try:
        summary = calculator.compute_for_address(address, protocol)
    except IndexerError as e:
        logger.warning(f"Zero-filling summary for {address}: {e}")
        summary = LoanSummary.zero(address)
    return summary_to_response(summary)


@router.get("/{address}/aggregate", response_model=AddressAggregateResponse)
def get_aggregate(
    address: str,
    read_aggregate: AggregateReader = Depends(get_aggregate_reader),
) -> AddressAggregateResponse:
    """Cumulative counters for an address. Zeros if it was never indexed."""
    address = _canonical(address)
    try:
        aggregate = read_aggregate(address)
    except IndexerError as e:
        logger.warning(f"Zero-filling aggregate for {address}: {e}")
        aggregate = None
    if aggregate is None:
        aggregate = AddressAggregate.empty(address)
    return aggregate_to_response(aggregate)
