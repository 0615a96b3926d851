from services.ledger.src.ledger.schemas.responses import (
    AddressAggregateResponse,
    AddressBreakdownResponse,
    AggregatedSummaryResponse,
    EventResponse,
    IdentityAggregateRequest,
    LiquidationResponse,
    LoanPositionResponse,
    LoanSummaryResponse,
    RepaymentResponse,
)

__all__ = [
    "AddressAggregateResponse",
    "AddressBreakdownResponse",
    "AggregatedSummaryResponse",
    "EventResponse",
    "IdentityAggregateRequest",
    "LiquidationResponse",
    "LoanPositionResponse",
    "LoanSummaryResponse",
    "RepaymentResponse",
]
