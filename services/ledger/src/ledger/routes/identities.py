from fastapi import APIRouter, Depends

from services.ledger.src.ledger.domain.aggregation import AggregationFacade
from services.ledger.src.ledger.routes.dependencies import get_facade
from services.ledger.src.ledger.schemas.responses import (
    AggregatedSummaryResponse,
    IdentityAggregateRequest,
    aggregated_to_response,
)

router = APIRouter(prefix="/identities", tags=["identities"])


@router.post("/aggregate", response_model=AggregatedSummaryResponse)
def aggregate_identity(
    body: IdentityAggregateRequest,
    facade: AggregationFacade = Depends(get_facade),
) -> AggregatedSummaryResponse:
    """
    Combined summary over every address linked to one identity.

    Addresses that fail or time out are zero-filled and listed in
    failed_addresses; the request itself still succeeds.
    """
    result = facade.aggregate(body.addresses, body.protocol)
    return aggregated_to_response(result)
