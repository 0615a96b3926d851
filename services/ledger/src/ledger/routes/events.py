from fastapi import APIRouter, Depends, Query

from services.ledger.src.ledger.db.events_repository import EventsRepository
from services.ledger.src.ledger.domain.events import EventKind
from services.ledger.src.ledger.routes.dependencies import get_events_repository
from services.ledger.src.ledger.schemas.responses import EventResponse, event_to_response

router = APIRouter(prefix="/events", tags=["events"])


@router.get("/recent", response_model=list[EventResponse])
def get_recent_events(
    limit: int = Query(50, ge=1, le=500),
    event_type: EventKind | None = Query(None),
    repo: EventsRepository = Depends(get_events_repository),
) -> list[EventResponse]:
    """Most recently indexed events, newest block first."""
    return [event_to_response(e) for e in repo.get_recent_events(limit, event_type)]


@router.get("/counts")
def get_event_counts(
    repo: EventsRepository = Depends(get_events_repository),
) -> dict[str, int]:
    """Stored event count per event type."""
    return repo.get_event_counts()
