from fastapi import APIRouter

from services.ledger.src.ledger.routes.addresses import router as addresses_router
from services.ledger.src.ledger.routes.events import router as events_router
from services.ledger.src.ledger.routes.identities import router as identities_router

api_router = APIRouter(prefix="/api")
api_router.include_router(addresses_router)
api_router.include_router(identities_router)
api_router.include_router(events_router)

__all__ = ["api_router"]
