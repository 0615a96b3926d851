import logging
import os
from contextlib import asynccontextmanager

from apscheduler.schedulers.background import BackgroundScheduler
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from services.ledger.src.ledger.adapters.indexer import IndexerClient
from services.ledger.src.ledger.config import Settings
from services.ledger.src.ledger.db.aggregates_repository import AggregatesRepository
from services.ledger.src.ledger.db.engine import get_engine, init_db
from services.ledger.src.ledger.db.events_repository import EventsRepository
from services.ledger.src.ledger.domain.aggregation import AggregationFacade
from services.ledger.src.ledger.domain.risk import RepositoryHistorySource, RiskMetricCalculator
from services.ledger.src.ledger.routes import api_router

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler: BackgroundScheduler | None = None


def configure(app: FastAPI, settings: Settings) -> None:
    """Build the read-path clients from settings and attach them to app.state."""
    engine = get_engine(settings.database_url)
    init_db(engine)

    events_repository = EventsRepository(engine)
    app.state.events_repository = events_repository
    app.state.indexer_client = None

    if settings.history_source == "indexer":
        logger.info(f"Reading history from query service at {settings.indexer_graphql_endpoint}")
        client = IndexerClient(
            settings.indexer_graphql_endpoint,
            admin_secret=settings.indexer_admin_secret or None,
            timeout=settings.query_timeout_seconds,
        )
        source = client
        app.state.indexer_client = client
        app.state.read_aggregate = client.fetch_aggregate
    elif settings.history_source == "database":
        source = RepositoryHistorySource(events_repository)
        app.state.read_aggregate = AggregatesRepository(engine).get
    else:
        raise ValueError(f"Unknown history source: {settings.history_source}")

    calculator = RiskMetricCalculator(
        source, close_on_full_absorption=settings.close_on_full_absorption
    )
    app.state.calculator = calculator
    app.state.facade = AggregationFacade(
        calculator,
        max_workers=settings.aggregation_max_workers,
        timeout_seconds=settings.aggregation_timeout_seconds,
    )


def run_scheduled_ingestion(settings: Settings) -> None:
    from services.ledger.src.ledger.jobs.ingest_events import run_ingestion

    logger.info("Starting event ingestion...")
    try:
        results = run_ingestion(settings)
        total = sum(v for v in results.values() if v >= 0)
        logger.info(f"Events: {total} applied")
    except Exception as e:
        logger.error(f"Event ingestion failed: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wire clients and start the ingestion scheduler on startup."""
    global scheduler

    settings = Settings()
    configure(app, settings)

    if settings.enable_event_ingestion:
        logger.info(
            f"Starting ingestion scheduler (every {settings.ingestion_interval_minutes} minutes)"
        )

        scheduler = BackgroundScheduler()
        scheduler.add_job(
            run_scheduled_ingestion,
            "interval",
            minutes=settings.ingestion_interval_minutes,
            args=[settings],
            id="ingestion",
            name="Lending Event Ingestion",
            max_instances=1,
        )
        scheduler.start()

    yield

    # Shutdown scheduler
    if scheduler is not None:
        scheduler.shutdown(wait=False)
        scheduler = None
        logger.info("Scheduler shutdown complete")


app = FastAPI(title="Lending Ledger API", lifespan=lifespan)

# CORS for frontend
cors_origins = [
    "http://localhost:3000",
    "https://localhost:3000",
]

# Add custom origin from environment
if os.getenv("CORS_ORIGIN"):
    cors_origins.append(os.getenv("CORS_ORIGIN"))

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(api_router)


@app.get("/")
def root() -> dict[str, str]:
    return {"service": "lending-ledger-api", "docs": "/docs"}


@app.get("/health")
def health(request: Request) -> dict[str, str]:
    """Liveness, plus query service reachability when summaries read from it."""
    client = getattr(request.app.state, "indexer_client", None)
    if client is None:
        return {"status": "ok"}
    if client.health_check():
        return {"status": "ok", "query_service": "ok"}
    return {"status": "degraded", "query_service": "unreachable"}
