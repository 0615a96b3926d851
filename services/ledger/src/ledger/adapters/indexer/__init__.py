from services.ledger.src.ledger.adapters.indexer.client import (
    IndexerClient,
    IndexerError,
    MockIndexerClient,
)
from services.ledger.src.ledger.adapters.indexer.raw_events_fetcher import (
    MockRawEventsFetcher,
    RawEventsFetcher,
)

__all__ = [
    "IndexerClient",
    "IndexerError",
    "MockIndexerClient",
    "MockRawEventsFetcher",
    "RawEventsFetcher",
]
