"""
Lending events ingestion job.

Reads raw protocol logs (from the indexer's raw_events table or a JSON-lines
file), converts them to canonical events and applies them to the event store
and the per-address aggregates. Each protocol stream runs on its own thread;
within a stream events are applied in (block_number, log_index) order.

Usage:
    python -m services.ledger.src.ledger.jobs.ingest_events
    python -m services.ledger.src.ledger.jobs.ingest_events --protocol SPARK
    python -m services.ledger.src.ledger.jobs.ingest_events --protocol AAVE_V3 --file logs.jsonl
"""
import argparse
import json
import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

from services.ledger.src.ledger.adapters.common import (
    ProtocolAdapter,
    TransformationError,
    _to_int,
)
from services.ledger.src.ledger.adapters.indexer import RawEventsFetcher
from services.ledger.src.ledger.adapters.registry import PROTOCOL_CONTRACTS, get_adapter
from services.ledger.src.ledger.config import Settings
from services.ledger.src.ledger.db.engine import get_engine, init_db
from services.ledger.src.ledger.db.events_repository import EventsRepository
from services.ledger.src.ledger.domain.aggregate_maintainer import (
    AggregateMaintainer,
    ApplyResult,
)
from services.ledger.src.ledger.domain.events import Protocol
from services.ledger.src.ledger.domain.pricing import PriceEstimator

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Cursor when nothing has been stored for a protocol yet
FIRST_BLOCK = 0


@dataclass
class StreamStats:
    applied: int = 0
    duplicates: int = 0
    ignored: int = 0  # untracked event names
    rejected: int = 0  # malformed logs or amounts
    failed: bool = False

    def merge(self, other: "StreamStats") -> None:
        self.applied += other.applied
        self.duplicates += other.duplicates
        self.ignored += other.ignored
        self.rejected += other.rejected
        self.failed = self.failed or other.failed


def log_position(raw: Any) -> tuple[int, int]:
    """(block_number, log_index) of a raw log. Unparseable logs sort first."""
    if not isinstance(raw, dict):
        return (-1, -1)
    try:
        return (
            _to_int(raw.get("block_number"), "block_number"),
            _to_int(raw.get("log_index"), "log_index"),
        )
    except TransformationError:
        return (-1, -1)


def describe_log(raw: Any) -> str:
    """Dedup coordinates and event name of a raw log, for warnings."""
    if not isinstance(raw, dict):
        return f"{raw!r:.80}"
    return (
        f"{raw.get('chain_id')}-{raw.get('block_number')}-{raw.get('log_index')} "
        f"({raw.get('event_name')})"
    )


def ingest_stream(
    adapter: ProtocolAdapter,
    maintainer: AggregateMaintainer,
    raw_events: Iterable[dict[str, Any]],
) -> StreamStats:
    """
    Transform and apply one protocol's raw logs in log order.

    Malformed logs are logged and skipped; they never stop the stream.

    Returns:
        Counts of applied, duplicate, ignored and rejected logs
    """
    stats = StreamStats()

    for raw in sorted(raw_events, key=log_position):
        try:
            event = adapter.transform(raw)
        except TransformationError as e:
            logger.warning(f"Dropped {adapter.protocol.value} log {describe_log(raw)}: {e}")
            stats.rejected += 1
            continue

        if event is None:
            stats.ignored += 1
            continue

        result = maintainer.apply(event)
        if result == ApplyResult.APPLIED:
            stats.applied += 1
        elif result == ApplyResult.DUPLICATE:
            stats.duplicates += 1
        else:
            stats.rejected += 1

    return stats


def ingest_streams(
    maintainer: AggregateMaintainer,
    streams: dict[Protocol, Iterable[dict[str, Any]]],
    estimator: PriceEstimator | None = None,
    settings: Settings | None = None,
) -> dict[str, StreamStats]:
    """
    Ingest several protocol streams concurrently, one thread per stream.

    Args:
        maintainer: Shared maintainer; its per-address locks serialize writers
        streams: Raw logs keyed by protocol
        estimator: Price estimator handed to every adapter
        settings: Used for the Compound V3 base asset

    Returns:
        Dict mapping protocol to its stream stats
    """
    if not streams:
        return {}

    def run(protocol: Protocol, raw_events: Iterable[dict[str, Any]]) -> StreamStats:
        adapter = get_adapter(protocol, estimator, settings)
        try:
            stats = ingest_stream(adapter, maintainer, raw_events)
        except Exception as e:
            logger.error(f"Failed to ingest {protocol.value} stream: {e}", exc_info=True)
            return StreamStats(failed=True)
        logger.info(
            f"{protocol.value}: applied {stats.applied}, duplicates {stats.duplicates}, "
            f"ignored {stats.ignored}, rejected {stats.rejected}"
        )
        return stats

    with ThreadPoolExecutor(max_workers=len(streams), thread_name_prefix="ingest") as pool:
        futures = {
            protocol.value: pool.submit(run, protocol, raw_events)
            for protocol, raw_events in streams.items()
        }
        return {name: future.result() for name, future in futures.items()}


def ingest_protocol(
    fetcher: RawEventsFetcher,
    maintainer: AggregateMaintainer,
    events_repo: EventsRepository,
    protocol: Protocol,
    estimator: PriceEstimator | None = None,
    settings: Settings | None = None,
) -> StreamStats:
    """
    Ingest one protocol stream from the indexer.

    Resumes from MAX(block_number) stored for the protocol. The last stored
    block is fetched again; its already-applied logs come back as duplicates.
    """
    max_block = events_repo.get_max_block(protocol)
    from_block = max_block if max_block is not None else FIRST_BLOCK
    contract = PROTOCOL_CONTRACTS[protocol]

    logger.info(f"Ingesting {protocol.value} ({contract}) from block {from_block}")

    adapter = get_adapter(protocol, estimator, settings)
    total = StreamStats()
    page_num = 0

    for page in fetcher.fetch_raw_events(contract, from_block):
        page_num += 1
        stats = ingest_stream(adapter, maintainer, page)
        total.merge(stats)
        logger.info(
            f"Page {page_num}: fetched {len(page)}, applied {stats.applied} {protocol.value} events"
        )

    logger.info(f"Completed {protocol.value}: {total.applied} events applied")
    return total


def ingest_from_indexer(
    fetcher: RawEventsFetcher,
    maintainer: AggregateMaintainer,
    events_repo: EventsRepository,
    protocols: list[Protocol] | None = None,
    estimator: PriceEstimator | None = None,
    settings: Settings | None = None,
) -> dict[str, int]:
    """
    Ingest every protocol stream from the indexer concurrently.

    Returns:
        Dict mapping protocol to count of events applied (-1 on failure)
    """
    protocols = protocols or list(Protocol)

    def run(protocol: Protocol) -> int:
        try:
            stats = ingest_protocol(
                fetcher, maintainer, events_repo, protocol, estimator, settings
            )
            return stats.applied
        except Exception as e:
            logger.error(f"Failed to ingest {protocol.value}: {e}", exc_info=True)
            return -1  # Indicate failure

    with ThreadPoolExecutor(max_workers=len(protocols), thread_name_prefix="ingest") as pool:
        futures = {protocol.value: pool.submit(run, protocol) for protocol in protocols}
        return {name: future.result() for name, future in futures.items()}


def read_jsonl(path: str | Path) -> list[dict[str, Any]]:
    """Read raw logs from a JSON-lines file. Blank lines and non-object lines are skipped."""
    raw_events: list[dict[str, Any]] = []
    with open(path, encoding="utf-8") as f:
        for line_num, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                raw = json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning(f"{path}:{line_num}: skipping invalid JSON: {e}")
                continue
            if not isinstance(raw, dict):
                logger.warning(f"{path}:{line_num}: skipping non-object line")
                continue
            raw_events.append(raw)
    return raw_events


def ingest_from_file(
    path: str | Path,
    protocol: Protocol,
    maintainer: AggregateMaintainer | None = None,
    estimator: PriceEstimator | None = None,
    settings: Settings | None = None,
) -> StreamStats:
    """
    Ingest one protocol's raw logs from a JSON-lines file.

    Args:
        path: File with one raw log object per line
        protocol: Protocol that emitted the logs
        maintainer: Maintainer to apply to (default: one on settings.database_url)
        estimator: Optional price estimator
        settings: Optional settings override
    """
    settings = settings or Settings()
    if maintainer is None:
        engine = get_engine(settings.database_url)
        init_db(engine)
        maintainer = AggregateMaintainer(engine)

    raw_events = read_jsonl(path)
    logger.info(f"Read {len(raw_events)} {protocol.value} logs from {path}")

    adapter = get_adapter(protocol, estimator, settings)
    return ingest_stream(adapter, maintainer, raw_events)


def run_ingestion(
    settings: Settings | None = None,
    protocols: list[Protocol] | None = None,
) -> dict[str, int]:
    """Ingest all configured protocol streams from the indexer into the local store."""
    settings = settings or Settings()

    engine = get_engine(settings.database_url)
    init_db(engine)

    fetcher = RawEventsFetcher(
        settings.indexer_graphql_endpoint,
        admin_secret=settings.indexer_admin_secret or None,
        timeout=max(settings.query_timeout_seconds, 30.0),
    )
    maintainer = AggregateMaintainer(engine)
    events_repo = EventsRepository(engine)

    return ingest_from_indexer(
        fetcher, maintainer, events_repo, protocols, settings=settings
    )


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Ingest lending protocol events into the ledger"
    )
    parser.add_argument(
        "--protocol",
        type=str,
        choices=[p.value for p in Protocol],
        help="Protocol stream to ingest (default: all)",
    )
    parser.add_argument(
        "--file",
        type=str,
        default=None,
        help="JSON-lines file of raw logs (requires --protocol)",
    )
    parser.add_argument(
        "--database-url",
        type=str,
        default=None,
        help="Database URL (default: from settings)",
    )

    args = parser.parse_args()

    settings = Settings()
    if args.database_url:
        settings = settings.model_copy(update={"database_url": args.database_url})

    protocols = [Protocol(args.protocol)] if args.protocol else None

    try:
        if args.file:
            if protocols is None:
                parser.error("--file requires --protocol")
            stats = ingest_from_file(args.file, protocols[0], settings=settings)
            logger.info(
                f"Ingestion complete: applied {stats.applied}, duplicates {stats.duplicates}, "
                f"ignored {stats.ignored}, rejected {stats.rejected}"
            )
            return 0

        results = run_ingestion(settings, protocols)
        logger.info("Ingestion complete:")
        for protocol, count in results.items():
            status = f"{count} events" if count >= 0 else "FAILED"
            logger.info(f"  {protocol}: {status}")
        return 0 if all(c >= 0 for c in results.values()) else 1
    except Exception as e:
        logger.error(f"Ingestion failed: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
