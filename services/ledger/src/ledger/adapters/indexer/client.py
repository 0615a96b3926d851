"""GraphQL client for the external query service.

The GraphQL engine (Hasura) exposes the ``lending_events`` and
``address_aggregates`` tables written by the ingestion job. Every call carries
a timeout; failures surface as ``IndexerError`` so callers can isolate them.
"""

import logging
from typing import Any

import httpx

from services.ledger.src.ledger.adapters.common import (
    TransformationError,
    _get_address,
    _get_amount,
    _get_field,
    _to_int,
)
from services.ledger.src.ledger.domain.events import (
    EVENT_CLASSES,
    AddressAggregate,
    AddressHistory,
    CanonicalEvent,
    DedupKey,
    EventKind,
    Protocol,
    canonicalize_address,
)

logger = logging.getLogger(__name__)

EVENT_FIELDS = """
    id
    chain_id
    block_number
    log_index
    event_type
    protocol
    timestamp
    tx_hash
    user_address
    sender_address
    asset
    asset_address
    amount_raw
    amount_usd
    borrow_rate
    liquidator_address
    collateral_asset
    debt_asset
    debt_to_cover
    liquidated_collateral_amount
    liquidated_collateral_usd
"""

ADDRESS_EVENTS_QUERY = f"""
query GetAddressEvents($address: String!, $limit: Int!, $offset: Int!) {{
  lending_events(
    where: {{ user_address: {{ _eq: $address }} }}
    order_by: [{{ block_number: asc }}, {{ log_index: asc }}]
    limit: $limit
    offset: $offset
  ) {{{EVENT_FIELDS}  }}
}}
"""

ADDRESS_AGGREGATE_QUERY = """
query GetAddressAggregate($address: String!) {
  address_aggregates_by_pk(address: $address) {
    address
    total_borrowed_usd
    total_supplied_usd
    total_liquidations
    event_count
    first_seen_block
    last_seen_block
  }
}
"""

HEALTH_QUERY = """
query HealthCheck {
  __schema { queryType { name } }
}
"""


class IndexerError(Exception):
    """Raised when the query service fails or returns data of the wrong shape."""


def _int_field(data: dict[str, Any], key: str, required: bool = True) -> int | None:
    value = _get_field(data, key, required=required)
    if value is None:
        return None
    return _to_int(value, key)


def _amount_field(data: dict[str, Any], key: str, required: bool = True) -> int | None:
    if not required and data.get(key) is None:
        return None
    return _get_amount(data, key)


def _str_field(data: dict[str, Any], key: str) -> str:
    value = _get_field(data, key)
    if not isinstance(value, str) or not value:
        raise TransformationError(key, "not a string")
    return value


def _hash_field(data: dict[str, Any], key: str) -> str:
    value = _get_field(data, key)
    if not isinstance(value, str) or not value.startswith("0x"):
        raise TransformationError(key, "malformed hash")
    return value.lower()


def parse_event(data: dict[str, Any]) -> CanonicalEvent:
    """Strictly parse one lending_events row.

    Raises:
        TransformationError: On any missing or malformed field.
    """
    try:
        kind = EventKind(_get_field(data, "event_type"))
        protocol = Protocol(_get_field(data, "protocol"))
    except ValueError as e:
        raise TransformationError("event_type/protocol", str(e)) from None

    block_number = _int_field(data, "block_number")
    fields: dict[str, Any] = {
        "dedup_key": DedupKey(
            _int_field(data, "chain_id"), block_number, _int_field(data, "log_index")
        ),
        "address": _get_address(data, "user_address"),
        "sender": _get_address(data, "sender_address", required=False),
        "protocol": protocol,
        "asset": _str_field(data, "asset"),
        "asset_address": _get_address(data, "asset_address"),
        "amount_raw": _amount_field(data, "amount_raw"),
        "amount_usd": _amount_field(data, "amount_usd"),
        "timestamp": _int_field(data, "timestamp"),
        "block_number": block_number,
        "transaction_hash": _hash_field(data, "tx_hash"),
    }
    if kind == EventKind.BORROW:
        fields["borrow_rate"] = _amount_field(data, "borrow_rate", required=False)
    elif kind == EventKind.LIQUIDATION:
        fields.update({
            "liquidator": _get_address(data, "liquidator_address"),
            "collateral_asset": _get_address(data, "collateral_asset"),
            "debt_asset": _get_address(data, "debt_asset"),
            "debt_to_cover": _amount_field(data, "debt_to_cover"),
            "liquidated_collateral_amount": _amount_field(data, "liquidated_collateral_amount"),
            "liquidated_collateral_usd": _amount_field(data, "liquidated_collateral_usd"),
        })
    return EVENT_CLASSES[kind](**fields)


def parse_aggregate(data: dict[str, Any]) -> AddressAggregate:
    return AddressAggregate(
        address=_get_address(data, "address"),
        total_borrowed_usd=_amount_field(data, "total_borrowed_usd"),
        total_supplied_usd=_amount_field(data, "total_supplied_usd"),
        total_liquidations=_amount_field(data, "total_liquidations"),
        event_count=_amount_field(data, "event_count", required=False) or 0,
        first_seen_block=_int_field(data, "first_seen_block", required=False),
        last_seen_block=_int_field(data, "last_seen_block", required=False),
    )


class IndexerClient:
    """Query-service client. Construct one per process and pass it down."""

    def __init__(
        self,
        endpoint: str,
        admin_secret: str | None = None,
        timeout: float = 10.0,
        page_size: int = 1000,
        transport: httpx.BaseTransport | None = None,
    ):
        self.endpoint = endpoint
        self.timeout = timeout
        self.page_size = page_size
        self.transport = transport
        self.headers = {"Content-Type": "application/json"}
        if admin_secret:
            self.headers["x-hasura-admin-secret"] = admin_secret

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self.timeout, headers=self.headers, transport=self.transport)

    def _query(
        self, client: httpx.Client, query: str, variables: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        try:
            response = client.post(self.endpoint, json={"query": query, "variables": variables})
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise IndexerError(f"Query service request failed: {e}") from e
        except ValueError as e:
            raise IndexerError(f"Query service returned invalid JSON: {e}") from e

        if "errors" in data:
            raise IndexerError(f"GraphQL errors: {data['errors']}")
        payload = data.get("data")
        if not isinstance(payload, dict):
            raise IndexerError("GraphQL response has no data object")
        return payload

    def fetch_events(self, address: str) -> list[CanonicalEvent]:
        """All events for an address, oldest first, paginated until exhausted."""
        address = canonicalize_address(address)
        events: list[CanonicalEvent] = []
        offset = 0

        with self._client() as client:
            while True:
                payload = self._query(
                    client,
                    ADDRESS_EVENTS_QUERY,
                    {"address": address, "limit": self.page_size, "offset": offset},
                )
                page = payload.get("lending_events")
                if not isinstance(page, list):
                    raise IndexerError("Response is missing lending_events")
                try:
                    events.extend(parse_event(row) for row in page)
                except (TransformationError, ValueError) as e:
                    raise IndexerError(f"Schema mismatch in lending_events: {e}") from e

                if len(page) < self.page_size:
                    break
                offset += self.page_size

        return events

    def fetch_history(self, address: str) -> AddressHistory:
        address = canonicalize_address(address)
        return AddressHistory.from_events(address, self.fetch_events(address))

    def fetch_aggregate(self, address: str) -> AddressAggregate | None:
        address = canonicalize_address(address)
        with self._client() as client:
            payload = self._query(client, ADDRESS_AGGREGATE_QUERY, {"address": address})
        row = payload.get("address_aggregates_by_pk")
        if row is None:
            return None
        try:
            return parse_aggregate(row)
        except (TransformationError, ValueError) as e:
            raise IndexerError(f"Schema mismatch in address_aggregates: {e}") from e

    def health_check(self) -> bool:
        try:
            with self._client() as client:
                self._query(client, HEALTH_QUERY)
            return True
        except IndexerError as e:
            logger.warning(f"Query service health check failed: {e}")
            return False


class MockIndexerClient(IndexerClient):
    """In-memory client for tests and local runs without a query service."""

    def __init__(self, events: list[CanonicalEvent] | None = None) -> None:
        super().__init__("http://mock")
        self._events: list[CanonicalEvent] = list(events or [])
        self._failures: dict[str, Exception] = {}
        self.call_history: list[str] = []

    def add_events(self, events: list[CanonicalEvent]) -> None:
        self._events.extend(events)

    def fail_for(self, address: str, error: Exception) -> None:
        self._failures[canonicalize_address(address)] = error

    def fetch_events(self, address: str) -> list[CanonicalEvent]:
        address = canonicalize_address(address)
        self.call_history.append(address)
        if address in self._failures:
            raise self._failures[address]
        return sorted(
            (e for e in self._events if e.address == address), key=lambda e: e.dedup_key
        )
