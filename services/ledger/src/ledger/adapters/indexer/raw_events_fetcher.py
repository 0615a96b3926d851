"""Pages raw protocol logs out of the indexer's raw_events table."""

from typing import Any, Iterator

import httpx

from services.ledger.src.ledger.adapters.indexer.client import IndexerError

# block_number_gte (not gt): later logs of the last stored block may be unseen.
# Re-delivered logs are dropped by the dedup key on write.
RAW_EVENTS_QUERY = """
query GetRawEvents($contract: String!, $from: Int!, $limit: Int!, $offset: Int!) {
  raw_events(
    where: { contract_name: { _eq: $contract }, block_number: { _gte: $from } }
    order_by: [{ block_number: asc }, { log_index: asc }]
    limit: $limit
    offset: $offset
  ) {
    chain_id
    block_number
    log_index
    block_timestamp
    transaction_hash
    event_name
    params
  }
}
"""


class RawEventsFetcher:
    """Fetches raw logs for one contract stream, oldest first."""

    def __init__(
        self,
        endpoint: str,
        admin_secret: str | None = None,
        timeout: float = 30.0,
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

    def fetch_raw_events(
        self, contract_name: str, from_block: int
    ) -> Iterator[list[dict[str, Any]]]:
        """
        Yield pages of raw logs. Paginate until exhausted.

        Args:
            contract_name: Indexer contract name (e.g., 'AaveV3Pool')
            from_block: First block to include

        Yields:
            Pages of raw log dictionaries
        """
        offset = 0

        with httpx.Client(
            timeout=self.timeout, headers=self.headers, transport=self.transport
        ) as client:
            while True:
                try:
                    response = client.post(
                        self.endpoint,
                        json={
                            "query": RAW_EVENTS_QUERY,
                            "variables": {
                                "contract": contract_name,
                                "from": from_block,
                                "limit": self.page_size,
                                "offset": offset,
                            },
                        },
                    )
                    response.raise_for_status()
                    data = response.json()
                except httpx.HTTPError as e:
                    raise IndexerError(f"Raw event request failed: {e}") from e

                if "errors" in data:
                    raise IndexerError(f"GraphQL errors: {data['errors']}")

                page = data.get("data", {}).get("raw_events", [])
                if not page:
                    break

                yield page
                offset += self.page_size

                # If we got fewer than page_size, we've reached the end
                if len(page) < self.page_size:
                    break


class MockRawEventsFetcher(RawEventsFetcher):
    """Mock fetcher for testing without network calls."""

    def __init__(self) -> None:
        super().__init__("http://mock")
        self._mock_pages: dict[str, list[list[dict[str, Any]]]] = {}
        self.call_history: list[tuple[str, int]] = []

    def set_mock_pages(self, contract_name: str, pages: list[list[dict[str, Any]]]) -> None:
        """Set mock pages to return for a contract stream."""
        self._mock_pages[contract_name] = pages

    def fetch_raw_events(
        self, contract_name: str, from_block: int
    ) -> Iterator[list[dict[str, Any]]]:
        """Return mock pages, honoring the from_block cursor."""
        self.call_history.append((contract_name, from_block))
        for page in self._mock_pages.get(contract_name, []):
            filtered = [raw for raw in page if raw.get("block_number", 0) >= from_block]
            if filtered:
                yield filtered
