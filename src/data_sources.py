"""
Ticket sources and sinks for the PSA Ticket Triage pipeline.

Responsible for talking to the PSA backend:
- Paginated ticket retrieval (REST API or a local record list)
- Writing triage results back onto tickets (real or simulated)
"""

import json
import logging
import time
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Protocol
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from .config import PSAConfig
from .models import Page, Ticket, TriageResult


logger = logging.getLogger(__name__)


class DataSourceError(Exception):
    """Base exception for data source errors."""
    pass


class RetrievalError(DataSourceError):
    """Error when fetching a page of tickets from the backend."""
    pass


class UpdateError(DataSourceError):
    """Error when applying a triage result to a ticket."""
    pass


class TicketSource(Protocol):
    """Anything that can serve tickets one page at a time."""

    def fetch_page(self, page_number: int, page_size: int, open_only: bool) -> Page:
        ...


class TicketSink(Protocol):
    """Anything that can apply a triage result to a ticket."""

    def apply_triage(self, ticket_id: str, result: TriageResult) -> bool:
        ...


def parse_ticket_records(records: Iterable[Any]) -> list[Ticket]:
    """
    Validate raw ticket records into Ticket models.

    Malformed records are skipped with a warning rather than failing
    the whole page.

    Args:
        records: Raw records as decoded from the backend.

    Returns:
        Valid tickets in source order.
    """
    tickets = []
    for idx, record in enumerate(records):
        if not isinstance(record, dict):
            logger.warning(f"Skipping non-object ticket record at index {idx}")
            continue
        try:
            tickets.append(Ticket.model_validate(record))
        except ValidationError as e:
            logger.warning(
                f"Skipping malformed ticket record at index {idx}: "
                f"{e.error_count()} validation error(s)"
            )
            logger.debug(f"Validation details: {e}")
    return tickets


def _extract_records(data: Any) -> list[Any]:
    """Find the ticket list in a backend response body."""
    if isinstance(data, list):
        return data
    if not isinstance(data, dict):
        raise RetrievalError(f"Unexpected response body type: {type(data).__name__}")

    # Try multiple possible envelopes for forward compatibility
    for key in ("items", "tickets", "data", "results"):
        value = data.get(key)
        if isinstance(value, list):
            return value
        if isinstance(value, dict) and isinstance(value.get("items"), list):
            return value["items"]

    raise RetrievalError("Could not find ticket list in response body")


class PSAClient:
    """
    Client for the PSA ticketing REST API.

    Serves as both ticket source and ticket sink.
    """

    def __init__(self, config: PSAConfig):
        """
        Initialize the PSA client.

        Args:
            config: PSA configuration with endpoint, credentials and scoping.
        """
        self._config = config
        self._client: Optional[httpx.Client] = None

    def __enter__(self) -> "PSAClient":
        """Context manager entry."""
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Authorization": f"Bearer {self._config.api_key}",
        }
        if self._config.api_secret:
            headers["X-Api-Secret"] = self._config.api_secret

        self._client = httpx.Client(
            base_url=self._config.api_url.rstrip("/"),
            headers=headers,
            timeout=self._config.request_timeout,
        )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        if self._client:
            self._client.close()
            self._client = None

    def _require_client(self) -> httpx.Client:
        if not self._client:
            raise RuntimeError("Client must be used within a context manager")
        return self._client

    def fetch_page(self, page_number: int, page_size: int, open_only: bool) -> Page:
        """
        Fetch one page of tickets.

        Args:
            page_number: 1-based page index.
            page_size: Maximum number of tickets per page.
            open_only: Restrict to tickets that are not closed.

        Returns:
            Page of validated tickets.

        Raises:
            RetrievalError: If the request fails or the body is unusable.
        """
        client = self._require_client()

        params: dict[str, Any] = {
            "page": page_number,
            "pageSize": page_size,
            "openOnly": "true" if open_only else "false",
        }
        if self._config.client_id:
            params["clientId"] = self._config.client_id

        logger.debug(f"Requesting tickets | page={page_number} page_size={page_size}")

        try:
            response = client.get("/tickets", params=params)
            response.raise_for_status()
            records = _extract_records(response.json())
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error(f"HTTP error fetching tickets page {page_number}: {e}")
            if status == 401:
                raise RetrievalError(
                    "Authentication failed (401): Check PSA_API_KEY and PSA_API_SECRET in .env"
                ) from e
            raise RetrievalError(f"HTTP error: {status}") from e
        except httpx.RequestError as e:
            logger.error(f"Request error fetching tickets page {page_number}: {e}")
            raise RetrievalError(f"Request failed: {str(e)}") from e
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON in tickets page {page_number}: {e}")
            raise RetrievalError(f"Invalid JSON response: {str(e)}") from e

        return Page(
            items=parse_ticket_records(records),
            page_number=page_number,
            record_count=len(records),
        )

    def apply_triage(self, ticket_id: str, result: TriageResult) -> bool:
        """
        Write a triage result back onto a ticket.

        Raises:
            UpdateError: If the backend rejects the update.
        """
        client = self._require_client()

        try:
            response = client.patch(
                f"/tickets/{quote(ticket_id, safe='')}/triage",
                json=result.to_payload(),
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"HTTP error updating ticket {ticket_id}: {e}")
            raise UpdateError(f"HTTP error: {e.response.status_code}") from e
        except httpx.RequestError as e:
            logger.error(f"Request error updating ticket {ticket_id}: {e}")
            raise UpdateError(f"Request failed: {str(e)}") from e

        logger.info(f"Ticket updated | ticket_id={ticket_id} priority={result.priority.value}")
        return True


class StaticTicketSource:
    """
    Ticket source backed by an in-memory list of raw records.

    Used for offline runs and demos; pages are cut from the list in order.
    """

    def __init__(self, records: list[Any]):
        self._records = list(records)

    @classmethod
    def from_json_file(cls, path: Path) -> "StaticTicketSource":
        """
        Load records from a JSON file holding a list or an envelope object.

        Raises:
            RetrievalError: If the file cannot be read or parsed.
        """
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
            return cls(_extract_records(data))
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Could not load tickets from {path}: {e}")
            raise RetrievalError(f"Could not load tickets from {path}: {e}") from e

    def fetch_page(self, page_number: int, page_size: int, open_only: bool) -> Page:
        start = (page_number - 1) * page_size
        records = self._records[start:start + page_size]
        tickets = parse_ticket_records(records)
        if open_only:
            tickets = [t for t in tickets if t.is_open()]
        return Page(items=tickets, page_number=page_number, record_count=len(records))


class SimulatedTicketSink:
    """Ticket sink that only pretends to write: waits, logs, succeeds."""

    def __init__(
        self,
        delay_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._delay_seconds = delay_seconds
        self._sleep = sleep

    def apply_triage(self, ticket_id: str, result: TriageResult) -> bool:
        logger.info(
            f"Simulating ticket update | ticket_id={ticket_id} "
            f"priority={result.priority.value} steps={len(result.actionable_steps)}"
        )
        if self._delay_seconds > 0:
            self._sleep(self._delay_seconds)
        return True


def fetch_all_tickets(
    source: TicketSource,
    page_size: int = 100,
    open_only: bool = True,
) -> list[Ticket]:
    """
    Drive a ticket source page by page until it runs out.

    Pagination stops on an empty page or a page shorter than page_size.
    Records are not deduplicated across pages.

    Args:
        source: Ticket source to read from.
        page_size: Requested page size.
        open_only: Restrict to tickets that are not closed.

    Returns:
        All tickets in page-then-item order.

    Raises:
        RetrievalError: If any page fetch fails.
    """
    if page_size < 1:
        raise ValueError("page_size must be a positive integer")

    tickets: list[Ticket] = []
    page_number = 1

    while True:
        page = source.fetch_page(page_number, page_size, open_only)
        tickets.extend(page.items)
        logger.info(
            f"Page retrieved | page={page.page_number} items={len(page.items)} "
            f"total={len(tickets)}"
        )

        if page.is_last(page_size):
            break
        page_number += 1

    logger.info(f"Retrieved {len(tickets)} tickets in {page_number} page(s)")
    return tickets
