"""
Data models for the PSA Ticket Triage pipeline.

Uses Pydantic for robust data validation and serialization.
Ticket and triage records are immutable; only run metrics are mutable.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


PLACEHOLDER_DESCRIPTION = "No detailed description available for ticket {ticket_id}."

CLOSED_STATUSES = frozenset({"closed", "complete", "completed", "resolved", "cancelled"})

# Accepted source keys per field, compared case-insensitively with
# underscores, dashes and spaces removed. Earlier keys win.
_TICKET_KEY_ALIASES: dict[str, tuple[str, ...]] = {
    "id": ("id", "ticketid", "ticketnumber", "number"),
    "title": ("title", "subject", "summary"),
    "description": ("description", "details", "body"),
    "status": ("status", "state"),
    "client_id": ("clientid", "companyid", "accountid", "customerid"),
}


def _squash_key(key: str) -> str:
    return "".join(ch for ch in key.lower() if ch not in "_- ")


class Ticket(BaseModel):
    """
    One work item to triage, as retrieved from the PSA backend.

    Source records are loosely typed property bags, so keys are matched
    case-insensitively and scalar values are coerced to strings before
    validation.

    Attributes:
        id: Ticket identifier, unique within a run
        title: Short ticket title
        description: Free-text description, may be missing
        status: Backend status label
        client_id: Owning client/tenant identifier
    """

    id: str = Field(..., min_length=1, description="Ticket identifier")
    title: str = Field(default="", description="Short ticket title")
    description: Optional[str] = Field(default=None, description="Free-text description")
    status: str = Field(default="", description="Backend status label")
    client_id: Optional[str] = Field(default=None, description="Owning client identifier")

    model_config = {"frozen": True}

    @model_validator(mode="before")
    @classmethod
    def normalize_record(cls, data: Any) -> Any:
        """Map inconsistent source keys onto model fields."""
        if not isinstance(data, dict):
            return data

        squashed = {_squash_key(str(k)): v for k, v in data.items()}
        normalized: dict[str, Any] = {}

        for field_name, aliases in _TICKET_KEY_ALIASES.items():
            for alias in aliases:
                value = squashed.get(alias)
                if value is None:
                    continue
                if isinstance(value, (int, float)) and not isinstance(value, bool):
                    value = str(value)
                normalized[field_name] = value
                break

        if isinstance(normalized.get("id"), str):
            normalized["id"] = normalized["id"].strip()

        return normalized

    def get_triage_description(self) -> str:
        """Get the description to send for triage, with placeholder fallback."""
        if self.description and self.description.strip():
            return self.description
        return PLACEHOLDER_DESCRIPTION.format(ticket_id=self.id)

    def is_open(self) -> bool:
        """Check if the ticket status is not a closed state."""
        return self.status.strip().lower() not in CLOSED_STATUSES


class Priority(str, Enum):
    """Triage priority levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TriageResult(BaseModel):
    """
    Structured triage outcome for one ticket.

    Serialized with camelCase keys to match the triage payload schema.
    """

    ticket_id: str = Field(..., alias="ticketId", min_length=1)
    priority: Priority
    actionable_steps: list[str] = Field(..., alias="actionableSteps", min_length=1)
    comments: str = Field(default="")

    model_config = {"frozen": True, "populate_by_name": True, "extra": "ignore"}

    @field_validator("priority", mode="before")
    @classmethod
    def normalize_priority(cls, v: Any) -> Any:
        """Accept priority values regardless of case and padding."""
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("actionable_steps", mode="before")
    @classmethod
    def drop_blank_steps(cls, v: Any) -> Any:
        """Strip steps and drop empty entries."""
        if isinstance(v, list):
            return [s.strip() for s in v if isinstance(s, str) and s.strip()]
        return v

    @field_validator("comments", mode="before")
    @classmethod
    def none_comments_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    def to_payload(self) -> dict[str, Any]:
        """Serialize to the JSON triage payload."""
        return self.model_dump(by_alias=True, mode="json")


class Page(BaseModel):
    """One batch of tickets returned by a ticket source."""

    items: list[Ticket] = Field(default_factory=list)
    page_number: int = Field(..., ge=1)

    # Raw records returned by the backend, before malformed ones were dropped
    record_count: Optional[int] = Field(default=None, ge=0)

    model_config = {"frozen": True}

    def is_last(self, page_size: int) -> bool:
        """An empty or short page signals end-of-data."""
        count = self.record_count if self.record_count is not None else len(self.items)
        return count == 0 or count < page_size


class RunMetrics(BaseModel):
    """
    Counters for a single pipeline invocation.

    Mutated only by the processor after each ticket's terminal outcome.
    """

    processed_count: int = Field(default=0, ge=0)
    success_count: int = Field(default=0, ge=0)
    error_count: int = Field(default=0, ge=0)
    failed_ticket_ids: list[str] = Field(default_factory=list)

    # Tickets never started because the run deadline passed
    skipped_count: int = Field(default=0, ge=0)

    def record_success(self) -> None:
        self.processed_count += 1
        self.success_count += 1

    def record_failure(self, ticket_id: str) -> None:
        self.processed_count += 1
        self.error_count += 1
        self.failed_ticket_ids.append(ticket_id)

    def record_skipped(self, count: int) -> None:
        self.skipped_count += count

    def is_consistent(self) -> bool:
        """Check the run-end counting invariants."""
        return (
            self.processed_count == self.success_count + self.error_count
            and len(self.failed_ticket_ids) == self.error_count
        )
