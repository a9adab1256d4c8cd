"""Tests for data models."""

import pytest
from pydantic import ValidationError

from src.models import (
    Page,
    Priority,
    RunMetrics,
    Ticket,
    TriageResult,
)


class TestTicket:
    """Tests for Ticket model."""

    def test_plain_fields(self):
        """Test construction with model field names."""
        ticket = Ticket(id="TICKET-1", description="login broken")
        assert ticket.id == "TICKET-1"
        assert ticket.description == "login broken"
        assert ticket.title == ""

    def test_inconsistent_key_casing(self):
        """Test loosely cased source records are normalized."""
        ticket = Ticket.model_validate({
            "Id": 4521,
            "Title": "VPN down",
            "Description": "Cannot connect",
            "Status": "Open",
            "CompanyID": 17,
        })
        assert ticket.id == "4521"
        assert ticket.title == "VPN down"
        assert ticket.description == "Cannot connect"
        assert ticket.status == "Open"
        assert ticket.client_id == "17"

    def test_ticket_number_alias(self):
        """Test ticketNumber is accepted as the id."""
        ticket = Ticket.model_validate({"ticketNumber": "T20240101.0001"})
        assert ticket.id == "T20240101.0001"

    def test_missing_id_rejected(self):
        """Test a record without an id fails validation."""
        with pytest.raises(ValidationError):
            Ticket.model_validate({"description": "orphan"})

    def test_blank_id_rejected(self):
        """Test a whitespace-only id fails validation."""
        with pytest.raises(ValidationError):
            Ticket(id="   ")

    def test_triage_description_uses_text(self):
        """Test description is passed through when present."""
        ticket = Ticket(id="TICKET-1", description="login broken")
        assert ticket.get_triage_description() == "login broken"

    @pytest.mark.parametrize("description", [None, "", "   "])
    def test_triage_description_placeholder(self, description):
        """Test placeholder replaces a missing or empty description."""
        ticket = Ticket(id="TICKET-2", description=description)
        assert ticket.get_triage_description() == (
            "No detailed description available for ticket TICKET-2."
        )

    def test_is_open(self):
        """Test closed statuses are recognised case-insensitively."""
        assert Ticket(id="1", status="New").is_open() is True
        assert Ticket(id="1").is_open() is True
        assert Ticket(id="1", status="Complete").is_open() is False
        assert Ticket(id="1", status=" closed ").is_open() is False

    def test_frozen(self):
        """Test tickets are immutable."""
        ticket = Ticket(id="1")
        with pytest.raises(ValidationError):
            ticket.description = "changed"


class TestTriageResult:
    """Tests for TriageResult model."""

    def test_from_payload(self):
        """Test parsing the camelCase payload."""
        result = TriageResult.model_validate({
            "ticketId": "TICKET-1",
            "priority": "high",
            "actionableSteps": ["Reset password", "Check MFA"],
            "comments": "",
        })
        assert result.ticket_id == "TICKET-1"
        assert result.priority is Priority.HIGH
        assert result.actionable_steps == ["Reset password", "Check MFA"]

    def test_priority_case_normalized(self):
        """Test priority accepts other casing."""
        result = TriageResult(ticket_id="1", priority=" Medium ", actionable_steps=["a"])
        assert result.priority is Priority.MEDIUM

    def test_invalid_priority(self):
        """Test priorities outside the enumeration are rejected."""
        with pytest.raises(ValidationError):
            TriageResult(ticket_id="1", priority="urgent", actionable_steps=["a"])

    def test_empty_steps_rejected(self):
        """Test actionable steps must be non-empty after cleanup."""
        with pytest.raises(ValidationError):
            TriageResult(ticket_id="1", priority="low", actionable_steps=[])
        with pytest.raises(ValidationError):
            TriageResult(ticket_id="1", priority="low", actionable_steps=["  "])

    def test_unknown_fields_ignored(self):
        """Test extra payload fields are dropped."""
        result = TriageResult.model_validate({
            "ticketId": "1",
            "priority": "low",
            "actionableSteps": ["a"],
            "confidence": 0.4,
        })
        assert "confidence" not in result.to_payload()

    def test_to_payload(self):
        """Test serialization uses the payload field names."""
        result = TriageResult(
            ticket_id="TICKET-1",
            priority=Priority.LOW,
            actionable_steps=["Schedule visit"],
            comments=None,
        )
        assert result.to_payload() == {
            "ticketId": "TICKET-1",
            "priority": "low",
            "actionableSteps": ["Schedule visit"],
            "comments": "",
        }


class TestPage:
    """Tests for Page model."""

    def test_full_page_not_last(self):
        page = Page(items=[Ticket(id=str(i)) for i in range(3)], page_number=1)
        assert page.is_last(3) is False

    def test_short_page_is_last(self):
        page = Page(items=[Ticket(id="1")], page_number=2)
        assert page.is_last(3) is True

    def test_empty_page_is_last(self):
        assert Page(items=[], page_number=1).is_last(100) is True

    def test_record_count_overrides_item_count(self):
        """Test dropped malformed records do not end pagination early."""
        page = Page(items=[Ticket(id="1")], page_number=1, record_count=3)
        assert page.is_last(3) is False

    def test_page_number_positive(self):
        with pytest.raises(ValidationError):
            Page(items=[], page_number=0)


class TestRunMetrics:
    """Tests for RunMetrics model."""

    def test_starts_at_zero(self):
        metrics = RunMetrics()
        assert metrics.processed_count == 0
        assert metrics.failed_ticket_ids == []
        assert metrics.is_consistent() is True

    def test_recording(self):
        """Test counters keep the run invariants."""
        metrics = RunMetrics()
        metrics.record_success()
        metrics.record_failure("B")
        metrics.record_failure("C")

        assert metrics.processed_count == 3
        assert metrics.success_count == 1
        assert metrics.error_count == 2
        assert metrics.failed_ticket_ids == ["B", "C"]
        assert metrics.is_consistent() is True
