"""
LLM-based ticket triage for the PSA Ticket Triage pipeline.

Uses an OpenAI-compatible chat completion API to turn a ticket description
into a structured triage recommendation (priority, ordered remediation
steps, comments).

Two failure kinds are distinguished:
- TriageGenerationError: the completion call itself failed
- TriageParseError: the returned text does not fit the triage schema
"""

import json
import logging
import re
from typing import Any, Optional

from openai import OpenAI, OpenAIError
from pydantic import ValidationError

from .config import LLMConfig
from .models import TriageResult


logger = logging.getLogger(__name__)


class TriageError(Exception):
    """Base exception for triage errors."""
    pass


class TriageGenerationError(TriageError):
    """The completion service call failed (network, auth, quota)."""
    pass


class TriageParseError(TriageError):
    """The completion text could not be parsed into a triage result."""
    pass


TRIAGE_FIELDS = ("ticketId", "priority", "actionableSteps", "comments")

SYSTEM_PROMPT = """You are an experienced MSP service desk engineer triaging tickets in a PSA platform.

For each ticket you receive, classify its urgency and propose concrete remediation steps for a technician.

## OUTPUT FORMAT

Respond with a single JSON object and nothing else. The object must have exactly these fields:

- "ticketId": the ticket ID exactly as given
- "priority": one of "low", "medium", "high"
- "actionableSteps": an ordered, non-empty array of short imperative steps
- "comments": a short string with any caveats or context (may be empty)

## PRIORITY RULES

- "high": outage, security incident, data loss, or many users blocked
- "medium": a single user blocked, or degraded service with a workaround
- "low": requests, questions, cosmetic issues, scheduled work

## EXAMPLE

Input:
  Ticket ID: T20240101.0042
  Description: Outlook keeps asking for my password since this morning.

Output:
{"ticketId": "T20240101.0042", "priority": "medium", "actionableSteps": ["Check the user's account for lockout or expired password", "Verify MFA registration status", "Clear cached credentials in Windows Credential Manager", "Recreate the Outlook profile if prompts persist"], "comments": "Likely credential cache issue after a password change."}"""


_CODE_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*(.*?)\s*```\s*$", re.DOTALL | re.IGNORECASE)


def build_user_prompt(ticket_id: str, description: str) -> str:
    """
    Build the user prompt for triage.

    Args:
        ticket_id: The ticket identifier.
        description: The ticket description to triage.

    Returns:
        Formatted prompt string.
    """
    return f"""## TICKET TO TRIAGE:

**Ticket ID**: {ticket_id}
**Description**: {description}

Return the triage JSON object for this ticket."""


def strip_code_fence(text: str) -> str:
    """Remove a Markdown code fence wrapped around a JSON body."""
    match = _CODE_FENCE_RE.match(text)
    return match.group(1) if match else text.strip()


def parse_triage_response(text: Optional[str], ticket_id: str) -> TriageResult:
    """
    Parse completion text into a TriageResult.

    An omitted ticketId is filled in with the originating ticket id;
    a different ticketId is rejected. Unknown fields are ignored.

    Args:
        text: Raw completion text.
        ticket_id: Id of the ticket that was triaged.

    Returns:
        Validated TriageResult.

    Raises:
        TriageParseError: If the text is not a valid triage payload.
    """
    if not text or not text.strip():
        raise TriageParseError(f"Empty triage response for ticket {ticket_id}")

    try:
        data: Any = json.loads(strip_code_fence(text))
    except json.JSONDecodeError as e:
        raise TriageParseError(f"Triage response for {ticket_id} is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise TriageParseError(
            f"Triage response for {ticket_id} must be a JSON object, got {type(data).__name__}"
        )

    unknown = sorted(set(data) - set(TRIAGE_FIELDS))
    if unknown:
        logger.debug(f"Ignoring unknown triage fields for {ticket_id}: {unknown}")

    returned_id = data.get("ticketId")
    if returned_id in (None, ""):
        data["ticketId"] = ticket_id
    elif str(returned_id) != ticket_id:
        raise TriageParseError(
            f"Triage response ticketId {returned_id!r} does not match ticket {ticket_id!r}"
        )
    else:
        data["ticketId"] = str(returned_id)

    try:
        return TriageResult.model_validate(data)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise TriageParseError(
            f"Triage response for {ticket_id} failed validation ({fields})"
        ) from e


class TriageEngine:
    """
    Completion-service backed triage generator.

    Does not retry on its own; retry policy belongs to the processor.
    """

    def __init__(self, config: LLMConfig, client: Optional[OpenAI] = None):
        """
        Initialize the triage engine.

        Args:
            config: LLM configuration.
            client: Pre-built OpenAI client, mainly for tests.
        """
        self._config = config

        if client is None:
            client_kwargs: dict[str, Any] = {
                "api_key": config.api_key,
                "max_retries": 0,
            }
            if config.api_base_url:
                client_kwargs["base_url"] = config.api_base_url
            client = OpenAI(**client_kwargs)

        self._client = client

        logger.info(f"Initialized triage engine with model: {config.model}")

    def generate_triage(self, ticket_id: str, description: str) -> TriageResult:
        """
        Produce a triage result for one ticket.

        Args:
            ticket_id: The ticket identifier.
            description: Ticket description (already defaulted by the caller).

        Returns:
            Validated TriageResult.

        Raises:
            TriageGenerationError: If the completion call fails.
            TriageParseError: If the response does not fit the schema.
        """
        logger.debug(f"Requesting triage for ticket: {ticket_id}")

        try:
            response = self._client.chat.completions.create(
                model=self._config.model,
                temperature=self._config.temperature,
                max_tokens=self._config.max_tokens,
                response_format={"type": "json_object"},
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_user_prompt(ticket_id, description)},
                ],
            )
        except OpenAIError as e:
            raise TriageGenerationError(f"Completion call failed for {ticket_id}: {e}") from e

        if not response.choices:
            raise TriageParseError(f"Completion for {ticket_id} returned no choices")

        content = response.choices[0].message.content
        result = parse_triage_response(content, ticket_id)

        logger.debug(
            f"Triaged {ticket_id}: priority={result.priority.value} "
            f"steps={len(result.actionable_steps)}"
        )
        return result
