"""
Retrying triage processor, the core of the PSA Ticket Triage pipeline.

Each matched ticket moves through Pending -> Attempting -> {Succeeded, Exhausted}.
An attempt runs triage and then write-back; either failing counts as a failed
attempt. Attempts are bounded by ``max_retries + 1`` with a fixed pause between
them. Tickets are handled strictly one at a time in the order given.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Protocol, Sequence

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from .config import PipelineConfig
from .data_sources import TicketSink, UpdateError
from .models import RunMetrics, Ticket, TriageResult
from .triage import TriageError


logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (TriageError, UpdateError)


class TriageGenerator(Protocol):
    """Anything that turns a ticket description into a TriageResult."""

    def generate_triage(self, ticket_id: str, description: str) -> TriageResult:
        ...


class TicketState(str, Enum):
    """Per-ticket processing states."""

    PENDING = "pending"
    ATTEMPTING = "attempting"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class TicketOutcome:
    """Terminal outcome for one ticket."""

    ticket_id: str
    state: TicketState
    attempts: int
    last_error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.state is TicketState.SUCCEEDED


@dataclass
class RunContext:
    """
    Everything scoped to one pipeline invocation.

    Holds the run configuration, the metrics being accumulated and the
    logger events are written to. The optional run deadline is
    measured from ``clock_start``, so retrieval time counts against it.
    Discarded when the run ends.
    """

    config: PipelineConfig
    metrics: RunMetrics = field(default_factory=RunMetrics)
    logger: logging.Logger = field(default_factory=lambda: logger)
    started_at: datetime = field(default_factory=datetime.now)
    clock_start: float = field(default_factory=time.monotonic)
    log_file: Optional[Path] = None


class RetryingProcessor:
    """
    Drives triage and write-back for each matched ticket under a bounded
    retry policy and records terminal outcomes in the run metrics.
    """

    def __init__(
        self,
        engine: TriageGenerator,
        sink: TicketSink,
        context: RunContext,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the processor.

        Args:
            engine: Triage generator.
            sink: Where successful triage results are applied.
            context: Run context owning config, metrics and logger.
            sleep: Pause function used for backoff.
            clock: Monotonic clock used for the run deadline.
        """
        self._engine = engine
        self._sink = sink
        self._context = context
        self._sleep = sleep
        self._clock = clock
        self._log = context.logger

    def _attempt(self, ticket: Ticket, attempt_number: int) -> None:
        """Run one triage-and-update attempt, raising on failure."""
        self._log.info(f"Attempt {attempt_number} for ticket {ticket.id}")

        try:
            result = self._engine.generate_triage(ticket.id, ticket.get_triage_description())
            if not self._sink.apply_triage(ticket.id, result):
                raise UpdateError(f"Sink rejected update for ticket {ticket.id}")
        except RETRYABLE_ERRORS as e:
            self._log.warning(
                f"Attempt failed | ticket_id={ticket.id} attempt={attempt_number} "
                f"error={type(e).__name__}: {e}"
            )
            raise

    def _log_backoff(self, ticket_id: str) -> Callable[[RetryCallState], None]:
        def before_sleep(retry_state: RetryCallState) -> None:
            pause = retry_state.next_action.sleep if retry_state.next_action else 0
            self._log.info(
                f"Retrying ticket {ticket_id} in {pause:g}s "
                f"(next attempt {retry_state.attempt_number + 1})"
            )
        return before_sleep

    def process_ticket(self, ticket: Ticket) -> TicketOutcome:
        """
        Take one ticket to a terminal state and record it in the metrics.

        Args:
            ticket: A matched ticket.

        Returns:
            The ticket's terminal outcome.
        """
        config = self._context.config
        attempts = 0

        retryer = Retrying(
            stop=stop_after_attempt(config.max_retries + 1),
            wait=wait_fixed(config.backoff_seconds),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            before_sleep=self._log_backoff(ticket.id),
            sleep=self._sleep,
            reraise=True,
        )

        try:
            for attempt in retryer:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    self._attempt(ticket, attempts)
        except RETRYABLE_ERRORS as e:
            self._context.metrics.record_failure(ticket.id)
            self._log.error(
                f"Ticket failed | ticket_id={ticket.id} attempts={attempts} "
                f"error={type(e).__name__}: {e}"
            )
            return TicketOutcome(ticket.id, TicketState.EXHAUSTED, attempts, str(e))
        except Exception as e:
            # Unexpected errors are not retried but only fail this ticket
            self._context.metrics.record_failure(ticket.id)
            self._log.exception(
                f"Ticket failed with unexpected error | ticket_id={ticket.id} "
                f"attempts={attempts} error={type(e).__name__}: {e}"
            )
            return TicketOutcome(ticket.id, TicketState.EXHAUSTED, attempts, str(e))

        self._context.metrics.record_success()
        self._log.info(f"Ticket succeeded | ticket_id={ticket.id} attempts={attempts}")
        return TicketOutcome(ticket.id, TicketState.SUCCEEDED, attempts)

    def run(self, tickets: Sequence[Ticket]) -> RunMetrics:
        """
        Process tickets sequentially in the given order.

        Stops starting new tickets once the optional run deadline, counted
        from the start of the run context, has passed; tickets not started
        are counted as skipped. An unexpected error fails only the ticket
        it came from.

        Args:
            tickets: Matched tickets in filter order.

        Returns:
            The run metrics.
        """
        metrics = self._context.metrics
        total = len(tickets)

        if total == 0:
            self._log.info("No matching tickets to process")
            return metrics

        timeout = self._context.config.run_timeout_seconds
        deadline = self._context.clock_start + timeout if timeout > 0 else None

        self._log.info(f"Starting triage of {total} tickets")

        for index, ticket in enumerate(tickets):
            if deadline is not None and self._clock() >= deadline:
                remaining = total - index
                metrics.record_skipped(remaining)
                self._log.warning(
                    f"Run deadline of {timeout:g}s reached, skipping {remaining} remaining ticket(s)"
                )
                break
            self.process_ticket(ticket)

        return metrics
