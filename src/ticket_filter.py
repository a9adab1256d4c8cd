"""
Ticket selection by identifier pattern.

Patterns are regular expressions matched anywhere in the ticket id.
Callers anchor the pattern themselves (e.g. ``^TICKET-.*``) when they
need a prefix match. No case or whitespace normalization is applied.
"""

import logging
import re
from typing import Iterable, Union

from .models import Ticket


logger = logging.getLogger(__name__)

Pattern = Union[str, "re.Pattern[str]"]


class FilterPatternError(ValueError):
    """Invalid ticket id filter pattern."""
    pass


def compile_pattern(pattern: Pattern) -> "re.Pattern[str]":
    """
    Compile a filter pattern.

    Raises:
        FilterPatternError: If the pattern is not a valid regular expression.
    """
    if isinstance(pattern, re.Pattern):
        return pattern
    try:
        return re.compile(pattern)
    except re.error as e:
        raise FilterPatternError(f"Invalid filter pattern {pattern!r}: {e}") from e


def matches(ticket_id: str, pattern: Pattern) -> bool:
    """Return True if the pattern matches anywhere in the ticket id."""
    return compile_pattern(pattern).search(ticket_id) is not None


def filter_tickets(tickets: Iterable[Ticket], pattern: Pattern) -> list[Ticket]:
    """
    Select tickets whose id matches the pattern, preserving input order.

    Args:
        tickets: Tickets in source order.
        pattern: Regular expression applied to each ticket id.

    Returns:
        Matching tickets in the order they were given.
    """
    compiled = compile_pattern(pattern)
    selected = []

    for ticket in tickets:
        if compiled.search(ticket.id) is not None:
            logger.info(f"Ticket matched | ticket_id={ticket.id}")
            selected.append(ticket)

    return selected
