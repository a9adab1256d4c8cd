"""
End-of-run summary for the PSA Ticket Triage pipeline.
"""

import logging
from typing import Optional

from .models import RunMetrics


logger = logging.getLogger(__name__)


def render_report(metrics: RunMetrics) -> list[str]:
    """
    Format run metrics as summary lines.

    Order: total processed, successes, errors, then the failed ticket ids
    when there are any.

    Args:
        metrics: Final run metrics.

    Returns:
        Summary lines, one per fact.
    """
    lines = [
        f"Total tickets processed: {metrics.processed_count}",
        f"Successful triages: {metrics.success_count}",
        f"Failed triages: {metrics.error_count}",
    ]

    if metrics.failed_ticket_ids:
        lines.append(f"Failed ticket IDs: {', '.join(metrics.failed_ticket_ids)}")

    if metrics.skipped_count:
        lines.append(f"Tickets skipped after run deadline: {metrics.skipped_count}")

    return lines


def log_report(metrics: RunMetrics, log: Optional[logging.Logger] = None) -> list[str]:
    """Write the run summary to the log and return its lines."""
    log = log or logger
    lines = render_report(metrics)

    log.info("=" * 60)
    log.info("Run summary")
    for line in lines:
        log.info(line)
    log.info("=" * 60)

    return lines
