"""
Main entry point for the PSA Ticket Triage pipeline.

Orchestrates the complete pipeline:
1. Fetch tickets page by page from the PSA backend
2. Select tickets whose id matches the filter pattern
3. Triage each ticket with the LLM and write the result back, with retries
4. Log the run summary
"""

import logging
import sys
from contextlib import ExitStack
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Optional

import click

from .config import get_config, AppConfig
from .data_sources import (
    PSAClient,
    RetrievalError,
    SimulatedTicketSink,
    StaticTicketSource,
    TicketSink,
    TicketSource,
    fetch_all_tickets,
)
from .models import RunMetrics
from .processor import RetryingProcessor, RunContext, TriageGenerator
from .report import log_report
from .ticket_filter import FilterPatternError, compile_pattern, filter_tickets
from .triage import TriageEngine


def run_log_path(log_dir: Path, started_at: datetime) -> Path:
    """Build the per-run log file path from the run start time."""
    return log_dir / f"triage_run_{started_at.strftime('%Y%m%d_%H%M%S')}.log"


def setup_logging(level: str, log_file: Optional[Path] = None) -> None:
    """
    Configure application logging.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR).
        log_file: Optional append-only run log file.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, mode="a", encoding="utf-8"))

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
        force=True,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


logger = logging.getLogger(__name__)


class PipelineError(Exception):
    """Error during pipeline setup or ticket retrieval."""
    pass


def validate_config(
    config: AppConfig,
    require_psa: bool = True,
    require_llm: bool = True,
) -> None:
    """
    Validate configuration before running.

    Args:
        config: Application configuration.
        require_psa: Whether PSA API credentials are needed.
        require_llm: Whether the completion service credential is needed.

    Raises:
        PipelineError: If configuration is invalid.
    """
    errors = config.validate(require_psa=require_psa, require_llm=require_llm)
    if errors:
        for error in errors:
            logger.error(f"Configuration error: {error}")
        raise PipelineError(
            f"Configuration validation failed with {len(errors)} error(s)"
        )


def run_pipeline(
    pattern: str,
    config: Optional[AppConfig] = None,
    tickets_file: Optional[Path] = None,
    source: Optional[TicketSource] = None,
    engine: Optional[TriageGenerator] = None,
    sink: Optional[TicketSink] = None,
    configure_logging: bool = True,
) -> RunMetrics:
    """
    Execute the complete ticket triage pipeline.

    Args:
        pattern: Regular expression selecting ticket ids.
        config: Optional configuration override.
        tickets_file: Load tickets from a local JSON file instead of the API.
        source: Ticket source override.
        engine: Triage engine override.
        sink: Ticket sink override.
        configure_logging: Set up stdout and run-file logging.

    Returns:
        Final run metrics.

    Raises:
        PipelineError: On setup or retrieval failure.
    """
    if config is None:
        config = get_config()

    context = RunContext(config=config.pipeline)
    if configure_logging:
        context.log_file = run_log_path(config.log_dir, context.started_at)
        setup_logging(config.log_level, context.log_file)

    logger.info("=" * 60)
    logger.info("Starting PSA Ticket Triage Pipeline")
    logger.info("=" * 60)
    if context.log_file:
        logger.info(f"Run log: {context.log_file}")

    validate_config(
        config,
        require_psa=source is None and tickets_file is None,
        require_llm=engine is None,
    )

    try:
        compiled = compile_pattern(pattern)
    except FilterPatternError as e:
        raise PipelineError(str(e)) from e

    pipeline = config.pipeline

    with ExitStack() as stack:
        psa_client: Optional[PSAClient] = None
        needs_client = source is None and tickets_file is None
        needs_client = needs_client or (sink is None and not pipeline.simulate_updates)
        if needs_client:
            psa_client = stack.enter_context(PSAClient(config.psa))

        if sink is None:
            if pipeline.simulate_updates:
                sink = SimulatedTicketSink(pipeline.update_delay_seconds)
            else:
                sink = psa_client
        if engine is None:
            engine = TriageEngine(config.llm)

        # Step 1: Fetch tickets
        logger.info("-" * 40)
        logger.info("Step 1: Retrieving tickets")
        logger.info("-" * 40)

        try:
            if source is None:
                if tickets_file:
                    source = StaticTicketSource.from_json_file(tickets_file)
                else:
                    source = psa_client
            tickets = fetch_all_tickets(source, pipeline.page_size, pipeline.open_only)
        except RetrievalError as e:
            logger.error(f"Ticket retrieval failed, no tickets processed: {e}")
            raise PipelineError(f"Ticket retrieval failed: {e}") from e

        # Step 2: Filter
        logger.info("-" * 40)
        logger.info(f"Step 2: Filtering tickets with pattern {compiled.pattern!r}")
        logger.info("-" * 40)

        matched = filter_tickets(tickets, compiled)
        logger.info(f"Matched {len(matched)} of {len(tickets)} tickets")

        # Step 3: Triage and update
        logger.info("-" * 40)
        logger.info("Step 3: Triaging and updating tickets")
        logger.info("-" * 40)

        processor = RetryingProcessor(engine, sink, context)
        metrics = processor.run(matched)

    log_report(metrics)
    return metrics


def _validate_pattern(ctx: click.Context, param: click.Parameter, value: str) -> str:
    try:
        compile_pattern(value)
    except FilterPatternError as e:
        raise click.BadParameter(str(e)) from e
    return value


@click.command()
@click.option(
    "--filter",
    "-f",
    "pattern",
    required=True,
    callback=_validate_pattern,
    help="Regular expression selecting ticket ids (e.g. '^T2024.*')",
)
@click.option(
    "--page-size",
    type=click.IntRange(min=1),
    default=None,
    help="Tickets per page when retrieving (default: PAGE_SIZE or 100)",
)
@click.option(
    "--max-retries",
    type=click.IntRange(min=0),
    default=None,
    help="Retries per ticket after the first attempt (default: MAX_RETRIES or 0)",
)
@click.option(
    "--client-id",
    default=None,
    help="Only retrieve tickets for this client/tenant",
)
@click.option(
    "--all-statuses",
    is_flag=True,
    default=False,
    help="Include closed tickets",
)
@click.option(
    "--tickets-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Read tickets from a local JSON file instead of the PSA API",
)
@click.option(
    "--apply-updates",
    is_flag=True,
    default=False,
    help="Write triage results to the PSA instead of simulating the update",
)
@click.option(
    "--timeout",
    type=click.FloatRange(min=0),
    default=None,
    help="Stop starting new tickets after this many seconds (0 disables)",
)
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug logging",
)
@click.option(
    "--validate-only",
    is_flag=True,
    default=False,
    help="Only validate configuration without running the pipeline",
)
def main(
    pattern: str,
    page_size: Optional[int],
    max_retries: Optional[int],
    client_id: Optional[str],
    all_statuses: bool,
    tickets_file: Optional[Path],
    apply_updates: bool,
    timeout: Optional[float],
    debug: bool,
    validate_only: bool,
) -> None:
    """
    PSA Ticket Triage.

    Retrieves tickets from the PSA platform, selects those whose id matches
    the filter, generates an LLM triage recommendation for each and writes
    it back to the ticket.
    """
    try:
        config = get_config()

        pipeline = config.pipeline
        if page_size is not None:
            pipeline = replace(pipeline, page_size=page_size)
        if max_retries is not None:
            pipeline = replace(pipeline, max_retries=max_retries)
        if timeout is not None:
            pipeline = replace(pipeline, run_timeout_seconds=timeout)
        if all_statuses:
            pipeline = replace(pipeline, open_only=False)
        if apply_updates:
            pipeline = replace(pipeline, simulate_updates=False)

        psa = config.psa
        if client_id:
            psa = replace(psa, client_id=client_id)

        config = replace(
            config,
            psa=psa,
            pipeline=pipeline,
            log_level="DEBUG" if debug else config.log_level,
        )

        if validate_only:
            setup_logging(config.log_level)
            logger.info("Validating configuration...")
            validate_config(config, require_psa=tickets_file is None)
            logger.info("Configuration is valid!")
            return

        run_pipeline(pattern, config, tickets_file=tickets_file)

    except PipelineError as e:
        click.echo(f"Pipeline failed: {e}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("\nOperation cancelled by user", err=True)
        sys.exit(130)
    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        if debug:
            import traceback
            traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
