"""
Configuration module for the PSA Ticket Triage pipeline.

Handles all configuration through environment variables with secure defaults.
Never stores sensitive data directly in code.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


# Load environment variables from .env file
load_dotenv()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class PSAConfig:
    """Configuration for the PSA ticketing REST API."""

    api_url: str = field(
        default_factory=lambda: os.getenv("PSA_API_URL", "")
    )
    api_key: str = field(
        default_factory=lambda: os.getenv("PSA_API_KEY", "")
    )
    api_secret: str = field(
        default_factory=lambda: os.getenv("PSA_API_SECRET", "")
    )

    # Optional client/tenant scoping for ticket retrieval
    client_id: Optional[str] = field(
        default_factory=lambda: os.getenv("PSA_CLIENT_ID") or None
    )

    # Request timeout in seconds
    request_timeout: int = field(
        default_factory=lambda: int(os.getenv("REQUEST_TIMEOUT", "30"))
    )


@dataclass(frozen=True)
class LLMConfig:
    """Configuration for the completion service (OpenAI compatible)."""

    api_key: str = field(
        default_factory=lambda: os.getenv("OPENAI_API_KEY", "")
    )
    api_base_url: Optional[str] = field(
        default_factory=lambda: os.getenv("OPENAI_API_BASE", None)
    )
    model: str = field(
        default_factory=lambda: os.getenv("LLM_MODEL", "gpt-4o-mini")
    )
    temperature: float = field(
        default_factory=lambda: float(os.getenv("LLM_TEMPERATURE", "0.2"))
    )
    max_tokens: int = field(
        default_factory=lambda: int(os.getenv("LLM_MAX_TOKENS", "600"))
    )


@dataclass(frozen=True)
class PipelineConfig:
    """Settings that shape a single triage run."""

    page_size: int = field(
        default_factory=lambda: int(os.getenv("PAGE_SIZE", "100"))
    )

    # 0 means exactly one attempt per ticket
    max_retries: int = field(
        default_factory=lambda: int(os.getenv("MAX_RETRIES", "0"))
    )
    backoff_seconds: float = field(
        default_factory=lambda: float(os.getenv("RETRY_BACKOFF_SECONDS", "2"))
    )
    open_only: bool = field(
        default_factory=lambda: _env_flag("OPEN_ONLY", "true")
    )

    # Write-back mode: simulated updates unless explicitly disabled
    simulate_updates: bool = field(
        default_factory=lambda: _env_flag("SIMULATE_UPDATES", "true")
    )
    update_delay_seconds: float = field(
        default_factory=lambda: float(os.getenv("UPDATE_DELAY_SECONDS", "1"))
    )

    # Wall-clock limit for the whole run, 0 disables it
    run_timeout_seconds: float = field(
        default_factory=lambda: float(os.getenv("RUN_TIMEOUT_SECONDS", "0"))
    )


@dataclass(frozen=True)
class AppConfig:
    """Main application configuration aggregating all config sections."""

    psa: PSAConfig = field(default_factory=PSAConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)

    # Logging
    log_level: str = field(
        default_factory=lambda: os.getenv("LOG_LEVEL", "INFO")
    )
    log_dir: Path = field(
        default_factory=lambda: Path(os.getenv("LOG_DIR", "./logs"))
    )

    def validate(self, require_psa: bool = True, require_llm: bool = True) -> list[str]:
        """
        Validate configuration and return list of errors.

        Args:
            require_psa: Whether PSA API credentials are needed for this run.
                Not the case when tickets are loaded from a local file.
            require_llm: Whether the completion service credential is needed.

        Returns:
            List of validation error messages (empty if valid).
        """
        errors = []

        if require_llm and not self.llm.api_key:
            errors.append("OPENAI_API_KEY is required for triage")

        if require_psa or not self.pipeline.simulate_updates:
            if not self.psa.api_url:
                errors.append("PSA_API_URL is required")
            if not self.psa.api_key:
                errors.append("PSA_API_KEY is required")

        if self.pipeline.page_size < 1:
            errors.append("PAGE_SIZE must be a positive integer")
        if self.pipeline.max_retries < 0:
            errors.append("MAX_RETRIES must not be negative")
        if self.pipeline.backoff_seconds < 0:
            errors.append("RETRY_BACKOFF_SECONDS must not be negative")

        return errors


def get_config() -> AppConfig:
    """
    Get application configuration.

    Returns:
        AppConfig instance with all settings loaded from environment.
    """
    return AppConfig()
