"""
Configuration management (SSOT).

This module defines ALL configuration for the subtrack pipeline.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- Confidence thresholds are ordered: review_threshold <= auto_threshold
- Retry delays are non-empty and non-negative
- The LLM API key is never written to logs
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


@dataclass
class LLMConfig:
    """Remote classification/extraction model (OpenAI-compatible chat API).

    - base_url: e.g. https://api.openai.com/v1 or http://localhost:11434/v1
    - target_name: logical name shared by every call to this dependency;
      the circuit breaker and permit pool are keyed by it
    """

    base_url: str = "https://api.openai.com/v1"
    api_key: str | None = None
    model: str = "gpt-4o-mini"
    # Request timeout (seconds)
    timeout_seconds: int = 30
    temperature: float = 0.1
    target_name: str = "llm"

    def is_remote(self) -> bool:
        """Check if the endpoint is remote (not localhost)."""
        url_lower = self.base_url.lower()
        return not any(
            local in url_lower
            for local in ["localhost", "127.0.0.1", "::1", "host.docker.internal"]
        )


@dataclass
class ResilienceConfig:
    """Retry, circuit breaker and concurrency settings for remote calls."""

    max_retries: int = 3
    # Delay before retry N; the last delay repeats once the list is exhausted
    retry_delays: list[float] = field(default_factory=lambda: [1.0, 5.0, 15.0])
    # Each delay is scaled by a random factor in [1 - jitter, 1 + jitter]
    jitter: float = 0.2
    # Circuit breaker
    minimum_throughput: int = 3
    failure_ratio: float = 1.0
    sampling_seconds: float = 60.0
    break_seconds: float = 30.0
    # Permit pool per target
    max_concurrent: int = 2
    # None = wait indefinitely for a permit
    permit_timeout_seconds: float | None = None


@dataclass
class ConfidenceThresholds:
    """Decision thresholds for the confidence gate."""

    auto_threshold: float = 0.85  # At or above: accepted silently
    review_threshold: float = 0.60  # Below: review flag set


@dataclass
class PipelineConfig:
    """Intake, dispatch and worker settings."""

    # Body character budgets sent to the remote model
    classification_body_limit: int = 2000
    extraction_body_limit: int = 3000
    # Dispatcher capacity across all tiers
    queue_capacity: int = 10_000
    workers: int = 2
    # PROCESSING records claimed longer ago than this are reset to PENDING
    stale_claim_minutes: int = 30
    # Days past the renewal date before an ACTIVE subscription is flagged overdue
    overdue_grace_days: int = 7


@dataclass
class AlertConfig:
    """Alert generation settings."""

    renewal_warning_days: int = 7
    renewal_urgent_days: int = 3
    trial_ending_days: int = 3
    unused_months: int = 6
    lookback_days: int = 30
    price_change_window_days: int = 7
    max_delivery_attempts: int = 3


@dataclass
class Config:
    """Application configuration (SSOT).

    All configuration is centralized here. No other module should define
    configuration keys or defaults.
    """

    llm: LLMConfig = field(default_factory=LLMConfig)
    resilience: ResilienceConfig = field(default_factory=ResilienceConfig)
    confidence: ConfidenceThresholds = field(default_factory=ConfidenceThresholds)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    alerts: AlertConfig = field(default_factory=AlertConfig)
    state_db_path: Path = field(default_factory=lambda: Path("data/state.db"))

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if not self.llm.base_url:
            errors.append("llm.base_url is required")
        if self.llm.is_remote() and not self.llm.api_key:
            errors.append("llm.api_key is required for a remote endpoint")

        if not self.resilience.retry_delays:
            errors.append("resilience.retry_delays must not be empty")
        elif any(d < 0 for d in self.resilience.retry_delays):
            errors.append("resilience.retry_delays must be non-negative")
        if self.resilience.max_concurrent < 1:
            errors.append("resilience.max_concurrent must be >= 1")
        if self.resilience.minimum_throughput < 1:
            errors.append("resilience.minimum_throughput must be >= 1")

        if self.confidence.review_threshold > self.confidence.auto_threshold:
            errors.append("confidence.review_threshold must be <= auto_threshold")

        if self.pipeline.workers < 1:
            errors.append("pipeline.workers must be >= 1")

        return errors

    def ensure_valid(self) -> None:
        """Raise ConfigValidationError listing every problem found by validate()."""
        errors = self.validate()
        if errors:
            raise ConfigValidationError("; ".join(errors))


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - SUBTRACK_LLM_URL
    - SUBTRACK_LLM_API_KEY
    - SUBTRACK_LLM_MODEL
    - SUBTRACK_LLM_TIMEOUT (request timeout in seconds)
    - SUBTRACK_STATE_DB
    - SUBTRACK_WORKERS
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    llm_data = data.get("llm", {})
    llm = LLMConfig(
        base_url=os.environ.get(
            "SUBTRACK_LLM_URL", llm_data.get("base_url", "https://api.openai.com/v1")
        ),
        api_key=os.environ.get("SUBTRACK_LLM_API_KEY", llm_data.get("api_key")),
        model=os.environ.get("SUBTRACK_LLM_MODEL", llm_data.get("model", "gpt-4o-mini")),
        timeout_seconds=int(os.environ.get(
            "SUBTRACK_LLM_TIMEOUT", llm_data.get("timeout_seconds", 30)
        )),
        temperature=float(llm_data.get("temperature", 0.1)),
        target_name=llm_data.get("target_name", "llm"),
    )

    res_data = data.get("resilience", {})
    resilience = ResilienceConfig(
        max_retries=res_data.get("max_retries", 3),
        retry_delays=[float(d) for d in res_data.get("retry_delays", [1.0, 5.0, 15.0])],
        jitter=res_data.get("jitter", 0.2),
        minimum_throughput=res_data.get("minimum_throughput", 3),
        failure_ratio=res_data.get("failure_ratio", 1.0),
        sampling_seconds=res_data.get("sampling_seconds", 60.0),
        break_seconds=res_data.get("break_seconds", 30.0),
        max_concurrent=res_data.get("max_concurrent", 2),
        permit_timeout_seconds=res_data.get("permit_timeout_seconds"),
    )

    conf_data = data.get("confidence", {})
    confidence = ConfidenceThresholds(
        auto_threshold=conf_data.get("auto_threshold", 0.85),
        review_threshold=conf_data.get("review_threshold", 0.60),
    )

    pipe_data = data.get("pipeline", {})
    workers = pipe_data.get("workers", 2)
    workers_env = os.environ.get("SUBTRACK_WORKERS", "")
    if workers_env:
        try:
            workers = int(workers_env)
        except ValueError:
            pass  # Keep configured value
    pipeline = PipelineConfig(
        classification_body_limit=pipe_data.get("classification_body_limit", 2000),
        extraction_body_limit=pipe_data.get("extraction_body_limit", 3000),
        queue_capacity=pipe_data.get("queue_capacity", 10_000),
        workers=workers,
        stale_claim_minutes=pipe_data.get("stale_claim_minutes", 30),
        overdue_grace_days=pipe_data.get("overdue_grace_days", 7),
    )

    alert_data = data.get("alerts", {})
    alerts = AlertConfig(
        renewal_warning_days=alert_data.get("renewal_warning_days", 7),
        renewal_urgent_days=alert_data.get("renewal_urgent_days", 3),
        trial_ending_days=alert_data.get("trial_ending_days", 3),
        unused_months=alert_data.get("unused_months", 6),
        lookback_days=alert_data.get("lookback_days", 30),
        price_change_window_days=alert_data.get("price_change_window_days", 7),
        max_delivery_attempts=alert_data.get("max_delivery_attempts", 3),
    )

    state_db = os.environ.get("SUBTRACK_STATE_DB", data.get("state_db_path", "data/state.db"))

    return Config(
        llm=llm,
        resilience=resilience,
        confidence=confidence,
        pipeline=pipeline,
        alerts=alerts,
        state_db_path=Path(state_db),
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# subtrack pipeline configuration
#
# Environment variables override the matching keys:
# SUBTRACK_LLM_URL, SUBTRACK_LLM_API_KEY, SUBTRACK_LLM_MODEL,
# SUBTRACK_LLM_TIMEOUT, SUBTRACK_STATE_DB, SUBTRACK_WORKERS

# Remote classification/extraction model (OpenAI-compatible chat API)
llm:
  base_url: "https://api.openai.com/v1"   # Or a local server, e.g. http://localhost:11434/v1
  api_key: null                            # Prefer SUBTRACK_LLM_API_KEY
  model: "gpt-4o-mini"
  timeout_seconds: 30
  temperature: 0.1
  target_name: "llm"                       # Circuit breaker / permit pool key

# Retry, circuit breaker and concurrency for remote calls
resilience:
  max_retries: 3
  retry_delays: [1.0, 5.0, 15.0]           # Last delay repeats when exhausted
  jitter: 0.2
  minimum_throughput: 3                    # Failures in window that open the circuit
  failure_ratio: 1.0
  sampling_seconds: 60
  break_seconds: 30
  max_concurrent: 2
  permit_timeout_seconds: null

# Confidence gate
confidence:
  auto_threshold: 0.85    # At or above: accept silently
  review_threshold: 0.60  # Below: flag for review

pipeline:
  classification_body_limit: 2000
  extraction_body_limit: 3000
  queue_capacity: 10000
  workers: 2
  stale_claim_minutes: 30
  overdue_grace_days: 7

alerts:
  renewal_warning_days: 7
  renewal_urgent_days: 3
  trial_ending_days: 3
  unused_months: 6
  lookback_days: 30
  price_change_window_days: 7
  max_delivery_attempts: 3

# State database path
state_db_path: "data/state.db"
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
