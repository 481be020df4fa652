"""Schedule sync configuration loaded from environment variables."""

from pydantic import Field
from pydantic_settings import BaseSettings


class SyncConfig(BaseSettings):
    """Schedule sync configuration loaded from environment variables.

    Settings are loaded from environment variables with sensible defaults.
    For local development, create a .env file in the project root.
    """

    # Portal settings (cookie sessions only, there is no login API)
    portal_base_url: str = Field(
        default="https://www.lectio.dk/lectio",
        description="Portal base URL; the school id is appended as a path segment",
    )
    schedule_path: str = Field(
        default="/SkemaNy.aspx",
        description="Path of the weekly schedule page, relative to the school",
    )
    user_agent: str = Field(
        default="ScheduleSync/0.1 (API Client)",
        description="User-Agent header sent with every portal request",
    )
    referer: str = Field(
        default="https://www.lectio.dk",
        description="Referer header sent with every portal request",
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        description="Per-request timeout for portal fetches",
    )
    max_redirects: int = Field(
        default=5,
        description="Maximum redirect hops followed per fetch",
    )
    portal_timezone: str = Field(
        default="Europe/Copenhagen",
        description="Timezone the portal renders schedule times in",
    )
    primary_token_cookie: str = Field(
        default="autologinkeyV2",
        description="Cookie mirrored to the credential's primary_token field",
    )

    # Paths
    state_dir: str = Field(
        default="data/state",
        description="Directory for per-student credential documents",
    )
    schedule_dir: str = Field(
        default="data/schedules",
        description="Directory for per-student schedule day documents",
    )

    # Task queue
    queue_url: str = Field(
        default="https://qstash.upstash.io",
        description="Task queue ingress base URL",
    )
    queue_token: str = Field(
        default="",
        description="Bearer token for the task queue",
    )
    queue_name: str = Field(
        default="scheduleScrape",
        description="Queue that scrape jobs are routed to",
    )
    scrape_job_url: str = Field(
        default="",
        description="Endpoint the queue delivers scrape jobs to",
    )
    job_retries: int = Field(
        default=2,
        description="Delivery retries the queue applies to each scrape job",
    )
    job_retry_delay_ms: int = Field(
        default=10000,
        description="Delay between queue delivery retries",
    )

    # Fan-out
    fanout_batch_size: int = Field(
        default=100,
        description="Jobs per publish call (queue-imposed limit)",
    )
    fanout_max_concurrency: int = Field(
        default=4,
        description="Maximum publish calls in flight at once",
    )
    publish_attempts: int = Field(
        default=2,
        description="Attempts per batch publish before it is reported failed",
    )
    publish_retry_wait_seconds: float = Field(
        default=2.0,
        description="Wait between batch publish attempts",
    )

    # Logging
    log_json: bool = Field(
        default=False,
        description="Output logs in JSON format (for production)",
    )
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    model_config = {
        "env_prefix": "",
        "case_sensitive": False,
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


# Singleton pattern
_config: SyncConfig | None = None


def get_config() -> SyncConfig:
    """Get the schedule sync configuration singleton.

    Returns:
        SyncConfig: Configuration instance
    """
    global _config
    if _config is None:
        _config = SyncConfig()
    return _config
