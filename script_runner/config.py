"""Application settings loaded from environment variables."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is driven by environment variables."""

    # Storage
    runner_database_url: str = "sqlite:///./data/commands.db"
    runner_store_workers: int = Field(default=1, ge=1)

    # Admission / queue
    runner_max_concurrent: int = Field(default=100, ge=0)
    runner_queue_poll_interval_seconds: float = Field(default=10.0, gt=0)

    # Execution
    runner_shell: str = "bash"
    runner_output_flush_interval_seconds: float = Field(default=3.0, gt=0)
    runner_signal_process_group: bool = True
    runner_shutdown_grace_seconds: float = Field(default=5.0, ge=0)

    # API key
    runner_api_key: str = ""

    # Logging
    runner_log_level: str = "INFO"
    runner_log_format: str = "console"

    # HTTP server
    runner_host: str = "0.0.0.0"
    runner_port: int = 8080

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# Singleton – import this from anywhere
settings = Settings()
