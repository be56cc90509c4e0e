"""Server configuration using pydantic-settings."""

import logging
import sys

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from .client.scheduler import RequestScheduler
from .models import APIConfiguration


class ServerConfig(BaseSettings):
    """Configuration for the Roam MCP server.

    Every setting can be supplied through an environment variable with the
    ``ROAM_`` prefix (``ROAM_API_TOKEN``, ``ROAM_GRAPH_NAME``, ...) or a
    ``.env`` file in the working directory.
    """

    model_config = SettingsConfigDict(
        env_prefix="ROAM_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Connection
    api_token: SecretStr = Field(..., description="Roam graph API token")
    graph_name: str = Field(..., description="Name of the Roam graph")
    base_url: str = Field(default="https://api.roamresearch.com")
    timeout: float = Field(default=30.0, gt=0)

    # Shared request quota
    reservoir: int = Field(default=300, ge=1, description="Calls allowed per refresh interval")
    reservoir_refresh_amount: int = Field(default=300, ge=1)
    reservoir_refresh_interval: float = Field(default=60.0, gt=0, description="Seconds")
    min_time: float = Field(default=0.0, ge=0, description="Minimum seconds between dispatches")
    max_concurrent: int = Field(default=1, ge=1)

    # Retry policy for quota rejections
    max_attempts: int = Field(default=8, ge=1)
    base_delay: float = Field(default=2.0, ge=0, description="First backoff delay in seconds")

    # Hierarchy traversal and output
    max_depth_ceiling: int = Field(default=7, ge=1)
    split_threshold: int = Field(default=5000, ge=0, description="0 disables pagination")
    hard_cap: int = Field(default=20000, ge=1)
    use_nested_pull: bool = True

    log_level: str = Field(default="INFO")

    def get_api_config(self) -> APIConfiguration:
        """Build the connection settings for the client."""
        return APIConfiguration(
            api_token=self.api_token,
            graph_name=self.graph_name,
            base_url=self.base_url,
            timeout=self.timeout,
        )

    def get_scheduler(self) -> RequestScheduler:
        """Build the process-wide root scheduler from the quota settings."""
        return RequestScheduler(
            reservoir=self.reservoir,
            reservoir_refresh_amount=self.reservoir_refresh_amount,
            reservoir_refresh_interval=self.reservoir_refresh_interval,
            min_time=self.min_time,
            max_concurrent=self.max_concurrent,
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
        )


def setup_logging(level: str = "INFO") -> None:
    """Route stdlib logging to stderr; stdout belongs to the MCP stdio transport."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    has_console = any(
        isinstance(h, logging.StreamHandler) and getattr(h, "stream", None) is sys.stderr
        for h in root.handlers
    )
    if not has_console:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
        root.addHandler(handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
