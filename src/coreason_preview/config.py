from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from coreason_preview.models import ResourceLimits


class PreviewConfig(BaseSettings):
    """
    Configuration for the preview engine.
    """

    runtime: Literal["docker"] = "docker"
    docker_image: str = "node:20-slim"
    # None means network_mode="none". A named network must be (or is created as) internal.
    docker_network: str | None = None
    work_dir: str = "/home/app"
    cpu_limit: float = 1.0
    pids_limit: int = 256

    startup_budget: float = Field(default=10.0, gt=0)
    memory_limit_mb: int = Field(default=128, gt=0)
    output_buffer_bytes: int = Field(default=64 * 1024, gt=0)
    kill_grace_period: float = Field(default=2.0, gt=0)

    install_command: list[str] = ["npm", "install"]
    ready_poll_interval: float = 0.5
    settle_timeout: float = 60.0
    session_ttl: float = 1800.0  # 30 minutes
    reaper_interval: float = 60.0  # Check every minute
    locale: Literal["en", "ja"] = "en"

    model_config = SettingsConfigDict(
        env_prefix="COREASON_PREVIEW_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def limits(self) -> ResourceLimits:
        return ResourceLimits(
            startup_budget=self.startup_budget,
            memory_limit_mb=self.memory_limit_mb,
            output_buffer_bytes=self.output_buffer_bytes,
            kill_grace_period=self.kill_grace_period,
        )
