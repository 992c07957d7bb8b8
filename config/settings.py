"""Application configuration using pydantic-settings."""

from __future__ import annotations

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration loaded from environment / .env file."""

    # ── Remote generation service ─────────────────────────────────────────────
    # Worker base URL; a per-user override can be stored in the config record
    # (serviceEndpointOverride) and takes precedence.
    service_url: str = Field(
        default="https://eds-block-generator.paolo-moz.workers.dev",
        description="Base URL of the block generation worker",
    )
    service_timeout_seconds: float = Field(default=300.0)
    # Only connection failures are retried (the request never reached the worker).
    service_max_retries: int = Field(default=2)
    service_retry_delay_seconds: float = Field(default=1.0)
    generation_refinements: int = Field(default=2)

    # ── Source repository (GitHub) ────────────────────────────────────────────
    github_api_base: str = Field(default="https://api.github.com")
    artifacts_path: str = Field(default="blocks")

    # ── Preview links ─────────────────────────────────────────────────────────
    # Fallback preview URL: https://{branch}--{site}--{org}.{preview_host}/...
    preview_host: str = Field(default="aem.live")

    # ── Persistence ───────────────────────────────────────────────────────────
    state_dir: str = Field(default="data/state")

    # ── Liveness ──────────────────────────────────────────────────────────────
    heartbeat_interval_seconds: float = Field(default=20.0)

    # ── Browser / page agent ──────────────────────────────────────────────────
    # Start Chrome with: google-chrome --remote-debugging-port=9222
    cdp_endpoint: str = Field(default="http://localhost:9222")
    agent_assets_dir: str = Field(default="agent")
    internal_url_prefixes: List[str] = Field(
        default=[
            "chrome://",
            "chrome-extension://",
            "devtools://",
            "edge://",
            "about:",
        ]
    )
    sidebar_open_delay_seconds: float = Field(default=0.1)
    # Pages blocked by a JS dialog never answer the focus check.
    focus_check_timeout_seconds: float = Field(default=2.0)

    # ── HTTP transport ────────────────────────────────────────────────────────
    server_host: str = Field(default="127.0.0.1")
    server_port: int = Field(default=8089)

    # ── Logging ───────────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_file: Optional[str] = Field(default="logs/block-importer.log")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


settings = Settings()
