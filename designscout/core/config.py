"""
Core configuration management for design-scout
"""

import os
import shlex
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

DEFAULT_SERVER_COMMAND = ["npx", "-y", "@executeautomation/playwright-mcp-server"]


class ScoutConfig(BaseModel):
    """Main configuration for design-scout"""

    # Target site
    base_url: str = "https://mobbin.com"
    email: Optional[str] = None
    password: Optional[str] = None

    # Browser
    headless: bool = True
    debug: bool = False  # visible browser plus screenshots
    viewport_width: int = 1280
    viewport_height: int = 720
    screenshot_dir: Path = Path("./screenshots")

    # Automation server
    server_command: List[str] = Field(default_factory=lambda: list(DEFAULT_SERVER_COMMAND))
    client_name: str = "design-scout"
    client_version: str = "0.1.0"
    request_timeout: float = 30.0  # seconds
    shutdown_grace_period: float = 5.0  # seconds before SIGKILL
    startup_delay: float = 0.0  # some servers need a moment before the handshake

    # Pacing
    requests_per_minute: int = 120
    tool_max_retries: int = 2
    retry_base_delay: float = 1.0
    suggestion_settle_seconds: float = 5.0
    step_settle_seconds: float = 1.0
    keyword_delay_seconds: float = 2.0

    # Search
    default_max_results: int = 5
    # "no login button visible" counts as logged in when neither indicator is found
    assume_logged_in_without_login_button: bool = False

    # Logging
    log_level: str = "INFO"

    @property
    def has_credentials(self) -> bool:
        return bool(self.email and self.password)

    class Config:
        extra = "ignore"  # silently drop unknown fields (catches env var typos)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "on")


def load_config() -> ScoutConfig:
    """Load configuration from environment variables"""
    load_dotenv()

    config_data = {
        "base_url": os.getenv("SCOUT_BASE_URL", "https://mobbin.com").rstrip("/"),
        "email": os.getenv("MOBBIN_EMAIL"),
        "password": os.getenv("MOBBIN_PASSWORD"),
        "headless": _env_bool("SCOUT_HEADLESS", "true"),
        "debug": _env_bool("SCOUT_DEBUG", "false"),
        "default_max_results": int(os.getenv("SCOUT_MAX_RESULTS", "5")),
        "request_timeout": float(os.getenv("SCOUT_REQUEST_TIMEOUT", "30")),
        "suggestion_settle_seconds": float(os.getenv("SCOUT_SUGGESTION_SETTLE", "5")),
        "keyword_delay_seconds": float(os.getenv("SCOUT_KEYWORD_DELAY", "2")),
        "requests_per_minute": int(os.getenv("SCOUT_REQUESTS_PER_MINUTE", "120")),
        "assume_logged_in_without_login_button": _env_bool("SCOUT_ASSUME_LOGGED_IN", "false"),
        "log_level": os.getenv("LOG_LEVEL", "INFO"),
    }

    command = os.getenv("SCOUT_MCP_COMMAND")
    if command:
        config_data["server_command"] = shlex.split(command)

    return ScoutConfig(**config_data)
