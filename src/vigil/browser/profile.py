"""
Browser Profile - Typed settings for a browser session and its watchdogs.
"""

from pathlib import Path

from pydantic import BaseModel, Field, field_validator

DEFAULT_PERMISSIONS = ["clipboard-read", "clipboard-write", "notifications"]


class BrowserProfile(BaseModel):
    """Configuration for browser session."""

    headless: bool = True
    executable_path: str | Path | None = None
    user_data_dir: str | Path | None = None
    window_size: tuple[int, int] = (1280, 800)
    args: list[str] = Field(default_factory=list)

    # Connect to an already running browser instead of launching one
    cdp_url: str | None = None
    # Leave the browser running when the last agent detaches
    keep_alive: bool = False

    allowed_domains: list[str] | None = None
    permissions: list[str] = Field(default_factory=lambda: list(DEFAULT_PERMISSIONS))
    auto_accept_dialogs: bool = True

    # Timeouts (seconds)
    navigation_timeout: float = 30.0
    action_timeout: float = 10.0
    state_capture_timeout: float = 15.0
    launch_timeout: float = 30.0

    # Crash watchdog
    health_check_interval: float = 5.0
    health_check_timeout: float = 3.0
    unresponsive_threshold: int = 3

    # Network watchdog
    network_timeout: float = 10.0
    network_idle_threshold: float = 0.5
    network_sweep_interval: float = 1.0

    @field_validator("allowed_domains", "permissions", mode="before")
    @classmethod
    def _split_comma_list(cls, value):
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator("unresponsive_threshold")
    @classmethod
    def _positive_threshold(cls, value: int) -> int:
        if value < 1:
            raise ValueError("unresponsive_threshold must be at least 1")
        return value
