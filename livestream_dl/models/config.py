"""
Pydantic model for application configuration.
Provides robust validation for all settings.
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

PLAYLIST_GONE_POLICIES = ("end", "fatal")


class CaptureConfig(BaseModel):
    """A validated configuration model for a capture session."""

    model_config = ConfigDict(validate_assignment=True, str_strip_whitespace=True)

    # Network Settings
    max_workers: int = 8
    request_timeout: float = 10.0
    segment_attempts: int = 5
    manifest_attempts: int = 5
    retry_base_delay: float = 1.0
    retry_max_delay: float = 10.0
    copy_query: bool = False
    cookies: dict[str, str] = Field(default_factory=dict)
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0"
    )

    # Live Polling
    poll_interval_factor: float = 0.5
    playlist_gone_policy: Literal["end", "fatal"] = "end"
    missing_retry_polls: int = 3
    drain_timeout: float = 30.0

    # Caches
    key_cache_size: int = 8
    init_cache_size: int = 8

    # Selection
    video: Optional[str] = None
    alternates: Optional[list[str]] = None
    choose_stream: bool = False

    # Output
    remux: bool = False
    event_log_dir: Optional[str] = None

    # Internal fields not loaded from INI file
    source_url: str = Field("", repr=False)
    output_dir: str = Field("", repr=False)

    @field_validator("max_workers")
    @classmethod
    def validate_workers(cls, v: int) -> int:
        """Ensures a reasonable number of workers."""
        if v < 1 or v > 64:
            raise ValueError("Max workers must be between 1 and 64.")
        return v

    @field_validator("segment_attempts", "manifest_attempts", "missing_retry_polls")
    @classmethod
    def validate_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Attempt counts must be at least 1.")
        return v

    @field_validator("retry_base_delay", "retry_max_delay", "drain_timeout")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("Delays and timeouts cannot be negative.")
        return v

    @field_validator("request_timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Request timeout must be positive.")
        return v

    @field_validator("poll_interval_factor")
    @classmethod
    def validate_poll_factor(cls, v: float) -> float:
        """
        The idle wait is this fraction of the target segment duration. Values
        above a few target durations risk segments sliding out of the window.
        """
        if v <= 0 or v > 4:
            raise ValueError("Poll interval factor must be in (0, 4].")
        return v

    @field_validator("key_cache_size", "init_cache_size")
    @classmethod
    def validate_cache_size(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Cache sizes must be at least 1.")
        return v

    @field_validator("cookies")
    @classmethod
    def validate_cookies(cls, v: dict[str, str]) -> dict[str, str]:
        for name in v:
            if not name or any(c in name for c in "=; \t"):
                raise ValueError(f"Invalid cookie name: {name!r}")
        return v

    @model_validator(mode="after")
    def validate_option_conflicts(self) -> "CaptureConfig":
        """Checks for conflicting options."""
        if self.choose_stream and self.video:
            raise ValueError("Cannot use --choose-stream together with --video.")
        if self.retry_max_delay < self.retry_base_delay:
            raise ValueError("retry_max_delay cannot be smaller than retry_base_delay.")
        return self

    @classmethod
    def get_ini_keys(cls) -> set[str]:
        """Returns a set of all keys that are expected in the INI file."""
        internal_fields = {
            "source_url",
            "output_dir",
            "cookies",
            "video",
            "alternates",
            "choose_stream",
        }
        return {key for key in cls.model_fields if key not in internal_fields}
