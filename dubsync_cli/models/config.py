"""
Pydantic model for application configuration.
Provides robust validation for all settings.
"""

import os
import re

from pydantic import BaseModel, Field, field_validator, model_validator

_SPEED_LIMIT_PATTERN = re.compile(
    r"^\s*(\d+(?:\.\d+)?)\s*(B|KB|MB)?\s*$", re.IGNORECASE
)
_SPEED_UNITS = {"B": 1, "KB": 1024, "MB": 1024 * 1024}


def parse_speed_limit(value: str | int | float | None) -> int | None:
    """
    Parses a bandwidth cap such as '500KB' or '10MB' into bytes per second.

    Plain numbers are taken as bytes per second. Empty values and zero mean
    "unlimited" and return None.
    """
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return int(value) if value > 0 else None
    if not value.strip():
        return None
    match = _SPEED_LIMIT_PATTERN.match(value)
    if not match:
        raise ValueError(
            f"Invalid speed limit '{value}'. Use <number>[B|KB|MB], e.g. 500KB or 10MB."
        )
    amount = float(match.group(1))
    unit = (match.group(2) or "B").upper()
    limit = int(amount * _SPEED_UNITS[unit])
    return limit if limit > 0 else None


def default_worker_count() -> int:
    """Default concurrency tied to the available parallelism."""
    return max(1, min(32, os.cpu_count() or 4))


class SyncConfig(BaseModel):
    """A validated configuration model for the application."""

    # Download Settings
    max_workers: int = Field(default_factory=default_worker_count)
    speed_limit: int | None = None
    fetch_attempts: int = 3
    retry_base_delay: float = 1.5
    retry_max_delay: float = 30.0
    segment_retries: int = 2
    request_timeout: float = 90.0
    user_agent: str = ""
    proxy: str = ""
    resume: bool = False

    # Alignment Settings
    max_offset_seconds: float = 120.0
    similarity_threshold_bits: int = 10
    min_overlap_frames: int = 50
    confidence_threshold: float = 0.5
    reference_locale: str = ""

    # External Tools
    mkvmerge_path: str = "mkvmerge"
    ffmpeg_path: str = "ffmpeg"

    # Internal fields not loaded from INI file
    config_path: str = Field("", repr=False)

    class Config:
        """Pydantic model configuration."""

        validate_assignment = True
        str_strip_whitespace = True

    @field_validator("speed_limit", mode="before")
    @classmethod
    def validate_speed_limit(cls, v):
        """Accepts byte counts as well as '<number>[B|KB|MB]' strings."""
        return parse_speed_limit(v)

    @field_validator("max_workers")
    @classmethod
    def validate_workers(cls, v: int) -> int:
        """Ensures a reasonable number of workers."""
        if v < 1 or v > 32:
            raise ValueError("Max workers must be between 1 and 32.")
        return v

    @field_validator("fetch_attempts")
    @classmethod
    def validate_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("At least one fetch attempt is required.")
        return v

    @field_validator("segment_retries")
    @classmethod
    def validate_segment_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Segment retries cannot be negative.")
        return v

    @field_validator("similarity_threshold_bits")
    @classmethod
    def validate_similarity(cls, v: int) -> int:
        """Hash frames are 32 bits wide."""
        if not 0 <= v <= 32:
            raise ValueError("Similarity threshold must be between 0 and 32 bits.")
        return v

    @field_validator("confidence_threshold")
    @classmethod
    def validate_confidence(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("Confidence threshold must be within [0, 1].")
        return v

    @field_validator("proxy")
    @classmethod
    def validate_proxy(cls, v: str) -> str:
        if v and not v.startswith(("http://", "https://")):
            raise ValueError("Proxy must be an http:// or https:// URL.")
        return v

    @model_validator(mode="after")
    def validate_timing(self) -> "SyncConfig":
        """Checks that retry and search windows are consistent."""
        if self.retry_base_delay < 0 or self.retry_max_delay < self.retry_base_delay:
            raise ValueError(
                "Retry delays must satisfy 0 <= retry_base_delay <= retry_max_delay."
            )
        if self.max_offset_seconds <= 0:
            raise ValueError("max_offset_seconds must be positive.")
        if self.request_timeout <= 0:
            raise ValueError("request_timeout must be positive.")
        return self

    @classmethod
    def get_ini_keys(cls) -> set[str]:
        """Returns a set of all keys that are expected in the INI file."""
        internal_fields = {"config_path"}
        return {key for key in cls.model_fields if key not in internal_fields}
