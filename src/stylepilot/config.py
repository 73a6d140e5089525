from __future__ import annotations

import os
from dataclasses import dataclass, fields


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    return float(value) if value else default


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    return int(value) if value else default


@dataclass(frozen=True)
class PilotConfig:
    db_path: str = "stylepilot.db"
    llm_provider: str = "gemini"
    llm_model: str = ""  # empty means the provider default
    class_prefix: str = "portal-"
    max_iterations: int = 3
    quality_threshold: float | None = None
    stall_ratio: float | None = None
    max_attempts: int = 3
    retry_delay: float = 2.0
    request_timeout: float = 120.0
    snapshot_timeout: float = 10.0
    apply_timeout: float = 10.0
    capture_timeout: float = 15.0
    settle_delay: float = 1.0
    host: str = "127.0.0.1"
    port: int = 5000

    def __post_init__(self) -> None:
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.quality_threshold is not None and self.quality_threshold < 0:
            raise ValueError("quality_threshold must not be negative")
        if self.stall_ratio is not None and not 0.0 <= self.stall_ratio <= 1.0:
            raise ValueError("stall_ratio must be between 0 and 1")
        if self.retry_delay < 0 or self.settle_delay < 0:
            raise ValueError("delays must not be negative")

    @classmethod
    def from_env(cls, **overrides) -> PilotConfig:
        """Build a config from ``STYLEPILOT_*`` variables; *overrides* win."""
        threshold = os.environ.get("STYLEPILOT_QUALITY_THRESHOLD")
        stall = os.environ.get("STYLEPILOT_STALL_RATIO")
        values = dict(
            db_path=os.environ.get("STYLEPILOT_DB", cls.db_path),
            llm_provider=os.environ.get("STYLEPILOT_PROVIDER", cls.llm_provider),
            llm_model=os.environ.get("STYLEPILOT_MODEL", cls.llm_model),
            class_prefix=os.environ.get("STYLEPILOT_CLASS_PREFIX", cls.class_prefix),
            max_iterations=_env_int("STYLEPILOT_MAX_ITERATIONS", cls.max_iterations),
            quality_threshold=float(threshold) if threshold else None,
            stall_ratio=float(stall) if stall else None,
            max_attempts=_env_int("STYLEPILOT_MAX_ATTEMPTS", cls.max_attempts),
            retry_delay=_env_float("STYLEPILOT_RETRY_DELAY", cls.retry_delay),
            request_timeout=_env_float("STYLEPILOT_REQUEST_TIMEOUT", cls.request_timeout),
            snapshot_timeout=_env_float("STYLEPILOT_SNAPSHOT_TIMEOUT", cls.snapshot_timeout),
            apply_timeout=_env_float("STYLEPILOT_APPLY_TIMEOUT", cls.apply_timeout),
            capture_timeout=_env_float("STYLEPILOT_CAPTURE_TIMEOUT", cls.capture_timeout),
            settle_delay=_env_float("STYLEPILOT_SETTLE_DELAY", cls.settle_delay),
            host=os.environ.get("STYLEPILOT_HOST", cls.host),
            port=_env_int("STYLEPILOT_PORT", cls.port),
        )
        known = {f.name for f in fields(cls)}
        values.update({k: v for k, v in overrides.items() if k in known and v is not None})
        return cls(**values)
