"""Pydantic configuration models with env var support.

Configuration Hierarchy (highest to lowest precedence):
1. Direct kwargs to load_config()
2. Environment variables (EDITPLANE__SECTION__KEY)
3. Repo YAML (.editplane/config.yaml)
4. Global YAML (~/.config/editplane/config.yaml)
5. Built-in defaults (this file)

Environment Variable Format:
    EDITPLANE__<SECTION>__<KEY>=<VALUE>

Examples:
    EDITPLANE__LOGGING__LEVEL=DEBUG
    EDITPLANE__APPLY__ALLOW_LEGACY=true
    EDITPLANE__APPLY__EXPERIMENTAL=true
"""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class LogOutputConfig(BaseModel):
    """Single logging output configuration.

    Env vars: Not directly configurable via env (use YAML for multi-output).
    """

    format: Literal["json", "console"] = "console"
    destination: str = "stderr"  # stderr or absolute file path
    level: LogLevel | None = None  # Inherits from parent if None

    @field_validator("destination")
    @classmethod
    def validate_destination(cls, v: str) -> str:
        if v == "stdout":
            raise ValueError("stdout is reserved for JSON responses; log to stderr or a file")
        if v == "stderr":
            return v
        path = Path(v).expanduser()
        if not path.is_absolute():
            raise ValueError(f"File destination must be absolute path: {v}")
        return str(path)


class LoggingConfig(BaseModel):
    """Logging configuration.

    Env vars:
        EDITPLANE__LOGGING__LEVEL: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    level: LogLevel = Field(
        default="WARNING",
        description="Root log level. stdout carries JSON responses, so logs go to stderr.",
    )
    outputs: list[LogOutputConfig] = Field(default_factory=lambda: [LogOutputConfig()])


class ApplyConfig(BaseModel):
    """Apply engine configuration.

    Env vars:
        EDITPLANE__APPLY__ALLOW_LEGACY: Accept v1 flat operation fields
        EDITPLANE__APPLY__EXPERIMENTAL: Enable rollback rehearsal flags
        EDITPLANE__APPLY__TEMP_ATTEMPTS: Temp-file name attempts per write
    """

    allow_legacy: bool = Field(
        default=False,
        description="Accept operations carrying flat identity/kind/span_hint/expected_old_hash "
        "fields instead of a target object. Transitional only.",
    )
    experimental: bool = Field(
        default=False,
        description="Enable --inject-failure-after-writes for rollback rehearsal. "
        "RISK: deliberately aborts a commit midway.",
    )
    temp_attempts: int = Field(
        default=64,
        description="How many unique temp-file names to try before giving up on an atomic write.",
    )

    @field_validator("temp_attempts")
    @classmethod
    def validate_temp_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"temp_attempts must be >= 1, got {v}")
        return v


class EditPlaneConfig(BaseModel):
    """Root configuration for EditPlane.

    All settings can be configured via:
    1. Environment variables: EDITPLANE__SECTION__KEY
    2. YAML config files (repo or global)
    3. Direct kwargs to load_config()
    """

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    apply: ApplyConfig = Field(default_factory=ApplyConfig)
