"""Config module exports."""

from editplane.config.loader import load_config
from editplane.config.models import (
    ApplyConfig,
    EditPlaneConfig,
    LoggingConfig,
)

__all__ = [
    "load_config",
    "ApplyConfig",
    "EditPlaneConfig",
    "LoggingConfig",
]
