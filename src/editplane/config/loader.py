"""Resolve an ``EditPlaneConfig`` from layered sources.

Layers, lowest to highest precedence:

    defaults -> global YAML -> repo YAML -> EDITPLANE__* env -> call overrides

Each layer is reduced to a plain partial mapping and the layers are deep
merged before one final validation, so a repo file that sets
``apply.temp_attempts`` leaves a global ``apply.allow_legacy`` in place. Only
the CLI calls ``load_config``; the engine receives the resulting values as
``ParseOptions``/``ApplyOptions`` and never looks at the environment itself.
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from editplane.config.constants import CONFIG_DIR_NAME, ENV_PREFIX
from editplane.config.models import ApplyConfig, EditPlaneConfig, LoggingConfig
from editplane.core.errors import ConfigError

GLOBAL_CONFIG_PATH = Path("~/.config/editplane/config.yaml").expanduser()

Layer = dict[str, Any]


def _load_yaml(path: Path) -> Layer:
    """One YAML layer; a missing file is an empty layer."""
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except OSError as e:
        raise ConfigError.parse_error(str(path), e.strerror or str(e)) from e
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigError.parse_error(str(path), str(e)) from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError.parse_error(str(path), "top-level YAML value must be a mapping")
    return data


def _deep_merge(base: Layer, override: Layer) -> Layer:
    """Merge ``override`` onto a copy of ``base``; nested mappings merge key by key."""
    merged = dict(base)
    for key, value in override.items():
        below = merged.get(key)
        merged[key] = (
            _deep_merge(below, value)
            if isinstance(below, dict) and isinstance(value, dict)
            else value
        )
    return merged


class _EnvLayer(BaseSettings):
    """Reads ``EDITPLANE__SECTION__KEY`` variables and nothing else."""

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    apply: ApplyConfig = Field(default_factory=ApplyConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        file_secret_settings: PydanticBaseSettingsSource,  # noqa: ARG003
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (env_settings,)


def _env_layer() -> Layer:
    """Only the keys actually present in the environment."""
    return _EnvLayer().model_dump(exclude_unset=True)


def _invalid(error: ValidationError) -> ConfigError:
    first = error.errors()[0]
    field = ".".join(str(part) for part in first["loc"])
    return ConfigError.invalid_value(field, first.get("input"), first["msg"])


def config_layers(repo_root: Path) -> list[Layer]:
    """File and environment layers in precedence order, lowest first."""
    repo_file = repo_root / CONFIG_DIR_NAME / "config.yaml"
    try:
        env = _env_layer()
    except ValidationError as e:
        raise _invalid(e) from e
    return [_load_yaml(GLOBAL_CONFIG_PATH), _load_yaml(repo_file), env]


def load_config(repo_root: Path | None = None, **overrides: Any) -> EditPlaneConfig:
    """Load the effective configuration for ``repo_root`` (default: cwd).

    ``overrides`` are section mappings such as ``logging={"level": "DEBUG"}``
    and win over every other layer.

    Raises:
        ConfigError: A YAML file is unreadable or malformed, or the merged
            values fail validation.
    """
    merged: Layer = {}
    for layer in config_layers(repo_root or Path.cwd()):
        merged = _deep_merge(merged, layer)
    merged = _deep_merge(merged, overrides)
    try:
        return EditPlaneConfig.model_validate(merged)
    except ValidationError as e:
        raise _invalid(e) from e
