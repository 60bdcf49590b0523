"""Settings: layered configuration for the wordmesh core.

Layers, later wins:

    1. dataclass defaults below
    2. a YAML file (``wordmesh.yaml`` or an explicit path)
    3. ``WORDMESH_<SECTION>_<KEY>`` environment variables

wordmesh.yaml example:

    database:
      path: data/wordmesh.db
      timeout_seconds: 5

    graph:
      backend: neo4j          # or "memory"
      uri: bolt://localhost:7687
      username: neo4j
      password: secret

    retry:
      attempts: 3
      initial_delay: 0.05

    limits:
      max_links_per_sense: 200

    logging:
      level: INFO

Environment override example: ``WORDMESH_GRAPH_BACKEND=memory``.
"""

from __future__ import annotations

import dataclasses
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from wordmesh.exceptions import ConfigError

logger = logging.getLogger(__name__)

ENV_PREFIX = "WORDMESH_"
DEFAULT_CONFIG_FILENAME = "wordmesh.yaml"

GRAPH_BACKENDS = ("memory", "neo4j")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class DatabaseConfig:
    path: str = "wordmesh.db"
    timeout_seconds: float = 5.0


@dataclass
class GraphConfig:
    backend: str = "memory"
    uri: str = "bolt://localhost:7687"
    username: str = "neo4j"
    password: str = ""
    database: str = "neo4j"
    timeout_seconds: float = 5.0


@dataclass
class RetryConfig:
    """Backoff for transient store failures inside the coordinator."""

    attempts: int = 3
    initial_delay: float = 0.05
    max_delay: float = 1.0


@dataclass
class LimitsConfig:
    """Soft caps on links per endpoint; 0 disables the check."""

    max_links_per_word: int = 200
    max_links_per_sense: int = 200


@dataclass
class LoggingConfig:
    level: str = "INFO"


@dataclass
class Settings:
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    graph: GraphConfig = field(default_factory=GraphConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def load(
        cls,
        path: str | Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> Settings:
        """Build settings from defaults, an optional YAML file and env vars.

        With no *path*, ``wordmesh.yaml`` in the working directory is used
        when present. An explicit *path* that does not exist is an error.
        """
        settings = cls()
        if path is not None:
            config_path = Path(path)
            if not config_path.exists():
                raise ConfigError(f"Config file not found: {config_path}")
        else:
            config_path = Path(DEFAULT_CONFIG_FILENAME)

        if config_path.exists():
            settings._apply(_load_yaml(config_path), source=str(config_path))
        settings._apply(_env_overrides(os.environ if env is None else env), source="environment")
        settings.validate()
        return settings

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Settings:
        settings = cls()
        settings._apply(data, source="mapping")
        settings.validate()
        return settings

    def _apply(self, data: Mapping[str, Any], source: str) -> None:
        sections = {f.name for f in dataclasses.fields(self)}
        for section_name, values in data.items():
            if section_name not in sections:
                raise ConfigError(f"Unknown config section {section_name!r} in {source}")
            if not isinstance(values, Mapping):
                raise ConfigError(f"Config section {section_name!r} must be a mapping ({source})")
            section = getattr(self, section_name)
            types = {f.name: f.type for f in dataclasses.fields(section)}
            for key, raw in values.items():
                if key not in types:
                    raise ConfigError(
                        f"Unknown config key {section_name}.{key} in {source}"
                    )
                setattr(section, key, _coerce(raw, types[key], f"{section_name}.{key}"))

    def validate(self) -> None:
        if self.graph.backend not in GRAPH_BACKENDS:
            raise ConfigError(
                f"graph.backend must be one of {', '.join(GRAPH_BACKENDS)}, "
                f"got {self.graph.backend!r}"
            )
        if self.retry.attempts < 1:
            raise ConfigError("retry.attempts must be at least 1")
        if self.retry.initial_delay < 0 or self.retry.max_delay < 0:
            raise ConfigError("retry delays cannot be negative")
        if self.database.timeout_seconds <= 0 or self.graph.timeout_seconds <= 0:
            raise ConfigError("timeouts must be positive")
        if self.limits.max_links_per_word < 0 or self.limits.max_links_per_sense < 0:
            raise ConfigError("link limits cannot be negative")
        self.logging.level = self.logging.level.upper()
        if self.logging.level not in LOG_LEVELS:
            raise ConfigError(f"Invalid logging.level: {self.logging.level!r}")


def _load_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config root must be a mapping: {path}")
    return data


def _env_overrides(env: Mapping[str, str]) -> dict[str, dict[str, str]]:
    """Group ``WORDMESH_SECTION_KEY`` variables by section."""
    sections = {f.name for f in dataclasses.fields(Settings)}
    overrides: dict[str, dict[str, str]] = {}
    for name, value in env.items():
        if not name.startswith(ENV_PREFIX):
            continue
        section, _, key = name[len(ENV_PREFIX):].lower().partition("_")
        if section not in sections or not key:
            logger.debug(f"Ignoring unrecognized environment variable {name}")
            continue
        overrides.setdefault(section, {})[key] = value
    return overrides


def _coerce(value: Any, type_name: Any, name: str) -> Any:
    """Convert *value* to the declared field type (annotations are strings)."""
    type_name = getattr(type_name, "__name__", type_name)
    try:
        if type_name == "int":
            if isinstance(value, bool):
                raise ValueError(value)
            return int(value)
        if type_name == "float":
            if isinstance(value, bool):
                raise ValueError(value)
            return float(value)
        if type_name == "str":
            if isinstance(value, (dict, list)):
                raise ValueError(value)
            return str(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid value for {name}: {value!r}") from None
    return value


def configure_logging(settings: Settings) -> None:
    """Apply ``logging.level`` to the root logger."""
    logging.basicConfig(
        level=settings.logging.level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
