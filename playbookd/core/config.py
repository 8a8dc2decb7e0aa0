"""Configuration loader for playbookd.

Loads from configs/default.toml and overrides with environment variables.
"""

import os
import re
import tomllib
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from .errors import ConfigError

EMBEDDING_PROVIDERS = ("noop", "ollama", "openai", "google")
SEARCH_MODES = ("hybrid", "bm25", "vector")

_DURATION_RE = re.compile(r"^(\d+)([smhdw])$")
_DURATION_UNITS = {"s": "seconds", "m": "minutes", "h": "hours", "d": "days", "w": "weeks"}


@dataclass
class DataConfig:
    dir: str


@dataclass
class EmbeddingConfig:
    provider: str
    model: str
    url: str
    api_key: str
    dimensions: int
    timeout: float


@dataclass
class ManagerSettings:
    auto_reflect: bool
    max_age: str
    min_confidence: float
    deprecation_threshold: float


@dataclass
class SearchConfig:
    limit: int
    mode: str
    confidence_weight: float


@dataclass
class LoggingConfig:
    level: str
    format: str


@dataclass
class PlaybookdConfig:
    data: DataConfig
    embedding: EmbeddingConfig
    manager: ManagerSettings
    search: SearchConfig
    logging: LoggingConfig


def parse_duration(value: str) -> timedelta | None:
    """Parse ``Nd``/``Nh``/``Nm``/``Ns``/``Nw`` into a timedelta.

    An empty string returns None so callers can fall back to their default.

    Raises:
        ConfigError: If the string is not in a supported format
    """
    value = value.strip()
    if not value:
        return None
    match = _DURATION_RE.match(value)
    if not match:
        raise ConfigError(f'unsupported duration {value!r} (expected e.g. "90d", "12h")')
    amount, unit = match.groups()
    return timedelta(**{_DURATION_UNITS[unit]: int(amount)})


def _as_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).lower() in ("true", "1", "yes")


def _validate_config(config: PlaybookdConfig) -> None:
    """Validate configuration values.

    Raises:
        ConfigError: If validation fails
    """
    if not config.data.dir:
        raise ConfigError("data.dir must not be empty")

    if config.embedding.provider not in EMBEDDING_PROVIDERS:
        raise ConfigError(
            f"unknown embedding provider: {config.embedding.provider!r} "
            f"(supported: {', '.join(EMBEDDING_PROVIDERS)})"
        )
    if config.embedding.dimensions < 0:
        raise ConfigError(f"embedding.dimensions must be >= 0, got {config.embedding.dimensions}")
    if config.embedding.timeout <= 0:
        raise ConfigError(f"embedding.timeout must be > 0, got {config.embedding.timeout}")

    parse_duration(config.manager.max_age)
    if not 0.0 <= config.manager.min_confidence <= 1.0:
        val = config.manager.min_confidence
        raise ConfigError(f"manager.min_confidence must be in [0.0, 1.0], got {val}")
    if not 0.0 <= config.manager.deprecation_threshold <= 1.0:
        val = config.manager.deprecation_threshold
        raise ConfigError(f"manager.deprecation_threshold must be in [0.0, 1.0], got {val}")

    if config.search.limit < 1:
        raise ConfigError(f"search.limit must be >= 1, got {config.search.limit}")
    if config.search.mode not in SEARCH_MODES:
        raise ConfigError(f"search.mode must be one of {SEARCH_MODES}, got {config.search.mode}")
    if not 0.0 <= config.search.confidence_weight <= 1.0:
        val = config.search.confidence_weight
        raise ConfigError(f"search.confidence_weight must be in [0.0, 1.0], got {val}")

    valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    if config.logging.level.upper() not in valid_levels:
        raise ConfigError(f"logging.level must be one of {valid_levels}, got {config.logging.level}")
    if config.logging.format not in ("json", "text"):
        raise ConfigError(f"logging.format must be 'json' or 'text', got {config.logging.format}")


def load_config(config_path: Path | None = None) -> PlaybookdConfig:
    """Load configuration from TOML file and override with env vars.

    Args:
        config_path: Path to TOML config file. Defaults to configs/default.toml

    Returns:
        PlaybookdConfig instance with merged configuration

    Raises:
        ConfigError: If the file cannot be read or validation fails
    """
    if config_path is None:
        config_path = Path(__file__).parent.parent.parent / "configs" / "default.toml"

    try:
        with open(config_path, "rb") as f:
            config_dict = tomllib.load(f)
    except OSError as e:
        raise ConfigError(f"read config file {config_path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"parse config {config_path}: {e}") from e

    data = config_dict.get("data", {})
    embedding = config_dict.get("embedding", {})
    manager = config_dict.get("manager", {})
    search = config_dict.get("search", {})
    logging_dict = config_dict.get("logging", {})

    try:
        config = PlaybookdConfig(
            data=DataConfig(dir=os.getenv("PLAYBOOKD_DATA_DIR", data.get("dir", "./playbooks"))),
            embedding=EmbeddingConfig(
                provider=os.getenv("PLAYBOOKD_EMBED_PROVIDER", embedding.get("provider", "noop")),
                model=os.getenv("PLAYBOOKD_EMBED_MODEL", embedding.get("model", "")),
                url=os.getenv("PLAYBOOKD_EMBED_URL", embedding.get("url", "")),
                api_key=os.path.expandvars(
                    os.getenv("PLAYBOOKD_EMBED_API_KEY", embedding.get("api_key", ""))
                ),
                dimensions=int(
                    os.getenv("PLAYBOOKD_EMBED_DIMENSIONS", embedding.get("dimensions", 0))
                ),
                timeout=float(os.getenv("PLAYBOOKD_EMBED_TIMEOUT", embedding.get("timeout", 30.0))),
            ),
            manager=ManagerSettings(
                auto_reflect=_as_bool(
                    os.getenv("PLAYBOOKD_AUTO_REFLECT", manager.get("auto_reflect", False))
                ),
                max_age=os.getenv("PLAYBOOKD_MAX_AGE", manager.get("max_age", "90d")),
                min_confidence=float(
                    os.getenv("PLAYBOOKD_MIN_CONFIDENCE", manager.get("min_confidence", 0.3))
                ),
                deprecation_threshold=float(
                    os.getenv(
                        "PLAYBOOKD_DEPRECATION_THRESHOLD",
                        manager.get("deprecation_threshold", 0.3),
                    )
                ),
            ),
            search=SearchConfig(
                limit=int(os.getenv("PLAYBOOKD_SEARCH_LIMIT", search.get("limit", 5))),
                mode=os.getenv("PLAYBOOKD_SEARCH_MODE", search.get("mode", "hybrid")),
                confidence_weight=float(
                    os.getenv("PLAYBOOKD_CONFIDENCE_WEIGHT", search.get("confidence_weight", 0.0))
                ),
            ),
            logging=LoggingConfig(
                level=os.getenv("PLAYBOOKD_LOG_LEVEL", logging_dict.get("level", "INFO")),
                format=os.getenv("PLAYBOOKD_LOG_FORMAT", logging_dict.get("format", "text")),
            ),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid config value: {e}") from e

    _validate_config(config)

    return config
