"""
Configuration management and loading.

Handles gateway settings read from a YAML file.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ..core.tasks import TaskDefaults
from ..sdk.openai_client import DEFAULT_BASE_URL
from ..storage.db import DEFAULT_DB_PATH

LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True)
class ProviderConfig:
    """Connection and default generation parameters for the provider."""
    base_url: str = DEFAULT_BASE_URL
    api_key: Optional[str] = None
    model: str = "gpt-3.5-turbo"
    vision_model: str = "gpt-4o"
    image_model: str = "dall-e-3"
    max_tokens: int = 1000
    temperature: float = 0.7
    timeout_seconds: float = 30.0

    def __post_init__(self):
        """Validate provider values."""
        if not self.base_url.strip():
            raise ValueError("base_url cannot be empty")
        if self.max_tokens <= 0:
            raise ValueError("max_tokens must be > 0")
        if not 0.0 <= self.temperature <= 2.0:
            raise ValueError("temperature must be between 0.0 and 2.0")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")

    def task_defaults(self) -> TaskDefaults:
        return TaskDefaults(
            model=self.model,
            vision_model=self.vision_model,
            image_model=self.image_model,
            max_tokens=self.max_tokens,
            temperature=self.temperature
        )


@dataclass(frozen=True)
class RateLimitConfig:
    """Fixed-window admission limits."""
    enabled: bool = True
    requests_per_window: int = 60
    window_seconds: float = 60.0
    stale_after_seconds: Optional[float] = None

    def __post_init__(self):
        """Validate rate limit values."""
        if self.requests_per_window <= 0:
            raise ValueError("requests_per_window must be > 0")
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        if (self.stale_after_seconds is not None and
                self.stale_after_seconds < 2 * self.window_seconds):
            raise ValueError("stale_after_seconds must be at least twice window_seconds")


@dataclass(frozen=True)
class StorageConfig:
    """Database location."""
    db_path: str = DEFAULT_DB_PATH

    def __post_init__(self):
        if not self.db_path.strip():
            raise ValueError("db_path cannot be empty")


@dataclass(frozen=True)
class LoggingConfig:
    """Log level and output format."""
    level: str = "INFO"
    json: bool = False

    def __post_init__(self):
        if self.level.upper() not in LOG_LEVELS:
            raise ValueError(f"level must be one of: {sorted(LOG_LEVELS)}")


@dataclass(frozen=True)
class GatewayConfig:
    """Complete gateway configuration."""
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def default(cls) -> "GatewayConfig":
        """Configuration with every section at its defaults."""
        return cls()


# Allowed keys and their accepted types, per section
_SECTION_SCHEMAS: Dict[str, Dict[str, tuple]] = {
    'provider': {
        'base_url': (str,),
        'api_key': (str,),
        'model': (str,),
        'vision_model': (str,),
        'image_model': (str,),
        'max_tokens': (int,),
        'temperature': (int, float),
        'timeout_seconds': (int, float),
    },
    'rate_limit': {
        'enabled': (bool,),
        'requests_per_window': (int,),
        'window_seconds': (int, float),
        'stale_after_seconds': (int, float),
    },
    'storage': {
        'db_path': (str,),
    },
    'logging': {
        'level': (str,),
        'json': (bool,),
    },
}

_SECTION_TYPES = {
    'provider': ProviderConfig,
    'rate_limit': RateLimitConfig,
    'storage': StorageConfig,
    'logging': LoggingConfig,
}


def load_gateway_config(path: str) -> GatewayConfig:
    """Load and validate gateway configuration from YAML file.

    Every section is optional; omitted sections and keys take their
    defaults. Unknown keys and wrongly typed values are rejected.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated GatewayConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Gateway config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if raw_config is None:
        return GatewayConfig.default()
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    unknown_keys = set(raw_config.keys()) - set(_SECTION_SCHEMAS)
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    sections = {}
    for name, data in raw_config.items():
        sections[name] = _parse_section(name, data)

    return GatewayConfig(**sections)


def _parse_section(name: str, data: Any):
    """Parse and validate one configuration section.

    Args:
        name: Section name
        data: Raw section data

    Returns:
        The section's config object

    Raises:
        ValueError: If the section is invalid
    """
    if data is None:
        return _SECTION_TYPES[name]()
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")

    schema = _SECTION_SCHEMAS[name]
    unknown_keys = set(data.keys()) - set(schema)
    if unknown_keys:
        raise ValueError(f"Unknown keys in {name}: {unknown_keys}")

    for key, value in data.items():
        expected = schema[key]
        # bool is an int subclass; only accept it where bool is expected
        if isinstance(value, bool) and bool not in expected:
            raise ValueError(f"'{key}' in {name} has invalid type bool")
        if not isinstance(value, expected):
            raise ValueError(f"'{key}' in {name} has invalid type {type(value).__name__}")

    return _SECTION_TYPES[name](**data)
