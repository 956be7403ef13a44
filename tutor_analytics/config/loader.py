"""
Configuration management and loading.

Loads engine settings (fan-out width, limits, deadlines, scoring weights,
FAQ thresholds) from YAML with strict validation.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict

import yaml


@dataclass(frozen=True)
class EventStoreConfig:
    """Fan-out and paging limits for event-store queries."""
    fan_out_width: int = 8
    page_size: int = 500
    partition_limit: int = 10000

    def __post_init__(self):
        """Validate limits are positive."""
        if self.fan_out_width < 1:
            raise ValueError("fan_out_width must be >= 1")
        if self.page_size < 1:
            raise ValueError("page_size must be >= 1")
        if self.partition_limit < 1:
            raise ValueError("partition_limit must be >= 1")


@dataclass(frozen=True)
class RequestConfig:
    """Per-request defaults."""
    timeout_seconds: float = 30.0
    default_window_days: int = 30

    def __post_init__(self):
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if self.default_window_days < 1:
            raise ValueError("default_window_days must be >= 1")


@dataclass(frozen=True)
class EngagementConfig:
    """Weights of the engagement score terms."""
    message_rate_weight: float = 0.6
    response_time_weight: float = 0.4

    def __post_init__(self):
        """Validate weights are non-negative and sum to 1."""
        if self.message_rate_weight < 0 or self.response_time_weight < 0:
            raise ValueError("engagement weights cannot be negative")
        if abs(self.message_rate_weight + self.response_time_weight - 1.0) > 1e-9:
            raise ValueError("engagement weights must sum to 1.0")


@dataclass(frozen=True)
class FaqConfig:
    similarity_threshold: float = 0.6
    min_occurrences: int = 1
    max_results: int = 20

    def __post_init__(self):
        if not 0 < self.similarity_threshold <= 1:
            raise ValueError("similarity_threshold must be in (0, 1]")
        if self.min_occurrences < 1:
            raise ValueError("min_occurrences must be >= 1")
        if self.max_results < 1:
            raise ValueError("max_results must be >= 1")


@dataclass(frozen=True)
class EngineConfig:
    """Complete analytics engine configuration."""
    event_store: EventStoreConfig = field(default_factory=EventStoreConfig)
    request: RequestConfig = field(default_factory=RequestConfig)
    engagement: EngagementConfig = field(default_factory=EngagementConfig)
    faq: FaqConfig = field(default_factory=FaqConfig)

    @classmethod
    def default(cls) -> "EngineConfig":
        return cls()


# Allowed keys and expected types per section
_SECTIONS = {
    "event_store": (EventStoreConfig, {"fan_out_width": int, "page_size": int, "partition_limit": int}),
    "request": (RequestConfig, {"timeout_seconds": float, "default_window_days": int}),
    "engagement": (EngagementConfig, {"message_rate_weight": float, "response_time_weight": float}),
    "faq": (FaqConfig, {"similarity_threshold": float, "min_occurrences": int, "max_results": int}),
}


def load_engine_config(path: str) -> EngineConfig:
    """Load and validate engine configuration from a YAML file.

    Every section is optional; omitted keys keep their defaults. Unknown
    keys are rejected so that typos never silently fall back to defaults.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated EngineConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Engine config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if raw_config is None:
        return EngineConfig.default()
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration root must be a dictionary")

    unknown_keys = set(raw_config.keys()) - set(_SECTIONS)
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    sections = {}
    for name, (section_cls, schema) in _SECTIONS.items():
        data = raw_config.get(name) or {}
        if not isinstance(data, dict):
            raise ValueError(f"'{name}' must be a dictionary")
        sections[name] = section_cls(**_parse_section(data, schema, name))

    return EngineConfig(**sections)


def _parse_section(data: Dict[str, Any], schema: Dict[str, type], path: str) -> Dict[str, Any]:
    """Validate key names and value types of one section.

    Args:
        data: Section data
        schema: Allowed keys mapped to their expected type
        path: Section name for error messages

    Returns:
        Keyword arguments for the section dataclass

    Raises:
        ValueError: If a key is unknown or a value has the wrong type
    """
    unknown_keys = set(data.keys()) - set(schema)
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")

    parsed = {}
    for key, value in data.items():
        expected = schema[key]
        # bool is an int subclass; reject it explicitly
        if isinstance(value, bool):
            raise ValueError(f"'{key}' in {path} must be a number")
        if expected is int and not isinstance(value, int):
            raise ValueError(f"'{key}' in {path} must be an integer")
        if expected is float and not isinstance(value, (int, float)):
            raise ValueError(f"'{key}' in {path} must be a number")
        parsed[key] = expected(value)
    return parsed
