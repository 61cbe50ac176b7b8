"""
Engine configuration.
Loaded from a JSON file (camelCase or snake_case keys) or built from defaults.
"""

import json
import re
from dataclasses import dataclass, field, fields, asdict
from typing import List, Dict, Optional, Any

from jsmonitor.core.errors import ConfigError


def _snake_case(key: str) -> str:
    return re.sub(r'(?<!^)(?=[A-Z])', '_', key).lower()


@dataclass
class Config:
    data_dir: str = "data"
    similarity_threshold: float = 0.7
    max_lines_per_section: int = 10
    custom_endpoint_patterns: List[Dict[str, str]] = field(default_factory=list)
    max_endpoints_per_domain: int = 1000
    max_files_per_domain: int = 100
    max_diff_files: int = 50
    save_diff: bool = True
    max_file_size: int = 5 * 1024 * 1024
    max_concurrency: int = 10
    notification_min_interval: float = 300.0
    notification_timeout: float = 10.0
    webhook_url: Optional[str] = None
    verbose: bool = False
    include_domains: List[str] = field(default_factory=list)
    exclude_domains: List[str] = field(default_factory=list)
    include_urls: List[str] = field(default_factory=list)
    exclude_urls: List[str] = field(default_factory=list)

    def __post_init__(self):
        self.validate()

    def validate(self):
        if not 0.0 <= float(self.similarity_threshold) <= 1.0:
            raise ConfigError(f"similarity_threshold must be within 0..1, got {self.similarity_threshold}")
        if int(self.max_lines_per_section) < 1:
            raise ConfigError("max_lines_per_section must be at least 1")
        for name in ("max_endpoints_per_domain", "max_files_per_domain", "max_diff_files",
                     "max_file_size", "max_concurrency"):
            if int(getattr(self, name)) < 1:
                raise ConfigError(f"{name} must be a positive integer")
        if self.notification_min_interval < 0 or self.notification_timeout <= 0:
            raise ConfigError("notification intervals must be positive")
        for entry in self.custom_endpoint_patterns:
            if not isinstance(entry, dict) or not entry.get("pattern"):
                raise ConfigError(f"custom endpoint pattern needs a 'pattern' key: {entry!r}")

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in data.items():
            name = _snake_case(key)
            if name in known:
                kwargs[name] = value
        return cls(**kwargs)

    @classmethod
    def from_file(cls, path: str) -> "Config":
        try:
            with open(path, 'r') as f:
                data = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            raise ConfigError(f"Cannot load config {path}: {e}")
        if not isinstance(data, dict):
            raise ConfigError(f"Config {path} must contain a JSON object")
        return cls.from_dict(data)


def get_default_config() -> Config:
    return Config()
