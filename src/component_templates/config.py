"""
Registry configuration.

Provides:
- RegistryConfig: settings of a template registry instance
- YAML load/save with environment overrides
- Configuration validation
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from component_templates.errors import ConfigValidationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "TEMPLATES_"

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class RegistryConfig:
    """Settings of a template registry."""
    # Prefix of IRIs given to newly created templates
    domain_name: str = "http://localhost:8080"
    storage_path: str = "./data/templates"
    bundled_path: Optional[str] = None
    log_level: str = "INFO"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "domain_name": self.domain_name,
            "storage_path": self.storage_path,
            "bundled_path": self.bundled_path,
            "log_level": self.log_level,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RegistryConfig":
        return cls(
            domain_name=data.get("domain_name", "http://localhost:8080"),
            storage_path=str(data.get("storage_path", "./data/templates")),
            bundled_path=data.get("bundled_path"),
            log_level=str(data.get("log_level", "INFO")).upper(),
        )

    def apply_env(self, environ: Optional[Dict[str, str]] = None) -> "RegistryConfig":
        """Override fields from TEMPLATES_* environment variables."""
        environ = os.environ if environ is None else environ
        for name in ("domain_name", "storage_path", "bundled_path", "log_level"):
            value = environ.get(ENV_PREFIX + name.upper())
            if value:
                logger.debug(f"Using {ENV_PREFIX + name.upper()} from environment")
                setattr(self, name, value.upper() if name == "log_level" else value)
        return self

    def save(self, path: str | Path) -> None:
        """Save configuration to a YAML file."""
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)

    @classmethod
    def load(
        cls,
        path: str | Path,
        environ: Optional[Dict[str, str]] = None,
    ) -> "RegistryConfig":
        """
        Load configuration from a YAML file.

        Missing files yield the defaults. Environment overrides are applied
        and the result is validated.
        """
        path = Path(path)
        data: Dict[str, Any] = {}
        if path.exists():
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise ConfigValidationError(f"Expected a mapping in {path}")
        config = cls.from_dict(data).apply_env(environ)
        ConfigValidator.validate_or_raise(config)
        return config


class ConfigValidator:
    """Validates registry configuration."""

    @staticmethod
    def validate(config: RegistryConfig) -> List[str]:
        """
        Validate configuration.

        Returns list of error messages (empty if valid).
        """
        errors = []

        if not config.domain_name:
            errors.append("domain_name must not be empty")
        elif config.domain_name.endswith("/"):
            errors.append("domain_name must not end with '/'")
        elif "://" not in config.domain_name:
            errors.append(f"domain_name is not an absolute IRI: {config.domain_name}")

        if not config.storage_path:
            errors.append("storage_path must not be empty")

        if config.log_level not in VALID_LOG_LEVELS:
            errors.append(f"Invalid log_level: {config.log_level}")

        return errors

    @staticmethod
    def validate_or_raise(config: RegistryConfig) -> None:
        """Validate configuration, raising on errors."""
        errors = ConfigValidator.validate(config)
        if errors:
            raise ConfigValidationError("; ".join(errors))
