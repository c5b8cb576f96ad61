"""
Registry Configuration - Centralized configuration management.

Provides:
1. Hierarchical configuration with defaults
2. Environment variable overrides (ASR_* prefix)
3. Config file loading (JSON/TOML/YAML)
4. Validation on load

Configuration Hierarchy (highest to lowest priority):
1. Environment variables
2. Config file
3. Default values

Example:
    config = RegistryConfig.load("registry.yaml")
    print(config.limits.max_agent_instances_per_service)

    # ASR_LIMITS_MAX_MULTISIGS=8 overrides limits.max_multisigs
"""

from __future__ import annotations

import json
import logging
import os
import tomllib
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .constants import (
    MAX_AGENT_IDS_PER_SERVICE,
    MAX_AGENT_INSTANCES_PER_SERVICE,
    MAX_MULTISIGS,
    MAX_NAME_LENGTH,
    MAX_SYMBOL_LENGTH,
    MAX_URI_LENGTH,
    REGISTRY_VERSION,
)
from .storage import RentSchedule

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Sections
# =============================================================================

@dataclass
class LimitsConfig:
    """Capacity bounds enforced by the registry."""
    max_agent_ids_per_service: int = MAX_AGENT_IDS_PER_SERVICE
    max_agent_instances_per_service: int = MAX_AGENT_INSTANCES_PER_SERVICE
    max_multisigs: int = MAX_MULTISIGS

    def __post_init__(self):
        if self.max_agent_ids_per_service <= 0:
            raise ValueError("max_agent_ids_per_service must be positive")
        if self.max_agent_instances_per_service <= 0:
            raise ValueError("max_agent_instances_per_service must be positive")
        if self.max_multisigs <= 0:
            raise ValueError("max_multisigs must be positive")


@dataclass
class RentConfig:
    """Minimum-balance schedule for allocated records."""
    lamports_per_byte_year: int = 3480
    exemption_threshold_years: int = 2
    storage_overhead: int = 128

    def schedule(self) -> RentSchedule:
        return RentSchedule(
            lamports_per_byte_year=self.lamports_per_byte_year,
            exemption_threshold_years=self.exemption_threshold_years,
            storage_overhead=self.storage_overhead,
        )


@dataclass
class RegistrySection:
    """Registry metadata used by bootstrap."""
    name: str = "Service Registry"
    symbol: str = "SERVICE"
    base_uri: str = "https://registry.example/ipfs/"
    version: str = REGISTRY_VERSION


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    format: str = "text"  # "json" or "text"
    file: Optional[str] = None
    redact: bool = True


# =============================================================================
# Main Configuration
# =============================================================================

@dataclass
class RegistryConfig:
    """Main registry configuration."""
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    rent: RentConfig = field(default_factory=RentConfig)
    registry: RegistrySection = field(default_factory=RegistrySection)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def load(
        cls,
        config_file: Optional[Union[str, Path]] = None,
        env_prefix: str = "ASR",
    ) -> "RegistryConfig":
        """
        Load configuration with hierarchy: env vars > config file > defaults.

        Args:
            config_file: Path to config file (JSON, TOML or YAML)
            env_prefix: Prefix for environment variables

        Returns:
            Loaded and validated configuration
        """
        config_dict: Dict[str, Any] = {}

        if config_file:
            config_dict = cls._load_file(Path(config_file))

        config_dict = cls._apply_env_overrides(config_dict, env_prefix)

        config = cls._from_dict(config_dict)
        config.validate()
        return config

    @classmethod
    def _load_file(cls, path: Path) -> Dict[str, Any]:
        """Load configuration from file."""
        if not path.exists():
            logger.warning(f"Config file not found: {path}")
            return {}

        content = path.read_text()

        if path.suffix == ".json":
            return json.loads(content)
        elif path.suffix == ".toml":
            return tomllib.loads(content)
        elif path.suffix in {".yaml", ".yml"}:
            parsed = yaml.safe_load(content)
            if isinstance(parsed, dict):
                return parsed
            logger.warning("YAML config must be a mapping at top level")
            return {}
        else:
            logger.warning(f"Unknown config file format: {path.suffix}")
            return {}

    @classmethod
    def _apply_env_overrides(cls, config: Dict[str, Any], prefix: str) -> Dict[str, Any]:
        """Apply environment variable overrides."""
        known = {"limits", "rent", "registry", "logging"}
        for key, value in os.environ.items():
            if not key.startswith(f"{prefix}_"):
                continue

            # ASR_LIMITS_MAX_MULTISIGS -> limits.max_multisigs
            parts = key[len(prefix) + 1:].lower().split("_")

            if len(parts) < 2 or parts[0] not in known:
                continue

            section = parts[0]
            field_name = "_".join(parts[1:])

            if section not in config:
                config[section] = {}

            config[section][field_name] = cls._parse_env_value(value)

        return config

    @staticmethod
    def _parse_env_value(value: str) -> Any:
        """Parse environment variable value to appropriate type."""
        if value.lower() in ("true", "yes"):
            return True
        if value.lower() in ("false", "no"):
            return False

        try:
            return int(value)
        except ValueError:
            pass

        return value

    @classmethod
    def _from_dict(cls, config_dict: Dict[str, Any]) -> "RegistryConfig":
        """Build config object from dictionary."""
        return cls(
            limits=LimitsConfig(**config_dict.get("limits", {})),
            rent=RentConfig(**config_dict.get("rent", {})),
            registry=RegistrySection(**config_dict.get("registry", {})),
            logging=LoggingConfig(**config_dict.get("logging", {})),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    def save(self, path: Union[str, Path]) -> None:
        """Save configuration as JSON or YAML (by suffix)."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        if path.suffix in {".yaml", ".yml"}:
            path.write_text(yaml.safe_dump(self.to_dict(), sort_keys=True))
        else:
            path.write_text(self.to_json())

    def validate(self) -> None:
        """Validate configuration."""
        if self.rent.lamports_per_byte_year < 0 or self.rent.exemption_threshold_years < 0:
            raise ValueError("rent parameters must be non-negative")
        if self.rent.storage_overhead < 0:
            raise ValueError("storage_overhead must be non-negative")

        if not self.registry.name or len(self.registry.name) > MAX_NAME_LENGTH:
            raise ValueError("registry name must be 1..256 characters")
        if not self.registry.symbol or len(self.registry.symbol) > MAX_SYMBOL_LENGTH:
            raise ValueError("registry symbol must be 1..64 characters")
        if not self.registry.base_uri or len(self.registry.base_uri) > MAX_URI_LENGTH:
            raise ValueError("registry base_uri must be 1..512 characters")

        if self.logging.level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid logging level: {self.logging.level}")

        if self.logging.format not in ("json", "text"):
            raise ValueError(f"Invalid logging format: {self.logging.format}")


# =============================================================================
# Global Config Instance
# =============================================================================

_global_config: Optional[RegistryConfig] = None


def get_config() -> RegistryConfig:
    """Get global configuration instance."""
    global _global_config
    if _global_config is None:
        _global_config = RegistryConfig.load()
    return _global_config


def set_config(config: RegistryConfig) -> None:
    """Set global configuration instance."""
    global _global_config
    _global_config = config


def reset_config() -> None:
    """Reset global configuration to None (forces reload)."""
    global _global_config
    _global_config = None
