"""Configuration management and validation service."""

import os
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field

import yaml

logger = logging.getLogger(__name__)


@dataclass
class ConfigValidationError:
    """Represents a configuration validation error."""
    path: str
    message: str


class ConfigValidationException(Exception):
    """Raised when config validation fails."""

    def __init__(self, errors: List[ConfigValidationError]):
        self.errors = errors
        messages = [f"{e.path}: {e.message}" for e in errors]
        super().__init__("Configuration validation failed:\n" + "\n".join(messages))


KNOWN_ADAPTERS = ["coingecko", "coincap", "binance", "blockstream"]
KNOWN_CATEGORIES = ["market", "ohlc", "blockchain", "supply", "global"]

_ADAPTER_SCHEMA = {
    "type": "dict",
    "required": False,
    "properties": {
        "rate_limit_delay_seconds": {"type": "float", "required": False, "min": 0},
        "max_retries": {"type": "int", "required": False, "min": 1, "max": 10},
        "base_backoff_seconds": {"type": "float", "required": False, "min": 0},
        "max_backoff_seconds": {"type": "float", "required": False, "min": 0},
        "timeout_seconds": {"type": "float", "required": False, "min": 1},
    }
}

# Configuration schema definition
CONFIG_SCHEMA = {
    "server": {
        "type": "dict",
        "required": False,
        "properties": {
            "host": {"type": "str", "required": False},
            "port": {"type": "int", "required": False, "min": 1, "max": 65535},
            "cors_origins": {"type": "list", "required": False},
        }
    },
    "logging": {
        "type": "dict",
        "required": False,
        "properties": {
            "level": {"type": "str", "required": False, "options": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]},
            "format": {"type": "str", "required": False},
        }
    },
    "scheduler": {
        "type": "dict",
        "required": False,
        "properties": {
            "market_interval_seconds": {"type": "float", "required": False, "min": 1},
            "ohlc_interval_seconds": {"type": "float", "required": False, "min": 1},
            "blockchain_interval_seconds": {"type": "float", "required": False, "min": 1},
            "supply_interval_seconds": {"type": "float", "required": False, "min": 1},
            "global_interval_seconds": {"type": "float", "required": False, "min": 1},
            "boot_stagger_seconds": {"type": "float", "required": False, "min": 0},
            "min_broadcast_interval_seconds": {"type": "float", "required": False, "min": 0},
        }
    },
    "cache": {
        "type": "dict",
        "required": False,
        "properties": {
            "max_history_size": {"type": "int", "required": False, "min": 1},
            "cleanup_interval_seconds": {"type": "float", "required": False, "min": 1},
            "update_time_retention_seconds": {"type": "float", "required": False, "min": 1},
        }
    },
    "websocket": {
        "type": "dict",
        "required": False,
        "properties": {
            "rebroadcast_interval_seconds": {"type": "float", "required": False, "min": 1},
        }
    },
    "providers": {
        "type": "dict",
        "required": False,
        "properties": {
            "failure_threshold": {"type": "int", "required": False, "min": 1},
            "cleanup_interval_seconds": {"type": "float", "required": False, "min": 1},
            "health_reset_interval_seconds": {"type": "float", "required": False, "min": 1},
            "health_reset_min_age_seconds": {"type": "float", "required": False, "min": 0},
            "priorities": {
                "type": "dict",
                "required": False,
                "properties": {
                    name: {"type": "list", "required": False, "items": KNOWN_ADAPTERS}
                    for name in KNOWN_CATEGORIES
                }
            },
            "adapters": {
                "type": "dict",
                "required": False,
                "properties": {name: _ADAPTER_SCHEMA for name in KNOWN_ADAPTERS}
            },
        }
    },
}


@dataclass
class AdapterSettings:
    """Throttling and retry settings for one adapter."""
    rate_limit_delay_seconds: float = 1.0
    max_retries: int = 3
    base_backoff_seconds: float = 1.0
    max_backoff_seconds: float = 10.0
    timeout_seconds: float = 10.0


DEFAULT_PRIORITIES: Dict[str, List[str]] = {
    "market": ["coingecko", "coincap", "binance"],
    "ohlc": ["coingecko", "binance"],
    "blockchain": ["blockstream"],
    "supply": ["coingecko", "coincap"],
    "global": ["coingecko"],
}

# Minimum spacing reflects each provider's public rate limit
DEFAULT_RATE_LIMITS: Dict[str, float] = {
    "coingecko": 1.0,
    "coincap": 0.2,
    "binance": 0.1,
    "blockstream": 0.5,
}


@dataclass
class ProviderSettings:
    """Provider manager settings."""
    priorities: Dict[str, List[str]] = field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_PRIORITIES.items()}
    )
    adapters: Dict[str, AdapterSettings] = field(
        default_factory=lambda: {
            name: AdapterSettings(rate_limit_delay_seconds=delay)
            for name, delay in DEFAULT_RATE_LIMITS.items()
        }
    )
    failure_threshold: int = 3
    cleanup_interval_seconds: float = 3600.0
    health_reset_interval_seconds: float = 86400.0
    health_reset_min_age_seconds: float = 3600.0


@dataclass
class SchedulerSettings:
    """Refresh cadence per category and broadcast throttling."""
    market_interval_seconds: float = 30.0
    ohlc_interval_seconds: float = 60.0
    blockchain_interval_seconds: float = 120.0
    supply_interval_seconds: float = 300.0
    global_interval_seconds: float = 300.0
    boot_stagger_seconds: float = 1.0
    min_broadcast_interval_seconds: float = 1.0


@dataclass
class CacheSettings:
    """Snapshot cache bounds."""
    max_history_size: int = 100
    cleanup_interval_seconds: float = 3600.0
    update_time_retention_seconds: float = 86400.0


@dataclass
class AppSettings:
    """Fully resolved application settings."""
    host: str = "0.0.0.0"
    port: int = 3001
    cors_origins: List[str] = field(
        default_factory=lambda: ["http://localhost:3000", "http://localhost:5173"]
    )
    log_level: str = "INFO"
    log_format: str = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
    rebroadcast_interval_seconds: float = 60.0
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    providers: ProviderSettings = field(default_factory=ProviderSettings)


class ConfigService:
    """Service for loading and validating configuration."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize config service.

        Args:
            config_path: Path to config file. If None, uses default location.
        """
        if config_path is None:
            # Default config path relative to backend directory
            backend_dir = Path(__file__).parent.parent.parent
            config_path = os.getenv("BTC_DASHBOARD_CONFIG", str(backend_dir / "config.yaml"))

        self.config_path = config_path
        self._config: Dict[str, Any] = {}

    def load_and_validate(self) -> Dict[str, Any]:
        """Load and validate the configuration file.

        Returns:
            Validated configuration dictionary.

        Raises:
            ConfigValidationException: If validation fails.
        """
        errors: List[ConfigValidationError] = []

        # Check if file exists
        if not os.path.exists(self.config_path):
            logger.warning(f"Config file not found at {self.config_path}, using defaults")
            self._config = {}
            return self._config

        # Load YAML
        try:
            with open(self.config_path, 'r') as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            errors.append(ConfigValidationError(
                path="",
                message=f"Invalid YAML syntax: {str(e)}"
            ))
            raise ConfigValidationException(errors)

        if config is None:
            config = {}

        if not isinstance(config, dict):
            errors.append(ConfigValidationError(
                path="",
                message=f"Config must be a dictionary, got {type(config).__name__}"
            ))
            raise ConfigValidationException(errors)

        # Validate against schema
        errors.extend(self._validate_dict(config, CONFIG_SCHEMA, ""))

        if errors:
            raise ConfigValidationException(errors)

        self._config = config
        logger.info(f"Configuration loaded and validated from {self.config_path}")
        return config

    def _validate_dict(
        self,
        data: Dict[str, Any],
        schema: Dict[str, Any],
        path: str
    ) -> List[ConfigValidationError]:
        """Validate a dictionary against schema.

        Args:
            data: Data to validate
            schema: Schema to validate against
            path: Current path for error messages

        Returns:
            List of validation errors
        """
        errors = []

        # Check for unknown keys
        for key in data:
            if key not in schema:
                errors.append(ConfigValidationError(
                    path=f"{path}.{key}" if path else key,
                    message=f"Unknown configuration key '{key}'"
                ))

        # Validate each schema property
        for key, prop_schema in schema.items():
            current_path = f"{path}.{key}" if path else key

            if key not in data:
                if prop_schema.get("required", False):
                    errors.append(ConfigValidationError(
                        path=current_path,
                        message="Required field missing"
                    ))
                continue

            value = data[key]
            errors.extend(self._validate_value(value, prop_schema, current_path))

        return errors

    def _validate_value(
        self,
        value: Any,
        schema: Dict[str, Any],
        path: str
    ) -> List[ConfigValidationError]:
        """Validate a single value against schema.

        Args:
            value: Value to validate
            schema: Schema to validate against
            path: Current path for error messages

        Returns:
            List of validation errors
        """
        errors = []
        expected_type = schema.get("type")

        # Type validation
        type_map = {
            "str": str,
            "int": int,
            "float": (int, float),
            "bool": bool,
            "list": list,
            "dict": dict,
        }

        if expected_type == "dict":
            if not isinstance(value, dict):
                errors.append(ConfigValidationError(
                    path=path,
                    message=f"Expected dict, got {type(value).__name__}"
                ))
                return errors

            # Validate nested properties
            if "properties" in schema:
                errors.extend(self._validate_dict(value, schema["properties"], path))

        elif expected_type in type_map:
            expected = type_map[expected_type]
            # bool is an int subclass; only accept it where bool is expected
            if not isinstance(value, expected) or (
                expected_type in ("int", "float") and isinstance(value, bool)
            ):
                errors.append(ConfigValidationError(
                    path=path,
                    message=f"Expected {expected_type}, got {type(value).__name__}"
                ))
                return errors

            # Numeric range validation
            if expected_type in ("int", "float"):
                if "min" in schema and value < schema["min"]:
                    errors.append(ConfigValidationError(
                        path=path,
                        message=f"Value {value} is below minimum {schema['min']}"
                    ))
                if "max" in schema and value > schema["max"]:
                    errors.append(ConfigValidationError(
                        path=path,
                        message=f"Value {value} is above maximum {schema['max']}"
                    ))

            # List item validation
            if expected_type == "list" and "items" in schema:
                if not value:
                    errors.append(ConfigValidationError(
                        path=path,
                        message="List must not be empty"
                    ))
                for item in value:
                    if item not in schema["items"]:
                        errors.append(ConfigValidationError(
                            path=path,
                            message=f"Value '{item}' not in allowed options: {schema['items']}"
                        ))

            # Options validation
            if "options" in schema and value not in schema["options"]:
                errors.append(ConfigValidationError(
                    path=path,
                    message=f"Value '{value}' not in allowed options: {schema['options']}"
                ))

        return errors

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value.

        Args:
            key: Dot-notation key (e.g., "server.port")
            default: Default value if not found

        Returns:
            Configuration value
        """
        keys = key.split(".")
        value = self._config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def get_settings(self) -> AppSettings:
        """Build typed settings from the loaded configuration, filling defaults."""
        defaults = AppSettings()

        scheduler = SchedulerSettings(**{
            name: float(self.get(f"scheduler.{name}", getattr(defaults.scheduler, name)))
            for name in SchedulerSettings.__dataclass_fields__
        })

        cache = CacheSettings(
            max_history_size=self.get("cache.max_history_size", defaults.cache.max_history_size),
            cleanup_interval_seconds=float(self.get(
                "cache.cleanup_interval_seconds", defaults.cache.cleanup_interval_seconds
            )),
            update_time_retention_seconds=float(self.get(
                "cache.update_time_retention_seconds", defaults.cache.update_time_retention_seconds
            )),
        )

        priorities = {k: list(v) for k, v in defaults.providers.priorities.items()}
        priorities.update(self.get("providers.priorities", {}) or {})

        adapters: Dict[str, AdapterSettings] = {}
        for name, base in defaults.providers.adapters.items():
            overrides = self.get(f"providers.adapters.{name}", {}) or {}
            adapters[name] = AdapterSettings(
                rate_limit_delay_seconds=float(overrides.get(
                    "rate_limit_delay_seconds", base.rate_limit_delay_seconds
                )),
                max_retries=overrides.get("max_retries", base.max_retries),
                base_backoff_seconds=float(overrides.get(
                    "base_backoff_seconds", base.base_backoff_seconds
                )),
                max_backoff_seconds=float(overrides.get(
                    "max_backoff_seconds", base.max_backoff_seconds
                )),
                timeout_seconds=float(overrides.get("timeout_seconds", base.timeout_seconds)),
            )

        providers = ProviderSettings(
            priorities=priorities,
            adapters=adapters,
            failure_threshold=self.get(
                "providers.failure_threshold", defaults.providers.failure_threshold
            ),
            cleanup_interval_seconds=float(self.get(
                "providers.cleanup_interval_seconds", defaults.providers.cleanup_interval_seconds
            )),
            health_reset_interval_seconds=float(self.get(
                "providers.health_reset_interval_seconds",
                defaults.providers.health_reset_interval_seconds,
            )),
            health_reset_min_age_seconds=float(self.get(
                "providers.health_reset_min_age_seconds",
                defaults.providers.health_reset_min_age_seconds,
            )),
        )

        return AppSettings(
            host=self.get("server.host", defaults.host),
            port=self.get("server.port", defaults.port),
            cors_origins=self.get("server.cors_origins", defaults.cors_origins),
            log_level=self.get("logging.level", defaults.log_level),
            log_format=self.get("logging.format", defaults.log_format),
            rebroadcast_interval_seconds=float(self.get(
                "websocket.rebroadcast_interval_seconds", defaults.rebroadcast_interval_seconds
            )),
            scheduler=scheduler,
            cache=cache,
            providers=providers,
        )


# Global config service instance
config_service = ConfigService()
