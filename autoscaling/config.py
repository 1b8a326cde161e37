"""
Configuration management for the auto-scaling control loop.
"""

import os
import re
import yaml
from pathlib import Path
from typing import Dict, Any, Optional, Union, List, Tuple
from dataclasses import dataclass, field, asdict

from .emergency import EmergencyThresholds
from .models import ResourcePool, ScalingRule
from .registry import rule_from_dict, validate_rule


class ConfigError(Exception):
    """Raised when configuration is invalid or cannot be loaded"""
    pass


def default_initial_instances() -> Dict[str, int]:
    return {
        ResourcePool.API_INSTANCES.value: 2,
        ResourcePool.WORKER_PROCESSES.value: 1,
        ResourcePool.CACHE_NODES.value: 1,
        ResourcePool.DATABASE_CONNECTIONS.value: 10,
    }


@dataclass
class EmergencyConfig:
    """Hard safety thresholds for the emergency override"""
    enabled: bool = True
    cpu_threshold: float = 90.0  # percent
    memory_threshold: float = 85.0  # percent
    response_time_threshold: float = 10000.0  # milliseconds
    max_instances: int = 20

    def __post_init__(self):
        for name in ("cpu_threshold", "memory_threshold"):
            value = getattr(self, name)
            if not 0 <= value <= 100:
                raise ValueError(f"{name} must be between 0 and 100")

        if self.response_time_threshold <= 0:
            raise ValueError("response_time_threshold must be positive")

        if self.max_instances < 1:
            raise ValueError("max_instances must be at least 1")

    def thresholds(self) -> EmergencyThresholds:
        return EmergencyThresholds(
            cpu=self.cpu_threshold,
            memory=self.memory_threshold,
            response_time=self.response_time_threshold,
            max_instances=self.max_instances,
        )


@dataclass
class LoggingConfig:
    """Configuration for logging"""
    log_level: str = "INFO"
    verbose: bool = False
    debug: bool = False

    def __post_init__(self):
        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level not in valid_log_levels:
            raise ValueError(f"log_level must be one of {valid_log_levels}")


@dataclass
class AutoScalingConfig:
    """Main configuration for the auto-scaling service"""
    enabled: bool = True
    evaluation_interval_seconds: float = 60.0
    metrics_retention_seconds: float = 24 * 60 * 60
    default_cooldown_seconds: float = 5 * 60
    enable_predictive_scaling: bool = True
    max_scaling_events_per_hour: int = 10
    actuation_timeout_seconds: float = 30.0
    max_events_retained: int = 1000
    max_parallel_pools: int = 8
    cost_per_instance_hour: float = 10.0

    initial_instances: Dict[str, int] = field(default_factory=default_initial_instances)
    emergency: EmergencyConfig = field(default_factory=EmergencyConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Rules as plain data, plus the stock rule set
    rules: List[Dict[str, Any]] = field(default_factory=list)
    load_default_rules: bool = False

    def __post_init__(self):
        for name in ("evaluation_interval_seconds", "metrics_retention_seconds",
                     "actuation_timeout_seconds"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")

        if self.default_cooldown_seconds < 0:
            raise ValueError("default_cooldown_seconds must be non-negative")

        if self.max_scaling_events_per_hour < 0:
            raise ValueError("max_scaling_events_per_hour must be non-negative")

        if self.max_events_retained <= 0:
            raise ValueError("max_events_retained must be positive")

        if self.max_parallel_pools <= 0:
            raise ValueError("max_parallel_pools must be positive")

        if self.cost_per_instance_hour < 0:
            raise ValueError("cost_per_instance_hour must be non-negative")

        for pool, count in self.initial_instances.items():
            if not pool:
                raise ValueError("initial_instances pool names cannot be empty")
            if count < 0:
                raise ValueError(f"initial_instances[{pool}] must be non-negative")

    def build_rules(self) -> List[ScalingRule]:
        """Rule objects for the `rules` entries"""
        return [rule_from_dict(data, self.default_cooldown_seconds) for data in self.rules]


class ConfigManager:
    """
    Manages loading, validation, and merging of configuration from multiple sources.

    Supports loading from:
    - YAML files
    - Environment variables
    - Python dictionaries
    - Default values
    """

    # Env var suffix -> (section, key); section None means top level
    ENV_MAPPING: Dict[str, Tuple[Optional[str], str]] = {
        'enabled': (None, 'enabled'),
        'evaluation_interval_seconds': (None, 'evaluation_interval_seconds'),
        'metrics_retention_seconds': (None, 'metrics_retention_seconds'),
        'default_cooldown_seconds': (None, 'default_cooldown_seconds'),
        'enable_predictive_scaling': (None, 'enable_predictive_scaling'),
        'max_scaling_events_per_hour': (None, 'max_scaling_events_per_hour'),
        'actuation_timeout_seconds': (None, 'actuation_timeout_seconds'),
        'max_events_retained': (None, 'max_events_retained'),
        'max_parallel_pools': (None, 'max_parallel_pools'),
        'cost_per_instance_hour': (None, 'cost_per_instance_hour'),
        'load_default_rules': (None, 'load_default_rules'),
        'emergency_enabled': ('emergency', 'enabled'),
        'emergency_cpu_threshold': ('emergency', 'cpu_threshold'),
        'emergency_memory_threshold': ('emergency', 'memory_threshold'),
        'emergency_response_time_threshold': ('emergency', 'response_time_threshold'),
        'emergency_max_instances': ('emergency', 'max_instances'),
        'log_level': ('logging', 'log_level'),
        'verbose': ('logging', 'verbose'),
        'debug': ('logging', 'debug'),
    }

    def __init__(self):
        self._config: Optional[AutoScalingConfig] = None
        self._config_sources: List[str] = []

    def load_from_file(self, config_path: Union[str, Path]) -> AutoScalingConfig:
        """
        Load configuration from a YAML file.

        Args:
            config_path: Path to YAML configuration file

        Returns:
            Loaded configuration

        Raises:
            ConfigError: If file cannot be loaded or is invalid
        """
        config_path = Path(config_path)

        if not config_path.exists():
            raise ConfigError(f"Configuration file not found: {config_path}")

        try:
            with open(config_path, 'r') as f:
                data = yaml.safe_load(f)

            if data is None:
                data = {}

            config = self._create_config_from_dict(data)
            self._config = config
            self._config_sources.append(f"file:{config_path}")

            return config

        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in config file {config_path}: {e}")
        except Exception as e:
            raise ConfigError(f"Failed to load config file {config_path}: {e}")

    def load_from_dict(self, config_dict: Dict[str, Any]) -> AutoScalingConfig:
        """
        Load configuration from a dictionary.

        Args:
            config_dict: Configuration dictionary

        Returns:
            Loaded configuration
        """
        try:
            config = self._create_config_from_dict(config_dict)
            self._config = config
            self._config_sources.append("dict")

            return config

        except Exception as e:
            raise ConfigError(f"Failed to load config from dictionary: {e}")

    def load_from_env(self, prefix: str = "AUTOSCALER_") -> Dict[str, Any]:
        """
        Load configuration values from environment variables.

        Args:
            prefix: Prefix for environment variables

        Returns:
            Dictionary of configuration values from environment
        """
        env_config: Dict[str, Any] = {'emergency': {}, 'logging': {}}

        for key, value in os.environ.items():
            if not key.startswith(prefix):
                continue

            config_key = key[len(prefix):].lower()
            if config_key not in self.ENV_MAPPING:
                continue

            section, name = self.ENV_MAPPING[config_key]
            converted_value = self._convert_env_value(value)

            if section is None:
                env_config[name] = converted_value
            else:
                env_config[section][name] = converted_value

        # Remove empty sections
        env_config = {k: v for k, v in env_config.items() if v != {}}

        if env_config:
            self._config_sources.append(f"env:{prefix}")

        return env_config

    def merge_configs(self, *configs: AutoScalingConfig) -> AutoScalingConfig:
        """
        Merge multiple configurations, with later configs taking precedence.

        Args:
            *configs: Configuration objects to merge

        Returns:
            Merged configuration
        """
        if not configs:
            return AutoScalingConfig()

        merged_dict = asdict(configs[0])

        for config in configs[1:]:
            merged_dict = self._deep_merge_dicts(merged_dict, asdict(config))

        merged_config = self._create_config_from_dict(merged_dict)
        self._config = merged_config
        self._config_sources.append(f"merged:{len(configs)}_configs")

        return merged_config

    def merge_dict(self, config: AutoScalingConfig, overrides: Dict[str, Any]) -> AutoScalingConfig:
        """Apply a partial dictionary on top of a configuration"""
        merged = self._deep_merge_dicts(asdict(config), overrides)
        try:
            merged_config = self._create_config_from_dict(merged)
        except Exception as e:
            raise ConfigError(f"Invalid configuration override: {e}")

        self._config = merged_config
        self._config_sources.append("override")
        return merged_config

    def load_default_config(self) -> AutoScalingConfig:
        """Load default configuration"""
        config = AutoScalingConfig()
        self._config = config
        self._config_sources.append("default")

        return config

    def get_config(self) -> Optional[AutoScalingConfig]:
        """Get currently loaded configuration"""
        return self._config

    def get_config_sources(self) -> List[str]:
        """Get list of configuration sources that were loaded"""
        return self._config_sources.copy()

    def save_to_file(self, config_path: Union[str, Path],
                     config: Optional[AutoScalingConfig] = None) -> None:
        """
        Save configuration to a YAML file.

        Raises:
            ConfigError: If configuration cannot be saved
        """
        if config is None:
            config = self._config

        if config is None:
            raise ConfigError("No configuration to save")

        config_path = Path(config_path)

        try:
            config_path.parent.mkdir(parents=True, exist_ok=True)

            with open(config_path, 'w') as f:
                yaml.safe_dump(asdict(config), f, default_flow_style=False, indent=2, sort_keys=False)

        except Exception as e:
            raise ConfigError(f"Failed to save config to {config_path}: {e}")

    def validate_config(self, config: AutoScalingConfig) -> List[str]:
        """
        Validate the rule section of a configuration.

        Returns:
            List of validation error messages (empty if valid)
        """
        errors = []

        for i, data in enumerate(config.rules):
            try:
                rule = rule_from_dict(data, config.default_cooldown_seconds)
            except Exception as e:
                errors.append(f"Rule {i}: {e}")
                continue

            errors.extend(f"Rule '{rule.name}': {message}" for message in validate_rule(rule))

        for pool in config.initial_instances:
            if not re.match(r'^[A-Za-z0-9_.:-]+$', pool):
                errors.append(f"Invalid pool name in initial_instances: {pool}")

        return errors

    def _create_config_from_dict(self, data: Dict[str, Any]) -> AutoScalingConfig:
        """Create configuration object from dictionary"""
        data = dict(data)
        emergency_config = EmergencyConfig(**(data.pop('emergency', None) or {}))
        logging_config = LoggingConfig(**(data.pop('logging', None) or {}))

        initial_instances = data.pop('initial_instances', None)
        if initial_instances is None:
            initial_instances = default_initial_instances()

        return AutoScalingConfig(
            emergency=emergency_config,
            logging=logging_config,
            initial_instances={str(k): int(v) for k, v in initial_instances.items()},
            rules=list(data.pop('rules', None) or []),
            **data
        )

    def _deep_merge_dicts(self, dict1: Dict[str, Any], dict2: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries"""
        result = dict1.copy()

        for key, value in dict2.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge_dicts(result[key], value)
            else:
                result[key] = value

        return result

    def _convert_env_value(self, value: str) -> Union[bool, int, float, str]:
        if value.lower() in ('true', 'false'):
            return value.lower() == 'true'
        if value.isdigit():
            return int(value)
        if self._is_float(value):
            return float(value)
        return value

    def _is_float(self, value: str) -> bool:
        """Check if string represents a float"""
        try:
            float(value)
            return True
        except ValueError:
            return False


def load_config_from_file(config_path: Union[str, Path]) -> AutoScalingConfig:
    """Convenience function to load configuration from a file."""
    manager = ConfigManager()
    return manager.load_from_file(config_path)


def load_config_with_env_override(config_path: Optional[Union[str, Path]] = None,
                                  env_prefix: str = "AUTOSCALER_") -> AutoScalingConfig:
    """
    Load configuration from file with environment variable overrides.

    Args:
        config_path: Path to configuration file (optional)
        env_prefix: Prefix for environment variables

    Returns:
        Configuration with environment overrides applied

    Raises:
        ConfigError: If the file or the environment overrides are invalid
    """
    manager = ConfigManager()

    if config_path:
        base_config = manager.load_from_file(config_path)
    else:
        base_config = manager.load_default_config()

    env_config_dict = manager.load_from_env(env_prefix)

    if env_config_dict:
        return manager.merge_dict(base_config, env_config_dict)

    return base_config


def create_default_config_file(config_path: Union[str, Path]) -> None:
    """
    Create a default configuration file with example values.

    Args:
        config_path: Path where to create the configuration file
    """
    manager = ConfigManager()
    config = AutoScalingConfig(load_default_rules=True)

    config.rules = [
        {
            "name": "Cache memory pressure",
            "description": "Add a cache node when memory stays high",
            "resource_pool": ResourcePool.CACHE_NODES.value,
            "trigger": "memory",
            "conditions": [
                {"metric": "memory", "operator": "gt", "threshold": 75,
                 "duration_seconds": 300, "aggregation": "avg"}
            ],
            "actions": [
                {"action": "scale_up", "amount": 1, "min_instances": 1,
                 "max_instances": 6, "step_size": 1}
            ],
            "cooldown_seconds": 600,
            "priority": 1,
            "tags": ["memory", "cache"],
        },
        {
            "name": "Idle workers",
            "description": "Remove a worker when CPU peaks stay low",
            "resource_pool": ResourcePool.WORKER_PROCESSES.value,
            "trigger": "cpu",
            "conditions": [
                {"metric": "cpu", "operator": "lt", "threshold": 20,
                 "duration_seconds": 900, "aggregation": "max"}
            ],
            "actions": [
                {"action": "scale_down", "amount": 1, "min_instances": 1,
                 "max_instances": 5, "step_size": 1}
            ],
            "cooldown_seconds": 900,
            "priority": 0,
            "tags": ["cpu", "worker"],
        },
    ]

    manager.save_to_file(config_path, config)
