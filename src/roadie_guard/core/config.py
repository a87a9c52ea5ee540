"""
Configuration Management System for Roadie Guard

Handles loading configuration from environment variables, config files,
and provides validation and runtime updates.
"""

import os
import json
import yaml
import logging
from typing import Any, Dict, List, Optional, Callable
from pathlib import Path
from dataclasses import dataclass

from .exceptions import ConfigurationError


@dataclass
class ConfigSource:
    """Configuration source definition"""
    name: str
    priority: int
    loader: Callable
    path: Optional[str] = None


TRIGGER_KIND_NAMES = ['general', 'medical', 'fire', 'police', 'silent', 'location_only']


class ConfigurationManager:
    """
    Manages engine configuration with support for multiple sources,
    validation, and runtime updates.
    """

    def __init__(self, config_dir: str = "config", overrides: Optional[Dict[str, Any]] = None):
        self.config_dir = Path(config_dir)
        self.config: Dict[str, Any] = {}
        self.watchers: Dict[str, List[Callable]] = {}
        self.sources: List[ConfigSource] = []
        self.overrides = overrides or {}
        self.logger = logging.getLogger(__name__)

        # Default configuration values
        self.defaults = {
            "app": {
                "name": "Roadie Guard",
                "version": "1.0.0",
                "log_level": "INFO"
            },
            "logging": {
                "level": "INFO",
                "file": None,
                "max_size": "10MB",
                "backup_count": 5,
                "console": True
            },
            "matcher": {
                "threshold": 0.2,
                "phrases": []
            },
            "aggregator": {
                "dedup_window_ms": 2000,
                "gesture_tap_count": 3,
                "gesture_window_ms": 1000,
                "heart_rate_min": 50,
                "heart_rate_max": 120,
                "heart_rate_critical_min": 40,
                "heart_rate_critical_max": 150,
                "low_battery_percent": 10
            },
            "sos": {
                "countdown_seconds": {
                    "general": 5,
                    "police": 5,
                    "fire": 10,
                    "medical": 10,
                    "silent": 0,
                    "location_only": 0
                },
                "skip_countdown": ["silent", "location_only"],
                "auto_expire_minutes": 30
            },
            "escalation": {
                "secondary_delay_seconds": 30,
                "max_retries": 1,
                "location_share_interval_seconds": 60
            },
            "dial": {
                "country": "US"
            },
            "zones": [],
            "contacts": [],
            "database": {
                "path": None
            }
        }

        self._setup_sources()

    def _setup_sources(self):
        """Set up configuration sources in priority order"""
        # Explicit overrides passed by the host application
        self.sources.append(ConfigSource(
            name="overrides",
            priority=5,
            loader=lambda: self.overrides
        ))

        self.sources.append(ConfigSource(
            name="environment",
            priority=4,
            loader=self._load_from_env
        ))

        local_config_path = str(self.config_dir / "config.yaml")
        self.sources.append(ConfigSource(
            name="local_config",
            priority=3,
            loader=lambda: self._load_from_file(local_config_path),
            path=local_config_path
        ))

        default_config_path = str(self.config_dir / "default.yaml")
        self.sources.append(ConfigSource(
            name="default_config",
            priority=2,
            loader=lambda: self._load_from_file(default_config_path),
            path=default_config_path
        ))

        self.sources.append(ConfigSource(
            name="defaults",
            priority=1,
            loader=lambda: self.defaults
        ))

    def load_config(self) -> None:
        """Load configuration from all sources"""
        self.logger.info("Loading configuration from all sources")

        merged_config = {}

        # Lowest priority first so higher ones override
        for source in sorted(self.sources, key=lambda x: x.priority):
            try:
                source_config = source.loader()
                if source_config:
                    merged_config = self._deep_merge(merged_config, source_config)
                    self.logger.debug(f"Loaded configuration from {source.name}")
            except ConfigurationError:
                raise
            except Exception as e:
                self.logger.warning(f"Failed to load config from {source.name}: {e}")

        self._validate_config(merged_config)
        self.config = merged_config
        self.logger.info("Configuration loaded successfully")

    def _load_from_env(self) -> Dict[str, Any]:
        """Load configuration from environment variables"""
        config = {}

        env_mappings = {
            "ROADIE_LOG_LEVEL": "logging.level",
            "ROADIE_LOG_FILE": "logging.file",
            "ROADIE_DB_PATH": "database.path",
            "ROADIE_DIAL_COUNTRY": "dial.country",
            "ROADIE_SECONDARY_DELAY": "escalation.secondary_delay_seconds",
            "ROADIE_AUTO_EXPIRE_MINUTES": "sos.auto_expire_minutes",
            "ROADIE_MATCH_THRESHOLD": "matcher.threshold"
        }

        for env_var, config_key in env_mappings.items():
            value = os.getenv(env_var)
            if value is None:
                continue
            if value.lower() in ('true', 'false'):
                value = value.lower() == 'true'
            elif value.isdigit():
                value = int(value)
            else:
                try:
                    value = float(value)
                except ValueError:
                    pass
            self._set_nested_value(config, config_key, value)

        return config

    def _load_from_file(self, file_path: str) -> Dict[str, Any]:
        """Load configuration from YAML or JSON file"""
        path = Path(file_path)

        if not path.exists():
            return {}

        try:
            with open(path, 'r', encoding='utf-8') as f:
                if path.suffix.lower() in ['.yaml', '.yml']:
                    return yaml.safe_load(f) or {}
                elif path.suffix.lower() == '.json':
                    return json.load(f)
                else:
                    self.logger.warning(f"Unsupported config file format: {path}")
                    return {}
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot parse config file {path}: {e}", {'path': str(path)})
        except OSError as e:
            self.logger.error(f"Error loading config file {path}: {e}")
            return {}

    def _deep_merge(self, base: Dict, override: Dict) -> Dict:
        """Deep merge two dictionaries"""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def _set_nested_value(self, config: Dict, key_path: str, value: Any) -> None:
        """Set a nested configuration value using dot notation"""
        keys = key_path.split('.')
        current = config

        for key in keys[:-1]:
            if key not in current or not isinstance(current[key], dict):
                current[key] = {}
            current = current[key]

        current[keys[-1]] = value

    def _validate_config(self, config: Dict[str, Any]) -> None:
        """Validate configuration values"""
        errors = []

        for section in ['matcher', 'aggregator', 'sos', 'escalation']:
            if not isinstance(config.get(section), dict):
                errors.append(f"Missing required configuration section: {section}")

        if errors:
            raise ConfigurationError(f"Configuration validation failed: {'; '.join(errors)}")

        threshold = config['matcher'].get('threshold')
        if not isinstance(threshold, (int, float)) or not 0 < threshold <= 1:
            errors.append(f"Invalid matcher threshold: {threshold}")

        countdowns = config['sos'].get('countdown_seconds', {})
        for kind, seconds in countdowns.items():
            if kind not in TRIGGER_KIND_NAMES:
                errors.append(f"Unknown trigger kind in countdown_seconds: {kind}")
            elif not isinstance(seconds, (int, float)) or seconds < 0:
                errors.append(f"Invalid countdown for {kind}: {seconds}")

        for kind in config['sos'].get('skip_countdown', []):
            if kind not in TRIGGER_KIND_NAMES:
                errors.append(f"Unknown trigger kind in skip_countdown: {kind}")

        for key, section in [('auto_expire_minutes', 'sos'),
                             ('secondary_delay_seconds', 'escalation'),
                             ('location_share_interval_seconds', 'escalation'),
                             ('dedup_window_ms', 'aggregator'),
                             ('gesture_window_ms', 'aggregator')]:
            value = config[section].get(key)
            if not isinstance(value, (int, float)) or value < 0:
                errors.append(f"Invalid {section}.{key}: {value}")

        retries = config['escalation'].get('max_retries')
        if not isinstance(retries, int) or retries < 0:
            errors.append(f"Invalid escalation.max_retries: {retries}")

        log_level = str(config.get('logging', {}).get('level', 'INFO'))
        if log_level.upper() not in ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']:
            errors.append(f"Invalid log level: {log_level}")

        if errors:
            raise ConfigurationError(f"Configuration validation failed: {'; '.join(errors)}",
                                     {'errors': errors})

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation"""
        keys = key.split('.')
        current = self.config

        try:
            for k in keys:
                current = current[k]
            return current
        except (KeyError, TypeError):
            return default

    def set(self, key: str, value: Any) -> None:
        """Set configuration value using dot notation"""
        self._set_nested_value(self.config, key, value)

        if key in self.watchers:
            for callback in self.watchers[key]:
                try:
                    callback(key, value)
                except Exception as e:
                    self.logger.error(f"Error in config watcher for {key}: {e}")

    def watch(self, key: str, callback: Callable[[str, Any], None]) -> None:
        """Watch for configuration changes"""
        if key not in self.watchers:
            self.watchers[key] = []
        self.watchers[key].append(callback)

    def export_config(self, file_path: str) -> None:
        """Export current configuration to file"""
        path = Path(file_path)

        try:
            with open(path, 'w', encoding='utf-8') as f:
                if path.suffix.lower() in ['.yaml', '.yml']:
                    yaml.safe_dump(self.config, f, default_flow_style=False, indent=2,
                                   allow_unicode=True)
                elif path.suffix.lower() == '.json':
                    json.dump(self.config, f, indent=2, ensure_ascii=False)
                else:
                    raise ValueError(f"Unsupported file format: {path.suffix}")

            self.logger.info(f"Configuration exported to {path}")
        except (OSError, ValueError, yaml.YAMLError) as e:
            self.logger.error(f"Failed to export configuration: {e}")
            raise ConfigurationError(f"Export failed: {e}")
