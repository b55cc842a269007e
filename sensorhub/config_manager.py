"""
Configuration Manager for SensorHub

Loads configuration from config.yaml and overlays environment variables of
the form SENSORHUB__SECTION__KEY (e.g. SENSORHUB__MQTT__HOST).
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from sensorhub.config import HubConfig

log = logging.getLogger(__name__)

ENV_PREFIX = "SENSORHUB__"


class ConfigurationManager:
    """Manages configuration loading from file and environment."""

    def __init__(self, config_path: str = "config.yaml", environ: Optional[Mapping[str, str]] = None):
        self.config_path = Path(config_path)
        self.environ = os.environ if environ is None else environ
        self._config_cache: Optional[HubConfig] = None

    def load_config(self) -> HubConfig:
        """Load configuration from config.yaml, then apply environment overrides."""
        config_dict = self._load_from_file()

        overrides = self._env_overrides()
        if overrides:
            log.info(f"Applying {len(overrides)} configuration override(s) from environment")
            self._merge(config_dict, self._flat_to_nested(overrides))

        config = HubConfig(**config_dict)
        self._config_cache = config
        return config

    def _load_from_file(self) -> Dict[str, Any]:
        """Load configuration from config.yaml file. A missing file means defaults."""
        if not self.config_path.exists():
            log.info(f"Configuration file {self.config_path} not found, using defaults")
            return {}

        with open(self.config_path, 'r') as f:
            config_dict = yaml.safe_load(f)

        if config_dict is None:
            return {}
        if not isinstance(config_dict, dict):
            raise ValueError(f"Configuration file {self.config_path} must contain a mapping")
        log.info(f"Configuration loaded from {self.config_path}")
        return config_dict

    def _env_overrides(self) -> Dict[str, str]:
        """Collect SENSORHUB__* variables as dotted lower-case keys."""
        overrides = {}
        for name, value in self.environ.items():
            if not name.startswith(ENV_PREFIX):
                continue
            key = name[len(ENV_PREFIX):].lower().replace("__", ".")
            if key:
                overrides[key] = value
        return overrides

    def _flat_to_nested(self, flat_configs: Dict[str, str]) -> Dict[str, Any]:
        """Convert flat dotted keys to nested dictionary structure."""
        config_dict: Dict[str, Any] = {}

        for key, value in flat_configs.items():
            # Parse nested keys like "database.retry_delay_ms"
            keys = key.split('.')
            current = config_dict

            for k in keys[:-1]:
                if k not in current or not isinstance(current[k], dict):
                    current[k] = {}
                current = current[k]

            current[keys[-1]] = self._convert_value(value)

        return config_dict

    def _merge(self, base: Dict[str, Any], overrides: Dict[str, Any]) -> None:
        for key, value in overrides.items():
            if isinstance(value, dict) and isinstance(base.get(key), dict):
                self._merge(base[key], value)
            else:
                base[key] = value

    def _convert_value(self, value: str) -> Any:
        """
        Convert a string value from the environment for validation.

        Only null markers are converted here. Everything else stays a string
        and is coerced by HubConfig into the type of the target field, so a
        numeric password or identifier remains a string.
        """
        if value is None or value == '' or value.lower() in ('none', 'null'):
            return None
        return value

    def sync_to_file(self):
        """Write the current configuration back to config.yaml."""
        if not self._config_cache:
            log.warning("No configuration cache available for sync")
            return

        config_dict = self._config_cache.model_dump()
        with open(self.config_path, 'w') as f:
            yaml.dump(config_dict, f, default_flow_style=False, indent=2)

        log.info(f"Configuration synced to {self.config_path}")
