"""
Configuration management for Job Recommender.
"""

from copy import deepcopy
from pathlib import Path
from typing import Optional
import json
import os


class Config:
    """Manages application configuration and API keys."""

    DEFAULT_CONFIG = {
        "api_keys": {
            "anthropic": "",
        },
        "storage": {
            "data_dir": "./recommender_data",
        },
        "preferences": {
            "location": "",
            "desired_locations": [],
            "remote_preference": "flexible",
            "salary_min": None,
            "salary_max": None,
        },
        "sources": {
            "greenhouse_boards": [],
            "known_skills": [],
        },
        "dedup": {
            "title_similarity": 0.8,
            "location_similarity": 0.5,
            "description_high": 0.85,
            "description_low": 0.6,
        },
        "scoring": {
            "notify_threshold": 80,
        },
        "learning": {
            "learning_rate": 0.5,
            "max_step": 0.05,
            "epochs": 20,
            "min_weight": 0.05,
            "max_weight": 3.0,
            "min_labeled_examples": 2,
            "retrain_after": 5,
        },
        "tracker": {
            "stale_days": 14,
        },
        "analysis": {
            "model": "claude-sonnet-4-20250514",
            "max_tokens": 2000,
            "cache_ttl_seconds": 7 * 24 * 3600,
            "max_attempts": 4,
            "base_delay": 1.0,
            "max_delay": 30.0,
            "timeout_seconds": 60.0,
            "max_concurrency": 4,
            "batch_size": 10,
            "input_cost_per_1k": 0.003,
            "output_cost_per_1k": 0.015,
        },
    }

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize configuration.

        Args:
            config_path: Path to config file (default: ~/.job_recommender/config.json)
        """
        if config_path:
            self.config_path = Path(config_path)
        else:
            self.config_path = Path.home() / ".job_recommender" / "config.json"

        self.config = self._load_config()

    def _load_config(self) -> dict:
        """Load configuration from file or create default."""
        if self.config_path.exists():
            with open(self.config_path, 'r') as f:
                user_config = json.load(f)

            # Merge with defaults
            return self._deep_merge(deepcopy(self.DEFAULT_CONFIG), user_config)

        return deepcopy(self.DEFAULT_CONFIG)

    def _deep_merge(self, base: dict, override: dict) -> dict:
        """Deep merge two dictionaries."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value
        return result

    def save(self) -> None:
        """Save current configuration to file."""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(self.config_path, 'w') as f:
            json.dump(self.config, f, indent=2)

    def get(self, key: str, default=None):
        """
        Get a configuration value using dot notation.

        Args:
            key: Configuration key (e.g., "learning.learning_rate")
            default: Default value if key not found
        """
        keys = key.split('.')
        value = self.config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def set(self, key: str, value) -> None:
        """Set a configuration value using dot notation."""
        keys = key.split('.')
        config = self.config

        for k in keys[:-1]:
            if k not in config or not isinstance(config[k], dict):
                config[k] = {}
            config = config[k]

        config[keys[-1]] = value

    def section(self, name: str) -> dict:
        """A copy of one top-level section, for passing as keyword arguments."""
        return dict(self.get(name, {}) or {})

    def get_api_key(self, provider: str) -> str:
        """
        Get API key for a provider.

        Environment variables (`<PROVIDER>_API_KEY`) take precedence over the config file.
        """
        env_value = os.environ.get(f"{provider.upper()}_API_KEY")

        if env_value:
            return env_value

        return self.get(f"api_keys.{provider}", "")

    def set_api_key(self, provider: str, key: str) -> None:
        """Set API key for a provider."""
        self.set(f"api_keys.{provider}", key)
        self.save()

    def get_data_dir(self) -> str:
        return self.get("storage.data_dir", "./recommender_data")

    def format_config(self) -> str:
        """Current configuration as JSON, with API keys masked."""
        return json.dumps(self._mask_sensitive(self.config), indent=2)

    def print_config(self) -> None:
        print(self.format_config())

    def _mask_sensitive(self, data: dict, sensitive_keys: set = None) -> dict:
        """Mask sensitive values in configuration."""
        if sensitive_keys is None:
            sensitive_keys = {"api_key", "api_keys", "key", "secret", "password", "token"}

        result = {}
        for key, value in data.items():
            if isinstance(value, dict) and key.lower() in sensitive_keys:
                result[key] = {k: self._mask_value(v) for k, v in value.items()}
            elif isinstance(value, dict):
                result[key] = self._mask_sensitive(value, sensitive_keys)
            elif key.lower() in sensitive_keys or key.lower().endswith(tuple(f"_{s}" for s in sensitive_keys)):
                result[key] = self._mask_value(value)
            else:
                result[key] = value
        return result

    @staticmethod
    def _mask_value(value) -> str:
        if not value:
            return "(not set)"
        value = str(value)
        return f"{value[:4]}...{value[-4:]}" if len(value) > 8 else "****"

    @classmethod
    def create_default_config(cls, path: str = None) -> 'Config':
        """Create a new config file with default values."""
        config = cls(path)
        config.save()
        return config
