"""
Configuration management for AgriEcho.
Loads and validates settings from JSON or YAML config files.
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


# Default configuration path
DEFAULT_CONFIG_PATH = os.path.join(os.path.expanduser('~'), '.agriecho', 'config.json')

# Default configuration values
DEFAULT_CONFIG = {
    'api_url': 'http://localhost:3000',
    'storage_path': os.path.join(os.path.expanduser('~'), '.agriecho'),
    'log_path': os.path.join(os.path.expanduser('~'), '.agriecho', 'logs'),
    'max_attempts': 3,
    'retry_delay_seconds': 5,
    'sync_interval_seconds': 30,
    'cleanup_interval_seconds': 3600,
    'status_interval_seconds': 10,
    'completed_retention_hours': 24,
    'weather_max_age_hours': 6,
    'cache_version': 'v1.0.0',
    'request_timeout': 10,
    'port': 3000,
    'database_uri': None,
}

# Environment variable -> (config key, type)
ENV_OVERRIDES = {
    'AGRIECHO_API_URL': ('api_url', str),
    'AGRIECHO_STORAGE_PATH': ('storage_path', str),
    'AGRIECHO_LOG_PATH': ('log_path', str),
    'AGRIECHO_PORT': ('port', int),
    'AGRIECHO_DATABASE_URI': ('database_uri', str),
    'AGRIECHO_MAX_ATTEMPTS': ('max_attempts', int),
    'AGRIECHO_RETRY_DELAY_SECONDS': ('retry_delay_seconds', float),
}


class AgriEchoConfig:
    """Manages AgriEcho configuration from JSON/YAML files."""

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize configuration.

        Args:
            config_path: Path to config file. If None, uses ~/.agriecho/config.json
        """
        if config_path is None:
            config_path = os.environ.get('AGRIECHO_CONFIG', DEFAULT_CONFIG_PATH)

        self.config_path = Path(config_path)
        self._config: Dict[str, Any] = dict(DEFAULT_CONFIG)
        self._loaded = False
        self.load()

    def load(self) -> None:
        """Load configuration from file, then apply environment overrides."""
        if self.config_path.exists():
            with open(self.config_path, 'r') as f:
                if self.config_path.suffix in ('.yaml', '.yml'):
                    file_config = yaml.safe_load(f) or {}
                else:
                    file_config = json.load(f)
                # Merge file config with defaults
                self._config.update(file_config)
            self._loaded = True

        self._apply_env_overrides()

    def _apply_env_overrides(self) -> None:
        """Override config values from AGRIECHO_* environment variables."""
        for env_name, (key, cast) in ENV_OVERRIDES.items():
            if env_name in os.environ:
                self._config[key] = cast(os.environ[env_name])

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.

        Args:
            key: Configuration key (e.g., 'api_url' or 'nested.key')
            default: Default value if key not found

        Returns:
            Configuration value or default

        Example:
            >>> config = AgriEchoConfig()
            >>> config.get('api_url')
            'http://localhost:3000'
        """
        keys = key.split('.')
        value = self._config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def set(self, key: str, value: Any) -> None:
        """
        Set configuration value using dot notation.

        Args:
            key: Configuration key (e.g., 'api_url')
            value: Value to set
        """
        keys = key.split('.')
        config = self._config

        for k in keys[:-1]:
            if k not in config:
                config[k] = {}
            config = config[k]

        config[keys[-1]] = value

    def save(self, path: Optional[str] = None) -> None:
        """
        Save configuration to a JSON or YAML file.

        Args:
            path: Path to save to. If None, uses original config_path
        """
        save_path = Path(path) if path else self.config_path
        save_path.parent.mkdir(parents=True, exist_ok=True)

        with open(save_path, 'w') as f:
            if save_path.suffix in ('.yaml', '.yml'):
                yaml.safe_dump(self._config, f, default_flow_style=False)
            else:
                json.dump(self._config, f, indent=2)

    @property
    def api_url(self) -> str:
        """Get remote API base URL."""
        return self.get('api_url', DEFAULT_CONFIG['api_url'])

    @property
    def storage_path(self) -> str:
        """Get local storage root path."""
        return self.get('storage_path', DEFAULT_CONFIG['storage_path'])

    @property
    def log_path(self) -> str:
        """Get log directory path."""
        return self.get('log_path', DEFAULT_CONFIG['log_path'])

    @property
    def store_path(self) -> str:
        """Get SQLite path of the local persistent store."""
        return os.path.join(self.storage_path, 'offline.db')

    @property
    def database_uri(self) -> str:
        """Get SQLAlchemy URI for the server database."""
        uri = self.get('database_uri')
        if uri:
            return uri
        return f"sqlite:///{os.path.join(self.storage_path, 'server.db')}"

    @property
    def max_attempts(self) -> int:
        """Get delivery attempts allowed per sync entry."""
        return int(self.get('max_attempts', DEFAULT_CONFIG['max_attempts']))

    @property
    def retry_delay_seconds(self) -> float:
        """Get base delay for linear retry backoff."""
        return float(self.get('retry_delay_seconds', DEFAULT_CONFIG['retry_delay_seconds']))

    @property
    def sync_interval_seconds(self) -> float:
        """Get periodic drain interval."""
        return float(self.get('sync_interval_seconds', DEFAULT_CONFIG['sync_interval_seconds']))

    @property
    def cleanup_interval_seconds(self) -> float:
        """Get periodic purge interval."""
        return float(self.get('cleanup_interval_seconds', DEFAULT_CONFIG['cleanup_interval_seconds']))

    @property
    def status_interval_seconds(self) -> float:
        """Get sync status refresh interval."""
        return float(self.get('status_interval_seconds', DEFAULT_CONFIG['status_interval_seconds']))

    @property
    def completed_retention_hours(self) -> float:
        """Get how long completed entries are kept."""
        return float(self.get('completed_retention_hours', DEFAULT_CONFIG['completed_retention_hours']))

    @property
    def weather_max_age_hours(self) -> float:
        """Get weather cache TTL in hours."""
        return float(self.get('weather_max_age_hours', DEFAULT_CONFIG['weather_max_age_hours']))

    @property
    def cache_version(self) -> str:
        """Get response cache version suffix."""
        return self.get('cache_version', DEFAULT_CONFIG['cache_version'])

    @property
    def request_timeout(self) -> float:
        """Get HTTP request timeout in seconds."""
        return float(self.get('request_timeout', DEFAULT_CONFIG['request_timeout']))

    @property
    def port(self) -> int:
        """Get server port."""
        return int(self.get('port', DEFAULT_CONFIG['port']))

    def __repr__(self) -> str:
        """String representation."""
        return f"AgriEchoConfig(path={self.config_path}, loaded={self._loaded})"


# Global config instance (can be imported by other modules)
_global_config: Optional[AgriEchoConfig] = None


def load_config(config_path: Optional[str] = None) -> AgriEchoConfig:
    """
    Load and return the configuration instance.

    On first call, it creates a new AgriEchoConfig instance. Subsequent calls
    return the cached instance.

    Args:
        config_path: Path to config file (only used on first call)

    Returns:
        AgriEchoConfig instance
    """
    global _global_config

    if _global_config is None:
        _global_config = AgriEchoConfig(config_path)

    return _global_config


def get_config(config_path: Optional[str] = None) -> AgriEchoConfig:
    """Alias for load_config for consistency with other modules."""
    return load_config(config_path)


def reset_config() -> None:
    """
    Reset the global config instance.

    Useful for testing when you need to reload configuration.
    """
    global _global_config
    _global_config = None
