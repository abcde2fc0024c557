"""Configuration management for build-cache.

Handles loading, saving, and validating TOML configuration stored in:
- macOS: ~/.config/build-cache/config.toml
- Linux: ~/.config/build-cache/config.toml (XDG_CONFIG_HOME)
- Windows: %APPDATA%\\build-cache\\config.toml

Environment variables (BUILD_CACHE_*) take precedence over the file.
"""

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import tomllib
import tomli_w

from build_cache.errors import ConfigurationError

ENV_PREFIX = "BUILD_CACHE"

REFRESH_MODES = ("blocking", "background")


@dataclass
class CacheConfig:
    """Configuration for the remote build cache.

    Attributes:
        bucket: Bucket holding cache entries
        refresh_after_seconds: Age after which a read re-uploads the entry (0 disables)
        refresh_mode: "blocking" or "background"
        endpoint_url: Custom S3-compatible endpoint (empty for AWS)
        region: Region name (empty for the SDK default)
        profile: Named credentials profile (empty for the default chain)
        log_level: Logging level name
        log_dir: Directory for the session log file
    """

    # Bucket
    bucket: str = ""
    endpoint_url: str = ""
    region: str = ""
    profile: str = ""

    # Freshness refresh
    refresh_after_seconds: int = 0
    refresh_mode: str = "blocking"

    # Logging
    log_level: str = "INFO"
    log_dir: Path = field(default_factory=lambda: get_default_log_dir())

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "CacheConfig":
        """Load configuration from TOML file.

        Args:
            path: Path to config file (defaults to standard location)

        Returns:
            CacheConfig instance with loaded values

        Raises:
            FileNotFoundError: If config file doesn't exist
        """
        if path is None:
            path = get_config_path()

        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, "rb") as f:
            data = tomllib.load(f)

        config = cls()

        if "bucket" in data:
            bucket = data["bucket"]
            config.bucket = bucket.get("name", config.bucket)
            config.endpoint_url = bucket.get("endpoint_url", config.endpoint_url)
            config.region = bucket.get("region", config.region)
            config.profile = bucket.get("profile", config.profile)

        if "refresh" in data:
            refresh = data["refresh"]
            config.refresh_after_seconds = int(
                refresh.get("after_seconds", config.refresh_after_seconds)
            )
            config.refresh_mode = refresh.get("mode", config.refresh_mode)

        if "logging" in data:
            config.log_level = data["logging"].get("level", config.log_level)
            log_dir = data["logging"].get("dir")
            if log_dir:
                config.log_dir = Path(log_dir)

        config.apply_env()
        return config

    @classmethod
    def from_env(cls) -> "CacheConfig":
        """Build configuration from defaults and environment variables only."""
        config = cls()
        config.apply_env()
        return config

    def apply_env(self) -> None:
        """Override fields from BUILD_CACHE_* environment variables."""
        for name in ("bucket", "endpoint_url", "region", "profile", "refresh_mode", "log_level"):
            value = os.environ.get(get_env_var_name(name))
            if value:
                setattr(self, name, value)

        env_refresh = os.environ.get(get_env_var_name("refresh_after_seconds"))
        if env_refresh:
            try:
                self.refresh_after_seconds = int(env_refresh)
            except ValueError as e:
                raise ConfigurationError(
                    f"{ENV_PREFIX}_REFRESH_AFTER_SECONDS must be an integer, got {env_refresh!r}"
                ) from e

    def validate(self) -> None:
        """Check the configuration can be used to build a cache client.

        Raises:
            ConfigurationError: If a value is missing or out of range
        """
        if not self.bucket:
            raise ConfigurationError("No bucket configured")
        if self.refresh_after_seconds < 0:
            raise ConfigurationError(
                f"refresh_after_seconds must be >= 0, got {self.refresh_after_seconds}",
                bucket=self.bucket,
            )
        if self.refresh_mode not in REFRESH_MODES:
            raise ConfigurationError(
                f"refresh_mode must be one of {', '.join(REFRESH_MODES)}, got {self.refresh_mode!r}",
                bucket=self.bucket,
            )

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        """TOML structure of this configuration."""
        return {
            "bucket": {
                "name": self.bucket,
                "endpoint_url": self.endpoint_url,
                "region": self.region,
                "profile": self.profile,
            },
            "refresh": {
                "after_seconds": self.refresh_after_seconds,
                "mode": self.refresh_mode,
            },
            "logging": {"level": self.log_level, "dir": str(self.log_dir)},
        }

    def save(self, path: Optional[Path] = None) -> None:
        """Save configuration to TOML file.

        Args:
            path: Path to save config (defaults to standard location)
        """
        if path is None:
            path = get_config_path()

        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "wb") as f:
            tomli_w.dump(self.to_dict(), f)

    def get(self, key: str, default: Optional[str] = None) -> Any:
        """Get a configuration value by attribute name.

        Args:
            key: Configuration key (e.g. "bucket", "refresh_after_seconds")
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        if not hasattr(self, key):
            return default

        value = getattr(self, key)
        if isinstance(value, Path):
            return str(value)
        return value

    def set(self, key: str, value: str) -> None:
        """Set a configuration value from its string form.

        Args:
            key: Configuration key
            value: Configuration value

        Raises:
            ValueError: If the key is unknown or the value has the wrong type
        """
        if not hasattr(self, key):
            raise ValueError(f"Invalid config key: {key}")

        current = getattr(self, key)
        if isinstance(current, bool):
            new_value: Any = value.lower() in ("true", "1", "yes")
        elif isinstance(current, int):
            new_value = int(value)
        elif isinstance(current, Path):
            new_value = Path(value)
        else:
            new_value = value

        setattr(self, key, new_value)


def get_config_dir() -> Path:
    """Get the platform-specific config directory.

    Returns:
        Path to the config directory for build-cache.
    """
    if sys.platform == "win32":
        appdata = os.environ.get("APPDATA")
        if appdata:
            return Path(appdata) / "build-cache"
        return Path.home() / "AppData" / "Roaming" / "build-cache"

    xdg_config = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config:
        return Path(xdg_config) / "build-cache"
    return Path.home() / ".config" / "build-cache"


def get_config_path() -> Path:
    """Get the path to the config.toml file."""
    return get_config_dir() / "config.toml"


def get_default_log_dir() -> Path:
    return get_config_dir() / "logs"


def get_env_var_name(key: str) -> str:
    """Get the environment variable name for a config key.

    Args:
        key: Configuration key

    Returns:
        Environment variable name
    """
    return f"{ENV_PREFIX}_{key.upper().replace('.', '_')}"
