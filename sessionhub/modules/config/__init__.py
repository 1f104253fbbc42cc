"""
Config Module - Black Box Interface

Purpose: Application configuration management
Interface: get_config(), ConfigModule.get(), ConfigModule.get_config_schema()
Hidden: Config sources, validation logic, environment parsing

Values come from the process environment, with a .env file as fallback.
"""

import os
from typing import Any, Dict

from dotenv import load_dotenv

# Configuration Contract: Required and Optional Keys

REQUIRED_CONFIG_KEYS = {
    "host": "API server bind address",
    "port": "API server port",
    "log_level": "Logging level (DEBUG, INFO, WARNING, ERROR)",
    "bridge_url": "Base URL of the messaging bridge",
    "default_profile_id": "Profile used by /send when none is given",
    "recipient_suffix": "Address suffix appended to bare phone numbers",
    "teardown_timeout": "Seconds allowed for a graceful session teardown",
    "webhook_timeout": "Per-request webhook timeout in seconds",
    "webhook_max_attempts": "Delivery attempts per lifecycle event",
    "webhook_backoff": "Initial retry delay in seconds",
    "event_queue_size": "Maximum number of undelivered lifecycle events",
    "event_history_size": "Lifecycle events kept per profile in the journal",
}

OPTIONAL_CONFIG_KEYS = {
    "webhook_url": {
        "description": "Sink receiving lifecycle events",
        "default": None,  # Events are only logged/journaled when unset
    },
    "webhook_secret": {
        "description": "HMAC-SHA256 key used to sign webhook bodies",
        "default": None,
    },
    "redis_url": {
        "description": "Redis URL for the event journal and live stream",
        "default": None,
    },
    "debug": {
        "description": "Enable debug mode",
        "default": False,
    },
}


class ConfigModule:
    """Configuration management module."""

    def __init__(self, env_file: str = ".env"):
        """Initialize with environment variables (existing ones win over the .env file)."""
        load_dotenv(env_file, override=False)
        self._config = self._load_from_env()
        self._validate_required_keys()

    def _validate_required_keys(self) -> None:
        """
        Validate that all required configuration keys are present.

        Raises:
            ValueError: If required keys are missing
        """
        missing_keys = []
        for key in REQUIRED_CONFIG_KEYS:
            if key not in self._config or self._config[key] in (None, ""):
                missing_keys.append(key)

        if missing_keys:
            raise ValueError(
                f"Missing required configuration keys: {', '.join(missing_keys)}. "
                f"Check environment variables and the .env file."
            )

    def _load_from_env(self) -> Dict[str, Any]:
        """Load configuration from environment."""
        return {
            # API settings
            "host": os.getenv("API_HOST", "0.0.0.0"),
            "port": int(os.getenv("API_PORT", os.getenv("PORT", "3000"))),
            "log_level": os.getenv("LOG_LEVEL", "INFO"),
            "debug": os.getenv("DEBUG", "false").lower() == "true",
            # Messaging collaborator
            "bridge_url": os.getenv("BRIDGE_URL", "http://localhost:8081"),
            "default_profile_id": os.getenv("DEFAULT_PROFILE_ID", "default"),
            "recipient_suffix": os.getenv("RECIPIENT_SUFFIX", "@c.us"),
            "teardown_timeout": float(os.getenv("TEARDOWN_TIMEOUT", "10")),
            # Webhook sink
            "webhook_url": os.getenv("WEBHOOK_URL") or None,
            "webhook_secret": os.getenv("WEBHOOK_SECRET") or None,
            "webhook_timeout": float(os.getenv("WEBHOOK_TIMEOUT", "10")),
            "webhook_max_attempts": int(os.getenv("WEBHOOK_MAX_ATTEMPTS", "3")),
            "webhook_backoff": float(os.getenv("WEBHOOK_BACKOFF", "0.5")),
            "event_queue_size": int(os.getenv("EVENT_QUEUE_SIZE", "1000")),
            # Event journal
            "redis_url": os.getenv("REDIS_URL") or None,
            "event_history_size": int(os.getenv("EVENT_HISTORY_SIZE", "200")),
        }

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value."""
        return self._config.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set configuration value."""
        self._config[key] = value

    def get_all(self) -> Dict[str, Any]:
        """Get all configuration values."""
        return self._config.copy()

    @staticmethod
    def get_config_schema() -> Dict[str, Any]:
        """
        Get the configuration schema (contract) for this module.

        Returns:
            Dictionary with 'required' and 'optional' key specifications

        Example:
            >>> schema = ConfigModule.get_config_schema()
            >>> print(schema['required']['bridge_url'])
            'Base URL of the messaging bridge'
        """
        return {
            "required": REQUIRED_CONFIG_KEYS.copy(),
            "optional": OPTIONAL_CONFIG_KEYS.copy(),
        }


# Singleton instance
_instance = None


def get_config() -> ConfigModule:
    """Get the configuration module singleton."""
    global _instance
    if _instance is None:
        _instance = ConfigModule()
    return _instance


def reset_config() -> None:
    """Drop the singleton so the next get_config() re-reads the environment."""
    global _instance
    _instance = None


__all__ = ["get_config", "reset_config", "ConfigModule"]
