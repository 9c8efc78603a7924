"""Configuration management for the chat assistant backend."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from collections.abc import Callable
from typing import Any, cast

import yaml
from dotenv import load_dotenv

from src.chat.errors import ClientInputError, ConfigurationError

logger = logging.getLogger(__name__)

_SRC_DIR = os.path.dirname(__file__)


class Configuration:
    """Event-driven configuration manager with observer pattern."""

    def __init__(
        self,
        config_path: str | None = None,
        runtime_config_path: str | None = None,
    ) -> None:
        """Initialize configuration from YAML and environment variables."""
        self.load_env()  # Load .env for API keys
        self._config_path = config_path or os.path.join(_SRC_DIR, "config.yaml")
        self._default_config = self._load_yaml_config()
        self._runtime_config_path = runtime_config_path or os.path.join(_SRC_DIR, "runtime_config.yaml")
        self._runtime_config_mtime: float | None = None
        self._current_config: dict[str, Any] = {}
        self._loaded = False

        # Event-driven observer pattern
        self._config_change_callbacks: list[Callable[[dict[str, Any]], None]] = []
        self._watch_task: asyncio.Task[None] | None = None

        self._reload_config()

    @staticmethod
    def load_env() -> None:
        """Load environment variables from .env file."""
        load_dotenv()

    def _load_yaml_config(self) -> dict[str, Any]:
        """Load the default configuration from YAML."""
        with open(self._config_path) as file:
            config = yaml.safe_load(file)
            if not isinstance(config, dict):
                raise ValueError("Configuration file must contain a dictionary")
            return cast(dict[str, Any], config)

    def _load_runtime_config(self) -> dict[str, Any]:
        """Load runtime overrides; a missing or unreadable file means no overrides."""
        if not os.path.exists(self._runtime_config_path):
            return {}
        try:
            with open(self._runtime_config_path) as file:
                config = yaml.safe_load(file)
        except (yaml.YAMLError, OSError) as e:
            logger.error(f"Ignoring unreadable runtime configuration: {e}")
            return {}
        if config is None:
            return {}
        if not isinstance(config, dict):
            logger.error("Ignoring runtime configuration: top level must be a mapping")
            return {}
        return cast(dict[str, Any], config)

    def _deep_merge(self, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        """Deep merge two dictionaries, with override taking precedence."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(cast(dict[str, Any], result[key]), cast(dict[str, Any], value))
            else:
                result[key] = value

        return result

    def _reload_config(self) -> bool:
        """Reload configuration if the runtime override file has been modified.

        Returns:
            True if config was actually reloaded, False if no changes.
        """
        current_mtime = None
        if os.path.exists(self._runtime_config_path):
            current_mtime = os.path.getmtime(self._runtime_config_path)

        if self._loaded and current_mtime == self._runtime_config_mtime:
            return False

        old_config = self._current_config.copy()
        self._runtime_config_mtime = current_mtime
        self._current_config = self._deep_merge(self._default_config, self._load_runtime_config())
        first_load = not self._loaded
        self._loaded = True

        # Notify observers if config actually changed (not just first load)
        if not first_load and self._current_config != old_config:
            self._notify_config_change()
        return True

    def _get_current_config(self) -> dict[str, Any]:
        """Get current configuration (cached, no file system access)."""
        return self._current_config

    def _notify_config_change(self) -> None:
        """Notify all registered observers of configuration changes."""
        for callback in self._config_change_callbacks:
            try:
                callback(self._current_config.copy())
            except Exception as e:
                logger.error(f"Error in config change callback: {e}")

    def subscribe_to_changes(self, callback: Callable[[dict[str, Any]], None]) -> None:
        """Subscribe to configuration change events.

        Args:
            callback: Function to call when config changes. Receives new
                config as argument.
        """
        if callback not in self._config_change_callbacks:
            self._config_change_callbacks.append(callback)

    def unsubscribe_from_changes(self, callback: Callable[[dict[str, Any]], None]) -> None:
        if callback in self._config_change_callbacks:
            self._config_change_callbacks.remove(callback)

    async def start_watching(self) -> None:
        """Start the async file watching task for automatic config updates."""
        if self._watch_task is not None:
            return  # Already watching

        self._watch_task = asyncio.create_task(self._watch_config_file())
        logger.info("Started watching runtime configuration file for changes")

    async def stop_watching(self) -> None:
        """Stop the async file watching task."""
        if self._watch_task is not None:
            self._watch_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._watch_task
            self._watch_task = None
            logger.info("Stopped watching runtime configuration file")

    async def _watch_config_file(self) -> None:
        """Async task that watches for config file changes."""
        while True:
            try:
                await asyncio.sleep(1)
                if self._reload_config():
                    logger.info("Runtime configuration file changed - config reloaded")
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error watching config file: {e}")
                await asyncio.sleep(5)  # Back off on errors

    def reload_runtime_config(self) -> bool:
        """Manually reload runtime configuration.

        Returns:
            True if configuration was reloaded, False if no changes detected.
        """
        return self._reload_config()

    def get_config_dict(self) -> dict[str, Any]:
        return self._get_current_config()

    # ------------------------------------------------------------------
    # Providers
    # ------------------------------------------------------------------

    def get_provider_config(self, provider: str) -> dict[str, Any]:
        """Get the configuration block of one LLM provider.

        Raises:
            ClientInputError: If the provider is not configured.
        """
        providers = self._get_current_config().get("llm", {}).get("providers", {})
        if provider not in providers:
            raise ClientInputError(f"Unsupported provider: {provider}")
        return cast(dict[str, Any], providers[provider])

    def get_provider_api_key(self, provider: str) -> str:
        """Get the API key for a provider from the environment.

        Raises:
            ConfigurationError: If the key's environment variable is unset or empty.
        """
        provider_config = self.get_provider_config(provider)
        env_key = provider_config.get("api_key_env")
        if not env_key:
            raise ConfigurationError(f"No api_key_env configured for provider '{provider}'")

        api_key = os.getenv(env_key)
        if not api_key:
            raise ConfigurationError(f"{env_key} is not configured in environment variables")
        return api_key

    # ------------------------------------------------------------------
    # Sections
    # ------------------------------------------------------------------

    def get_chat_service_config(self) -> dict[str, Any]:
        return self._get_current_config().get("chat", {}).get("service", {})

    def get_server_config(self) -> dict[str, Any]:
        """Get HTTP/WebSocket server configuration from YAML."""
        return self._get_current_config().get("chat", {}).get("websocket", {})

    def get_logging_config(self) -> dict[str, Any]:
        return self._get_current_config().get("logging", {})

    def get_max_steps(self) -> int:
        """Get the maximum number of model steps per run.

        Returns:
            Maximum number of steps (default: 10).
        """
        max_steps = self.get_chat_service_config().get("max_steps", 10)

        # bool is an int subclass; reject it explicitly
        if not isinstance(max_steps, int) or isinstance(max_steps, bool) or max_steps < 1:
            raise ValueError("max_steps must be a positive integer")

        return max_steps

    def get_connection_pool_config(self) -> dict[str, Any]:
        """Get HTTP connection pool configuration with validated defaults."""
        pool_config = self._get_current_config().get("connection_pool", {})

        max_connections = pool_config.get("max_connections", 50)
        max_keepalive = pool_config.get("max_keepalive_connections", 20)
        keepalive_expiry = pool_config.get("keepalive_expiry_seconds", 30.0)
        request_timeout = pool_config.get("request_timeout_seconds", 60.0)

        if max_connections < 1:
            raise ValueError("max_connections must be at least 1")
        if max_keepalive < 0 or max_keepalive > max_connections:
            raise ValueError("max_keepalive_connections must be between 0 and max_connections")
        if keepalive_expiry <= 0:
            raise ValueError("keepalive_expiry_seconds must be positive")
        if request_timeout <= 0:
            raise ValueError("request_timeout_seconds must be positive")

        return {
            "max_connections": max_connections,
            "max_keepalive_connections": max_keepalive,
            "keepalive_expiry_seconds": keepalive_expiry,
            "request_timeout_seconds": request_timeout,
        }
