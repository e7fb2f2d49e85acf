"""Configuration management for the playground engine."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from collections.abc import Callable
from typing import Any, cast

import yaml
from dotenv import load_dotenv

DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(__file__), "config.yaml")


class Configuration:
    """Event-driven configuration manager with observer pattern."""

    def __init__(self, config_path: str | None = None) -> None:
        """Initialize configuration from YAML and environment variables.

        Args:
            config_path: Optional override file deep-merged over the packaged
                defaults. Falls back to the PLAYGROUND_CONFIG environment variable.
        """
        self.load_env()  # Load .env for the proxy credential
        self._default_config = self._load_yaml_config(DEFAULT_CONFIG_PATH)
        self._override_path = config_path or os.getenv("PLAYGROUND_CONFIG")
        self._override_mtime: float | None = None
        self._current_config: dict[str, Any] = {}

        # Event-driven observer pattern
        self._config_change_callbacks: list[Callable[[dict[str, Any]], None]] = []
        self._watch_task: asyncio.Task[None] | None = None

        self._reload_config()

    @staticmethod
    def load_env() -> None:
        """Load environment variables from .env file."""
        load_dotenv()

    @staticmethod
    def _load_yaml_config(path: str) -> dict[str, Any]:
        """Load configuration from YAML file."""
        with open(path) as file:
            config = yaml.safe_load(file) or {}
            if not isinstance(config, dict):
                raise ValueError(f"Configuration file {path} must contain a dictionary")
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
        """Reload configuration if the override file has been modified.

        Returns:
            True if config was actually reloaded, False if no changes.
        """
        current_mtime = None
        if self._override_path and os.path.exists(self._override_path):
            current_mtime = os.path.getmtime(self._override_path)

        if self._current_config and current_mtime == self._override_mtime:
            return False

        old_config = self._current_config.copy()
        self._override_mtime = current_mtime

        overrides: dict[str, Any] = {}
        if current_mtime is not None and self._override_path:
            try:
                overrides = self._load_yaml_config(self._override_path)
            except (yaml.YAMLError, OSError, ValueError) as e:
                logging.error(f"Ignoring unreadable override config {self._override_path}: {e}")

        self._current_config = self._deep_merge(self._default_config, overrides)

        # Notify observers if config actually changed (not just first load)
        if old_config and self._current_config != old_config:
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
                logging.error(f"Error in config change callback: {e}")

    def subscribe_to_changes(self, callback: Callable[[dict[str, Any]], None]) -> None:
        """Subscribe to configuration change events.

        Args:
            callback: Function to call when config changes. Receives new
                config as argument.
        """
        if callback not in self._config_change_callbacks:
            self._config_change_callbacks.append(callback)

    def unsubscribe_from_changes(self, callback: Callable[[dict[str, Any]], None]) -> None:
        """Unsubscribe from configuration change events."""
        if callback in self._config_change_callbacks:
            self._config_change_callbacks.remove(callback)

    async def start_watching(self) -> None:
        """Start the async file watching task for automatic config updates."""
        if self._watch_task is not None or not self._override_path:
            return

        self._watch_task = asyncio.create_task(self._watch_config_file())
        logging.info("Started watching override configuration file for changes")

    async def stop_watching(self) -> None:
        """Stop the async file watching task."""
        if self._watch_task is not None:
            self._watch_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._watch_task
            self._watch_task = None
            logging.info("Stopped watching override configuration file")

    async def _watch_config_file(self) -> None:
        """Async task that watches for config file changes."""
        while True:
            try:
                await asyncio.sleep(1)
                if self._reload_config():
                    logging.info("Override configuration file changed - config reloaded")
            except asyncio.CancelledError:
                break
            except Exception as e:
                logging.error(f"Error watching config file: {e}")
                await asyncio.sleep(5)  # Back off on errors

    def get_config_value(self, path: list[str], default: Any = None) -> Any:
        """Get a configuration value by path, falling back to ``default``."""
        current: Any = self._get_current_config()
        for key in path:
            if isinstance(current, dict) and key in current:
                current = current[key]
            else:
                return default
        return current

    def reload_config(self) -> bool:
        """Manually reload the override configuration.

        Returns:
            True if configuration was reloaded, False if no changes detected.
        """
        return self._reload_config()

    @property
    def api_key(self) -> str:
        """Get the bearer credential for the proxy.

        Raises:
            ValueError: If the key is not found in environment variables.
        """
        env_key = self.get_config_value(["llm", "api_key_env"], "PROXY_API_KEY")
        api_key = os.getenv(env_key)
        if not api_key:
            raise ValueError(f"API key '{env_key}' not found in environment variables")
        return api_key

    def get_llm_config(self) -> dict[str, Any]:
        """Get proxy connection configuration (base_url, paths, improver model)."""
        llm_config = self._get_current_config().get("llm", {})
        if not llm_config.get("base_url"):
            raise ValueError("llm.base_url must be configured")
        return llm_config

    def get_connection_pool_config(self) -> dict[str, Any]:
        """Get HTTP connection pool configuration with validated defaults."""
        pool_config = self._get_current_config().get("llm", {}).get("connection_pool", {})

        config = {
            "max_connections": pool_config.get("max_connections", 20),
            "max_keepalive_connections": pool_config.get("max_keepalive_connections", 10),
            "keepalive_expiry_seconds": pool_config.get("keepalive_expiry_seconds", 30.0),
            "request_timeout_seconds": pool_config.get("request_timeout_seconds", 120.0),
        }

        if config["max_connections"] < 1:
            raise ValueError("max_connections must be at least 1")
        if config["request_timeout_seconds"] <= 0:
            raise ValueError("request_timeout_seconds must be positive")

        return config

    def get_chat_defaults(self) -> dict[str, Any]:
        """Get default chat model and generation parameters."""
        chat_config = self._get_current_config().get("chat", {})
        return {
            "model": chat_config.get("default_model", ""),
            "params": dict(chat_config.get("params", {})),
            "title_max_length": chat_config.get("title_max_length", 40),
        }

    def get_image_retry_config(self) -> dict[str, Any]:
        """Get image generation retry configuration.

        Returns:
            Dict with max_attempts (default 5) and delay_ms (default 3000).
        """
        retry_config = self._get_current_config().get("images", {}).get("retry", {})
        max_attempts = retry_config.get("max_attempts", 5)
        delay_ms = retry_config.get("delay_ms", 3000)

        if not isinstance(max_attempts, int) or max_attempts < 1:
            raise ValueError("images.retry.max_attempts must be a positive integer")
        if delay_ms < 0:
            raise ValueError("images.retry.delay_ms must not be negative")

        return {"max_attempts": max_attempts, "delay_ms": delay_ms}

    def get_image_config(self) -> dict[str, Any]:
        """Get image playground configuration."""
        images_config = self._get_current_config().get("images", {})
        return {
            "default_model": images_config.get("default_model", "gemini-3-pro-image"),
            "max_reference_images": images_config.get("max_reference_images", 14),
        }

    def get_history_config(self) -> dict[str, Any]:
        """Get version history configuration.

        Returns:
            Dict with max_versions (default 10).
        """
        history_config = self._get_current_config().get("history", {})
        max_versions = history_config.get("max_versions", 10)

        if not isinstance(max_versions, int) or max_versions < 2:
            raise ValueError("history.max_versions must be an integer >= 2")

        return {"max_versions": max_versions}

    def get_storage_config(self) -> dict[str, Any]:
        """Get session storage configuration."""
        return self._get_current_config().get("storage", {})

    def get_logging_config(self) -> dict[str, Any]:
        """Get logging configuration."""
        return self._get_current_config().get("logging", {})
