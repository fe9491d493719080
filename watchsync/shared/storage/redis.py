"""
Simple Redis client manager that creates and tracks clients.
"""

import asyncio
import atexit
import threading
from typing import Dict

from loguru import logger
from redis.asyncio import Redis

from ..config import config


class RedisManager:
    """
    Simple Redis client manager.

    Features:
    - Creates and tracks Redis clients keyed by label
    - Loads connection strings from REDIS_URL_<LABEL> configuration keys
    - Ensures all clients are closed on process exit
    - Thread-safe singleton pattern
    """

    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if hasattr(self, "_initialized"):
            return

        self._clients: Dict[str, Redis] = {}
        self._connection_strings: Dict[str, str] = {}
        self._lock = threading.Lock()

        self._load_connection_strings()
        atexit.register(self._cleanup)

        self._initialized = True

    def _get_label_from_env_var(self, env_var: str) -> str | None:
        if env_var.startswith("REDIS_URL_"):
            return env_var[10:].lower()
        return None

    def _load_connection_strings(self):
        """Load Redis connection strings from centralized configuration."""
        for key, value in config.items():
            label = self._get_label_from_env_var(key)
            if label is None or not value:
                continue
            if label in self._connection_strings:
                logger.warning(
                    "Redis connection string for label '{}' already exists, '{}' will override it",
                    label,
                    key,
                )
            self._connection_strings[label] = value
            logger.info(
                "Loaded Redis connection string for label '{}': {}",
                label,
                self._hide_password_in_connection_string(value),
            )

        if "default" not in self._connection_strings:
            default_url = config.get_redis_url("default")
            self._connection_strings["default"] = default_url
            logger.info(
                "Using default Redis connection string: {}",
                self._hide_password_in_connection_string(default_url),
            )

    def _hide_password_in_connection_string(self, connection_string: str) -> str:
        """
        Hide password in Redis connection string for logging.

        Handles passwords containing '@' by splitting on the last one.
        """
        try:
            if "@" not in connection_string or "://" not in connection_string:
                return connection_string

            protocol_part, rest = connection_string.split("://", 1)
            last_at_index = rest.rfind("@")
            auth_part = rest[:last_at_index]
            host_part = rest[last_at_index + 1 :]
            if ":" not in auth_part:
                return connection_string

            username, password = auth_part.split(":", 1)
            if not password:
                return connection_string
            return f"{protocol_part}://{username}:***@{host_part}"
        except Exception:
            return connection_string

    def get_client(self, label: str | None = None) -> Redis:
        """
        Get Redis client by label.

        Args:
            label: Client label (defaults to 'default')

        Returns:
            Redis instance

        Raises:
            ValueError: If label not found
        """
        label = label or "default"

        with self._lock:
            if label not in self._clients:
                if label not in self._connection_strings:
                    raise ValueError(f"No Redis connection string found for label '{label}'")

                logger.info("Open Redis client for label '{}'", label)
                self._clients[label] = Redis.from_url(self._connection_strings[label])

            return self._clients[label]

    def _cleanup(self):
        """Cleanup method called on process exit."""
        for label in list(self._clients.keys()):
            client = self._clients.pop(label, None)
            if client is None:
                continue
            try:
                loop = asyncio.get_running_loop()
                loop.create_task(client.aclose())
                logger.info("Free redis client for '{}'", label)
            except RuntimeError:
                # No running loop at interpreter exit
                pass


def get_redis_manager() -> RedisManager:
    """Get global RedisManager instance."""
    return RedisManager()


def get_redis_client(label: str | None = None) -> Redis:
    """Get Redis client (global function)."""
    return get_redis_manager().get_client(label)


__all__ = ["RedisManager", "get_redis_client", "get_redis_manager"]
