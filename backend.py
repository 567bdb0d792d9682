import redis
from typing import Dict, Optional

from constants import REDIS_HOST, REDIS_PORT, REDIS_PASSWORD, THEME_BACKEND
from redis_keys import REDIS_THEME_KEY
from logging_config import get_logger

logger = get_logger(__name__)


class MemoryThemeBackend:
    """Theme preferences kept in process memory, keyed by lowercased username."""

    def __init__(self):
        self.themes: Dict[str, str] = {}

    def get_theme(self, username: str) -> Optional[str]:
        return self.themes.get(username.lower())

    def set_theme(self, username: str, theme: str):
        self.themes[username.lower()] = theme
        logger.debug(f"Stored theme '{theme}' for user {username}")


class RedisThemeBackend:
    """Theme preferences in Redis, so they outlive a process restart."""

    def __init__(self, redis_client=None):
        if redis_client is None:
            logger.info(f"Initializing RedisThemeBackend with connection to {REDIS_HOST}:{REDIS_PORT}")
            try:
                redis_client = redis.Redis(host=REDIS_HOST, port=REDIS_PORT, password=REDIS_PASSWORD, decode_responses=True)
                # Test connection
                redis_client.ping()
                logger.info(f"Redis client connected successfully to {REDIS_HOST}:{REDIS_PORT}")
            except Exception as e:
                logger.error(f"Failed to connect to Redis at {REDIS_HOST}:{REDIS_PORT}: {e}", exc_info=True)
                raise
        self.redis_client = redis_client

    def _key(self, username: str) -> str:
        return REDIS_THEME_KEY.format(username=username.lower())

    def get_theme(self, username: str) -> Optional[str]:
        theme = self.redis_client.get(self._key(username))
        if theme is None:
            logger.debug(f"No stored theme for user {username}")
            return None
        if isinstance(theme, bytes):
            theme = theme.decode("utf-8")
        return theme

    def set_theme(self, username: str, theme: str):
        self.redis_client.set(self._key(username), theme)
        logger.debug(f"Stored theme '{theme}' for user {username} in Redis")


def create_theme_backend(kind: str = THEME_BACKEND):
    if kind == "redis":
        return RedisThemeBackend()
    if kind == "memory":
        return MemoryThemeBackend()
    raise ValueError(f"Unknown THEME_BACKEND '{kind}', expected 'memory' or 'redis'")
