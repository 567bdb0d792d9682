import os

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 8000))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", None)

# Messages kept per channel before the oldest is evicted
HISTORY_LIMIT = int(os.getenv("HISTORY_LIMIT", 1000))
USERNAME_MAX_LENGTH = int(os.getenv("USERNAME_MAX_LENGTH", 20))

# Sender name for system notices (welcome, joined, left)
BOT_NAME = os.getenv("BOT_NAME", "HuddleBot")
WELCOME_MESSAGE = os.getenv("WELCOME_MESSAGE", "Welcome to HuddleChat")

VALID_THEMES = [t.strip() for t in os.getenv("VALID_THEMES", "light,dark").split(",") if t.strip()]
DEFAULT_THEME = os.getenv("DEFAULT_THEME", "light")

# "memory" or "redis"
THEME_BACKEND = os.getenv("THEME_BACKEND", "memory")

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)
