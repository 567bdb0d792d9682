from collections import deque
from datetime import datetime
from typing import Deque, Dict, List, Optional

from constants import HISTORY_LIMIT
from logging_config import get_logger
from schemas.chat import Message

logger = get_logger(__name__)


class HistoryStore:
    """Bounded, append-only message logs keyed by channel key.

    Each log keeps the most recent ``limit`` messages; appending past the
    bound drops the oldest one. History lives only as long as the process.

    Visibility is decided by the caller: room and group reads pass the
    reader's own join time as ``since``, private reads pass nothing and get
    the whole shared log.
    """

    def __init__(self, limit: int = HISTORY_LIMIT):
        if limit < 1:
            raise ValueError("History limit must be at least 1")
        self.limit = limit
        self._logs: Dict[str, Deque[Message]] = {}

    def append(self, channel_key: str, message: Message) -> Message:
        log = self._logs.get(channel_key)
        if log is None:
            log = self._logs[channel_key] = deque(maxlen=self.limit)
        if len(log) == self.limit:
            logger.debug(f"History for {channel_key} at limit {self.limit}, evicting oldest message")
        log.append(message)
        return message

    def query(self, channel_key: str, since: Optional[datetime] = None) -> List[Message]:
        log = self._logs.get(channel_key)
        if not log:
            return []
        if since is None:
            return list(log)
        return [m for m in log if m.created_at >= since]

    def clear(self, channel_key: Optional[str] = None):
        if channel_key is None:
            self._logs.clear()
            logger.info("Cleared all message history")
        else:
            self._logs.pop(channel_key, None)
            logger.info(f"Cleared message history for {channel_key}")

    def __len__(self) -> int:
        return sum(len(log) for log in self._logs.values())
