import asyncio
import json
from typing import Dict, Optional, Set

from fastapi import WebSocket

from logging_config import get_logger

logger = get_logger(__name__)


class ConnectionManager:
    """Tracks live WebSocket connections and their channel subscriptions.

    Sending never blocks: frames are queued per connection and written by
    that connection's :meth:`pump` task, so callers can fan out while holding
    the coordinator lock and each socket still sees frames in emission order.
    """

    def __init__(self):
        # Format: {connection_id: queue of frames}
        self.queues: Dict[str, asyncio.Queue] = {}
        # Format: {channel_key: {connection_id}}
        self.subscribers: Dict[str, Set[str]] = {}
        # Format: {connection_id: {channel_key}}
        self.channels: Dict[str, Set[str]] = {}

    def connect(self, connection_id: str) -> asyncio.Queue:
        queue = asyncio.Queue()
        self.queues[connection_id] = queue
        self.channels[connection_id] = set()
        logger.debug(f"Registered connection {connection_id} ({len(self.queues)} live)")
        return queue

    def disconnect(self, connection_id: str):
        self.unsubscribe_all(connection_id)
        self.channels.pop(connection_id, None)
        queue = self.queues.pop(connection_id, None)
        if queue is not None:
            # Stops the pump once pending frames are written
            queue.put_nowait(None)
        logger.debug(f"Unregistered connection {connection_id} ({len(self.queues)} live)")

    def __len__(self) -> int:
        return len(self.queues)

    def subscribe(self, connection_id: str, channel_key: str):
        if connection_id not in self.queues:
            logger.debug(f"Ignoring subscribe of unknown connection {connection_id} to {channel_key}")
            return
        self.subscribers.setdefault(channel_key, set()).add(connection_id)
        self.channels[connection_id].add(channel_key)
        logger.debug(f"Connection {connection_id} subscribed to {channel_key}")

    def unsubscribe(self, connection_id: str, channel_key: str):
        members = self.subscribers.get(channel_key)
        if members is not None:
            members.discard(connection_id)
            if not members:
                del self.subscribers[channel_key]
        if connection_id in self.channels:
            self.channels[connection_id].discard(channel_key)

    def unsubscribe_all(self, connection_id: str):
        for channel_key in list(self.channels.get(connection_id, ())):
            self.unsubscribe(connection_id, channel_key)

    def send(self, connection_id: str, event: str, data=None) -> bool:
        queue = self.queues.get(connection_id)
        if queue is None:
            logger.debug(f"Dropping '{event}' for closed connection {connection_id}")
            return False
        queue.put_nowait({"event": event, "data": data})
        return True

    def to_channel(self, channel_key: str, event: str, data=None, exclude: Optional[str] = None) -> int:
        sent = 0
        for connection_id in self.subscribers.get(channel_key, ()):
            if connection_id == exclude:
                continue
            if self.send(connection_id, event, data):
                sent += 1
        logger.debug(f"Broadcast '{event}' to {sent} connections on {channel_key}")
        return sent

    def to_all(self, event: str, data=None) -> int:
        sent = 0
        for connection_id in list(self.queues):
            if self.send(connection_id, event, data):
                sent += 1
        logger.debug(f"Broadcast '{event}' to all {sent} connections")
        return sent

    async def pump(self, connection_id: str, queue: asyncio.Queue, websocket: WebSocket):
        """Write queued frames to the socket until the connection is unregistered."""
        try:
            while True:
                frame = await queue.get()
                if frame is None:
                    break
                await websocket.send_text(json.dumps(frame))
        except asyncio.CancelledError:
            logger.debug(f"Writer task cancelled for connection {connection_id}")
            raise
        except Exception as e:
            logger.warning(f"Error sending to connection {connection_id}: {e}")
