"""
Broadcast hub module.

Fans every accepted record out to the outbound channel of each attached
session. Publishing never waits on a consumer: each channel is a bounded
buffer that discards its oldest frame when full.
"""

import asyncio
import threading
from collections import deque
from typing import Dict, List, Optional

from meshchat.common.constants import OUTBOUND_QUEUE_SIZE
from meshchat.common.protocol_definitions import HistoryRecord, create_record_message, encode_frame


class SessionChannel:
    """Bounded, drop-oldest outbound frame buffer with a single consumer."""

    def __init__(self, maxsize: int = OUTBOUND_QUEUE_SIZE):
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")
        self.maxsize = maxsize
        self.dropped = 0
        self.closed = False
        self._frames = deque()
        self._ready = asyncio.Event()

    def __len__(self) -> int:
        return len(self._frames)

    def push(self, frame: bytes) -> bool:
        """Queue an encoded frame; returns False once the channel is closed."""
        if self.closed:
            return False
        if len(self._frames) >= self.maxsize:
            self._frames.popleft()
            self.dropped += 1
        self._frames.append(frame)
        self._ready.set()
        return True

    async def get(self) -> Optional[bytes]:
        """Wait for the next frame; returns None once closed and drained."""
        while not self._frames:
            if self.closed:
                return None
            self._ready.clear()
            await self._ready.wait()
        return self._frames.popleft()

    def pop_all(self) -> List[bytes]:
        """Take every frame currently queued without waiting."""
        frames = list(self._frames)
        self._frames.clear()
        return frames

    def close(self):
        """Release the channel; pending frames are discarded."""
        self.closed = True
        self._frames.clear()
        self._ready.set()


class BroadcastHub:
    """In-memory fan-out to every attached session channel."""

    def __init__(self):
        self._channels: Dict[str, SessionChannel] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._channels)

    def attach(self, session_id: str, channel: SessionChannel):
        with self._lock:
            self._channels[session_id] = channel

    def detach(self, session_id: str) -> Optional[SessionChannel]:
        with self._lock:
            return self._channels.pop(session_id, None)

    def publish(self, record: HistoryRecord) -> int:
        """Push a record to every attached channel, the sender's included."""
        frame = encode_frame(create_record_message(record))
        with self._lock:
            channels = list(self._channels.values())
        for channel in channels:
            channel.push(frame)
        return len(channels)

    def drop_counts(self) -> Dict[str, int]:
        """Per-session count of frames discarded because a channel was full."""
        with self._lock:
            return {session_id: channel.dropped for session_id, channel in self._channels.items()}
