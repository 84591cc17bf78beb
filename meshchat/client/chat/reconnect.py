"""
Reconnect controller.

Owns the client's connect / retry / backoff state machine and supervises one
chat session at a time.
"""

import asyncio
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Optional

from meshchat.client.chat.chat_client import SessionEnd
from meshchat.client.utils.logger import logger
from meshchat.common.constants import RECONNECT_BASE_DELAY, RECONNECT_MAX_DELAY
from meshchat.common.errors import HandshakeRejected, HandshakeTimeout, ReconnectExhausted, TransportError

# Failures that send the controller back to DISCONNECTED and into backoff
RETRYABLE_ERRORS = (TransportError, HandshakeTimeout, HandshakeRejected)


class ConnectionState(Enum):
    DISCONNECTED = 'disconnected'
    CONNECTING = 'connecting'
    CONNECTED = 'connected'
    STOPPED = 'stopped'


@dataclass
class ReconnectState:
    """Backoff bookkeeping; reset after every successful handshake."""
    base_delay: float = RECONNECT_BASE_DELAY
    max_delay: float = RECONNECT_MAX_DELAY
    retry_limit: Optional[int] = None
    attempt_count: int = 0
    next_delay: float = field(init=False)

    def __post_init__(self):
        self.next_delay = self.compute_delay()

    def compute_delay(self) -> float:
        """min(base_delay * 2^attempt_count, max_delay)"""
        # Exponent capped to keep the product finite
        return min(self.base_delay * (2 ** min(self.attempt_count, 32)), self.max_delay)

    @property
    def exhausted(self) -> bool:
        return self.retry_limit is not None and self.attempt_count >= self.retry_limit

    def record_failure(self) -> float:
        """Return the delay before the next attempt and advance the attempt count."""
        delay = self.compute_delay()
        self.attempt_count += 1
        self.next_delay = self.compute_delay()
        return delay

    def reset(self):
        self.attempt_count = 0
        self.next_delay = self.compute_delay()


class ReconnectController:
    """
    Connect, run a session, and reconnect with exponential backoff.

    `connect` is an async callable returning an object with an async
    `run() -> SessionEnd` method, and raising one of RETRYABLE_ERRORS on
    failure. `sleep` is the only point where the controller deliberately
    waits; it defaults to asyncio.sleep and can be replaced in tests.
    """

    def __init__(self, connect: Callable[[], Awaitable], state: Optional[ReconnectState] = None,
                 sleep: Callable[[float], Awaitable] = asyncio.sleep, jitter: float = 0.0,
                 on_state_change: Optional[Callable[[ConnectionState], None]] = None):
        self._connect = connect
        self.state = state if state is not None else ReconnectState()
        self._sleep = sleep
        self._jitter = jitter
        self._on_state_change = on_state_change
        self._stop_event = asyncio.Event()
        self.connection_state = ConnectionState.DISCONNECTED
        self.last_delay: Optional[float] = None

    def stop(self):
        """Request a stop; a pending backoff wait ends immediately."""
        self._stop_event.set()

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    async def run(self):
        """
        Run until the user quits.

        Raises ReconnectExhausted once `retry_limit` consecutive retries have
        failed.
        """
        while True:
            if self.stopping:
                self._set_state(ConnectionState.STOPPED)
                return

            self._set_state(ConnectionState.CONNECTING)
            try:
                session = await self._connect()
            except RETRYABLE_ERRORS as e:
                self._set_state(ConnectionState.DISCONNECTED)
                logger.warning(f"Connection attempt failed: {e}")
                if self.state.exhausted:
                    self._set_state(ConnectionState.STOPPED)
                    raise ReconnectExhausted(self.state.attempt_count + 1)
                delay = self._with_jitter(self.state.record_failure())
                self.last_delay = delay
                logger.log_retry(delay, self.state.attempt_count, self.state.retry_limit)
                await self._wait(delay)
                continue

            self.state.reset()
            self._set_state(ConnectionState.CONNECTED)
            end = await session.run()
            if end is SessionEnd.QUIT:
                self._set_state(ConnectionState.STOPPED)
                return
            self._set_state(ConnectionState.DISCONNECTED)
            logger.info("Disconnected from server, attempting to reconnect...")

    def _with_jitter(self, delay: float) -> float:
        if self._jitter <= 0:
            return delay
        return delay + random.uniform(0, self._jitter * delay)

    async def _wait(self, delay: float):
        """Wait for `delay` seconds or until stop() is called, whichever is first."""
        sleep_task = asyncio.ensure_future(self._sleep(delay))
        stop_task = asyncio.ensure_future(self._stop_event.wait())
        try:
            await asyncio.wait({sleep_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleep_task, stop_task):
                task.cancel()
            await asyncio.gather(sleep_task, stop_task, return_exceptions=True)

    def _set_state(self, new_state: ConnectionState):
        if new_state is self.connection_state:
            return
        logger.debug(f"Connection state {self.connection_state.value} -> {new_state.value}")
        self.connection_state = new_state
        if self._on_state_change is not None:
            self._on_state_change(new_state)
