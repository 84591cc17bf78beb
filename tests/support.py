"""
Shared helpers for the meshchat test suite.
"""

import asyncio

from meshchat.common.protocol_definitions import decode_frame


class RecordingDisplay:
    """Display stand-in that records what the client would have shown."""

    def __init__(self):
        self.messages = []
        self.histories = []
        self.search_results = []
        self.participants = []
        self.infos = []
        self.warnings = []
        self.errors = []

    def show_message(self, message):
        self.messages.append(message)

    def show_history(self, messages):
        self.histories.append(list(messages))

    def show_search_results(self, text, messages):
        self.search_results.append((text, list(messages)))

    def show_participants(self, participants):
        self.participants.append(participants)

    def show_info(self, text):
        self.infos.append(text)

    def show_warning(self, text):
        self.warnings.append(text)

    def show_error(self, text):
        self.errors.append(text)

    def show_help(self):
        self.infos.append('help')


async def read_frame(reader, timeout: float = 2.0):
    """Read and decode one frame, failing if the connection closed."""
    line = await asyncio.wait_for(reader.readline(), timeout)
    if not line:
        raise AssertionError("connection closed while waiting for a frame")
    return decode_frame(line)


async def read_until(reader, predicate, timeout: float = 2.0):
    """Read frames until one satisfies predicate; returns it."""
    while True:
        frame = await read_frame(reader, timeout)
        if predicate(frame):
            return frame


async def wait_for_condition(condition, timeout: float = 2.0, interval: float = 0.01):
    """Poll until condition() is true or fail after timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)


def chat_frames(frames):
    return [frame for frame in frames if frame['type'] == 'chat']
