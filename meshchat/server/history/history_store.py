"""
History store module.

Durable, size-bounded append log of chat messages. Records are kept in memory
in a ring of the last N entries and mirrored to a JSON Lines file so history
survives a server restart.
"""

import json
import os
import threading
from collections import deque
from pathlib import Path
from typing import List, Optional

from meshchat.common.constants import MAX_CHAT_HISTORY
from meshchat.common.errors import MalformedMessage, PersistenceError
from meshchat.common.message import ChatMessage
from meshchat.common.protocol_definitions import HistoryRecord, record_from_dict, record_to_dict
from meshchat.server.utils.logger import logger


class HistoryStore:
    """
    Append-only record store capped at `capacity` records.

    Appends are serialized under a single lock and are durable (flushed and
    fsynced) before append() returns. Queries copy a snapshot under the same
    lock, so they never observe a record twice or skip one.
    """

    def __init__(self, path: Optional[str] = None, capacity: int = MAX_CHAT_HISTORY):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.path = Path(path) if path else None
        self.capacity = capacity
        self._records = deque(maxlen=capacity)
        self._next_sequence = 1
        self._file_lines = 0
        self._lock = threading.Lock()

        if self.path is not None:
            self._load()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    @property
    def last_sequence(self) -> int:
        """Sequence number of the most recent append, 0 if nothing was appended."""
        with self._lock:
            return self._next_sequence - 1

    def append(self, message: ChatMessage, machine_tag: Optional[str] = None) -> HistoryRecord:
        """
        Assign the next receipt sequence, persist the record and retain it.

        Raises PersistenceError if the record could not be written; the error
        carries the record so the caller can still deliver it live.

        The write and fsync run on the calling thread, so on the server a
        slow disk stalls the event loop for the length of one append.
        """
        with self._lock:
            record = HistoryRecord(sequence=self._next_sequence, message=message, machine_tag=machine_tag)
            self._next_sequence += 1

            if self.path is not None:
                try:
                    self._write(record)
                except OSError as e:
                    raise PersistenceError(f"Could not persist message {message.id}: {e}", record)

            # deque(maxlen) evicts the oldest record
            self._records.append(record)

            if self.path is not None and self._file_lines > 2 * self.capacity:
                self._compact()

            return record

    def recent(self, count: int) -> List[HistoryRecord]:
        """Return up to `count` most recent records, oldest first."""
        if count <= 0:
            return []
        with self._lock:
            snapshot = list(self._records)
        return snapshot[-count:]

    def search(self, substring: str) -> List[HistoryRecord]:
        """Return retained records whose text contains `substring` (case-sensitive), in receipt order."""
        with self._lock:
            snapshot = list(self._records)
        return [record for record in snapshot if substring in record.message.searchable_text()]

    def _load(self):
        """Load retained records from the history file."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            if not self.path.exists():
                return
            with open(self.path, 'r', encoding='utf-8') as f:
                for line_no, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    self._file_lines += 1
                    try:
                        record = record_from_dict(json.loads(line))
                    except (json.JSONDecodeError, MalformedMessage) as e:
                        logger.warning(f"Skipping unreadable history line {line_no} in {self.path}: {e}")
                        continue
                    self._records.append(record)
                    self._next_sequence = max(self._next_sequence, record.sequence + 1)
        except OSError as e:
            raise PersistenceError(f"Could not load history file {self.path}: {e}")

        logger.info(f"Loaded {len(self._records)} history record(s) from {self.path}")

    def _write(self, record: HistoryRecord):
        """Append one record to the history file and force it to disk."""
        line = json.dumps(record_to_dict(record), separators=(',', ':')) + '\n'
        with open(self.path, 'a', encoding='utf-8') as f:
            f.write(line)
            f.flush()
            os.fsync(f.fileno())
        self._file_lines += 1

    def _compact(self):
        """Rewrite the history file so it holds only the retained window."""
        tmp_path = self.path.with_name(self.path.name + '.tmp')
        try:
            with open(tmp_path, 'w', encoding='utf-8') as f:
                for record in self._records:
                    f.write(json.dumps(record_to_dict(record), separators=(',', ':')) + '\n')
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except OSError as e:
            # Retried on the next append
            logger.warning(f"Could not compact history file {self.path}: {e}")
            return
        self._file_lines = len(self._records)
        logger.debug(f"Compacted history file {self.path} to {self._file_lines} record(s)")
