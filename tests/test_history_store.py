#!/usr/bin/env python3
"""
Unit tests for the history store.

Covers:
- Receipt sequence numbering and FIFO eviction at capacity
- recent() and search() semantics
- Durable append, reload after restart and file compaction
- PersistenceError when the history file cannot be written
"""

import json
import os
import tempfile
import unittest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from meshchat.common.errors import PersistenceError
from meshchat.common.message import ChatMessage, CodeSnippet, FilePath
from meshchat.server.history.history_store import HistoryStore


def bodies(records):
    return [record.message.body for record in records]


class TestHistoryStoreInMemory(unittest.TestCase):
    """History store without a backing file."""

    def setUp(self):
        self.store = HistoryStore(capacity=5)

    def test_append_assigns_increasing_sequence(self):
        first = self.store.append(ChatMessage.create('alice', 'one'))
        second = self.store.append(ChatMessage.create('bob', 'two'), machine_tag='devbox')

        self.assertEqual(first.sequence, 1)
        self.assertEqual(second.sequence, 2)
        self.assertEqual(second.machine_tag, 'devbox')
        self.assertEqual(self.store.last_sequence, 2)

    def test_recent_returns_oldest_first(self):
        for body in ('one', 'two', 'three'):
            self.store.append(ChatMessage.create('alice', body))

        self.assertEqual(bodies(self.store.recent(2)), ['two', 'three'])
        self.assertEqual(bodies(self.store.recent(10)), ['one', 'two', 'three'])

    def test_recent_with_non_positive_count(self):
        self.store.append(ChatMessage.create('alice', 'one'))
        self.assertEqual(self.store.recent(0), [])
        self.assertEqual(self.store.recent(-3), [])

    def test_capacity_evicts_oldest_records(self):
        for i in range(8):
            self.store.append(ChatMessage.create('alice', f'message {i}'))

        self.assertEqual(len(self.store), 5)
        self.assertEqual(bodies(self.store.recent(5)), [f'message {i}' for i in range(3, 8)])
        self.assertEqual(self.store.search('message 0'), [])
        self.assertEqual(self.store.last_sequence, 8)

    def test_search_is_case_sensitive_and_in_receipt_order(self):
        self.store.append(ChatMessage.create('alice', 'Deploy done'))
        self.store.append(ChatMessage.create('bob', 'deploy started'))
        self.store.append(ChatMessage.create('carol', 'lunch?'))
        self.store.append(ChatMessage.create('dave', 'second deploy'))

        self.assertEqual(bodies(self.store.search('deploy')), ['deploy started', 'second deploy'])
        self.assertEqual(bodies(self.store.search('Deploy')), ['Deploy done'])
        self.assertEqual(self.store.search('nothing like this'), [])

    def test_search_looks_at_kind_fields(self):
        self.store.append(ChatMessage.create('bob', 'see file', FilePath('/srv/app/main.py')))
        self.store.append(ChatMessage.create('bob', 'x = 1', CodeSnippet('python')))

        self.assertEqual(bodies(self.store.search('main.py')), ['see file'])

    def test_capacity_must_be_positive(self):
        with self.assertRaises(ValueError):
            HistoryStore(capacity=0)


class TestHistoryStorePersistence(unittest.TestCase):
    """History store backed by a JSON Lines file."""

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmp.name, 'history', 'chat_history.jsonl')

    def tearDown(self):
        self.tmp.cleanup()

    def read_lines(self):
        with open(self.path, 'r', encoding='utf-8') as f:
            return [line for line in f.read().splitlines() if line]

    def test_append_is_on_disk_before_returning(self):
        store = HistoryStore(self.path, capacity=10)
        message = ChatMessage.create('alice', 'persist me')
        store.append(message, machine_tag='devbox')

        lines = self.read_lines()
        self.assertEqual(len(lines), 1)
        stored = json.loads(lines[0])
        self.assertEqual(stored['sequence'], 1)
        self.assertEqual(stored['machine_tag'], 'devbox')
        self.assertEqual(stored['message']['id'], message.id)

    def test_reload_keeps_last_records_and_sequence(self):
        store = HistoryStore(self.path, capacity=3)
        for i in range(5):
            store.append(ChatMessage.create('alice', f'message {i}'))

        reloaded = HistoryStore(self.path, capacity=3)
        self.assertEqual(bodies(reloaded.recent(10)), ['message 2', 'message 3', 'message 4'])

        record = reloaded.append(ChatMessage.create('alice', 'after restart'))
        self.assertEqual(record.sequence, 6)

    def test_reload_preserves_message_contents(self):
        store = HistoryStore(self.path, capacity=3)
        message = ChatMessage.create('bob', 'print(1)', CodeSnippet('python'))
        store.append(message)

        reloaded = HistoryStore(self.path, capacity=3)
        self.assertEqual(reloaded.recent(1)[0].message, message)

    def test_file_is_compacted_to_capacity(self):
        store = HistoryStore(self.path, capacity=3)
        for i in range(7):
            store.append(ChatMessage.create('alice', f'message {i}'))

        lines = self.read_lines()
        self.assertEqual(len(lines), 3)
        self.assertEqual([json.loads(line)['sequence'] for line in lines], [5, 6, 7])
        self.assertFalse(os.path.exists(self.path + '.tmp'))

    def test_unreadable_lines_are_skipped_on_load(self):
        store = HistoryStore(self.path, capacity=5)
        store.append(ChatMessage.create('alice', 'good one'))
        with open(self.path, 'a', encoding='utf-8') as f:
            f.write('this is not json\n')
            f.write('{"sequence": 2, "message": {"id": "x"}}\n')
        store.append(ChatMessage.create('alice', 'good two'))

        reloaded = HistoryStore(self.path, capacity=5)
        self.assertEqual(bodies(reloaded.recent(5)), ['good one', 'good two'])

    def test_unwritable_file_raises_persistence_error(self):
        store = HistoryStore(self.path, capacity=5)
        # A directory where the history file should be makes every append fail
        os.mkdir(self.path)
        message = ChatMessage.create('alice', 'lost')

        with self.assertRaises(PersistenceError) as ctx:
            store.append(message)

        self.assertIsNotNone(ctx.exception.record)
        self.assertEqual(ctx.exception.record.message, message)
        self.assertEqual(len(store), 0)


if __name__ == '__main__':
    unittest.main()
