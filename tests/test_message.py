#!/usr/bin/env python3
"""
Unit tests for the chat message model.

Covers:
- JSON round trip for every message kind
- Rejection of unknown kinds as UnknownVariant
- Rejection of malformed payloads as MalformedMessage
- Searchable text per kind
"""

import dataclasses
import json
import unittest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from meshchat.common.errors import MalformedMessage, UnknownVariant
from meshchat.common.message import (
    ActivityLog, ChatMessage, CodeSnippet, FilePath, FileTransfer, Join, Leave, MachineDescriptor,
    Role, System, Text, decode_message, encode_message, message_to_dict
)


ORIGIN = MachineDescriptor(hostname='devbox', os='Linux', role=Role.BUILD_AGENT)


class TestMessageEncoding(unittest.TestCase):
    """Encoding and decoding of ChatMessage values."""

    def sample_messages(self):
        return [
            ChatMessage.create('alice', 'hello'),
            ChatMessage.create('alice', 'alice joined the chat!', Join()),
            ChatMessage.create('alice', 'alice left the chat!', Leave()),
            ChatMessage.create('System', 'Welcome', System()),
            ChatMessage.create('bob', 'print("hi")\nprint("bye")', CodeSnippet('python'), ORIGIN),
            ChatMessage.create('bob', '/etc/hosts', FilePath('/etc/hosts', 'check line 3')),
            ChatMessage.create('bob', '/tmp/out.log', FilePath('/tmp/out.log')),
            ChatMessage.create('carol', 'sent notes.txt', FileTransfer('notes.txt', 5, b'\x00\x01abc')),
            ChatMessage.create('carol', 'deploying', ActivityLog('deploy #42 started'), ORIGIN),
        ]

    def test_round_trip_every_kind(self):
        for message in self.sample_messages():
            with self.subTest(kind=message.kind.tag):
                self.assertEqual(decode_message(encode_message(message)), message)

    def test_decode_accepts_text_input(self):
        message = ChatMessage.create('alice', 'hello')
        self.assertEqual(decode_message(encode_message(message).decode('utf-8')), message)

    def test_unknown_kind_raises_unknown_variant(self):
        data = message_to_dict(ChatMessage.create('alice', 'hello'))
        data['kind'] = {'tag': 'hologram', 'depth': 3}

        with self.assertRaises(UnknownVariant) as ctx:
            decode_message(json.dumps(data))
        self.assertEqual(ctx.exception.tag, 'hologram')

    def test_unknown_variant_is_a_malformed_message(self):
        self.assertTrue(issubclass(UnknownVariant, MalformedMessage))

    def test_malformed_json(self):
        with self.assertRaises(MalformedMessage):
            decode_message(b'{"id": "abc", ')

    def test_missing_required_field(self):
        data = message_to_dict(ChatMessage.create('alice', 'hello'))
        del data['author']
        with self.assertRaises(MalformedMessage):
            decode_message(json.dumps(data))

    def test_boolean_timestamp_rejected(self):
        data = message_to_dict(ChatMessage.create('alice', 'hello'))
        data['created_at'] = True
        with self.assertRaises(MalformedMessage):
            decode_message(json.dumps(data))

    def test_non_finite_timestamp_rejected(self):
        for value in (float('nan'), float('inf'), 10 ** 400):
            with self.subTest(created_at=value):
                data = message_to_dict(ChatMessage.create('alice', 'hello'))
                data['created_at'] = value
                with self.assertRaises(MalformedMessage):
                    decode_message(json.dumps(data))

    def test_file_transfer_size_must_match_data(self):
        data = message_to_dict(ChatMessage.create('carol', 'sent a', FileTransfer('a', 3, b'abc')))
        data['kind']['size'] = 4
        with self.assertRaises(MalformedMessage):
            decode_message(json.dumps(data))

    def test_file_transfer_rejects_invalid_base64(self):
        data = message_to_dict(ChatMessage.create('carol', 'sent a', FileTransfer('a', 3, b'abc')))
        data['kind']['data'] = '***'
        with self.assertRaises(MalformedMessage):
            decode_message(json.dumps(data))

    def test_unknown_role_rejected(self):
        data = message_to_dict(ChatMessage.create('alice', 'hello', origin=ORIGIN))
        data['origin']['role'] = 'mainframe'
        with self.assertRaises(MalformedMessage):
            decode_message(json.dumps(data))


class TestMessageValues(unittest.TestCase):
    """Value semantics of messages and kinds."""

    def test_messages_are_immutable(self):
        message = ChatMessage.create('alice', 'hello')
        with self.assertRaises(dataclasses.FrozenInstanceError):
            message.body = 'changed'

    def test_create_assigns_unique_ids(self):
        first = ChatMessage.create('alice', 'hello')
        second = ChatMessage.create('alice', 'hello')
        self.assertNotEqual(first.id, second.id)
        self.assertIsInstance(first.kind, Text)

    def test_kinds_with_the_same_payload_are_distinct(self):
        self.assertNotEqual(Text(), Join())
        self.assertNotEqual(Join(), Leave())

    def test_searchable_text_includes_kind_fields(self):
        path_message = ChatMessage.create('bob', 'look here', FilePath('/srv/app.py', 'the bug'))
        self.assertIn('/srv/app.py', path_message.searchable_text())
        self.assertIn('the bug', path_message.searchable_text())

        activity = ChatMessage.create('bob', 'status', ActivityLog('compiling'))
        self.assertIn('compiling', activity.searchable_text())

        upload = ChatMessage.create('bob', 'sent', FileTransfer('report.pdf', 1, b'x'))
        self.assertIn('report.pdf', upload.searchable_text())

    def test_local_machine_descriptor(self):
        machine = MachineDescriptor.local(Role.LAPTOP)
        self.assertEqual(machine.role, Role.LAPTOP)
        self.assertTrue(machine.hostname)
        self.assertEqual(MachineDescriptor.from_dict(machine.to_dict()), machine)


if __name__ == '__main__':
    unittest.main()
