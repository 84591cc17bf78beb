#!/usr/bin/env python3
"""
Integration tests for the chat server over loopback TCP.

Covers:
- Live broadcast between two clients, echo to the sender included
- History replay on connect ahead of live traffic
- Unknown message kinds dropped without ending the session
- Handshake timeout, rejected handshakes and malformed frames
- Leave announcements on disconnect
"""

import asyncio
import unittest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from meshchat.common.message import ChatMessage, MachineDescriptor, Role, message_to_dict
from meshchat.common.protocol_definitions import (
    create_chat_message, create_get_history_message, create_login_message, create_logout_message,
    create_who_message, encode_frame
)
from meshchat.server.history.history_store import HistoryStore
from meshchat.server.main_server import MeshChatServer
from meshchat.server.utils.config import ServerConfig
from tests.support import read_frame, read_until, wait_for_condition


def is_chat_from(author, tag='text'):
    def predicate(frame):
        return (frame['type'] == 'chat' and frame['message']['author'] == author
                and frame['message']['kind']['tag'] == tag)
    return predicate


class ServerTestCase(unittest.IsolatedAsyncioTestCase):
    """Runs a server on an ephemeral loopback port for each test."""

    handshake_timeout = 2.0

    async def asyncSetUp(self):
        config = ServerConfig(host='127.0.0.1', port=0, history_file=None,
                              handshake_timeout=self.handshake_timeout)
        self.server = MeshChatServer(config, self.make_history())
        await self.server.start()
        self.writers = []

    async def asyncTearDown(self):
        for writer in self.writers:
            writer.close()
        await self.server.stop()

    def make_history(self):
        return None

    async def connect(self):
        reader, writer = await asyncio.open_connection('127.0.0.1', self.server.port)
        self.writers.append(writer)
        return reader, writer

    async def login(self, username, machine=None):
        """Connect, log in and consume the greeting; returns reader, writer and greeting frames."""
        reader, writer = await self.connect()
        await self.send(writer, create_login_message(username, machine))
        greeting = [await read_frame(reader) for _ in range(4)]
        return reader, writer, greeting

    async def send(self, writer, frame):
        writer.write(encode_frame(frame))
        await writer.drain()


class TestLiveBroadcast(ServerTestCase):

    async def test_message_reaches_everyone_including_sender(self):
        machine = MachineDescriptor('alice-laptop', 'Linux', Role.LAPTOP)
        alice_reader, alice_writer, greeting = await self.login('alice', machine)
        self.assertEqual([f['type'] for f in greeting], ['login_success', 'history', 'chat', 'chat'])
        self.assertEqual(greeting[2]['message']['kind']['tag'], 'system')
        self.assertEqual(greeting[3]['message']['kind']['tag'], 'join')

        bob_reader, bob_writer, _ = await self.login('bob')
        join = await read_frame(alice_reader)
        self.assertEqual(join['message']['body'], 'bob joined the chat!')

        message = ChatMessage.create('alice', 'hello', origin=machine)
        await self.send(alice_writer, create_chat_message(message))

        for reader in (bob_reader, alice_reader):
            frame = await read_until(reader, is_chat_from('alice'))
            self.assertEqual(frame['message']['id'], message.id)
            self.assertEqual(frame['message']['body'], 'hello')
            self.assertEqual(frame['machine_tag'], 'alice-laptop')

        stored = self.server.chat_server.history.recent(1)[0]
        self.assertEqual(stored.message, message)

    async def test_same_order_for_every_receiver(self):
        alice_reader, alice_writer, _ = await self.login('alice')
        bob_reader, bob_writer, _ = await self.login('bob')

        for i in range(5):
            await self.send(alice_writer, create_chat_message(ChatMessage.create('alice', f'a{i}')))
            await self.send(bob_writer, create_chat_message(ChatMessage.create('bob', f'b{i}')))

        async def received(reader):
            sequences = []
            while len(sequences) < 10:
                frame = await read_frame(reader)
                if frame['type'] == 'chat' and frame['message']['kind']['tag'] == 'text':
                    sequences.append(frame['sequence'])
            return sequences

        alice_seen = await received(alice_reader)
        bob_seen = await received(bob_reader)
        self.assertEqual(alice_seen, bob_seen)
        self.assertEqual(alice_seen, sorted(alice_seen))

    async def test_resent_message_is_delivered_once(self):
        alice_reader, alice_writer, _ = await self.login('alice')
        message = ChatMessage.create('alice', 'only once')

        await self.send(alice_writer, create_chat_message(message))
        await self.send(alice_writer, create_chat_message(message))
        await self.send(alice_writer, create_chat_message(ChatMessage.create('alice', 'marker')))

        first = await read_until(alice_reader, is_chat_from('alice'))
        second = await read_until(alice_reader, is_chat_from('alice'))
        self.assertEqual(first['message']['body'], 'only once')
        self.assertEqual(second['message']['body'], 'marker')

    async def test_unknown_kind_is_dropped_and_session_continues(self):
        alice_reader, alice_writer, _ = await self.login('alice')
        bob_reader, bob_writer, _ = await self.login('bob')

        unknown = message_to_dict(ChatMessage.create('alice', 'from the future'))
        unknown['kind'] = {'tag': 'hologram', 'depth': 3}
        await self.send(alice_writer, {'type': 'chat', 'message': unknown})
        valid = ChatMessage.create('alice', 'still here')
        await self.send(alice_writer, create_chat_message(valid))

        frame = await read_until(bob_reader, is_chat_from('alice'))
        self.assertEqual(frame['message']['id'], valid.id)
        self.assertEqual(len(self.server.chat_server.history.search('from the future')), 0)
        self.assertEqual(len(self.server.chat_server.registry), 2)

    async def test_leave_is_announced_on_disconnect(self):
        alice_reader, alice_writer, _ = await self.login('alice')
        bob_reader, bob_writer, _ = await self.login('bob')

        await self.send(bob_writer, create_logout_message())

        frame = await read_until(alice_reader, is_chat_from('bob', 'leave'))
        self.assertEqual(frame['message']['body'], 'bob left the chat!')
        await wait_for_condition(lambda: len(self.server.chat_server.registry) == 1)

    async def test_history_and_who_requests(self):
        alice_reader, alice_writer, _ = await self.login('alice')
        await self.send(alice_writer, create_chat_message(ChatMessage.create('alice', 'first')))
        await read_until(alice_reader, is_chat_from('alice'))

        await self.send(alice_writer, create_get_history_message(1))
        history = await read_until(alice_reader, lambda f: f['type'] == 'history')
        self.assertEqual([r['message']['body'] for r in history['records']], ['first'])

        await self.send(alice_writer, create_who_message())
        who = await read_until(alice_reader, lambda f: f['type'] == 'participant_list')
        self.assertEqual([p['username'] for p in who['participants']], ['alice'])


class TestHistoryReplay(ServerTestCase):

    def make_history(self):
        history = HistoryStore(capacity=200)
        for i in range(300):
            history.append(ChatMessage.create('bob', f'message {i}'))
        return history

    async def test_new_client_receives_last_records_first(self):
        reader, writer, greeting = await self.login('alice')

        self.assertEqual(greeting[0]['type'], 'login_success')
        history = greeting[1]
        self.assertEqual(history['type'], 'history')
        self.assertEqual(history['count'], 200)
        self.assertEqual([r['sequence'] for r in history['records']], list(range(101, 301)))
        self.assertEqual(history['records'][0]['message']['body'], 'message 100')


class TestHandshake(ServerTestCase):

    handshake_timeout = 0.2

    async def test_silent_client_is_disconnected(self):
        reader, writer = await self.connect()

        data = await asyncio.wait_for(reader.read(), 2)

        self.assertEqual(data, b'')
        self.assertEqual(len(self.server.chat_server.registry), 0)

    async def test_non_login_first_frame_is_rejected(self):
        reader, writer = await self.connect()
        await self.send(writer, create_who_message())

        frame = await read_frame(reader)
        self.assertEqual(frame['type'], 'error')
        self.assertEqual(await asyncio.wait_for(reader.read(), 2), b'')

    async def test_empty_username_is_rejected(self):
        reader, writer = await self.connect()
        await self.send(writer, create_login_message('   '))

        frame = await read_frame(reader)
        self.assertEqual(frame['type'], 'error')
        self.assertEqual(frame['message'], 'Username cannot be empty!')

    async def test_malformed_frame_after_login_keeps_session(self):
        reader, writer, _ = await self.login('alice')

        writer.write(b'this is not json\n')
        writer.write(encode_frame(create_chat_message(ChatMessage.create('alice', 'after garbage'))))
        await writer.drain()

        error = await read_frame(reader)
        self.assertEqual(error, {'type': 'error', 'message': 'Malformed JSON'})
        frame = await read_until(reader, is_chat_from('alice'))
        self.assertEqual(frame['message']['body'], 'after garbage')

    async def test_repeated_login_is_ignored(self):
        reader, writer, _ = await self.login('alice')
        await self.send(writer, create_login_message('mallory'))
        await self.send(writer, create_chat_message(ChatMessage.create('alice', 'still alice')))

        frame = await read_until(reader, lambda f: f['type'] == 'chat')
        self.assertEqual(frame['message']['author'], 'alice')
        self.assertEqual(frame['message']['body'], 'still alice')


if __name__ == '__main__':
    unittest.main()
