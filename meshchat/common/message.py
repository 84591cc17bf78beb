"""
Message model for the meshchat broadcast chat.

Defines the immutable ChatMessage value, its closed set of kinds, the machine
descriptor attached to connected endpoints, and the JSON encoding shared by
client, server and the history file.
"""

import base64
import binascii
import json
import math
import platform
import socket
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Union

from meshchat.common.errors import MalformedMessage, UnknownVariant


class Role(str, Enum):
    """Closed set of roles a machine can announce."""
    WORKSTATION = 'workstation'
    LAPTOP = 'laptop'
    SERVER = 'server'
    BUILD_AGENT = 'build_agent'


def _require(data: Dict[str, Any], key: str, expected_type: type, context: str):
    value = data.get(key)
    # bool is an int subclass; never accept it where a number is expected
    if not isinstance(value, expected_type) or isinstance(value, bool):
        raise MalformedMessage(f"{context}: field '{key}' must be {expected_type.__name__}")
    return value


def _optional_str(data: Dict[str, Any], key: str, context: str) -> Optional[str]:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise MalformedMessage(f"{context}: field '{key}' must be str or null")
    return value


@dataclass(frozen=True)
class MachineDescriptor:
    """Static identity of a connected endpoint."""
    hostname: str
    os: str
    role: Role

    @classmethod
    def local(cls, role: Role = Role.WORKSTATION) -> 'MachineDescriptor':
        """Describe the machine this process runs on."""
        return cls(hostname=socket.gethostname(), os=platform.system() or 'unknown', role=role)

    def to_dict(self) -> Dict[str, Any]:
        return {'hostname': self.hostname, 'os': self.os, 'role': self.role.value}

    @classmethod
    def from_dict(cls, data: Any) -> 'MachineDescriptor':
        if not isinstance(data, dict):
            raise MalformedMessage("machine descriptor must be an object")
        hostname = _require(data, 'hostname', str, 'machine')
        os_name = _require(data, 'os', str, 'machine')
        role = _require(data, 'role', str, 'machine')
        try:
            return cls(hostname=hostname, os=os_name, role=Role(role))
        except ValueError:
            raise MalformedMessage(f"machine: unknown role '{role}'")


# Message kinds. Each kind knows its wire tag, its payload fields and the text
# a history search should look at.

class _PlainKind:
    """Kinds that carry nothing beyond the message body."""

    def payload(self) -> Dict[str, Any]:
        return {}

    @classmethod
    def from_payload(cls, data: Dict[str, Any]):
        return cls()

    def searchable_text(self, body: str) -> str:
        return body


@dataclass(frozen=True)
class Text(_PlainKind):
    tag: ClassVar[str] = 'text'


@dataclass(frozen=True)
class Join(_PlainKind):
    tag: ClassVar[str] = 'join'


@dataclass(frozen=True)
class Leave(_PlainKind):
    tag: ClassVar[str] = 'leave'


@dataclass(frozen=True)
class System(_PlainKind):
    tag: ClassVar[str] = 'system'


@dataclass(frozen=True)
class CodeSnippet:
    language: str
    tag: ClassVar[str] = 'code_snippet'

    def payload(self) -> Dict[str, Any]:
        return {'language': self.language}

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> 'CodeSnippet':
        return cls(language=_require(data, 'language', str, cls.tag))

    def searchable_text(self, body: str) -> str:
        return body


@dataclass(frozen=True)
class FilePath:
    path: str
    note: Optional[str] = None
    tag: ClassVar[str] = 'file_path'

    def payload(self) -> Dict[str, Any]:
        return {'path': self.path, 'note': self.note}

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> 'FilePath':
        return cls(path=_require(data, 'path', str, cls.tag),
                   note=_optional_str(data, 'note', cls.tag))

    def searchable_text(self, body: str) -> str:
        return '\n'.join(part for part in (body, self.path, self.note) if part)


@dataclass(frozen=True)
class FileTransfer:
    name: str
    size: int
    data: bytes = field(repr=False)
    tag: ClassVar[str] = 'file_transfer'

    def payload(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'size': self.size,
            'data': base64.b64encode(self.data).decode('ascii'),
        }

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> 'FileTransfer':
        name = _require(data, 'name', str, cls.tag)
        size = _require(data, 'size', int, cls.tag)
        encoded = _require(data, 'data', str, cls.tag)
        try:
            raw = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError):
            raise MalformedMessage("file_transfer: data is not valid base64")
        if len(raw) != size:
            raise MalformedMessage(f"file_transfer: size {size} does not match {len(raw)} bytes of data")
        return cls(name=name, size=size, data=raw)

    def searchable_text(self, body: str) -> str:
        return '\n'.join(part for part in (body, self.name) if part)


@dataclass(frozen=True)
class ActivityLog:
    activity: str
    tag: ClassVar[str] = 'activity_log'

    def payload(self) -> Dict[str, Any]:
        return {'activity': self.activity}

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> 'ActivityLog':
        return cls(activity=_require(data, 'activity', str, cls.tag))

    def searchable_text(self, body: str) -> str:
        return '\n'.join(part for part in (body, self.activity) if part)


MessageKind = Union[Text, Join, Leave, System, CodeSnippet, FilePath, FileTransfer, ActivityLog]

KIND_TYPES = {
    kind.tag: kind
    for kind in (Text, Join, Leave, System, CodeSnippet, FilePath, FileTransfer, ActivityLog)
}


def kind_to_dict(kind: MessageKind) -> Dict[str, Any]:
    data = {'tag': kind.tag}
    data.update(kind.payload())
    return data


def kind_from_dict(data: Any) -> MessageKind:
    if not isinstance(data, dict):
        raise MalformedMessage("kind must be an object")
    tag = data.get('tag')
    if not isinstance(tag, str):
        raise MalformedMessage("kind: field 'tag' must be str")
    kind_type = KIND_TYPES.get(tag)
    if kind_type is None:
        raise UnknownVariant(tag)
    return kind_type.from_payload(data)


@dataclass(frozen=True)
class ChatMessage:
    """The unit of communication."""
    id: str
    author: str
    body: str
    created_at: float
    kind: MessageKind = field(default_factory=Text)
    origin: Optional[MachineDescriptor] = None

    @classmethod
    def create(cls, author: str, body: str, kind: Optional[MessageKind] = None,
               origin: Optional[MachineDescriptor] = None) -> 'ChatMessage':
        """Build a new message with a fresh id, stamped with the local clock."""
        return cls(
            id=uuid.uuid4().hex,
            author=author,
            body=body,
            created_at=time.time(),
            kind=kind if kind is not None else Text(),
            origin=origin,
        )

    def searchable_text(self) -> str:
        return self.kind.searchable_text(self.body)


def message_to_dict(message: ChatMessage) -> Dict[str, Any]:
    return {
        'id': message.id,
        'author': message.author,
        'body': message.body,
        'created_at': message.created_at,
        'kind': kind_to_dict(message.kind),
        'origin': message.origin.to_dict() if message.origin is not None else None,
    }


def message_from_dict(data: Any) -> ChatMessage:
    """
    Build a ChatMessage from its decoded JSON object.

    Raises UnknownVariant for an unrecognized kind tag and MalformedMessage
    for anything else that does not describe a valid message.
    """
    if not isinstance(data, dict):
        raise MalformedMessage("message must be an object")
    message_id = _require(data, 'id', str, 'message')
    if not message_id:
        raise MalformedMessage("message: field 'id' must not be empty")
    created_at = data.get('created_at')
    if not isinstance(created_at, (int, float)) or isinstance(created_at, bool):
        raise MalformedMessage("message: field 'created_at' must be a number")
    try:
        created_at = float(created_at)
    except OverflowError:
        created_at = math.inf
    if not math.isfinite(created_at):
        raise MalformedMessage("message: field 'created_at' must be finite")
    origin = data.get('origin')
    return ChatMessage(
        id=message_id,
        author=_require(data, 'author', str, 'message'),
        body=_require(data, 'body', str, 'message'),
        created_at=created_at,
        kind=kind_from_dict(data.get('kind')),
        origin=MachineDescriptor.from_dict(origin) if origin is not None else None,
    )


def encode_message(message: ChatMessage) -> bytes:
    return json.dumps(message_to_dict(message), separators=(',', ':')).encode('utf-8')


def decode_message(raw: Union[bytes, str]) -> ChatMessage:
    try:
        if isinstance(raw, bytes):
            raw = raw.decode('utf-8')
        data = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedMessage(f"Malformed JSON: {e}")
    return message_from_dict(data)
