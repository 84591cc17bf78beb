"""
Protocol definitions for the meshchat broadcast chat.

This module defines the frame structures exchanged between client and server.
Every frame is a JSON object with a "type" field, written as a single line.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from meshchat.common.constants import MessageTypes
from meshchat.common.errors import MalformedMessage
from meshchat.common.message import (
    ChatMessage, MachineDescriptor, message_from_dict, message_to_dict
)


@dataclass(frozen=True)
class HistoryRecord:
    """A stored message plus its server receipt order and forwarding machine."""
    sequence: int
    message: ChatMessage
    machine_tag: Optional[str] = None


def record_to_dict(record: HistoryRecord) -> Dict[str, Any]:
    return {
        "sequence": record.sequence,
        "machine_tag": record.machine_tag,
        "message": message_to_dict(record.message),
    }


def record_from_dict(data: Any) -> HistoryRecord:
    if not isinstance(data, dict):
        raise MalformedMessage("history record must be an object")
    sequence = data.get('sequence')
    if not isinstance(sequence, int) or isinstance(sequence, bool):
        raise MalformedMessage("history record: field 'sequence' must be int")
    machine_tag = data.get('machine_tag')
    if machine_tag is not None and not isinstance(machine_tag, str):
        raise MalformedMessage("history record: field 'machine_tag' must be str or null")
    return HistoryRecord(sequence=sequence, message=message_from_dict(data.get('message')),
                         machine_tag=machine_tag)


def encode_frame(frame: Dict[str, Any]) -> bytes:
    """Serialize a frame as one newline-terminated JSON line."""
    return json.dumps(frame, separators=(',', ':')).encode('utf-8') + b'\n'


def decode_frame(line: bytes) -> Dict[str, Any]:
    """Parse one received line into a frame dict with a string "type"."""
    try:
        frame = json.loads(line.decode('utf-8').strip())
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedMessage(f"Malformed JSON: {e}")
    if not isinstance(frame, dict):
        raise MalformedMessage("Frame must be a JSON object")
    msg_type = frame.get('type')
    if not isinstance(msg_type, str) or not msg_type:
        raise MalformedMessage("Frame has no valid type")
    return frame


def create_login_message(username: str, machine: Optional[MachineDescriptor] = None) -> Dict[str, Any]:
    """Create a login (handshake) message."""
    return {
        "type": MessageTypes.LOGIN,
        "username": username,
        "machine": machine.to_dict() if machine is not None else None
    }


def create_chat_message(message: ChatMessage) -> Dict[str, Any]:
    """Create a chat frame carrying a message composed on the client."""
    return {
        "type": MessageTypes.CHAT,
        "message": message_to_dict(message)
    }


def create_record_message(record: HistoryRecord) -> Dict[str, Any]:
    """Create a chat frame carrying a message accepted by the server."""
    return {
        "type": MessageTypes.CHAT,
        "sequence": record.sequence,
        "machine_tag": record.machine_tag,
        "message": message_to_dict(record.message)
    }


def create_get_history_message(count: Optional[int] = None) -> Dict[str, Any]:
    """Create a get history message."""
    return {
        "type": MessageTypes.GET_HISTORY,
        "count": count
    }


def create_search_message(text: str) -> Dict[str, Any]:
    """Create a history search request."""
    return {
        "type": MessageTypes.SEARCH,
        "text": text
    }


def create_who_message() -> Dict[str, Any]:
    """Create a participant list request."""
    return {
        "type": MessageTypes.WHO
    }


def create_logout_message() -> Dict[str, Any]:
    """Create a logout message."""
    return {
        "type": MessageTypes.LOGOUT
    }


def create_login_success_message(session_id: str, username: str) -> Dict[str, Any]:
    """Create a login success message."""
    return {
        "type": MessageTypes.LOGIN_SUCCESS,
        "session_id": session_id,
        "username": username
    }


def create_history_message(records: Iterable[HistoryRecord]) -> Dict[str, Any]:
    """Create a history message."""
    records = [record_to_dict(record) for record in records]
    return {
        "type": MessageTypes.HISTORY,
        "records": records,
        "count": len(records)
    }


def create_search_results_message(text: str, records: Iterable[HistoryRecord]) -> Dict[str, Any]:
    """Create a search results message."""
    records = [record_to_dict(record) for record in records]
    return {
        "type": MessageTypes.SEARCH_RESULTS,
        "text": text,
        "records": records,
        "count": len(records)
    }


def create_participant_list_message(participants: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Create a participant list message."""
    return {
        "type": MessageTypes.PARTICIPANT_LIST,
        "participants": participants
    }


def create_warning_message(message: str, message_id: Optional[str] = None) -> Dict[str, Any]:
    """Create a warning message."""
    return {
        "type": MessageTypes.WARNING,
        "message": message,
        "message_id": message_id
    }


def create_error_message(message: str) -> Dict[str, Any]:
    """Create an error message."""
    return {
        "type": MessageTypes.ERROR,
        "message": message
    }


def record_items(frame: Dict[str, Any]) -> List[Any]:
    """Return the undecoded record list of a history or search_results frame."""
    records = frame.get('records')
    if not isinstance(records, list):
        raise MalformedMessage(f"{frame.get('type')} frame has no record list")
    return records
