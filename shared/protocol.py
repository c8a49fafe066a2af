from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
import json

from shared.utils import parse_instant

# Longest outbound chat content accepted, in code points
MAX_CONTENT_LENGTH = 1000


class ProtocolError(Exception):
    """Base class for wire protocol failures."""
    pass
class FrameDecodeError(ProtocolError):
    """Raised when an inbound frame is not a JSON object."""
    pass
class ContentRejected(ProtocolError):
    """Raised when outbound chat content is empty or too long."""
    pass


class WireType(str, Enum):
    """Values of the `type` field on the wire."""

    SYSTEM = "system"                    # server notice
    USER_CONNECTED = "user_connected"    # join acknowledgement, carries user_id
    MESSAGE = "message"                  # outbound chat / inbound echo


class MessageKind(str, Enum):
    """How a consumer should treat a log entry."""
    SYSTEM = "system"
    USER_JOINED = "user_joined"
    CHAT = "chat"

    @classmethod
    def from_wire(cls, wire_type: Optional[str]) -> MessageKind:
        if wire_type == WireType.SYSTEM.value:
            return cls.SYSTEM
        if wire_type == WireType.USER_CONNECTED.value:
            return cls.USER_JOINED
        # anything else is rendered as a chat line
        return cls.CHAT


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ChatMessage:
    """
    One entry of the message log, decoded from an inbound frame:
    {
    "type":      "system" | "user_connected" | <chat type>,
    "username":  "STRING (chat only)",
    "user_id":   "STRING (user_connected and chat)",
    "content":   "STRING",
    "timestamp": "ISO-8601 instant (chat only)"
    }

    Frames without a usable timestamp are stamped with the arrival time.
    """
    kind: MessageKind
    content: str
    timestamp: datetime = field(default_factory=_utcnow)
    username: Optional[str] = None
    user_id: Optional[str] = None
    wire_type: Optional[str] = None

    @property
    def is_join_ack(self) -> bool:
        return self.kind is MessageKind.USER_JOINED and bool(self.user_id)

    @classmethod
    def from_json(cls, raw: str | bytes, *, received_at: Optional[datetime] = None) -> ChatMessage:
        """Parse a text frame, raising FrameDecodeError if it is not a JSON object"""
        if isinstance(raw, bytes):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError as e:
                raise FrameDecodeError(f"Frame is not UTF-8: {e}")
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise FrameDecodeError(f"Invalid JSON: {e}")

        return cls.from_dict(data, received_at=received_at)

    @classmethod
    def from_dict(cls, data: Any, *, received_at: Optional[datetime] = None) -> ChatMessage:
        if not isinstance(data, dict):
            raise FrameDecodeError(f"Frame must be a JSON object, got {type(data).__name__}")

        wire_type = data.get("type")
        if wire_type is not None and not isinstance(wire_type, str):
            raise FrameDecodeError("'type' must be a string")

        content = data.get("content", "")
        if content is None:
            content = ""
        if not isinstance(content, str):
            raise FrameDecodeError("'content' must be a string")

        timestamp = parse_instant(data.get("timestamp")) or received_at or _utcnow()

        return cls(
            kind=MessageKind.from_wire(wire_type),
            content=content,
            timestamp=timestamp,
            username=_optional_str(data.get("username")),
            user_id=_optional_str(data.get("user_id")),
            wire_type=wire_type,
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "kind": self.kind.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.username is not None:
            result["username"] = self.username
        if self.user_id is not None:
            result["user_id"] = self.user_id
        return result


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def prepare_content(content: str) -> str:
    """Strip outbound chat content and check it fits on the wire"""
    if not isinstance(content, str):
        raise ContentRejected("content must be a string")
    trimmed = content.strip()
    if not trimmed:
        raise ContentRejected("content is empty")
    if len(trimmed) > MAX_CONTENT_LENGTH:
        raise ContentRejected(f"content exceeds {MAX_CONTENT_LENGTH} characters ({len(trimmed)})")
    return trimmed


def encode_chat(content: str) -> str:
    """Build the outbound `message` frame for already prepared content"""
    return json.dumps({"type": WireType.MESSAGE.value, "content": content}, separators=(",", ":"), ensure_ascii=False)
