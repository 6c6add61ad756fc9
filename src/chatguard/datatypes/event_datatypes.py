"""
Inbound event records supplied by the game/network layer.

The core treats these as opaque input: it never talks to the network itself,
it only reads the fields below.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


# Whispers drawn with this bubble are server-side wired messages, not user whispers.
WIRED_BUBBLE_STYLE = 34


class ChatType(Enum):
    """Kind of chat bubble an avatar produced."""

    TALK = "talk"
    SHOUT = "shout"
    WHISPER = "whisper"

    def __str__(self) -> str:
        return self.value


class AvatarKind(Enum):
    """Kind of avatar that produced an event."""

    USER = "user"
    PET = "pet"
    PUBLIC_BOT = "public_bot"
    PRIVATE_BOT = "private_bot"

    @property
    def is_bot(self) -> bool:
        return self in (AvatarKind.PUBLIC_BOT, AvatarKind.PRIVATE_BOT)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class ChatEvent:
    """A chat line spoken by an avatar in the current room."""

    name: str
    message: str
    chat_type: ChatType = ChatType.TALK
    avatar_kind: AvatarKind = AvatarKind.USER
    bubble_style: int = 0
    timestamp: datetime = field(default_factory=_now)

    @property
    def is_wired(self) -> bool:
        return self.chat_type is ChatType.WHISPER and self.bubble_style == WIRED_BUBBLE_STYLE

    @property
    def is_whisper(self) -> bool:
        """A user whisper; wired notifications use the whisper bubble but are not whispers."""
        return self.chat_type is ChatType.WHISPER and not self.is_wired


@dataclass(frozen=True, slots=True)
class AvatarEvent:
    """An avatar entering or leaving the room, or changing trade state."""

    name: str
    avatar_kind: AvatarKind = AvatarKind.USER
    timestamp: datetime = field(default_factory=_now)
    was_trading: Optional[bool] = None
    is_trading: Optional[bool] = None


@dataclass(frozen=True, slots=True)
class RoomEvent:
    """The local user entered a room."""

    room_id: int
    room_name: Optional[str] = None
    room_owner: Optional[str] = None
    timestamp: datetime = field(default_factory=_now)
