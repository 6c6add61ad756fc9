"""
History entry types shared by the store, the exporters and the chat log service.

An entry is discriminated by its kind:

- ``message``: speaker name, text, chat type, whisper flag and recipient,
  profanity flag and matched words
- ``action``: subject user and an action label ("entered the room", "kicked")
- ``room``: room name and owner

Only the fields relevant to an entry's kind are ever populated; the others
are cleared on construction.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional


class EntryKind(Enum):
    """Discriminator for :class:`HistoryEntry`."""

    MESSAGE = "message"
    ACTION = "action"
    ROOM = "room"

    def __str__(self) -> str:
        return self.value


MESSAGE_FIELDS = ("name", "message", "chat_type", "is_whisper", "whisper_recipient", "has_profanity", "matched_words")
ACTION_FIELDS = ("user_name", "action")
ROOM_FIELDS = ("room_name", "room_owner")

_KIND_FIELDS: Dict[EntryKind, tuple[str, ...]] = {
    EntryKind.MESSAGE: MESSAGE_FIELDS,
    EntryKind.ACTION: ACTION_FIELDS,
    EntryKind.ROOM: ROOM_FIELDS,
}


def as_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime; naive values are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_unix_seconds(value: datetime) -> int:
    """Whole Unix seconds, the resolution history timestamps are stored at."""
    return int(as_utc(value).timestamp())


def from_unix_seconds(value: int) -> datetime:
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


@dataclass(slots=True)
class HistoryEntry:
    """One persisted chat, action or room event."""

    timestamp: datetime
    kind: EntryKind

    # message
    name: Optional[str] = None
    message: Optional[str] = None
    chat_type: Optional[str] = None
    is_whisper: bool = False
    whisper_recipient: Optional[str] = None
    has_profanity: bool = False
    matched_words: List[str] = field(default_factory=list)

    # action
    user_name: Optional[str] = None
    action: Optional[str] = None

    # room
    room_name: Optional[str] = None
    room_owner: Optional[str] = None

    def __post_init__(self) -> None:
        if not isinstance(self.kind, EntryKind):
            self.kind = EntryKind(str(self.kind))
        self.timestamp = as_utc(self.timestamp)
        self.matched_words = list(self.matched_words or [])

        keep = _KIND_FIELDS[self.kind]
        if "name" not in keep:
            self.name = None
            self.message = None
            self.chat_type = None
            self.is_whisper = False
            self.whisper_recipient = None
            self.has_profanity = False
            self.matched_words = []
        if "user_name" not in keep:
            self.user_name = None
            self.action = None
        if "room_name" not in keep:
            self.room_name = None
            self.room_owner = None

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def chat_message(
        cls,
        timestamp: datetime,
        name: str,
        message: str,
        *,
        chat_type: Optional[str] = None,
        is_whisper: bool = False,
        whisper_recipient: Optional[str] = None,
        has_profanity: bool = False,
        matched_words: Optional[List[str]] = None,
    ) -> "HistoryEntry":
        return cls(
            timestamp=timestamp,
            kind=EntryKind.MESSAGE,
            name=name,
            message=message,
            chat_type=chat_type,
            is_whisper=is_whisper,
            whisper_recipient=whisper_recipient,
            has_profanity=has_profanity,
            matched_words=list(matched_words or []),
        )

    @classmethod
    def avatar_action(cls, timestamp: datetime, user_name: str, action: str) -> "HistoryEntry":
        return cls(timestamp=timestamp, kind=EntryKind.ACTION, user_name=user_name, action=action)

    @classmethod
    def room_entry(cls, timestamp: datetime, room_name: Optional[str], room_owner: Optional[str]) -> "HistoryEntry":
        return cls(timestamp=timestamp, kind=EntryKind.ROOM, room_name=room_name, room_owner=room_owner)

    # ------------------------------------------------------------------
    # Presentation
    # ------------------------------------------------------------------

    @property
    def display_text(self) -> str:
        if self.kind is EntryKind.MESSAGE:
            return f"{self.name}: {self.message}"
        if self.kind is EntryKind.ACTION:
            return f"{self.user_name} {self.action}"
        return f"Entered: {self.room_name} by {self.room_owner}"

    # ------------------------------------------------------------------
    # Structured serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Object-per-entry form used by the JSON export; only kind-relevant keys are written."""
        data: Dict[str, Any] = {
            "type": self.kind.value,
            "timestamp": self.timestamp.isoformat(),
        }
        for name in _KIND_FIELDS[self.kind]:
            value = getattr(self, name)
            data[name] = list(value) if isinstance(value, list) else value
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "HistoryEntry":
        """Inverse of :meth:`to_dict`. Unknown keys are ignored, missing ones default."""
        kind = EntryKind(str(data.get("type", EntryKind.MESSAGE.value)))
        raw_ts = data.get("timestamp")
        if isinstance(raw_ts, (int, float)):
            timestamp = from_unix_seconds(int(raw_ts))
        else:
            timestamp = datetime.fromisoformat(str(raw_ts))

        kwargs: Dict[str, Any] = {}
        for name in _KIND_FIELDS[kind]:
            if name in data and data[name] is not None:
                kwargs[name] = data[name]
        if "is_whisper" in kwargs:
            kwargs["is_whisper"] = bool(kwargs["is_whisper"])
        if "has_profanity" in kwargs:
            kwargs["has_profanity"] = bool(kwargs["has_profanity"])
        if "matched_words" in kwargs:
            kwargs["matched_words"] = [str(w) for w in kwargs["matched_words"]]
        return cls(timestamp=timestamp, kind=kind, **kwargs)


@dataclass(frozen=True, slots=True)
class SearchFilters:
    """Conjunctive history filters; every field is optional.

    Attributes:
        user_name: Case-insensitive substring of the speaker or action subject.
        keyword: Case-insensitive substring of the message or action text.
        profanity_only: Only entries flagged as profane.
        whispers_only: Only whisper messages.
        from_date: Inclusive lower timestamp bound.
        to_date: Inclusive upper timestamp bound.
    """

    user_name: Optional[str] = None
    keyword: Optional[str] = None
    profanity_only: bool = False
    whispers_only: bool = False
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None

    @property
    def is_empty(self) -> bool:
        return not (
            (self.user_name and self.user_name.strip())
            or (self.keyword and self.keyword.strip())
            or self.profanity_only
            or self.whispers_only
            or self.from_date
            or self.to_date
        )


@dataclass(slots=True)
class SearchResult:
    """Rows returned by a search plus the size of the full filtered set."""

    entries: List[HistoryEntry] = field(default_factory=list)
    total_count: int = 0

    @property
    def truncated(self) -> bool:
        return self.total_count > len(self.entries)
