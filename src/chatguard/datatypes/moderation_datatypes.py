"""
Moderation action types and the deferred-moderation record.

Deferred moderation remembers a ban or mute aimed at a user who is not in the
room right now, so it can be applied when they next appear.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping


class ActionType(Enum):
    """Enumeration of supported moderation actions."""

    MUTE = "mute"
    UNMUTE = "unmute"
    KICK = "kick"
    BAN = "ban"

    def __str__(self) -> str:
        return self.value


class BanDuration(Enum):
    """Room ban lengths the server accepts."""

    HOUR = "hour"
    DAY = "day"
    PERMANENT = "perm"

    @property
    def label(self) -> str:
        """Phrase used in chat-log notifications ("banned for a day")."""
        return _BAN_LABELS[self]

    @classmethod
    def parse(cls, value: str) -> "BanDuration":
        """Parse ``hour``/``day``/``perm``; raises ValueError for anything else."""
        return cls(value.strip().lower())


_BAN_LABELS = {
    BanDuration.HOUR: "for an hour",
    BanDuration.DAY: "for a day",
    BanDuration.PERMANENT: "permanently",
}


def _name_map(raw: Any, convert) -> Dict[str, Any]:
    if not isinstance(raw, Mapping):
        return {}
    result: Dict[str, Any] = {}
    for name, value in raw.items():
        try:
            result[str(name)] = convert(value)
        except (TypeError, ValueError):
            continue
    return result


@dataclass(slots=True)
class DeferredModerationData:
    """Per-room pending bans and mutes keyed by room id, then user name.

    Attributes:
        bans: room id -> user name -> :class:`BanDuration` value.
        mutes: room id -> user name -> minutes.
    """

    bans: Dict[int, Dict[str, str]] = field(default_factory=dict)
    mutes: Dict[int, Dict[str, int]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bans": {str(room): dict(names) for room, names in self.bans.items() if names},
            "mutes": {str(room): dict(names) for room, names in self.mutes.items() if names},
        }

    @classmethod
    def from_dict(cls, data: Any) -> "DeferredModerationData":
        """Tolerant loader: malformed rooms or values are skipped."""
        if not isinstance(data, Mapping):
            return cls()

        result = cls()
        for target, raw_rooms, convert in (
            (result.bans, data.get("bans"), lambda v: BanDuration(str(v)).value),
            (result.mutes, data.get("mutes"), int),
        ):
            if not isinstance(raw_rooms, Mapping):
                continue
            for room, names in raw_rooms.items():
                try:
                    room_id = int(room)
                except (TypeError, ValueError):
                    continue
                parsed = _name_map(names, convert)
                if parsed:
                    target[room_id] = parsed
        return result


@dataclass(slots=True)
class ModerationOutcome:
    """Result of a moderation request.

    Attributes:
        action: Action that was requested.
        user_name: Target as typed, or as the room knows them when present.
        success: True when the action was sent or deferred.
        message: Human-readable status for the console.
        deferred: True when the action was queued for the user's next entry.
    """

    action: ActionType
    user_name: str
    success: bool
    message: str
    deferred: bool = False
