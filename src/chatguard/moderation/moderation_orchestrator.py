"""
Moderation actions on top of the chat log.

Sends mute/kick/ban requests through an injected :class:`ModerationGateway`,
records every action as a chat log notice, and keeps per-room deferred bans
and mutes for users who are not present yet. The deferred lists survive
restarts as a small JSON file.
"""

from __future__ import annotations

import json
from pathlib import Path
import re
from typing import Dict, Optional, Protocol, Tuple, Union

from chatguard.datatypes.moderation_datatypes import (
    ActionType,
    BanDuration,
    DeferredModerationData,
    ModerationOutcome,
)
from chatguard.util.logger import get_logger

logger = get_logger("moderation_orchestrator")

MIN_MUTE_MINUTES = 1
MAX_MUTE_MINUTES = 30000

_MUTE_DURATION_RE = re.compile(r"^\s*(\d+)\s*([mh]?)\s*$", re.IGNORECASE)


def parse_mute_duration(text: Union[str, int]) -> Tuple[int, str]:
    """Parse ``"15"``, ``"15m"`` or ``"2h"`` into minutes plus a readable label.

    Raises:
        ValueError: Malformed input, or a duration outside 1..30000 minutes.
    """
    if isinstance(text, int):
        text = str(text)
    match = _MUTE_DURATION_RE.match(text or "")
    if not match:
        raise ValueError(f"Invalid argument for duration: {text}")

    amount = int(match.group(1))
    is_hours = match.group(2).lower() == "h"
    if amount < MIN_MUTE_MINUTES:
        raise ValueError(f"Invalid argument for duration: {text}")

    minutes = amount * 60 if is_hours else amount
    if minutes > MAX_MUTE_MINUTES:
        raise ValueError("Maximum mute time is 500 hours or 30,000 minutes.")
    return minutes, f"{amount} {'hour(s)' if is_hours else 'minute(s)'}"


class ModerationGateway(Protocol):
    """What the orchestrator needs from the game connection."""

    def find_user(self, name: str) -> Optional[str]:
        """Name of the user currently in the room matching ``name`` (case-insensitive), or None."""

    def can_mute(self) -> bool: ...

    def can_kick(self) -> bool: ...

    def can_ban(self) -> bool: ...

    async def mute(self, user_name: str, room_id: int, minutes: int) -> None:
        """Mute for ``minutes``; 0 unmutes."""

    async def kick(self, user_name: str) -> None: ...

    async def ban(self, user_name: str, room_id: int, duration: BanDuration) -> None: ...


class OfflineGateway:
    """Gateway used when no game connection is attached.

    Nobody is ever present, so bans and mutes are always deferred to the
    user's next entry and nothing is sent.
    """

    def find_user(self, name: str) -> Optional[str]:
        return None

    def can_mute(self) -> bool:
        return True

    def can_kick(self) -> bool:
        return True

    def can_ban(self) -> bool:
        return True

    async def mute(self, user_name: str, room_id: int, minutes: int) -> None:
        raise RuntimeError("Not connected to a room")

    async def kick(self, user_name: str) -> None:
        raise RuntimeError("Not connected to a room")

    async def ban(self, user_name: str, room_id: int, duration: BanDuration) -> None:
        raise RuntimeError("Not connected to a room")


class ModerationOrchestrator:
    """
    Applies moderation actions and owns the deferred lists.

    Methods:
        mute / unmute / kick / ban: Immediate actions (ban and mute defer when the user is absent).
        on_room_entered / on_room_left / on_avatar_added: Room events driving deferred actions.
        cleanup_deferred_bans: Drop deferred bans the room already enforces.
    """

    def __init__(
        self,
        gateway: ModerationGateway,
        chat_log,
        deferred_path: Union[str, Path],
        *,
        own_name: Optional[str] = None,
    ) -> None:
        self.gateway = gateway
        self.chat_log = chat_log
        self.deferred_path = Path(deferred_path)
        self.own_name = own_name

        self._room_id: Optional[int] = None
        self._data = DeferredModerationData()
        # Active lists for the current room, keyed by casefolded name -> (name, value)
        self._ban_list: Dict[str, Tuple[str, BanDuration]] = {}
        self._mute_list: Dict[str, Tuple[str, int]] = {}

        self.load_deferred()

    # ------------------------------------------------------------------
    # Deferred persistence
    # ------------------------------------------------------------------

    @property
    def deferred_data(self) -> DeferredModerationData:
        return self._data

    def load_deferred(self) -> None:
        """Load the deferred file; a missing or unreadable file means no deferred actions."""
        if not self.deferred_path.exists():
            self._data = DeferredModerationData()
            return
        try:
            with open(self.deferred_path, "r", encoding="utf-8") as handle:
                self._data = DeferredModerationData.from_dict(json.load(handle))
        except (OSError, ValueError) as exc:
            logger.error("[MODERATION] Failed to read deferred moderation file %s: %s", self.deferred_path, exc)
            self._data = DeferredModerationData()
            return
        logger.info(
            "[MODERATION] Loaded deferred moderation (%d rooms with bans, %d with mutes)",
            len(self._data.bans), len(self._data.mutes),
        )

    def save_deferred(self) -> bool:
        try:
            self.deferred_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.deferred_path, "w", encoding="utf-8") as handle:
                json.dump(self._data.to_dict(), handle, indent=2)
        except OSError as exc:
            logger.error("[MODERATION] Failed to write deferred moderation file %s: %s", self.deferred_path, exc)
            return False
        return True

    @staticmethod
    def _pop_name(names: Dict[str, object], user_name: str) -> bool:
        key = user_name.casefold()
        for stored in list(names):
            if stored.casefold() == key:
                del names[stored]
                return True
        return False

    def _forget_deferred(self, table: Dict[int, Dict], user_name: str) -> None:
        if self._room_id is None:
            return
        names = table.get(self._room_id)
        if names is None or not self._pop_name(names, user_name):
            return
        if not names:
            del table[self._room_id]
        self.save_deferred()

    # ------------------------------------------------------------------
    # Room state
    # ------------------------------------------------------------------

    @property
    def room_id(self) -> Optional[int]:
        return self._room_id

    @property
    def pending_bans(self) -> Dict[str, BanDuration]:
        return {name: duration for name, duration in self._ban_list.values()}

    @property
    def pending_mutes(self) -> Dict[str, int]:
        return {name: minutes for name, minutes in self._mute_list.values()}

    def on_room_entered(self, room_id: int) -> None:
        """Switch to ``room_id`` and load its deferred lists."""
        self._room_id = int(room_id)
        self._ban_list.clear()
        self._mute_list.clear()

        for name, duration in self._data.bans.get(self._room_id, {}).items():
            self._ban_list[name.casefold()] = (name, BanDuration(duration))
        for name, minutes in self._data.mutes.get(self._room_id, {}).items():
            self._mute_list[name.casefold()] = (name, int(minutes))

        if self._ban_list or self._mute_list:
            logger.info(
                "[MODERATION] Room %d has %d deferred bans and %d deferred mutes",
                self._room_id, len(self._ban_list), len(self._mute_list),
            )

    def on_room_left(self) -> None:
        self._room_id = None
        self._ban_list.clear()
        self._mute_list.clear()

    async def on_avatar_added(self, user_name: str) -> Optional[ModerationOutcome]:
        """Apply a deferred ban (or, failing that, a deferred mute) to a user who just appeared."""
        if self._room_id is None:
            return None
        key = user_name.casefold()

        pending_ban = self._ban_list.pop(key, None)
        if pending_ban is not None:
            _, duration = pending_ban
            await self._notify(user_name, "banned (deferred)")
            await self.gateway.ban(user_name, self._room_id, duration)
            self._forget_deferred(self._data.bans, user_name)
            logger.info("[MODERATION] Applied deferred ban on %s", user_name)
            return ModerationOutcome(ActionType.BAN, user_name, True, f"Banning user '{user_name}'")

        pending_mute = self._mute_list.pop(key, None)
        if pending_mute is not None:
            _, minutes = pending_mute
            await self._notify(user_name, "muted (deferred)")
            await self.gateway.mute(user_name, self._room_id, minutes)
            self._forget_deferred(self._data.mutes, user_name)
            logger.info("[MODERATION] Applied deferred mute on %s", user_name)
            return ModerationOutcome(ActionType.MUTE, user_name, True, f"Muting user '{user_name}'")

        return None

    async def cleanup_deferred_bans(self, banned_names) -> int:
        """Remove deferred bans for users the room's ban list already contains."""
        removed = 0
        for name in banned_names:
            if self._ban_list.pop(name.casefold(), None) is None:
                continue
            if self._room_id is not None and self._pop_name(self._data.bans.get(self._room_id, {}), name):
                if not self._data.bans.get(self._room_id):
                    self._data.bans.pop(self._room_id, None)
            await self._notify(name, "already banned, removed from deferred list")
            removed += 1
        if removed:
            self.save_deferred()
        return removed

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def _notify(self, user_name: str, action: str) -> None:
        await self.chat_log.append_action(user_name, action)

    def _precheck(self, action: ActionType, user_name: str) -> Optional[ModerationOutcome]:
        if not user_name or not user_name.strip():
            return ModerationOutcome(action, user_name or "", False, "A user name is required.")
        if self.own_name and user_name.strip().casefold() == self.own_name.casefold():
            return ModerationOutcome(action, user_name, False, f"Refusing to {action} yourself.")
        if self._room_id is None:
            return ModerationOutcome(action, user_name, False, "Reload the room to initialize room state.")

        allowed = {
            ActionType.MUTE: self.gateway.can_mute,
            ActionType.UNMUTE: self.gateway.can_mute,
            ActionType.KICK: self.gateway.can_kick,
            ActionType.BAN: self.gateway.can_ban,
        }[action]()
        if not allowed:
            return ModerationOutcome(action, user_name, False, f"You do not have permission to {action} in this room.")
        return None

    async def mute(self, user_name: str, duration: Union[str, int]) -> ModerationOutcome:
        """Mute a present user, or defer the mute until they enter this room."""
        refused = self._precheck(ActionType.MUTE, user_name)
        if refused:
            return refused
        try:
            minutes, label = parse_mute_duration(duration)
        except ValueError as exc:
            return ModerationOutcome(ActionType.MUTE, user_name, False, str(exc))

        present = self.gateway.find_user(user_name.strip())
        if present is None:
            name = user_name.strip()
            self._mute_list[name.casefold()] = (name, minutes)
            room_mutes = self._data.mutes.setdefault(self._room_id, {})
            self._pop_name(room_mutes, name)
            room_mutes[name] = minutes
            self.save_deferred()
            await self._notify(name, f"will be muted for {label} upon next entry")
            return ModerationOutcome(
                ActionType.MUTE, name, True,
                f"User '{name}' not found, will be muted for {label} upon next entry to this room.",
                deferred=True,
            )

        await self._notify(present, f"muted for {label}")
        await self.gateway.mute(present, self._room_id, minutes)
        return ModerationOutcome(ActionType.MUTE, present, True, f"Muting user '{present}' for {label}")

    async def unmute(self, user_name: str) -> ModerationOutcome:
        refused = self._precheck(ActionType.UNMUTE, user_name)
        if refused:
            return refused

        # A pending mute for an absent user is simply cancelled.
        if self._mute_list.pop(user_name.strip().casefold(), None) is not None:
            self._forget_deferred(self._data.mutes, user_name.strip())

        present = self.gateway.find_user(user_name.strip())
        if present is None:
            return ModerationOutcome(ActionType.UNMUTE, user_name, False, f"Unable to find user '{user_name}' to unmute.")

        await self._notify(present, "unmuted")
        await self.gateway.mute(present, self._room_id, 0)
        return ModerationOutcome(ActionType.UNMUTE, present, True, f"Unmuting user '{present}'")

    async def kick(self, user_name: str) -> ModerationOutcome:
        refused = self._precheck(ActionType.KICK, user_name)
        if refused:
            return refused

        present = self.gateway.find_user(user_name.strip())
        if present is None:
            return ModerationOutcome(ActionType.KICK, user_name, False, f"Unable to find user '{user_name}' to kick.")

        await self._notify(present, "kicked")
        await self.gateway.kick(present)
        return ModerationOutcome(ActionType.KICK, present, True, f"Kicking user '{present}'")

    async def ban(self, user_name: str, duration: Union[BanDuration, str] = BanDuration.HOUR) -> ModerationOutcome:
        """Ban a present user, or defer the ban until they enter this room."""
        refused = self._precheck(ActionType.BAN, user_name)
        if refused:
            return refused
        if not isinstance(duration, BanDuration):
            try:
                duration = BanDuration.parse(duration)
            except ValueError:
                return ModerationOutcome(ActionType.BAN, user_name, False, f"Unknown ban type '{duration}'.")

        present = self.gateway.find_user(user_name.strip())
        if present is None:
            name = user_name.strip()
            self._ban_list[name.casefold()] = (name, duration)
            room_bans = self._data.bans.setdefault(self._room_id, {})
            self._pop_name(room_bans, name)
            room_bans[name] = duration.value
            self.save_deferred()
            await self._notify(name, f"will be banned {duration.label} upon next entry")
            return ModerationOutcome(
                ActionType.BAN, name, True,
                f"User '{name}' not found, will be banned {duration.label} upon next entry to this room.",
                deferred=True,
            )

        await self._notify(present, f"banned {duration.label}")
        await self.gateway.ban(present, self._room_id, duration)
        return ModerationOutcome(ActionType.BAN, present, True, f"Banning user '{present}' {duration.label}")
