"""
Chat log pipeline: inbound event -> profanity analysis -> live log + history.

Also reacts to "patterns changed" from the profanity index by re-tagging the
stored history and re-annotating the live log.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Callable, List, Optional

from chatguard.configuration.app_configuration import ChatLogSwitches
from chatguard.database.history_store import HistoryStore
from chatguard.datatypes.event_datatypes import AvatarEvent, AvatarKind, ChatEvent, ChatType, RoomEvent
from chatguard.datatypes.history_datatypes import EntryKind, HistoryEntry, SearchFilters, SearchResult
from chatguard.live.live_log_cache import AvatarActionItem, ChatMessageItem, LiveLogCache, RoomEntryItem
from chatguard.profanity.profanity_index import ProfanityIndex
from chatguard.util.logger import get_logger

logger = get_logger("chat_log_service")

ENTERED_ROOM = "entered the room"
LEFT_ROOM = "left the room"
STARTED_TRADING = "started trading"
STOPPED_TRADING = "stopped trading"


class ChatLogService:
    """
    Glue between the event source, the profanity index, the live log and the store.

    Persistence is best-effort: a failed store write is logged and the live
    log still shows the entry.
    """

    def __init__(
        self,
        index: ProfanityIndex,
        store: HistoryStore,
        cache: LiveLogCache,
        switches: Optional[ChatLogSwitches] = None,
        *,
        own_name: Optional[str] = None,
        search_limit: int = 5000,
    ) -> None:
        self.index = index
        self.store = store
        self.cache = cache
        self.switches = switches or ChatLogSwitches()
        self.own_name = own_name
        self.search_limit = search_limit

        # Set by the event source while a room's initial avatar list is loading.
        self.loading_room = False

        self._last_whisper_recipient: Optional[str] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def attach(self) -> None:
        """Start listening for word-list changes."""
        if self._unsubscribe is None:
            self._unsubscribe = self.index.subscribe(self.on_patterns_changed)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def is_own_name(self, name: Optional[str]) -> bool:
        return bool(name and self.own_name and name.casefold() == self.own_name.casefold())

    # ------------------------------------------------------------------
    # Inbound events
    # ------------------------------------------------------------------

    def _should_log_chat(self, event: ChatEvent) -> bool:
        switches = self.switches
        if not switches.normal and event.avatar_kind is AvatarKind.USER and event.chat_type is not ChatType.WHISPER:
            return False
        if not switches.whispers and event.is_whisper:
            return False
        if not switches.bots and event.avatar_kind.is_bot:
            return False
        if not switches.pets and event.avatar_kind is AvatarKind.PET:
            return False
        if not switches.wired and event.is_wired:
            return False
        return True

    async def on_chat(self, event: ChatEvent) -> Optional[ChatMessageItem]:
        """Analyze and record a chat line. Returns the live item, or None when filtered out."""
        if not self._should_log_chat(event):
            return None

        analysis = self.index.analyze(event.message)
        is_whisper = event.is_whisper
        recipient = self._last_whisper_recipient if is_whisper and self.is_own_name(event.name) else None

        item = self.cache.add_message(
            event.name,
            event.message,
            analysis,
            timestamp=event.timestamp,
            chat_type=event.chat_type.value,
            is_whisper=is_whisper,
            whisper_recipient=recipient,
        )
        await self._persist(HistoryEntry.chat_message(
            item.timestamp,
            event.name,
            event.message,
            chat_type=event.chat_type.value,
            is_whisper=is_whisper,
            whisper_recipient=recipient,
            has_profanity=analysis.has_profanity,
            matched_words=analysis.matched_words,
        ))
        return item

    def note_outgoing_whisper(self, recipient: Optional[str]) -> None:
        """Remember who the local user is whispering, for the echoed message."""
        self._last_whisper_recipient = recipient.strip() if recipient and recipient.strip() else None

    async def on_avatar_added(self, event: AvatarEvent) -> Optional[AvatarActionItem]:
        if event.avatar_kind is not AvatarKind.USER or self.loading_room or not self.switches.user_entry:
            return None
        return await self.append_action(event.name, ENTERED_ROOM, timestamp=event.timestamp)

    async def on_avatar_removed(self, event: AvatarEvent) -> Optional[AvatarActionItem]:
        if event.avatar_kind is not AvatarKind.USER or self.loading_room or not self.switches.user_entry:
            return None
        # The live log says "You left the room"; history keeps the real name.
        shown = "You" if self.is_own_name(event.name) else event.name
        item = self.cache.add_action(shown, LEFT_ROOM, timestamp=event.timestamp)
        await self._persist(HistoryEntry.avatar_action(item.timestamp, event.name, LEFT_ROOM))
        return item

    async def on_avatar_updated(self, event: AvatarEvent) -> Optional[AvatarActionItem]:
        if not self.switches.trades or event.was_trading is None or event.is_trading is None:
            return None
        if event.was_trading == event.is_trading:
            return None
        action = STARTED_TRADING if event.is_trading else STOPPED_TRADING
        return await self.append_action(event.name, action, timestamp=event.timestamp)

    async def on_room_entered(self, event: RoomEvent) -> RoomEntryItem:
        room_name = event.room_name or "?"
        room_owner = event.room_owner or "?"
        item = self.cache.add_room(room_name, room_owner, timestamp=event.timestamp)
        await self._persist(HistoryEntry.room_entry(item.timestamp, room_name, room_owner))
        return item

    async def append_action(
        self,
        user_name: str,
        action: str,
        *,
        timestamp: Optional[datetime] = None,
    ) -> AvatarActionItem:
        """Add an action line (entries, trades, moderation notices) to both logs."""
        item = self.cache.add_action(user_name, action, timestamp=timestamp or datetime.now(timezone.utc))
        await self._persist(HistoryEntry.avatar_action(item.timestamp, user_name, action))
        return item

    async def _persist(self, entry: HistoryEntry) -> bool:
        try:
            return await self.store.add_entry(entry)
        except Exception:
            logger.exception("[CHAT LOG] Failed to store %s entry", entry.kind)
            return False

    # ------------------------------------------------------------------
    # History search
    # ------------------------------------------------------------------

    async def search_history(self, filters: Optional[SearchFilters] = None, limit: Optional[int] = None) -> SearchResult:
        """Search the store and refresh profanity fields of the results for display.

        Messages hit by the current word list are flagged and their
        ``matched_words`` become the distinct matched text slices. The store
        itself is not written.
        """
        result = await self.store.search(filters, limit=limit if limit is not None else self.search_limit)
        for entry in result.entries:
            if entry.kind is not EntryKind.MESSAGE or not entry.message:
                continue
            matches = self.index.find_matches(entry.message)
            if matches:
                entry.has_profanity = True
                entry.matched_words = list(dict.fromkeys(entry.message[m.start:m.end] for m in matches))
        return result

    # ------------------------------------------------------------------
    # Word-list changes
    # ------------------------------------------------------------------

    async def retag_history(self) -> int:
        """Best-effort store re-tag; failures are logged and reported as 0 changes."""
        try:
            return await self.store.update_profanity_flags(self.index)
        except Exception:
            logger.exception("[CHAT LOG] History re-tag failed")
            return 0

    async def on_patterns_changed(self) -> None:
        """Re-tag the history and re-annotate the live log concurrently."""
        logger.debug("[CHAT LOG] Word list changed, refreshing flags")
        results: List = await asyncio.gather(
            self.retag_history(),
            self.cache.reannotate(self.index),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                logger.error("[CHAT LOG] Live log re-annotation failed: %s", result)
