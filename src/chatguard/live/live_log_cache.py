"""
In-memory live chat log with a continuously filtered view.

Entries carry a process-wide, strictly increasing ``entry_id`` that orders
the view and identifies an entry for removal. The cache is display state
only: eviction never touches the history store.
"""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from itertools import count
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from chatguard.datatypes.history_datatypes import HistoryEntry, as_utc
from chatguard.datatypes.profanity_datatypes import MessageSegment, ProfanityAnalysis
from chatguard.util.logger import get_logger

logger = get_logger("live_log_cache")

_entry_ids = count(1)


def next_entry_id() -> int:
    """Next process-lifetime entry id; ids are never reused."""
    return next(_entry_ids)


# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class LiveLogItem:
    """Base for everything shown in the live log."""

    entry_id: int
    timestamp: datetime

    def searchable_fields(self) -> Tuple[str, ...]:
        return ()

    def to_history_entry(self) -> HistoryEntry:
        raise NotImplementedError


@dataclass(slots=True)
class ChatMessageItem(LiveLogItem):
    name: str = ""
    message: str = ""
    chat_type: Optional[str] = None
    is_whisper: bool = False
    whisper_recipient: Optional[str] = None
    has_profanity: bool = False
    segments: List[MessageSegment] = field(default_factory=list)
    matched_words: List[str] = field(default_factory=list)

    def searchable_fields(self) -> Tuple[str, ...]:
        return (self.name, self.message)

    def apply_analysis(self, analysis: ProfanityAnalysis) -> None:
        self.has_profanity = analysis.has_profanity
        self.segments = list(analysis.segments)
        self.matched_words = list(analysis.matched_words)

    def to_history_entry(self) -> HistoryEntry:
        return HistoryEntry.chat_message(
            self.timestamp,
            self.name,
            self.message,
            chat_type=self.chat_type,
            is_whisper=self.is_whisper,
            whisper_recipient=self.whisper_recipient,
            has_profanity=self.has_profanity,
            matched_words=self.matched_words,
        )

    def __str__(self) -> str:
        return f"{self.name}: {self.message}"


@dataclass(slots=True)
class AvatarActionItem(LiveLogItem):
    user_name: str = ""
    action: str = ""

    def searchable_fields(self) -> Tuple[str, ...]:
        return (self.user_name, self.action)

    def to_history_entry(self) -> HistoryEntry:
        return HistoryEntry.avatar_action(self.timestamp, self.user_name, self.action)

    def __str__(self) -> str:
        return f"{self.user_name} {self.action}"


@dataclass(slots=True)
class RoomEntryItem(LiveLogItem):
    room_name: Optional[str] = None
    room_owner: Optional[str] = None

    def searchable_fields(self) -> Tuple[str, ...]:
        return (self.room_name or "",)

    def to_history_entry(self) -> HistoryEntry:
        return HistoryEntry.room_entry(self.timestamp, self.room_name, self.room_owner)

    def __str__(self) -> str:
        return f"Entered room: {self.room_name} by {self.room_owner}"


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------


def parse_keywords(text: Optional[str]) -> List[str]:
    """Split filter text into keywords.

    Text between double quotes is one keyword; outside quotes every run of
    non-space characters is a keyword. An unterminated quote runs to the end.

    >>> parse_keywords('hello "good morning" bye')
    ['hello', 'good morning', 'bye']
    """
    keywords: List[str] = []
    current: List[str] = []
    in_quotes = False

    for char in text or "":
        if char == '"':
            if in_quotes and current:
                keywords.append("".join(current))
                current.clear()
            in_quotes = not in_quotes
        elif char.isspace() and not in_quotes:
            if current:
                keywords.append("".join(current))
                current.clear()
        else:
            current.append(char)

    if current:
        keywords.append("".join(current))
    return keywords


@dataclass(frozen=True, slots=True)
class LiveLogFilter:
    """Predicate behind the live view. Every condition must hold."""

    text: str = ""
    whispers_only: bool = False
    profanity_only: bool = False
    keywords: Tuple[str, ...] = field(init=False, default=())

    def __post_init__(self) -> None:
        object.__setattr__(self, "keywords", tuple(k.casefold() for k in parse_keywords(self.text)))

    def matches(self, item: LiveLogItem) -> bool:
        if self.whispers_only and not (isinstance(item, ChatMessageItem) and item.is_whisper):
            return False
        if self.profanity_only and not (isinstance(item, ChatMessageItem) and item.has_profanity):
            return False
        if self.keywords:
            fields = [f.casefold() for f in item.searchable_fields() if f]
            return any(keyword in value for keyword in self.keywords for value in fields)
        return True


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------

ChangeListener = Callable[[], None]


class LiveLogCache:
    """
    Bounded ordered map of live log items plus the filtered view over it.

    Methods:
        add_message / add_action / add_room: Append a new item.
        remove_where / prune_older_than / keep_last / clear: Eviction.
        set_filter: Change the predicate; the whole cache is re-evaluated.
        reannotate: Recompute profanity fields of cached messages.
    """

    def __init__(self, max_entries: Optional[int] = 2000, keep_minutes: int = 60) -> None:
        """
        Args:
            max_entries: Count window kept after every append (None disables).
            keep_minutes: Default age for :meth:`prune_older_than`.
        """
        self.max_entries = max_entries
        self.keep_minutes = keep_minutes
        self._items: "OrderedDict[int, LiveLogItem]" = OrderedDict()
        self._filter = LiveLogFilter()
        self._view: List[LiveLogItem] = []
        self._listeners: List[ChangeListener] = []

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, entry_id: int) -> bool:
        return entry_id in self._items

    @property
    def items(self) -> List[LiveLogItem]:
        """Snapshot of every cached item, ascending by entry id."""
        return list(self._items.values())

    @property
    def view(self) -> List[LiveLogItem]:
        """Snapshot of the filtered view, ascending by entry id."""
        return list(self._view)

    @property
    def filter(self) -> LiveLogFilter:
        return self._filter

    def get(self, entry_id: int) -> Optional[LiveLogItem]:
        return self._items.get(entry_id)

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, listener: ChangeListener) -> Callable[[], None]:
        """Call ``listener`` after every change to the view; returns an unsubscribe function."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _changed(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("[LIVE LOG] Change listener failed")

    # ------------------------------------------------------------------
    # Appends
    # ------------------------------------------------------------------

    def add(self, item: LiveLogItem) -> LiveLogItem:
        """Insert an item built by the caller (its entry id must be new)."""
        if item.entry_id in self._items:
            raise ValueError(f"entry id {item.entry_id} already cached")
        if self._items and item.entry_id < next(reversed(self._items)):
            raise ValueError(f"entry id {item.entry_id} is older than the newest cached entry")

        self._items[item.entry_id] = item
        if self._filter.matches(item):
            self._view.append(item)

        if self.max_entries and len(self._items) > self.max_entries:
            self._keep_last(self.max_entries)
        self._changed()
        return item

    def add_message(
        self,
        name: str,
        message: str,
        analysis: Optional[ProfanityAnalysis] = None,
        *,
        timestamp: Optional[datetime] = None,
        chat_type: Optional[str] = None,
        is_whisper: bool = False,
        whisper_recipient: Optional[str] = None,
    ) -> ChatMessageItem:
        item = ChatMessageItem(
            entry_id=next_entry_id(),
            timestamp=as_utc(timestamp or datetime.now(timezone.utc)),
            name=name,
            message=message,
            chat_type=chat_type,
            is_whisper=is_whisper,
            whisper_recipient=whisper_recipient,
        )
        if analysis is not None:
            item.apply_analysis(analysis)
        self.add(item)
        return item

    def add_action(self, user_name: str, action: str, *, timestamp: Optional[datetime] = None) -> AvatarActionItem:
        item = AvatarActionItem(
            entry_id=next_entry_id(),
            timestamp=as_utc(timestamp or datetime.now(timezone.utc)),
            user_name=user_name,
            action=action,
        )
        self.add(item)
        return item

    def add_room(
        self,
        room_name: Optional[str],
        room_owner: Optional[str],
        *,
        timestamp: Optional[datetime] = None,
    ) -> RoomEntryItem:
        item = RoomEntryItem(
            entry_id=next_entry_id(),
            timestamp=as_utc(timestamp or datetime.now(timezone.utc)),
            room_name=room_name,
            room_owner=room_owner,
        )
        self.add(item)
        return item

    # ------------------------------------------------------------------
    # Eviction
    # ------------------------------------------------------------------

    def remove_keys(self, entry_ids: Iterable[int]) -> int:
        removed = 0
        for entry_id in list(entry_ids):
            if self._items.pop(entry_id, None) is not None:
                removed += 1
        if removed:
            self._view = [item for item in self._view if item.entry_id in self._items]
            self._changed()
        return removed

    def remove_where(self, predicate: Callable[[LiveLogItem], bool]) -> int:
        """Remove every item the predicate accepts. Returns the number removed."""
        return self.remove_keys([item.entry_id for item in self._items.values() if predicate(item)])

    def prune_older_than(self, minutes: Optional[int] = None, *, now: Optional[datetime] = None) -> int:
        """Keep only items newer than ``now - minutes`` (default ``keep_minutes``)."""
        window = self.keep_minutes if minutes is None else minutes
        cutoff = as_utc(now or datetime.now(timezone.utc)) - timedelta(minutes=window)
        removed = self.remove_where(lambda item: item.timestamp < cutoff)
        if removed:
            logger.debug("[LIVE LOG] Pruned %d entries older than %d minutes", removed, window)
        return removed

    def keep_last(self, window: int) -> int:
        """Keep only ids >= newest id - window + 1."""
        removed = self._keep_last(window)
        if removed:
            self._changed()
        return removed

    def _keep_last(self, window: int) -> int:
        if not self._items:
            return 0
        lowest_kept = next(reversed(self._items)) - max(window, 0) + 1
        stale = [entry_id for entry_id in self._items if entry_id < lowest_kept]
        for entry_id in stale:
            del self._items[entry_id]
        if stale:
            self._view = [item for item in self._view if item.entry_id >= lowest_kept]
        return len(stale)

    def clear(self) -> None:
        self._items.clear()
        self._view.clear()
        self._changed()

    # ------------------------------------------------------------------
    # Filter
    # ------------------------------------------------------------------

    def set_filter(
        self,
        text: Optional[str] = None,
        *,
        whispers_only: bool = False,
        profanity_only: bool = False,
    ) -> None:
        """Replace the predicate and re-evaluate every cached item."""
        self._filter = LiveLogFilter(text=text or "", whispers_only=whispers_only, profanity_only=profanity_only)
        self._refresh_view()

    def _refresh_view(self) -> None:
        self._view = [item for item in self._items.values() if self._filter.matches(item)]
        self._changed()

    # ------------------------------------------------------------------
    # Re-annotation
    # ------------------------------------------------------------------

    async def reannotate(self, index) -> int:
        """Re-run ``index.analyze`` over cached messages in a worker thread.

        Items appended while the scan runs keep the analysis they arrived
        with; items evicted meanwhile are skipped. Returns the number of
        items whose profanity flag changed.
        """
        snapshot = [(item.entry_id, item.message) for item in self._items.values() if isinstance(item, ChatMessageItem)]
        if not snapshot:
            return 0

        def analyze_all() -> Dict[int, ProfanityAnalysis]:
            return {entry_id: index.analyze(message) for entry_id, message in snapshot}

        results = await asyncio.to_thread(analyze_all)

        flipped = 0
        for entry_id, analysis in results.items():
            item = self._items.get(entry_id)
            if not isinstance(item, ChatMessageItem):
                continue
            if item.has_profanity != analysis.has_profanity:
                flipped += 1
            item.apply_analysis(analysis)

        logger.debug("[LIVE LOG] Re-annotated %d messages (%d flags changed)", len(results), flipped)
        self._refresh_view()
        return flipped
