"""
Active profanity word list and its compiled pattern set.

The pattern set is rebuilt wholesale whenever the word list changes and is
published with a single reference swap. Readers grab the current set once
per call and iterate it without locking, so a rebuild in flight never blocks
them and they never see a partially built set.

Edits fire a debounced "patterns changed" notification: a burst of
``add_word`` calls produces one signal after a short quiet period.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from itertools import count
import threading
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Iterable, List, Mapping, Optional, Sequence, Union

from chatguard.configuration.profanity_config import (
    DEFAULT_WORDS,
    ProfanityConfig,
    normalize_word,
)
from chatguard.datatypes.profanity_datatypes import (
    CLEAN_ANALYSIS,
    MessageSegment,
    ProfanityAnalysis,
    ProfanityMatch,
)
from chatguard.profanity.pattern_compiler import Matcher, PatternCompiler
from chatguard.util.debounce import Debouncer
from chatguard.util.logger import get_logger

logger = get_logger("profanity_index")

PatternsChangedCallback = Callable[[], Union[None, Awaitable[Any]]]


@dataclass(frozen=True, slots=True)
class PatternSet:
    """Immutable snapshot of the compiled word list."""

    version: int
    enabled: bool
    default_words: tuple[str, ...]
    custom_words: tuple[str, ...]
    matchers: Mapping[str, Matcher]

    @property
    def all_words(self) -> tuple[str, ...]:
        return self.default_words + self.custom_words


def resolve_overlaps(matches: Iterable[ProfanityMatch]) -> List[ProfanityMatch]:
    """Sort by start offset and drop overlapping matches greedily, left to right.

    A match is discarded when it starts before the end of the last match that
    was kept. Among matches sharing a start offset the first one encountered
    wins; longer matches get no preference.
    """
    kept: List[ProfanityMatch] = []
    for match in sorted(matches, key=lambda m: m.start):
        if kept and match.start < kept[-1].end:
            continue
        kept.append(match)
    return kept


def build_segments(text: str, matches: Sequence[ProfanityMatch]) -> List[MessageSegment]:
    """Split ``text`` into alternating clean/profane segments that join back to ``text``."""
    segments: List[MessageSegment] = []
    position = 0
    for match in matches:
        if match.start > position:
            segments.append(MessageSegment(text=text[position:match.start]))
        segments.append(MessageSegment(text=text[match.start:match.end], is_profanity=True))
        position = match.end
    if position < len(text):
        segments.append(MessageSegment(text=text[position:]))
    return segments


class ProfanityIndex:
    """
    Owns the compiled matcher set for defaults plus custom words.

    Methods:
        contains_profanity: True when any word matches.
        find_matches: All non-overlapping matches, ordered by offset.
        analyze: Matches turned into display segments and matched base words.
        add_word / remove_word / set_custom_words: Edit the custom list.
        subscribe: Register a "patterns changed" listener.
    """

    def __init__(
        self,
        config: Optional[ProfanityConfig] = None,
        *,
        default_words: Iterable[str] = DEFAULT_WORDS,
        compiler: Optional[PatternCompiler] = None,
        debounce_seconds: Optional[float] = None,
    ) -> None:
        config = config or ProfanityConfig()
        self._defaults: tuple[str, ...] = tuple(w for w in (normalize_word(d) for d in default_words) if w)
        self._default_set = frozenset(self._defaults)
        self._compiler = compiler or PatternCompiler()

        self._write_lock = threading.Lock()
        self._versions = count(1)
        self._subscribers: List[PatternsChangedCallback] = []

        delay = config.debounce_seconds if debounce_seconds is None else debounce_seconds
        self._debouncer = Debouncer(delay, self._notify_subscribers, name="PROFANITY INDEX")

        custom = self._clean_custom(config.custom_words)
        self._patterns: PatternSet = self._build(enabled=config.enabled, custom=custom)
        logger.info(
            "[PROFANITY INDEX] Built %d patterns (%d default, %d custom)",
            len(self._patterns.matchers), len(self._defaults), len(custom),
        )

    # ------------------------------------------------------------------
    # Build / publish
    # ------------------------------------------------------------------

    def _clean_custom(self, words: Iterable[str]) -> tuple[str, ...]:
        seen: set[str] = set()
        ordered: List[str] = []
        for word in words or ():
            normalized = normalize_word(word)
            if not normalized or normalized in self._default_set or normalized in seen:
                continue
            seen.add(normalized)
            ordered.append(normalized)
        return tuple(ordered)

    def _build(self, *, enabled: bool, custom: tuple[str, ...]) -> PatternSet:
        matchers: dict[str, Matcher] = {}
        for word in self._defaults + custom:
            matcher = self._compiler.compile(word)
            if matcher is not None:
                matchers[word] = matcher
        return PatternSet(
            version=next(self._versions),
            enabled=enabled,
            default_words=self._defaults,
            custom_words=custom,
            matchers=MappingProxyType(matchers),
        )

    def _publish(self, *, enabled: bool, custom: tuple[str, ...]) -> None:
        """Build a complete new set and swap it in. Caller holds the write lock."""
        pattern_set = self._build(enabled=enabled, custom=custom)
        self._patterns = pattern_set
        logger.debug(
            "[PROFANITY INDEX] Published pattern set v%d (%d words, enabled=%s)",
            pattern_set.version, len(pattern_set.matchers), enabled,
        )

    # ------------------------------------------------------------------
    # Queries (lock-free)
    # ------------------------------------------------------------------

    @property
    def pattern_set(self) -> PatternSet:
        """The currently published snapshot."""
        return self._patterns

    @property
    def version(self) -> int:
        return self._patterns.version

    @property
    def enabled(self) -> bool:
        return self._patterns.enabled

    @enabled.setter
    def enabled(self, value: bool) -> None:
        with self._write_lock:
            current = self._patterns
            if current.enabled == bool(value):
                return
            self._publish(enabled=bool(value), custom=current.custom_words)
        self._debouncer.trigger()
        logger.info("[PROFANITY INDEX] Detection %s", "enabled" if value else "disabled")

    def contains_profanity(self, text: Optional[str]) -> bool:
        """Return True as soon as any matcher hits."""
        patterns = self._patterns
        if not patterns.enabled or not text:
            return False
        return any(matcher.is_match(text) for matcher in patterns.matchers.values())

    def find_matches(self, text: Optional[str]) -> List[ProfanityMatch]:
        """Run every matcher, then keep non-overlapping matches lowest start first."""
        patterns = self._patterns
        if not patterns.enabled or not text:
            return []

        found: List[ProfanityMatch] = []
        for matcher in patterns.matchers.values():
            found.extend(matcher.find_all(text))
        return resolve_overlaps(found)

    def analyze(self, text: Optional[str]) -> ProfanityAnalysis:
        """Matches as display segments plus the distinct base words, in order of appearance."""
        matches = self.find_matches(text)
        if not matches or not text:
            return CLEAN_ANALYSIS

        matched_words = list(dict.fromkeys(m.matched_word for m in matches))
        return ProfanityAnalysis(
            has_profanity=True,
            segments=build_segments(text, matches),
            matched_words=matched_words,
        )

    def get_all_words(self) -> List[str]:
        return list(self._patterns.all_words)

    def get_custom_words(self) -> List[str]:
        return list(self._patterns.custom_words)

    def is_default_word(self, word: Optional[str]) -> bool:
        return normalize_word(word) in self._default_set

    # ------------------------------------------------------------------
    # Edits (copy-on-write)
    # ------------------------------------------------------------------

    def add_word(self, word: Optional[str]) -> bool:
        """Add a custom word. Blank words, defaults and existing custom words are ignored.

        Returns True when the word list changed.
        """
        normalized = normalize_word(word)
        if not normalized or normalized in self._default_set:
            return False

        with self._write_lock:
            current = self._patterns
            if normalized in current.custom_words:
                return False
            self._publish(enabled=current.enabled, custom=current.custom_words + (normalized,))
        self._debouncer.trigger()

        logger.info("[PROFANITY INDEX] Added custom word '%s'", normalized)
        return True

    def remove_word(self, word: Optional[str]) -> bool:
        """Remove a custom word. Default words cannot be removed.

        Returns True when the word list changed.
        """
        normalized = normalize_word(word)
        if not normalized:
            return False

        with self._write_lock:
            current = self._patterns
            if normalized not in current.custom_words:
                if normalized in self._default_set:
                    logger.debug("[PROFANITY INDEX] Refusing to remove default word '%s'", normalized)
                return False
            remaining = tuple(w for w in current.custom_words if w != normalized)
            self._publish(enabled=current.enabled, custom=remaining)
            self._compiler.forget(normalized)
        self._debouncer.trigger()

        logger.info("[PROFANITY INDEX] Removed custom word '%s'", normalized)
        return True

    def set_custom_words(self, words: Iterable[str]) -> bool:
        """Replace the whole custom list in one rebuild. Returns True when it changed."""
        custom = self._clean_custom(words)
        with self._write_lock:
            current = self._patterns
            if custom == current.custom_words:
                return False
            self._publish(enabled=current.enabled, custom=custom)
        self._debouncer.trigger()

        logger.info("[PROFANITY INDEX] Custom word list replaced (%d words)", len(custom))
        return True

    def reload(self, config: ProfanityConfig) -> None:
        """Adopt a freshly loaded configuration (enabled flag and custom words)."""
        with self._write_lock:
            self._publish(enabled=config.enabled, custom=self._clean_custom(config.custom_words))
        self._debouncer.trigger()
        logger.info("[PROFANITY INDEX] Reloaded from configuration")

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def subscribe(self, callback: PatternsChangedCallback) -> Callable[[], None]:
        """Register a zero-argument listener; returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            try:
                self._subscribers.remove(callback)
            except ValueError:
                pass

        return unsubscribe

    async def _notify_subscribers(self) -> None:
        version = self._patterns.version
        logger.debug("[PROFANITY INDEX] Patterns changed (v%d), notifying %d subscribers", version, len(self._subscribers))
        for callback in list(self._subscribers):
            try:
                result = callback()
                if asyncio.iscoroutine(result) or isinstance(result, asyncio.Future):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("[PROFANITY INDEX] Patterns-changed subscriber failed")

    async def flush_notifications(self) -> None:
        """Deliver a pending notification immediately and wait for subscribers to finish."""
        await self._debouncer.flush()

    async def shutdown(self) -> None:
        await self._debouncer.shutdown()
        self._subscribers.clear()
