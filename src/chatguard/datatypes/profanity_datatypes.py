"""Value types produced by the profanity detector."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List


@dataclass(frozen=True, slots=True)
class ProfanityMatch:
    """One detected word inside a message.

    Attributes:
        start: Offset of the first matched character.
        length: Number of characters matched (obfuscation included).
        matched_word: Base word from the word list, not the obfuscated text.
    """

    start: int
    length: int
    matched_word: str

    @property
    def end(self) -> int:
        return self.start + self.length


@dataclass(frozen=True, slots=True)
class MessageSegment:
    """A slice of a message, flagged when it is a profanity match."""

    text: str
    is_profanity: bool = False


@dataclass(frozen=True, slots=True)
class ProfanityAnalysis:
    """Display-ready result of scanning one message."""

    has_profanity: bool = False
    segments: List[MessageSegment] = field(default_factory=list)
    matched_words: List[str] = field(default_factory=list)


CLEAN_ANALYSIS = ProfanityAnalysis()
