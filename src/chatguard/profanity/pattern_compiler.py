"""
Compile plain words into matchers that survive common obfuscation.

For the word ``conne`` the compiled pattern accepts ``conne``, ``c0nne``,
``c*nne``, ``c o n n e`` and ``cxnnex`` (any case), but not ``conner`` or
``economne``:

- each letter is replaced by a character class of look-alikes (``o`` also
  matches ``0``, ``°``, accented forms and ``x``; vowels may also be masked
  with ``*``)
- between two letters any run of filler characters (``x * _ - .`` or
  whitespace) may appear
- a space inside the word requires one or more whitespace characters
- the last letter may be trailed by masking characters (``x`` or ``*``)
- the whole pattern is wrapped in word boundaries
"""

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Dict, Iterator, Mapping, Optional

from chatguard.datatypes.profanity_datatypes import ProfanityMatch


CHARACTER_PATTERNS: Mapping[str, str] = {
    "a": "[a@4àáâãäåx*]",
    "b": "[b8ß]",
    "c": "[c¢©]",
    "d": "[d]",
    "e": "[e3€èéêëx*]",
    "f": "[f]",
    "g": "[g9]",
    "h": "[h]",
    "i": "[i1!|ìíîïx*]",
    "j": "[j]",
    "k": "[k]",
    "l": "[l1|]",
    "m": "[m]",
    "n": "[nñ]",
    "o": "[o0°òóôõöx*]",
    "p": "[p]",
    "q": "[q]",
    "r": "[r]",
    "s": "[s5$§]",
    "t": "[t7+]",
    "u": "[uùúûüx*]",
    "v": "[v]",
    "w": "[w]",
    "x": "[x]",
    "y": "[y¥]",
    "z": "[z2]",
}

FILLER_PATTERN = r"[x*_\-.\s]*"
TRAILING_MASK_PATTERN = r"[x*]*"
SPACE_PATTERN = r"\s+"
WORD_BOUNDARY = r"\b"


@dataclass(frozen=True, slots=True)
class Matcher:
    """Compiled pattern for one word of the word list."""

    word: str
    pattern: re.Pattern

    def is_match(self, text: str) -> bool:
        return self.pattern.search(text) is not None

    def find_all(self, text: str) -> Iterator[ProfanityMatch]:
        """Yield every non-overlapping hit, tagged with the base word."""
        for hit in self.pattern.finditer(text):
            if hit.end() > hit.start():
                yield ProfanityMatch(start=hit.start(), length=hit.end() - hit.start(), matched_word=self.word)


def build_pattern_source(
    word: str,
    character_patterns: Mapping[str, str] = CHARACTER_PATTERNS,
    filler: str = FILLER_PATTERN,
) -> str:
    """Return the regex source for ``word`` (expects a normalized, non-blank word)."""
    chars = list(word.strip().lower())
    parts = [WORD_BOUNDARY]

    for index, char in enumerate(chars):
        if char.isspace():
            # A run of spaces in the word collapses into one "\s+".
            if index > 0 and chars[index - 1].isspace():
                continue
            parts.append(SPACE_PATTERN)
            continue

        parts.append(character_patterns.get(char) or re.escape(char))

        is_last = index == len(chars) - 1
        if not is_last and not chars[index + 1].isspace():
            parts.append(filler)

    if chars and not chars[-1].isspace():
        parts.append(TRAILING_MASK_PATTERN)
    parts.append(WORD_BOUNDARY)
    return "".join(parts)


class PatternCompiler:
    """
    Turns words into :class:`Matcher` objects.

    Matchers are immutable, so compiled results are memoised per word and a
    word-list rebuild only compiles words it has not seen before.
    """

    def __init__(
        self,
        character_patterns: Optional[Mapping[str, str]] = None,
        filler: str = FILLER_PATTERN,
    ) -> None:
        self._character_patterns = dict(character_patterns or CHARACTER_PATTERNS)
        self._filler = filler
        self._cache: Dict[str, Matcher] = {}

    def compile(self, word: Optional[str]) -> Optional[Matcher]:
        """Compile one word. Blank input returns ``None``."""
        if not word or not word.strip():
            return None

        key = word.strip().lower()
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        source = build_pattern_source(key, self._character_patterns, self._filler)
        matcher = Matcher(word=key, pattern=re.compile(source, re.IGNORECASE))
        self._cache[key] = matcher
        return matcher

    def forget(self, word: str) -> None:
        """Drop a memoised matcher (used when a custom word is removed)."""
        self._cache.pop(word.strip().lower(), None)


_default_compiler = PatternCompiler()


def compile_word(word: Optional[str]) -> Optional[Matcher]:
    """Compile with the built-in substitution table."""
    return _default_compiler.compile(word)
