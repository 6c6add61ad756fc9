"""
Profanity word-list configuration.

Two disjoint word sets feed the detector:

- ``DEFAULT_WORDS``: fixed, built into the process, never written to disk.
- ``ProfanityConfig.custom_words``: user additions, persisted as an ordered list.

Words are normalized (trimmed, lower-cased) before they enter either set.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping


def normalize_word(word: str | None) -> str:
    """Trim and lower-case a word; ``None`` and blanks become ``""``."""
    if not word:
        return ""
    return word.strip().lower()


def _dedupe(words: Iterable[str]) -> tuple[str, ...]:
    seen: set[str] = set()
    ordered: List[str] = []
    for word in words:
        normalized = normalize_word(word)
        if normalized and normalized not in seen:
            seen.add(normalized)
            ordered.append(normalized)
    return tuple(ordered)


# French and English defaults. Obfuscated spellings (c0nne, c*nne, ...) are
# handled by the pattern compiler, so only base spellings live here.
DEFAULT_WORDS: tuple[str, ...] = _dedupe([
    # French
    "abruti", "andouille", "avorton",
    "batard", "bâtard", "beauf", "biatch", "bicot", "bite", "bitembois", "bordel", "bouffon",
    "bougnoule", "bougnouliser", "bougre", "boukak", "bounioul", "bourdille", "bouseux",
    "branler", "branleur", "branque", "brise-burnes",
    "casse-bonbon", "casse-couille", "casse-couilles", "cacou", "cafre", "caldoche",
    "chier", "chieur", "chieurs", "chiennasse", "chinetoc", "chinetoque", "chintok", "chleuh", "chnoque",
    "coche", "con", "conard", "conasse", "conchier", "connard", "connarde", "connasse", "conne",
    "couille", "couilles", "couillon", "couillonner", "counifle", "courtaud",
    "cretin", "crétin", "crevard", "crevure", "cricri", "crotte", "crotté", "crouillat", "crouille", "croûton", "cul",
    "debile", "débile", "deguelasse", "déguelasse", "demerder", "démerder", "drouille",
    "ducon", "duconnot", "dugenoux", "dugland", "duschnock",
    "emmanche", "emmanché", "emmerder", "emmerdeur", "emmerdeuse",
    "empafe", "empafé", "empapaoute", "empapaouté",
    "encule", "enculé", "enculer", "enculeur", "enflure", "enfoire", "enfoiré", "envaselineur",
    "epais", "épais", "espingoin", "etron", "étron",
    "fdp", "fiotte", "fouteur", "foutre", "fritz", "fumier",
    "garce", "gaupe", "gdm", "gland", "glandeur", "glandeuse", "glandouillou", "glandu",
    "gnoul", "gnoule", "godon", "gogol", "goï", "gouilland", "gouine", "gourde",
    "gourgandine", "grognasse", "guindoule", "gueniche",
    "imbecile", "imbécile",
    "jean-foutre",
    "kraut",
    "lacheux", "lâcheux", "lavette", "lopette",
    "makoume", "makoumé", "manche", "mange-merde", "marchandot", "margouilliste",
    "mauviette", "merdaillon", "merdaille", "merde", "merdeux", "merdouillard",
    "michto", "minable", "minus", "miserable", "misérable",
    "moinaille", "moins-que-rien", "monacaille", "moricaud", "mort",
    "niaiseux", "niac", "niakoue", "niakoué", "nique", "niquer", "negro", "négro", "ntm", "ntgm",
    "pakos", "panoufle", "patarin", "pecque", "pedale", "pédale", "pede", "pédé", "pedoque", "pédoque",
    "pequenaud", "péquenaud", "pet", "petasse", "pétasse", "peteux", "péteux",
    "pignoufe", "pimbêche", "pisseux", "pissou", "pleutre", "plouc",
    "porcasse", "poucav", "pouf", "poufiasse", "pouffiasse", "pounde", "poundé", "pourriture",
    "punaise", "putain", "pute",
    "queutard",
    "raclure", "raton", "ripopee", "ripopée", "robespierrot", "rosbif", "roulure",
    "sagouin", "salaud", "sale", "salop", "salope", "salopard", "saloperie", "satrouille",
    "schbeb", "schleu", "schnoc", "schnock", "schnoque", "sent-la-pisse",
    "sottiseux", "sous-merde", "stearique", "stéarique",
    "tafiole", "tantouse", "tantouserie", "tantouze", "tapette", "tarlouze",
    "tebe", "tebé", "teteux", "téteux", "teube", "teubé", "tocard",
    "trainee", "traînée", "trouduc", "truiasse",
    "vaurien", "viedase", "viédase", "vier", "vide-couilles",
    "xeropineur", "xéropineur",
    "yeule", "youd", "youpin", "youpine", "youpinisation", "youtre",
    "zguegue", "zguègue",
    # English
    "ahole", "anus", "asshole", "asswipe",
    "bastard", "bitch", "bitches", "blowjob", "boffing", "boobs", "butthole", "buttwipe",
    "chink", "clit", "clits", "cock", "cockhead", "cocksucker", "crap", "cum", "cunt", "cunts",
    "damn", "dick", "dildo", "dildos", "dyke",
    "enema", "ejaculate",
    "fag", "faggot", "fags", "fart", "fatass", "fuck", "fucker", "fucking", "fucks",
    "gay", "gook",
    "hell", "hoar", "hooker", "hore", "whore",
    "jackoff", "jap", "japs", "jerk-off", "jism", "jizz",
    "kike", "knob", "kunt",
    "lesbian", "lesbo",
    "masochist", "masturbate", "mofo", "motherfucker",
    "nazi", "nigga", "nigger", "nutsack",
    "orgasm", "orifice",
    "paki", "pecker", "penis", "phuck", "piss", "poop", "porn", "preteen", "prick", "pussy", "puta", "puto",
    "queer", "queef",
    "rectum", "retard",
    "sadist", "scank", "schlong", "screw", "screwing", "scrotum", "semen", "sex", "sexy",
    "shemale", "shit", "shits", "shitter", "shitty", "skank", "skanky", "slag", "slut", "sluts", "slutty", "smut",
    "spic", "splooge",
    "testicle", "tit", "tits", "turd", "twat",
    "vagina", "vulva",
    "wank", "wetback", "wop",
    "xxx",
])

_DEFAULT_SET = frozenset(DEFAULT_WORDS)


def is_default_word(word: str) -> bool:
    """Case-insensitive membership test against the built-in list."""
    return normalize_word(word) in _DEFAULT_SET


def clean_custom_words(words: Iterable[str] | None) -> List[str]:
    """Normalize, de-duplicate (keeping first occurrence) and drop defaults and blanks."""
    return [w for w in _dedupe(words or []) if w not in _DEFAULT_SET]


@dataclass(slots=True)
class ProfanityConfig:
    """User-editable detector settings.

    Attributes:
        enabled: When False the detector reports nothing.
        custom_words: Ordered user additions; never overlaps ``DEFAULT_WORDS``.
        debounce_seconds: Quiet period before a "patterns changed" signal fires.
    """

    enabled: bool = True
    custom_words: List[str] = field(default_factory=list)
    debounce_seconds: float = 0.15

    def __post_init__(self) -> None:
        self.custom_words = clean_custom_words(self.custom_words)

    @property
    def all_words(self) -> List[str]:
        """Defaults followed by custom words."""
        return list(DEFAULT_WORDS) + list(self.custom_words)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "ProfanityConfig":
        """Build from the ``profanity`` section of the YAML config; bad values fall back to defaults."""
        if not isinstance(data, Mapping):
            return cls()

        raw_words = data.get("custom_words") or []
        if not isinstance(raw_words, list):
            raw_words = []

        try:
            debounce = float(data.get("debounce_seconds", 0.15))
        except (TypeError, ValueError):
            debounce = 0.15

        return cls(
            enabled=bool(data.get("enabled", True)),
            custom_words=[str(w) for w in raw_words if w is not None],
            debounce_seconds=debounce,
        )
