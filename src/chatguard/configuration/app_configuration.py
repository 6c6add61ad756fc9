from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import fcntl
from typing import Any, Dict, Iterable, List
import yaml

from chatguard.configuration.profanity_config import ProfanityConfig, clean_custom_words
from chatguard.util.logger import get_logger

logger = get_logger("app_configuration")


CONFIG_PATH = Path("./config/app_config.yml").resolve()

DEFAULT_HISTORY_DB_PATH = Path("./data/chat_history.db")
DEFAULT_DEFERRED_PATH = Path("./data/deferred_moderation.json")


@dataclass(frozen=True, slots=True)
class ChatLogSwitches:
    """Which incoming events are written to the chat log."""

    normal: bool = True
    whispers: bool = True
    bots: bool = True
    pets: bool = True
    wired: bool = True
    user_entry: bool = True
    trades: bool = True


class AppConfig:
    """File-lock based accessor around the YAML application configuration.

    The class caches the contents of ``./config/app_config.yml`` and exposes
    typed shortcuts for each section. Reads take a shared ``fcntl`` lock and
    writes an exclusive one so a second process never sees a half-written
    file.
    """

    def __init__(self, config_path: Path = CONFIG_PATH) -> None:
        self.config_path = Path(config_path)
        self._data: Dict[str, Any] = {}
        self.reload()

    # --------------------------
    # Private helpers
    # --------------------------
    def load_from_disk(self) -> Dict[str, Any]:
        try:
            with self.config_path.open("r", encoding="utf-8") as f:
                fcntl.flock(f.fileno(), fcntl.LOCK_SH)
                try:
                    data = yaml.safe_load(f)
                finally:
                    fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        except FileNotFoundError:
            logger.error("[APP CONFIGURATION] Config file %s not found.", self.config_path)
            return {}
        except Exception as exc:
            logger.error("[APP CONFIGURATION] Failed to load config %s: %s", self.config_path, exc)
            return {}

        if not isinstance(data, dict):
            if data is not None:
                logger.error("[APP CONFIGURATION] Config %s is not a mapping, ignoring it", self.config_path)
            return {}
        return data

    def _section(self, key: str) -> Dict[str, Any]:
        value = self._data.get(key, {})
        return value if isinstance(value, dict) else {}

    # --------------------------
    # Public API
    # --------------------------
    def reload(self) -> Dict[str, Any]:
        """Reload configuration from disk and return the loaded mapping.

        Returns the raw mapping that was loaded (an empty dict on error).
        """
        self._data = self.load_from_disk()
        return self._data

    @property
    def data(self) -> Dict[str, Any]:
        """Return the cached configuration mapping. Callers should not mutate it."""
        return self._data

    def get(self, key: str, default: Any = None) -> Any:
        """Safe lookup for top-level configuration keys."""
        return self._data.get(key, default)

    def save_custom_words(self, words: Iterable[str]) -> bool:
        """Persist the custom profanity words, leaving every other key untouched.

        Default words are stripped before writing. Returns False when the file
        could not be written.
        """
        custom = clean_custom_words(words)
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with self.config_path.open("a+", encoding="utf-8") as f:
                fcntl.flock(f.fileno(), fcntl.LOCK_EX)
                try:
                    f.seek(0)
                    current = yaml.safe_load(f.read()) or {}
                    if not isinstance(current, dict):
                        current = {}
                    profanity = current.get("profanity")
                    if not isinstance(profanity, dict):
                        profanity = {}
                    profanity["custom_words"] = custom
                    current["profanity"] = profanity

                    f.seek(0)
                    f.truncate()
                    yaml.safe_dump(current, f, allow_unicode=True, sort_keys=False)
                    f.flush()
                finally:
                    fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        except Exception as exc:
            logger.error("[APP CONFIGURATION] Failed to save custom words to %s: %s", self.config_path, exc)
            return False

        self._data = current
        logger.debug("[APP CONFIGURATION] Saved %d custom words", len(custom))
        return True

    # --------------------------
    # High-level shortcuts
    # --------------------------
    @property
    def profanity(self) -> ProfanityConfig:
        """Detector settings (enabled flag, custom words, debounce window)."""
        return ProfanityConfig.from_mapping(self._section("profanity"))

    @property
    def history_db_path(self) -> Path:
        """Location of the chat history database."""
        value = self._section("history").get("db_path")
        return Path(value) if value else DEFAULT_HISTORY_DB_PATH

    @property
    def history_search_limit(self) -> int:
        """Maximum rows a history search returns for display. Default is 5000."""
        try:
            return max(1, int(self._section("history").get("search_limit", 5000)))
        except (TypeError, ValueError):
            return 5000

    @property
    def live_log_max_entries(self) -> int:
        """Window size for count-based eviction of the live log. Default is 2000."""
        try:
            return max(1, int(self._section("live_log").get("max_entries", 2000)))
        except (TypeError, ValueError):
            return 2000

    @property
    def live_log_keep_minutes(self) -> int:
        """Age horizon for "keep the last N minutes" pruning. Default is 60."""
        try:
            return max(1, int(self._section("live_log").get("keep_minutes", 60)))
        except (TypeError, ValueError):
            return 60

    @property
    def live_log_prune_interval(self) -> float:
        """Seconds between two age-based prune passes over the live log. Default is 60."""
        try:
            return max(1.0, float(self._section("live_log").get("prune_interval_seconds", 60)))
        except (TypeError, ValueError):
            return 60.0

    @property
    def chat_log(self) -> ChatLogSwitches:
        """Per-event-type logging switches; unknown or missing keys default to True."""
        section = self._section("chat_log")
        fields: List[str] = list(ChatLogSwitches.__dataclass_fields__)
        return ChatLogSwitches(**{name: bool(section.get(name, True)) for name in fields})

    @property
    def deferred_moderation_path(self) -> Path:
        """JSON file holding per-room deferred bans and mutes."""
        value = self._section("moderation").get("deferred_path")
        return Path(value) if value else DEFAULT_DEFERRED_PATH
