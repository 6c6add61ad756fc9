from pathlib import Path

import pytest
import yaml

from chatguard.configuration.app_configuration import (
    DEFAULT_HISTORY_DB_PATH,
    AppConfig,
    ChatLogSwitches,
)
from chatguard.configuration.profanity_config import DEFAULT_WORDS, ProfanityConfig


@pytest.fixture()
def config_path(tmp_path: Path) -> Path:
    return tmp_path / "app_config.yml"


def test_app_config_reload_parses_yaml(config_path: Path) -> None:
    config_path.write_text(
        yaml.safe_dump({
            "profanity": {"enabled": False, "custom_words": ["Zut", "merde", "zut"], "debounce_seconds": 0.5},
            "history": {"db_path": "elsewhere/history.db", "search_limit": 100},
            "live_log": {"max_entries": 50, "keep_minutes": 10, "prune_interval_seconds": 5},
            "chat_log": {"pets": False, "wired": False},
            "moderation": {"deferred_path": "elsewhere/deferred.json"},
        }),
        encoding="utf-8",
    )

    config = AppConfig(config_path)

    profanity = config.profanity
    assert profanity.enabled is False
    assert profanity.custom_words == ["zut"]
    assert profanity.debounce_seconds == pytest.approx(0.5)
    assert config.history_db_path == Path("elsewhere/history.db")
    assert config.history_search_limit == 100
    assert config.live_log_max_entries == 50
    assert config.live_log_keep_minutes == 10
    assert config.live_log_prune_interval == pytest.approx(5)
    assert config.chat_log == ChatLogSwitches(pets=False, wired=False)
    assert config.deferred_moderation_path == Path("elsewhere/deferred.json")


def test_app_config_missing_file_returns_defaults(tmp_path: Path) -> None:
    config = AppConfig(tmp_path / "does_not_exist.yml")

    assert config.data == {}
    assert config.profanity == ProfanityConfig()
    assert config.history_db_path == DEFAULT_HISTORY_DB_PATH
    assert config.history_search_limit == 5000
    assert config.chat_log == ChatLogSwitches()


def test_bad_values_fall_back(config_path: Path) -> None:
    config_path.write_text(
        "profanity:\n  custom_words: not-a-list\n  debounce_seconds: soon\nlive_log:\n  max_entries: lots\n",
        encoding="utf-8",
    )
    config = AppConfig(config_path)
    assert config.profanity.custom_words == []
    assert config.profanity.debounce_seconds == pytest.approx(0.15)
    assert config.live_log_max_entries == 2000
    assert config.live_log_prune_interval == pytest.approx(60)


def test_non_mapping_document_is_ignored(config_path: Path) -> None:
    config_path.write_text("- just\n- a list\n", encoding="utf-8")
    assert AppConfig(config_path).data == {}


def test_save_custom_words_keeps_other_keys(config_path: Path) -> None:
    config_path.write_text(
        yaml.safe_dump({"history": {"search_limit": 42}, "profanity": {"enabled": True}}),
        encoding="utf-8",
    )
    config = AppConfig(config_path)

    assert config.save_custom_words(["Flûte", DEFAULT_WORDS[0], "flûte", "zut"])

    on_disk = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    assert on_disk["history"] == {"search_limit": 42}
    assert on_disk["profanity"] == {"enabled": True, "custom_words": ["flûte", "zut"]}
    assert AppConfig(config_path).profanity.custom_words == ["flûte", "zut"]


def test_save_creates_missing_file(tmp_path: Path) -> None:
    path = tmp_path / "config" / "app_config.yml"
    config = AppConfig(path)
    assert config.save_custom_words(["zut"])
    assert yaml.safe_load(path.read_text(encoding="utf-8")) == {"profanity": {"custom_words": ["zut"]}}
