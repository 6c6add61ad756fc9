"""Tests for the profanity index: queries, word management and notifications."""

import asyncio
import threading

import pytest

from chatguard.configuration.profanity_config import DEFAULT_WORDS, ProfanityConfig
from chatguard.datatypes.profanity_datatypes import ProfanityMatch
from chatguard.profanity.profanity_index import ProfanityIndex, build_segments, resolve_overlaps


class TestQueries:
    """Tests for contains_profanity / find_matches / analyze."""

    def test_default_word_detected(self, index):
        assert index.contains_profanity("oh merde alors")
        assert index.contains_profanity("oh m3rde alors")

    def test_clean_text(self, index):
        assert not index.contains_profanity("bonjour tout le monde")
        assert index.find_matches("bonjour tout le monde") == []

    @pytest.mark.parametrize("text", ["", None])
    def test_empty_input_is_clean(self, index, text):
        assert index.contains_profanity(text) is False
        assert index.find_matches(text) == []
        assert index.analyze(text).has_profanity is False

    def test_disabled_index_reports_nothing(self):
        idx = ProfanityIndex(ProfanityConfig(enabled=False), debounce_seconds=0)
        assert not idx.contains_profanity("merde")
        assert idx.find_matches("merde") == []

    def test_toggle_enabled(self, index):
        index.enabled = False
        assert not index.contains_profanity("merde")
        index.enabled = True
        assert index.contains_profanity("merde")

    def test_matches_are_ordered_by_start(self, bare_index):
        bare_index.set_custom_words(["zut", "flute"])
        matches = bare_index.find_matches("flute et zut et flute")
        assert [m.start for m in matches] == [0, 9, 16]
        assert [m.matched_word for m in matches] == ["flute", "zut", "flute"]

    def test_overlap_keeps_lowest_start(self, bare_index):
        # "abcd" hits [0,5) as "ab.cd", "cdef" hits [3,8) as "cd.ef"
        bare_index.set_custom_words(["abcd", "cdef"])
        matches = bare_index.find_matches("ab.cd.ef")
        assert matches == [ProfanityMatch(start=0, length=5, matched_word="abcd")]

    def test_overlap_tie_goes_to_first_listed_word_not_longest(self, bare_index):
        # Documented quirk: at equal start the first word in list order wins,
        # even when a later word would cover more text.
        bare_index.set_custom_words(["ab", "abcd"])
        matches = bare_index.find_matches("ab.cd")
        assert len(matches) == 1
        assert matches[0].matched_word == "ab"
        assert matches[0].length == 2

    def test_analyze_segments_rebuild_text(self, bare_index):
        bare_index.set_custom_words(["zut"])
        text = "oh zut, encore z*t!"
        analysis = bare_index.analyze(text)

        assert analysis.has_profanity
        assert "".join(s.text for s in analysis.segments) == text
        assert [s.text for s in analysis.segments if s.is_profanity] == ["zut", "z*t"]
        assert analysis.matched_words == ["zut"]


class TestResolveOverlaps:
    """Tests for the overlap policy on raw matches."""

    def test_compares_against_last_kept_match(self):
        matches = [
            ProfanityMatch(0, 10, "long"),
            ProfanityMatch(2, 2, "inner"),
            ProfanityMatch(6, 6, "tail"),
            ProfanityMatch(10, 3, "after"),
        ]
        kept = resolve_overlaps(matches)
        assert [m.matched_word for m in kept] == ["long", "after"]

    def test_unsorted_input(self):
        kept = resolve_overlaps([ProfanityMatch(5, 2, "b"), ProfanityMatch(0, 2, "a")])
        assert [m.matched_word for m in kept] == ["a", "b"]

    def test_build_segments_without_matches(self):
        assert [s.text for s in build_segments("hello", [])] == ["hello"]


class TestWordManagement:
    """Tests for add_word / remove_word / set_custom_words / reload."""

    def test_add_custom_word(self, index):
        assert index.add_word("  Flibbertigibbet ")
        assert index.get_custom_words() == ["flibbertigibbet"]
        assert index.contains_profanity("quel flibbertigibbet")

    def test_add_default_word_is_noop(self, index):
        before = index.get_custom_words()
        assert index.add_word("merde") is False
        assert index.add_word("MERDE") is False
        assert index.get_custom_words() == before

    def test_add_existing_custom_word_is_noop(self, index):
        index.add_word("gadzooks")
        version = index.version
        assert index.add_word("gadzooks") is False
        assert index.version == version

    @pytest.mark.parametrize("word", ["", "   ", None])
    def test_blank_words_ignored(self, index, word):
        assert index.add_word(word) is False
        assert index.remove_word(word) is False

    def test_remove_default_word_refused(self, index):
        assert index.remove_word("merde") is False
        assert "merde" in index.get_all_words()
        assert index.contains_profanity("merde")

    def test_remove_unknown_word_is_noop(self, index):
        assert index.remove_word("gadzooks") is False

    def test_remove_custom_word(self, index):
        index.add_word("gadzooks")
        assert index.remove_word("GADZOOKS")
        assert index.get_custom_words() == []
        assert not index.contains_profanity("gadzooks")

    def test_all_words_lists_defaults_then_custom(self, index):
        index.add_word("gadzooks")
        words = index.get_all_words()
        assert words[: len(DEFAULT_WORDS)] == list(DEFAULT_WORDS)
        assert words[-1] == "gadzooks"

    def test_set_custom_words_cleans_input(self, index):
        assert index.set_custom_words([" Zut ", "zut", "", "merde", "flute"])
        assert index.get_custom_words() == ["zut", "flute"]
        assert index.set_custom_words(["zut", "flute"]) is False

    def test_reload_from_config(self, index):
        index.reload(ProfanityConfig(enabled=False, custom_words=["zut"]))
        assert index.enabled is False
        assert index.get_custom_words() == ["zut"]

    def test_each_edit_publishes_new_version(self, index):
        v1 = index.version
        index.add_word("zut")
        v2 = index.version
        index.remove_word("zut")
        assert v1 < v2 < index.version


class TestRebuildAtomicity:
    """Readers running during rebuilds never see a partial or empty set."""

    def test_concurrent_reads_during_edits(self, index):
        errors = []
        stop = threading.Event()
        minimum = len(DEFAULT_WORDS)

        def reader():
            try:
                while not stop.is_set():
                    assert len(index.pattern_set.matchers) >= minimum
                    assert [m.matched_word for m in index.find_matches("oh merde")] == ["merde"]
            except Exception as exc:  # collected for the main thread
                errors.append(exc)

        readers = [threading.Thread(target=reader) for _ in range(4)]
        for thread in readers:
            thread.start()
        try:
            for n in range(40):
                index.add_word(f"mot{n}")
            for n in range(40):
                index.remove_word(f"mot{n}")
        finally:
            stop.set()
            for thread in readers:
                thread.join()

        assert errors == []
        assert index.get_custom_words() == []


class TestNotifications:
    """Tests for the debounced "patterns changed" signal."""

    def test_fires_immediately_without_event_loop(self, index):
        calls = []
        index.subscribe(lambda: calls.append(index.version))
        index.add_word("zut")
        assert calls == [index.version]

    def test_unsubscribe(self, index):
        calls = []
        unsubscribe = index.subscribe(lambda: calls.append(1))
        unsubscribe()
        unsubscribe()
        index.add_word("zut")
        assert calls == []

    @pytest.mark.asyncio
    async def test_burst_is_coalesced(self):
        idx = ProfanityIndex(debounce_seconds=0.05)
        calls = []
        idx.subscribe(lambda: calls.append(idx.get_custom_words()))

        for word in ["un", "deux", "trois", "quatre"]:
            idx.add_word(f"mot{word}")
        assert calls == []

        await asyncio.sleep(0.2)
        assert len(calls) == 1
        assert calls[0] == ["motun", "motdeux", "mottrois", "motquatre"]
        await idx.shutdown()

    @pytest.mark.asyncio
    async def test_async_subscriber_awaited_on_flush(self):
        idx = ProfanityIndex(debounce_seconds=10)
        done = []

        async def on_change():
            await asyncio.sleep(0)
            done.append(True)

        idx.subscribe(on_change)
        idx.add_word("zut")
        await idx.flush_notifications()
        assert done == [True]
        await idx.shutdown()

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_block_others(self):
        idx = ProfanityIndex(debounce_seconds=10)
        calls = []

        def broken():
            raise RuntimeError("boom")

        idx.subscribe(broken)
        idx.subscribe(lambda: calls.append(1))
        idx.add_word("zut")
        await idx.flush_notifications()
        assert calls == [1]
        await idx.shutdown()

    def test_noop_edit_does_not_notify(self, index):
        calls = []
        index.subscribe(lambda: calls.append(1))
        index.add_word("merde")
        index.remove_word("inconnu")
        assert calls == []
