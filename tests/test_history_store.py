"""Tests for the persistent chat history store."""

import asyncio
import threading
import time
from datetime import datetime, timedelta, timezone

import aiosqlite
import pytest

from chatguard.database.history_store import HistoryStore
from chatguard.datatypes.history_datatypes import EntryKind, HistoryEntry, SearchFilters
from chatguard.profanity.profanity_index import ProfanityIndex

T0 = datetime(2026, 3, 14, 12, 0, 0, tzinfo=timezone.utc)


def message(name="alice", text="hello there", at=T0, **kwargs):
    return HistoryEntry.chat_message(at, name, text, **kwargs)


class TestOpen:
    """Tests for opening, schema creation and corruption recovery."""

    @pytest.mark.asyncio
    async def test_missing_file_is_empty_history(self, db_path):
        store = HistoryStore(db_path)
        await store.open()
        try:
            assert db_path.exists()
            assert store.get_entry_count() == 0
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_count_is_recomputed_on_open(self, db_path):
        store = HistoryStore(db_path)
        await store.open()
        await store.add_entry(message(at=T0))
        await store.add_entry(HistoryEntry.avatar_action(T0, "bob", "entered the room"))
        await store.close()

        reopened = HistoryStore(db_path)
        await reopened.open()
        try:
            assert reopened.get_entry_count() == 2
        finally:
            await reopened.close()

    @pytest.mark.asyncio
    async def test_corrupt_file_is_set_aside(self, db_path):
        db_path.parent.mkdir(parents=True, exist_ok=True)
        db_path.write_bytes(b"this is definitely not an sqlite database" * 200)

        store = HistoryStore(db_path)
        await store.open()
        try:
            assert store.get_entry_count() == 0
            assert await store.add_entry(message())
            corrupt = [p for p in db_path.parent.iterdir() if ".corrupt-" in p.name]
            assert len(corrupt) == 1
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_old_schema_gains_new_column(self, db_path):
        db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(db_path) as db:
            await db.execute("""
                CREATE TABLE chat_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp INTEGER NOT NULL,
                    type TEXT NOT NULL,
                    name TEXT,
                    message TEXT,
                    chat_type TEXT,
                    is_whisper INTEGER NOT NULL DEFAULT 0,
                    has_profanity INTEGER NOT NULL DEFAULT 0,
                    matched_words TEXT,
                    user_name TEXT,
                    action TEXT,
                    room_name TEXT,
                    room_owner TEXT
                )
            """)
            await db.execute(
                "INSERT INTO chat_history (timestamp, type, name, message) VALUES (?, 'message', 'old', 'from before')",
                (int(T0.timestamp()),),
            )
            await db.commit()

        store = HistoryStore(db_path)
        await store.open()
        try:
            result = await store.search()
            assert result.total_count == 1
            assert result.entries[0].message == "from before"
            assert result.entries[0].whisper_recipient is None
        finally:
            await store.close()

        # Opening again must not fail on the already-added column
        again = HistoryStore(db_path)
        await again.open()
        await again.close()

    @pytest.mark.asyncio
    async def test_operations_before_open_raise(self, db_path):
        store = HistoryStore(db_path)
        with pytest.raises(RuntimeError):
            await store.add_entry(message())


class TestAddEntry:
    """Tests for insertion and duplicate suppression."""

    @pytest.mark.asyncio
    async def test_duplicate_within_window_is_dropped(self, store):
        assert await store.add_entry(message(at=T0))
        assert await store.add_entry(message(at=T0 + timedelta(seconds=1))) is False
        assert store.get_entry_count() == 1
        assert (await store.search()).total_count == 1

    @pytest.mark.asyncio
    async def test_same_text_three_seconds_apart_is_kept(self, store):
        assert await store.add_entry(message(at=T0))
        assert await store.add_entry(message(at=T0 + timedelta(seconds=3)))
        assert store.get_entry_count() == 2

    @pytest.mark.asyncio
    async def test_different_speaker_or_text_is_kept(self, store):
        await store.add_entry(message(name="alice", at=T0))
        await store.add_entry(message(name="bob", at=T0))
        await store.add_entry(message(name="alice", text="hello again", at=T0))
        assert store.get_entry_count() == 3

    @pytest.mark.asyncio
    async def test_actions_are_never_deduplicated(self, store):
        action = HistoryEntry.avatar_action(T0, "bob", "entered the room")
        assert await store.add_entry(action)
        assert await store.add_entry(action)
        assert store.get_entry_count() == 2

    @pytest.mark.asyncio
    async def test_fields_round_trip_through_storage(self, store):
        entry = message(
            text="psst",
            chat_type="whisper",
            is_whisper=True,
            whisper_recipient="bob",
            has_profanity=True,
            matched_words=["zut", "flûte"],
        )
        await store.add_entry(entry)
        await store.add_entry(HistoryEntry.room_entry(T0 + timedelta(seconds=5), "Lobby", "carol"))

        entries = (await store.search()).entries
        assert entries[0].kind is EntryKind.ROOM
        assert entries[0].room_name == "Lobby"
        assert entries[1] == entry

    @pytest.mark.asyncio
    async def test_concurrent_adds_keep_count_exact(self, store):
        entries = [message(text=f"line {n}", at=T0 + timedelta(seconds=n)) for n in range(50)]
        results = await asyncio.gather(*(store.add_entry(e) for e in entries))
        assert all(results)
        assert store.get_entry_count() == 50
        assert (await store.search()).total_count == 50


class TestSearch:
    """Tests for filtered, newest-first search."""

    @pytest.fixture
    def times(self):
        return T0, T0 + timedelta(minutes=1), T0 + timedelta(minutes=2)

    @pytest.mark.asyncio
    async def test_from_date_is_inclusive_and_newest_first(self, store, times):
        t1, t2, t3 = times
        for n, at in enumerate(times):
            await store.add_entry(message(text=f"line {n}", at=at))

        result = await store.search(SearchFilters(from_date=t2))
        assert [e.timestamp for e in result.entries] == [t3, t2]
        assert result.total_count == 2

    @pytest.mark.asyncio
    async def test_total_count_ignores_limit(self, store, times):
        _, t2, t3 = times
        for n, at in enumerate(times):
            await store.add_entry(message(text=f"line {n}", at=at))

        result = await store.search(SearchFilters(from_date=t2), limit=1)
        assert [e.timestamp for e in result.entries] == [t3]
        assert result.total_count == 2
        assert result.truncated

    @pytest.mark.asyncio
    async def test_to_date_is_inclusive(self, store, times):
        t1, t2, _ = times
        for n, at in enumerate(times):
            await store.add_entry(message(text=f"line {n}", at=at))
        result = await store.search(SearchFilters(to_date=t2))
        assert [e.timestamp for e in result.entries] == [t2, t1]

    @pytest.mark.asyncio
    async def test_user_filter_matches_speaker_and_action_subject(self, store):
        await store.add_entry(message(name="Élodie", text="salut", at=T0))
        await store.add_entry(HistoryEntry.avatar_action(T0 + timedelta(seconds=5), "élodie", "left the room"))
        await store.add_entry(message(name="bob", text="élodie?", at=T0 + timedelta(seconds=10)))

        result = await store.search(SearchFilters(user_name="ÉLO"))
        assert result.total_count == 2
        assert {e.kind for e in result.entries} == {EntryKind.MESSAGE, EntryKind.ACTION}

    @pytest.mark.asyncio
    async def test_keyword_searches_message_and_action_text(self, store):
        await store.add_entry(message(text="See you TOMORROW", at=T0))
        await store.add_entry(HistoryEntry.avatar_action(T0 + timedelta(seconds=5), "bob", "kicked"))
        await store.add_entry(message(text="nothing here", at=T0 + timedelta(seconds=10)))

        assert (await store.search(SearchFilters(keyword="tomorrow"))).total_count == 1
        assert (await store.search(SearchFilters(keyword="KICK"))).total_count == 1

    @pytest.mark.asyncio
    async def test_keyword_wildcards_are_literal(self, store):
        await store.add_entry(message(text="100% sure", at=T0))
        await store.add_entry(message(text="1000 sure", at=T0 + timedelta(seconds=5)))
        assert (await store.search(SearchFilters(keyword="0%"))).total_count == 1

    @pytest.mark.asyncio
    async def test_flags_are_conjunctive(self, store):
        await store.add_entry(message(text="a", at=T0, is_whisper=True, has_profanity=True))
        await store.add_entry(message(text="b", at=T0 + timedelta(seconds=5), is_whisper=True))
        await store.add_entry(message(text="c", at=T0 + timedelta(seconds=10), has_profanity=True))

        assert (await store.search(SearchFilters(whispers_only=True))).total_count == 2
        assert (await store.search(SearchFilters(profanity_only=True))).total_count == 2
        both = await store.search(SearchFilters(whispers_only=True, profanity_only=True))
        assert [e.message for e in both.entries] == ["a"]

    @pytest.mark.asyncio
    async def test_offset_past_end_still_reports_total(self, store):
        for n in range(3):
            await store.add_entry(message(text=f"line {n}", at=T0 + timedelta(seconds=n * 5)))
        result = await store.search(limit=2, offset=10)
        assert result.entries == []
        assert result.total_count == 3

    @pytest.mark.asyncio
    async def test_zero_limit_returns_no_rows(self, store):
        for n in range(3):
            await store.add_entry(message(text=f"line {n}", at=T0 + timedelta(seconds=n * 5)))
        result = await store.search(limit=0)
        assert result.entries == []
        assert result.total_count == 3
        assert len(await store.search_all()) == 3

    @pytest.mark.asyncio
    async def test_empty_result(self, store):
        result = await store.search(SearchFilters(keyword="nothing"))
        assert result.entries == []
        assert result.total_count == 0

    @pytest.mark.asyncio
    async def test_snapshot_is_chronological_copy(self, store):
        for n in range(3):
            await store.add_entry(message(text=f"line {n}", at=T0 + timedelta(seconds=n * 5)))
        snapshot = await store.snapshot()
        await store.add_entry(message(text="late", at=T0 + timedelta(minutes=5)))
        assert [e.message for e in snapshot] == ["line 0", "line 1", "line 2"]


class TestRetag:
    """Tests for update_profanity_flags."""

    @pytest.mark.asyncio
    async def test_new_word_flags_existing_messages(self, store):
        index = ProfanityIndex(default_words=(), debounce_seconds=0)
        await store.add_entry(message(text="we need more foo", at=T0))
        await store.add_entry(message(text="f.o.o everywhere", at=T0 + timedelta(seconds=5)))
        await store.add_entry(message(text="food is fine", at=T0 + timedelta(seconds=10)))
        await store.add_entry(message(text="nothing", at=T0 + timedelta(seconds=15)))

        index.add_word("foo")
        changed = await store.update_profanity_flags(index)
        assert changed == 2

        flagged = await store.search(SearchFilters(profanity_only=True))
        assert sorted(e.message for e in flagged.entries) == ["f.o.o everywhere", "we need more foo"]
        assert all(e.matched_words == ["foo"] for e in flagged.entries)

        # Converged: a second pass changes nothing
        assert await store.update_profanity_flags(index) == 0

    @pytest.mark.asyncio
    async def test_removed_word_clears_flags(self, store):
        index = ProfanityIndex(default_words=(), debounce_seconds=0)
        index.add_word("foo")
        await store.add_entry(message(text="foo", at=T0, has_profanity=True, matched_words=["foo"]))

        index.remove_word("foo")
        assert await store.update_profanity_flags(index) == 1
        entry = (await store.search()).entries[0]
        assert entry.has_profanity is False
        assert entry.matched_words == []

    @pytest.mark.asyncio
    async def test_failed_retag_leaves_flags_untouched(self, store):
        await store.add_entry(message(text="one", at=T0))
        await store.add_entry(message(text="two", at=T0 + timedelta(seconds=5)))

        reference = ProfanityIndex(default_words=("one",), debounce_seconds=0)

        class ExplodingIndex:
            def __init__(self):
                self.calls = 0

            def analyze(self, text):
                self.calls += 1
                if self.calls == 2:
                    raise RuntimeError("boom")
                return reference.analyze(text)

        with pytest.raises(RuntimeError):
            await store.update_profanity_flags(ExplodingIndex())
        assert (await store.search(SearchFilters(profanity_only=True))).total_count == 0

    @pytest.mark.asyncio
    async def test_overlapping_runs_converge_on_latest_word_list(self, store):
        index = ProfanityIndex(default_words=(), debounce_seconds=0)
        await store.add_entry(message(text="hello foo", at=T0))
        index.add_word("foo")

        class SlowIndex:
            """Scores with the live index, then stalls before handing results back."""

            def __init__(self, inner):
                self.inner = inner
                self.scored = threading.Event()

            def analyze(self, text):
                analysis = self.inner.analyze(text)
                self.scored.set()
                time.sleep(0.3)
                return analysis

        slow = SlowIndex(index)
        first = asyncio.create_task(store.update_profanity_flags(slow))
        assert await asyncio.to_thread(slow.scored.wait, 5)

        # The word goes away while the first run is still scoring.
        index.remove_word("foo")
        await store.update_profanity_flags(index)
        assert await first == 1

        entry = (await store.search()).entries[0]
        assert entry.has_profanity is False
        assert entry.matched_words == []

    @pytest.mark.asyncio
    async def test_non_message_rows_are_ignored(self, store):
        index = ProfanityIndex(default_words=("bob",), debounce_seconds=0)
        await store.add_entry(HistoryEntry.avatar_action(T0, "bob", "entered the room"))
        assert await store.update_profanity_flags(index) == 0


class TestClear:
    @pytest.mark.asyncio
    async def test_clear_resets_count(self, store):
        await store.add_entry(message())
        await store.clear()
        assert store.get_entry_count() == 0
        assert (await store.search()).total_count == 0
