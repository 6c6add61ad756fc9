"""
Text and JSON renderings of chat history and the live log.

Rendering is pure; the bytes are handed to an :class:`ExportWriter`, which
decides where they end up (a save dialog, a directory, a test double).
"""

from __future__ import annotations

import asyncio
from datetime import datetime, tzinfo
import json
from pathlib import Path
from typing import Any, Iterable, List, Optional, Protocol, Sequence, Union

from chatguard.datatypes.history_datatypes import EntryKind, HistoryEntry, SearchFilters
from chatguard.util.logger import get_logger

logger = get_logger("history_export")

TEXT_FORMAT = "text"
JSON_FORMAT = "json"
EXPORT_FORMATS = (TEXT_FORMAT, JSON_FORMAT)


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _local(value: datetime, tz: Optional[tzinfo]) -> datetime:
    return value.astimezone(tz) if tz is not None else value.astimezone()


def format_entry_line(entry: HistoryEntry, tz: Optional[tzinfo] = None) -> str:
    """``[HH:MM:SS] ...`` line for one entry, in ``tz`` (local time when None)."""
    clock = _local(entry.timestamp, tz).strftime("%H:%M:%S")
    if entry.kind is EntryKind.MESSAGE:
        return f"[{clock}] {entry.name}: {entry.message}"
    if entry.kind is EntryKind.ACTION:
        return f"[{clock}] {entry.user_name} {entry.action}"
    return f"[{clock}] Entered room: {entry.room_name} by {entry.room_owner}"


def format_date_banner(day: datetime) -> str:
    return f"=== {day.strftime('%A, %d %B %Y')} ==="


def render_history_text(entries: Iterable[HistoryEntry], tz: Optional[tzinfo] = None) -> str:
    """Chronological text export with a date banner whenever the day changes."""
    lines: List[str] = []
    current_day = None

    for entry in sorted(entries, key=lambda e: e.timestamp):
        moment = _local(entry.timestamp, tz)
        if moment.date() != current_day:
            if current_day is not None:
                lines.append("")
            lines.append(format_date_banner(moment))
            lines.append("")
            current_day = moment.date()
        lines.append(format_entry_line(entry, tz))

    return "\n".join(lines) + "\n" if lines else ""


def render_live_log(items: Iterable[Any], tz: Optional[tzinfo] = None) -> str:
    """One line per live log item, in view order (no date banners)."""
    lines = [format_entry_line(item.to_history_entry(), tz) for item in items]
    return "\n".join(lines) + "\n" if lines else ""


def history_to_json(entries: Iterable[HistoryEntry]) -> str:
    return json.dumps([entry.to_dict() for entry in entries], ensure_ascii=False, indent=2)


def history_from_json(text: str) -> List[HistoryEntry]:
    """Parse a JSON export back into entries. Raises ValueError on malformed input."""
    data = json.loads(text)
    if not isinstance(data, list):
        raise ValueError("history export must be a JSON array")
    return [HistoryEntry.from_dict(item) for item in data]


def live_log_to_json(items: Iterable[Any]) -> str:
    payload = []
    for item in items:
        data = item.to_history_entry().to_dict()
        data["entry_id"] = item.entry_id
        payload.append(data)
    return json.dumps(payload, ensure_ascii=False, indent=2)


# ---------------------------------------------------------------------------
# Writers
# ---------------------------------------------------------------------------


class ExportWriter(Protocol):
    """Destination for rendered exports. Returns the written path, or None if cancelled."""

    async def export_text(self, default_file_name: str, content: str) -> Optional[str]: ...

    async def export_json(self, default_file_name: str, content: str) -> Optional[str]: ...


class DirectoryExportWriter:
    """Writes exports into a fixed directory under their suggested file name."""

    def __init__(self, directory: Union[str, Path]) -> None:
        self.directory = Path(directory)

    async def _write(self, file_name: str, content: str) -> str:
        path = self.directory / file_name

        def write() -> None:
            self.directory.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")

        await asyncio.to_thread(write)
        return str(path)

    async def export_text(self, default_file_name: str, content: str) -> Optional[str]:
        return await self._write(default_file_name, content)

    async def export_json(self, default_file_name: str, content: str) -> Optional[str]:
        return await self._write(default_file_name, content)


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------


def export_file_name(prefix: str, fmt: str, now: Optional[datetime] = None) -> str:
    stamp = (now or datetime.now()).strftime("%Y-%m-%d_%H-%M-%S")
    return f"{prefix}_{stamp}.{'json' if fmt == JSON_FORMAT else 'txt'}"


def _check_format(fmt: str) -> str:
    fmt = (fmt or "").strip().lower()
    if fmt == "txt":
        fmt = TEXT_FORMAT
    if fmt not in EXPORT_FORMATS:
        raise ValueError(f"unknown export format {fmt!r}; expected one of {', '.join(EXPORT_FORMATS)}")
    return fmt


class HistoryExporter:
    """Renders store search results or the live log and hands them to a writer."""

    def __init__(self, store, writer: ExportWriter, tz: Optional[tzinfo] = None) -> None:
        self.store = store
        self.writer = writer
        self.tz = tz

    async def export_history(self, filters: Optional[SearchFilters] = None, fmt: str = TEXT_FORMAT) -> Optional[str]:
        """Export every entry matching ``filters`` (no row limit).

        Returns the written path, or None when nothing matched or the writer
        declined.
        """
        fmt = _check_format(fmt)
        entries = await self.store.search_all(filters)
        if not entries:
            logger.info("[EXPORT] No history entries to export")
            return None

        if fmt == JSON_FORMAT:
            path = await self.writer.export_json(export_file_name("chat_history", fmt), history_to_json(entries))
        else:
            path = await self.writer.export_text(export_file_name("chat_history", fmt), render_history_text(entries, self.tz))

        if path:
            logger.info("[EXPORT] Exported %d history entries to %s", len(entries), path)
        return path

    async def export_live_log(self, items: Sequence[Any], fmt: str = TEXT_FORMAT) -> Optional[str]:
        """Export a snapshot of live log items (pass ``cache.view`` or ``cache.items``)."""
        fmt = _check_format(fmt)
        items = list(items)
        if not items:
            logger.info("[EXPORT] No live log entries to export")
            return None

        if fmt == JSON_FORMAT:
            path = await self.writer.export_json(export_file_name("chat_export", fmt), live_log_to_json(items))
        else:
            path = await self.writer.export_text(export_file_name("chat_export", fmt), render_live_log(items, self.tz))

        if path:
            logger.info("[EXPORT] Exported %d live entries to %s", len(items), path)
        return path
