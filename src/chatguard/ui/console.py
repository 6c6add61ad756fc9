"""Interactive console for browsing the chat archive and editing the word list."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from prompt_toolkit import print_formatted_text
from prompt_toolkit.formatted_text import FormattedText
from prompt_toolkit.patch_stdout import patch_stdout
from prompt_toolkit.shortcuts import PromptSession

from chatguard.database.history_store import HistoryStore
from chatguard.datatypes.history_datatypes import EntryKind, HistoryEntry, SearchFilters
from chatguard.export.history_export import HistoryExporter, format_entry_line
from chatguard.live.live_log_cache import LiveLogCache, parse_keywords
from chatguard.moderation.moderation_orchestrator import ModerationOrchestrator
from chatguard.profanity.profanity_index import ProfanityIndex
from chatguard.services.chat_log_service import ChatLogService
from chatguard.util.logger import get_logger

# Box drawing helpers for aligned console output
BOX_WIDTH = 45


def box_title(title: str) -> list[str]:
    inner_width = BOX_WIDTH - 2
    pad_left = (inner_width - len(title)) // 2
    pad_right = inner_width - len(title) - pad_left
    return [
        f"╔{'═' * inner_width}╗",
        f"║{' ' * pad_left}{title}{' ' * pad_right}║",
        f"╚{'═' * inner_width}╝"
    ]


logger = get_logger("console")

# Type alias for command handler functions
CommandHandler = Callable[["ConsoleControl", list[str]], Awaitable[None]]


@dataclass
class Command:
    """Definition of a console command."""
    name: str
    handler: CommandHandler
    aliases: list[str]
    description: str
    usage: str = ""

    def matches(self, input_cmd: str) -> bool:
        """Check if input matches this command or any alias."""
        return input_cmd == self.name or input_cmd in self.aliases


def console_print(message: str, style: str = "") -> None:
    """Render text via prompt_toolkit without breaking the active prompt."""
    formatted: FormattedText | str
    if style:
        formatted = FormattedText([(style, message)])
    else:
        formatted = message
    print_formatted_text(formatted)


class ConsoleControl:
    """Handles the console needs to reach the running components."""

    def __init__(
        self,
        index: ProfanityIndex,
        store: HistoryStore,
        cache: LiveLogCache,
        chat_log: ChatLogService,
        exporter: Optional[HistoryExporter] = None,
        moderation: Optional[ModerationOrchestrator] = None,
    ) -> None:
        self.index = index
        self.store = store
        self.cache = cache
        self.chat_log = chat_log
        self.exporter = exporter
        self.moderation = moderation
        self.shutdown_event = asyncio.Event()
        # Filters of the last search, reused by "export"
        self.last_filters: Optional[SearchFilters] = None

    def request_shutdown(self) -> None:
        self.shutdown_event.set()

    def is_shutdown_requested(self) -> bool:
        return self.shutdown_event.is_set()


# ==================== Search argument parsing ====================

def _parse_date(value: str, *, end_of_day: bool = False) -> datetime:
    parsed = datetime.fromisoformat(value)
    if end_of_day and len(value) <= 10:
        parsed = parsed.replace(hour=23, minute=59, second=59)
    # Dates typed at the console are local time.
    return parsed.astimezone() if parsed.tzinfo is None else parsed


def parse_search_args(args: list[str]) -> tuple[SearchFilters, Optional[int]]:
    """Turn console tokens into search filters.

    Recognised tokens: ``user:<name>``, ``from:<date>``, ``to:<date>``,
    ``limit:<n>``, ``profanity``, ``whispers``. Everything else forms the
    keyword (quoted phrases stay together).

    Raises:
        ValueError: For malformed dates or limits.
    """
    tokens = parse_keywords(" ".join(f'"{a}"' if " " in a else a for a in args))
    user_name: Optional[str] = None
    from_date = to_date = None
    limit: Optional[int] = None
    profanity_only = whispers_only = False
    keywords: list[str] = []

    for token in tokens:
        lowered = token.lower()
        if lowered.startswith("user:"):
            user_name = token[5:] or None
        elif lowered.startswith("from:"):
            from_date = _parse_date(token[5:])
        elif lowered.startswith("to:"):
            to_date = _parse_date(token[3:], end_of_day=True)
        elif lowered.startswith("limit:"):
            limit = int(token[6:])
            if limit < 0:
                raise ValueError(f"limit must not be negative: {limit}")
        elif lowered == "profanity":
            profanity_only = True
        elif lowered == "whispers":
            whispers_only = True
        else:
            keywords.append(token)

    filters = SearchFilters(
        user_name=user_name,
        keyword=" ".join(keywords) or None,
        profanity_only=profanity_only,
        whispers_only=whispers_only,
        from_date=from_date,
        to_date=to_date,
    )
    return filters, limit


def _entry_style(entry: HistoryEntry) -> str:
    if entry.kind is EntryKind.MESSAGE and entry.has_profanity:
        return "ansired"
    if entry.kind is EntryKind.MESSAGE and entry.is_whisper:
        return "ansimagenta"
    if entry.kind is not EntryKind.MESSAGE:
        return "ansibrightblack"
    return ""


# ==================== Command Handlers ====================

async def cmd_help(control: ConsoleControl, args: list[str]) -> None:
    """Display available commands and their descriptions."""
    for line in box_title("Console Commands Reference"):
        console_print(line, "ansigreen")

    for cmd in COMMANDS:
        aliases_str = f" (aliases: {', '.join(cmd.aliases)})" if cmd.aliases else ""
        console_print(f"\n  {cmd.name}{aliases_str}", "ansicyan")
        console_print(f"    {cmd.description}")
        if cmd.usage:
            console_print(f"    Usage: {cmd.usage}", "ansibrightblack")

    console_print("")


async def cmd_words(control: ConsoleControl, args: list[str]) -> None:
    """List the active word list."""
    custom = control.index.get_custom_words()
    total = len(control.index.get_all_words())
    state = "enabled" if control.index.enabled else "disabled"

    for line in box_title(f"Word List ({total}, {state})"):
        console_print(line, "ansiblue")
    if not custom:
        console_print("  No custom words.", "ansibrightblack")
    for word in custom:
        console_print(f"  • {word}")
    console_print(f"  ({total - len(custom)} built-in words not shown)\n", "ansibrightblack")


async def cmd_addword(control: ConsoleControl, args: list[str]) -> None:
    word = " ".join(args).strip()
    if not word:
        console_print("Usage: addword <word or phrase>", "ansiyellow")
        return
    if control.index.is_default_word(word):
        console_print(f"'{word}' is already a built-in word.", "ansiyellow")
    elif control.index.add_word(word):
        console_print(f"Added '{word.lower()}' to the word list.", "ansigreen")
    else:
        console_print(f"'{word}' is already in the word list.", "ansiyellow")


async def cmd_removeword(control: ConsoleControl, args: list[str]) -> None:
    word = " ".join(args).strip()
    if not word:
        console_print("Usage: removeword <word or phrase>", "ansiyellow")
        return
    if control.index.is_default_word(word):
        console_print(f"'{word}' is a built-in word and cannot be removed.", "ansiyellow")
    elif control.index.remove_word(word):
        console_print(f"Removed '{word.lower()}' from the word list.", "ansigreen")
    else:
        console_print(f"'{word}' is not a custom word.", "ansiyellow")


async def cmd_search(control: ConsoleControl, args: list[str]) -> None:
    """Search the archive and print the newest matches."""
    try:
        filters, limit = parse_search_args(args)
    except ValueError as exc:
        console_print(f"Invalid search: {exc}", "ansired")
        return

    result = await control.chat_log.search_history(filters, limit=limit)
    control.last_filters = filters

    if not result.entries:
        console_print("No results found for the specified criteria.", "ansiyellow")
        return

    # Printed oldest first so the newest line sits just above the prompt.
    for entry in reversed(result.entries):
        line = format_entry_line(entry)
        if entry.matched_words:
            line += f"  [{', '.join(entry.matched_words)}]"
        console_print(line, _entry_style(entry))

    if result.truncated:
        console_print(f"Results: {result.total_count} ({len(result.entries)} loaded)", "ansicyan")
    else:
        console_print(f"Results: {result.total_count}", "ansicyan")


async def cmd_export(control: ConsoleControl, args: list[str]) -> None:
    """Export the last search (or the live log) as text or JSON."""
    if control.exporter is None:
        console_print("Export is not configured.", "ansired")
        return

    fmt = args[0].lower() if args else "text"
    source = args[1].lower() if len(args) > 1 else "history"
    try:
        if source == "live":
            path = await control.exporter.export_live_log(control.cache.view, fmt)
        else:
            if control.last_filters is None:
                console_print("No history entries to export. Run a search first.", "ansiyellow")
                return
            path = await control.exporter.export_history(control.last_filters, fmt)
    except ValueError as exc:
        console_print(str(exc), "ansired")
        return

    if path:
        console_print(f"Exported to {path}", "ansigreen")
    else:
        console_print("Nothing to export.", "ansiyellow")


async def cmd_count(control: ConsoleControl, args: list[str]) -> None:
    console_print(f"History entries: {control.store.get_entry_count()}")
    console_print(f"Live log entries: {len(control.cache)} ({len(control.cache.view)} shown)")


async def cmd_clear(control: ConsoleControl, args: list[str]) -> None:
    """Clear the live log, or the stored history with ``clear history``."""
    if args and args[0].lower() == "history":
        await control.store.clear()
        console_print("History cleared.", "ansigreen")
        return
    control.cache.clear()
    console_print("Live log cleared.", "ansigreen")


# ==================== Moderation ====================

def _moderation(control: ConsoleControl) -> Optional[ModerationOrchestrator]:
    if control.moderation is None:
        console_print("Moderation is not configured.", "ansired")
    return control.moderation


def _print_outcome(outcome) -> None:
    console_print(outcome.message, "ansigreen" if outcome.success else "ansiyellow")


async def cmd_room(control: ConsoleControl, args: list[str]) -> None:
    """Select the room whose deferred bans and mutes are edited."""
    moderation = _moderation(control)
    if moderation is None:
        return
    if not args:
        room = moderation.room_id
        console_print(f"Current room: {room if room is not None else 'none'}")
        return
    try:
        room_id = int(args[0])
    except ValueError:
        console_print(f"Invalid room id '{args[0]}'.", "ansired")
        return
    moderation.on_room_entered(room_id)
    console_print(f"Room set to {room_id}.", "ansigreen")


async def cmd_ban(control: ConsoleControl, args: list[str]) -> None:
    moderation = _moderation(control)
    if moderation is None:
        return
    if not args:
        console_print("Usage: ban <name> [hour|day|perm]", "ansiyellow")
        return
    duration = args[1] if len(args) > 1 else "hour"
    _print_outcome(await moderation.ban(args[0], duration))


async def cmd_mute(control: ConsoleControl, args: list[str]) -> None:
    moderation = _moderation(control)
    if moderation is None:
        return
    if len(args) < 2:
        console_print("Usage: mute <name> <minutes|5m|2h>", "ansiyellow")
        return
    _print_outcome(await moderation.mute(args[0], args[1]))


async def cmd_unmute(control: ConsoleControl, args: list[str]) -> None:
    moderation = _moderation(control)
    if moderation is None:
        return
    if not args:
        console_print("Usage: unmute <name>", "ansiyellow")
        return
    pending = args[0].casefold() in {name.casefold() for name in moderation.pending_mutes}
    outcome = await moderation.unmute(args[0])
    if pending and not outcome.success:
        console_print(f"Cancelled the pending mute for '{args[0]}'.", "ansigreen")
        return
    _print_outcome(outcome)


async def cmd_deferred(control: ConsoleControl, args: list[str]) -> None:
    """List the deferred bans and mutes of the current room."""
    moderation = _moderation(control)
    if moderation is None:
        return
    bans = moderation.pending_bans
    mutes = moderation.pending_mutes
    if not bans and not mutes:
        console_print("No deferred actions for this room.", "ansibrightblack")
        return
    for name, duration in sorted(bans.items()):
        console_print(f"  ban  {name} ({duration.label})")
    for name, minutes in sorted(mutes.items()):
        console_print(f"  mute {name} ({minutes} minute(s))")


async def cmd_quit(control: ConsoleControl, args: list[str]) -> None:
    console_print("Shutdown requested.", "ansiyellow")
    control.request_shutdown()


# ==================== Command Registry ====================

COMMANDS: list[Command] = [
    Command(
        name="help",
        handler=cmd_help,
        aliases=["h", "?"],
        description="Show this help message with all available commands",
    ),
    Command(
        name="words",
        handler=cmd_words,
        aliases=["list"],
        description="Show the custom words of the profanity filter",
    ),
    Command(
        name="addword",
        handler=cmd_addword,
        aliases=["add"],
        description="Add a custom word or phrase to the profanity filter",
        usage="addword <word or phrase>",
    ),
    Command(
        name="removeword",
        handler=cmd_removeword,
        aliases=["remove", "rm"],
        description="Remove a custom word from the profanity filter",
        usage="removeword <word or phrase>",
    ),
    Command(
        name="search",
        handler=cmd_search,
        aliases=["s", "find"],
        description="Search the chat history (newest first)",
        usage='search [user:<name>] [from:<date>] [to:<date>] [limit:<n>] [profanity] [whispers] ["keyword"]',
    ),
    Command(
        name="export",
        handler=cmd_export,
        aliases=["save"],
        description="Export the last search, or the live log, to a file",
        usage="export [text|json] [history|live]",
    ),
    Command(
        name="count",
        handler=cmd_count,
        aliases=["stats"],
        description="Show how many entries are stored and shown",
    ),
    Command(
        name="clear",
        handler=cmd_clear,
        aliases=[],
        description="Clear the live log (or the stored history)",
        usage="clear [history]",
    ),
    Command(
        name="room",
        handler=cmd_room,
        aliases=[],
        description="Show or select the room used for deferred moderation",
        usage="room [<room id>]",
    ),
    Command(
        name="ban",
        handler=cmd_ban,
        aliases=[],
        description="Ban a user on their next entry to the current room",
        usage="ban <name> [hour|day|perm]",
    ),
    Command(
        name="mute",
        handler=cmd_mute,
        aliases=[],
        description="Mute a user on their next entry to the current room",
        usage="mute <name> <minutes|5m|2h>",
    ),
    Command(
        name="unmute",
        handler=cmd_unmute,
        aliases=[],
        description="Cancel a pending mute",
        usage="unmute <name>",
    ),
    Command(
        name="deferred",
        handler=cmd_deferred,
        aliases=["pending"],
        description="List deferred bans and mutes for the current room",
    ),
    Command(
        name="quit",
        handler=cmd_quit,
        aliases=["exit", "stop", "shutdown"],
        description="Close the archive and exit",
    ),
]


# ==================== Command Dispatcher ====================

async def handle_console_command(command: str, control: ConsoleControl) -> None:
    """Interpret and execute a single console command line."""
    if not command.strip():
        return

    parts = command.strip().split()
    cmd_name = parts[0].lower()
    args = parts[1:]

    for cmd in COMMANDS:
        if cmd.matches(cmd_name):
            try:
                await cmd.handler(control, args)
            except Exception as exc:
                logger.exception("[CONSOLE] Error executing command '%s': %s", cmd_name, exc)
                console_print(f"Error executing command: {exc}", "ansired")
            return

    console_print(f"Unknown command '{cmd_name}'. Type 'help' for available commands.", "ansired")


async def run_console(control: ConsoleControl) -> None:
    """Run the interactive console until shutdown is requested."""
    session = PromptSession("> ")

    for line in box_title("ChatGuard Interactive Console"):
        console_print(line, "ansigreen")
    console_print("Type 'help' for available commands or 'quit' to exit.\n", "ansibrightblack")

    with patch_stdout():
        while not control.is_shutdown_requested():
            try:
                line = await session.prompt_async()
                if line.strip():
                    await handle_console_command(line, control)
            except (EOFError, KeyboardInterrupt):
                console_print("\nShutdown requested by user.", "ansiyellow")
                control.request_shutdown()
                break
            except Exception as exc:  # pragma: no cover
                logger.exception("[CONSOLE] Error in console input loop: %s", exc)
                console_print(f"Error: {exc}", "ansired")


@asynccontextmanager
async def console_session(control: ConsoleControl) -> AsyncIterator[ConsoleControl]:
    """Run the console in the background, cleaning up automatically."""
    console_task = asyncio.create_task(run_console(control))
    try:
        yield control
    finally:
        control.request_shutdown()
        console_task.cancel()
        try:
            await console_task
        except asyncio.CancelledError:
            pass
