"""
ChatGuard
=========

Chat archive and obfuscation-tolerant profanity filter for an in-room chat
client. This entry point opens the history store, builds the profanity
index from the configuration and runs the interactive console.
"""

import os
import sys
from pathlib import Path


def resolve_base_dir() -> Path:
    """Determine the base directory of the project.
    Resolution order:
    1. CHATGUARD_HOME environment variable, if set.
    2. If running in a frozen/compiled context (e.g., PyInstaller, Nuitka), use the executable's directory.
    3. Otherwise, assume running from source and use the grandparent of this file's directory.
    """
    if env_home := os.getenv("CHATGUARD_HOME"):
        return Path(env_home).resolve()

    if getattr(sys, "frozen", False) or getattr(sys, "compiled", False):
        return Path(sys.argv[0]).resolve().parent

    return Path(__file__).resolve().parents[2]


BASE_DIR = resolve_base_dir()

import asyncio
from dotenv import load_dotenv

from chatguard.util.logger import get_logger, handle_exception


logger = get_logger("main")

EXPORT_DIR_NAME = "exports"


def load_environment() -> None:
    """Load ``.env`` from the base directory and switch into it."""
    os.chdir(BASE_DIR)
    load_dotenv(dotenv_path=BASE_DIR / ".env")


async def async_main() -> int:
    """Open the archive, run the console, and close everything again.

    Returns
    -------
    int
        Process exit code.
    """
    # Imported after chdir so relative configuration paths resolve against BASE_DIR.
    from chatguard.configuration.app_configuration import AppConfig
    from chatguard.database.history_store import HistoryStore
    from chatguard.export.history_export import DirectoryExportWriter, HistoryExporter
    from chatguard.live.live_log_cache import LiveLogCache
    from chatguard.live.live_log_pruner import LiveLogPruner
    from chatguard.moderation.moderation_orchestrator import ModerationOrchestrator, OfflineGateway
    from chatguard.profanity.profanity_index import ProfanityIndex
    from chatguard.services.chat_log_service import ChatLogService
    from chatguard.ui.console import ConsoleControl, console_session

    app_config = AppConfig()
    index = ProfanityIndex(app_config.profanity)

    async def persist_custom_words() -> None:
        saved = await asyncio.to_thread(app_config.save_custom_words, index.get_custom_words())
        if not saved:
            logger.warning("[MAIN] Custom words could not be saved; changes last until exit")

    index.subscribe(persist_custom_words)

    store = HistoryStore(app_config.history_db_path)
    try:
        await store.open()
    except Exception as exc:
        logger.critical("[MAIN] Failed to open chat history: %s", exc)
        await index.shutdown()
        return 1

    own_name = os.getenv("CHATGUARD_USER_NAME")
    cache = LiveLogCache(
        max_entries=app_config.live_log_max_entries,
        keep_minutes=app_config.live_log_keep_minutes,
    )
    chat_log = ChatLogService(
        index,
        store,
        cache,
        app_config.chat_log,
        own_name=own_name,
        search_limit=app_config.history_search_limit,
    )
    chat_log.attach()

    # Without a game connection nobody is present, so bans and mutes are deferred.
    moderation = ModerationOrchestrator(
        OfflineGateway(),
        chat_log,
        app_config.deferred_moderation_path,
        own_name=own_name,
    )

    exporter = HistoryExporter(store, DirectoryExportWriter(BASE_DIR / EXPORT_DIR_NAME))
    control = ConsoleControl(index, store, cache, chat_log, exporter, moderation)
    pruner = LiveLogPruner(cache, app_config.live_log_prune_interval)
    pruner.ensure_runner()

    try:
        async with console_session(control):
            await control.shutdown_event.wait()
    finally:
        await pruner.shutdown()
        chat_log.detach()
        # Deliver a pending word-list change (and its save) before closing the store.
        try:
            await index.flush_notifications()
        except Exception as exc:
            logger.exception("[MAIN] Error while flushing word-list changes: %s", exc)
        await index.shutdown()
        await store.close()
        logger.info("[MAIN] Shutdown complete.")

    return 0


def main() -> int:
    """Entrypoint that runs the async runtime and returns the process code."""
    sys.excepthook = handle_exception
    load_environment()
    logger.info("[MAIN] Starting ChatGuard…")
    try:
        return asyncio.run(async_main())
    except KeyboardInterrupt:
        logger.info("[MAIN] Shutdown requested by user.")
        return 0
    except Exception as exc:
        logger.critical("[MAIN] An unexpected error occurred: %s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
