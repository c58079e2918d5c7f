from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Sequence

from .config import Settings
from .core.loader import load_modules
from .core.module import BotModule
from .core.router import AiraRouter, StartupError
from .memory.store import MemoryStore
from .services.misskey_client import MisskeyClient
from .services.misskey_stream import MisskeyStream

logger = logging.getLogger("aira_bot")


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


def _is_process_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True


def _acquire_instance_lock(lock_path: Path) -> None:
    # One process per memory file keeps contexts and timers single-writer.
    lock_path.parent.mkdir(parents=True, exist_ok=True)

    if lock_path.exists():
        stale_pid = 0
        with contextlib.suppress(Exception):
            stale_pid = int(lock_path.read_text(encoding="utf-8").strip() or "0")
        if stale_pid > 0 and _is_process_alive(stale_pid):
            raise RuntimeError(f"Aira is already running (pid={stale_pid}). Stop it before starting a new one.")
        with contextlib.suppress(Exception):
            lock_path.unlink()

    lock_path.write_text(str(os.getpid()), encoding="utf-8")


def _release_instance_lock(lock_path: Path) -> None:
    with contextlib.suppress(Exception):
        if lock_path.exists():
            lock_path.unlink()


def build_router(settings: Settings, modules: Sequence[BotModule] | None = None) -> AiraRouter:
    if modules is None:
        modules = load_modules(settings.modules)
    return AiraRouter(
        settings=settings,
        memory=MemoryStore(settings.sqlite_path),
        client=MisskeyClient(
            host=settings.misskey_host,
            token=settings.misskey_token,
            timeout_seconds=settings.misskey_timeout_seconds,
        ),
        modules=modules,
        stream=MisskeyStream(
            settings.misskey_host,
            settings.misskey_token,
            reconnect_max_seconds=settings.stream_reconnect_max_seconds,
        ),
    )


async def _run_router(settings: Settings) -> None:
    router = build_router(settings)
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            signal.signal(sig, lambda *_: stop_event.set())

    try:
        await router.start()
        await stop_event.wait()
        logger.info("Shutdown requested, stopping.")
    finally:
        await router.close()


def main() -> None:
    configure_logging()
    settings = Settings.from_env()
    settings.validate()
    lock_path = settings.sqlite_path.parent / "aira_bot.pid"
    _acquire_instance_lock(lock_path)
    try:
        asyncio.run(_run_router(settings))
    except StartupError as exc:
        logger.error("%s", exc)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Shutdown requested, exiting.")
    finally:
        _release_instance_lock(lock_path)

