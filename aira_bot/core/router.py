from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ..config import Settings
from ..memory.records import AffinityRecord, MetaValue, ModuleDataRecord, ProcessMeta
from ..memory.store import MemoryStore
from ..services.misskey_client import MisskeyClient
from ..services.misskey_stream import MisskeyStream
from .hooks import HookRegistry
from .mixins.dispatch_mixin import DispatchMixin
from .mixins.scheduler_mixin import SchedulerMixin
from .mixins.stream_mixin import StreamMixin
from .module import BotModule

logger = logging.getLogger("aira_bot")


class StartupError(RuntimeError):
    pass


def _retry_delay(attempt: int) -> float:
    return min(4.0, 0.35 * attempt + random.random() * 0.2)


class AiraRouter(
    DispatchMixin,
    StreamMixin,
    SchedulerMixin,
):
    """Owns the stream, the hook registry and the durable memory shared by modules.

    Modules receive this object in ``init`` and use it to post, subscribe to
    replies, schedule persisted timers and keep private data.
    """

    def __init__(
        self,
        settings: Settings,
        memory: MemoryStore,
        client: MisskeyClient,
        modules: Sequence[BotModule] = (),
        stream: MisskeyStream | None = None,
    ) -> None:
        self.settings = settings
        self.memory = memory
        self.client = client
        self.stream = stream
        self.modules: List[BotModule] = list(modules)
        self.hooks = HookRegistry()

        self.account: Dict[str, Any] = {}
        self.last_sleeped_at: int | None = None

        self._tasks: List[asyncio.Task[None]] = []
        self._dispatch_tasks: set[asyncio.Task[None]] = set()
        self._event_queues: Dict[str, asyncio.Queue[Dict[str, Any]]] = {}
        self._sweep_lock = asyncio.Lock()
        self._closed = asyncio.Event()

    @property
    def account_id(self) -> str:
        return str(self.account.get("id") or "")

    @property
    def account_username(self) -> str:
        return str(self.account.get("username") or "")

    # region lifecycle

    async def start(self) -> None:
        self.account = await self._fetch_account()
        logger.info("Account fetched successfully: @%s", self.account_username)

        logger.info("Loading the memory from %s...", self.memory.db_path)
        try:
            await self.memory.init()
            meta = await self.memory.get_meta()
        except Exception as exc:
            raise StartupError(f"Failed to load the memory: {exc}") from exc
        logger.info("The memory loaded successfully (backend=%s)", self.memory.backend_name)
        self.last_sleeped_at = meta.last_waking_at

        self.hooks.install(self.modules, self)

        await self.crawl_timers()
        self._tasks.append(asyncio.create_task(self._timer_loop(), name="timer-sweeper"))
        self._tasks.append(asyncio.create_task(self._heartbeat_loop(), name="heartbeat"))
        if self.stream is not None:
            self._start_stream_tasks()

        logger.info("Aira is now running with %s module(s)", len(self.hooks.modules))

    async def _fetch_account(self) -> Dict[str, Any]:
        attempts = max(1, int(self.settings.account_fetch_attempts))
        last_error: Exception | None = None
        for attempt in range(1, attempts + 1):
            logger.info("Account fetching... %s (attempt %s/%s)", self.settings.misskey_host, attempt, attempts)
            try:
                account = await self.client.fetch_account()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                last_error = exc
                logger.warning("Account fetch failed: %s", exc)
            else:
                if isinstance(account, dict) and account.get("id"):
                    return account
                last_error = RuntimeError("account payload has no id")
            if attempt < attempts:
                await asyncio.sleep(_retry_delay(attempt))
        raise StartupError(f"Failed to fetch the account: {last_error}")

    async def close(self) -> None:
        if self._closed.is_set():
            return
        if self.stream is not None:
            await self._run_shutdown_step("stream.close", self.stream.close(), timeout=5.0)
        for task in self._tasks:
            await self._cancel_task(task)
        self._tasks.clear()
        for task in list(self._dispatch_tasks):
            await self._cancel_task(task)
        await self._run_shutdown_step("client.close", self.client.close(), timeout=5.0)
        self._closed.set()

    async def _run_shutdown_step(self, label: str, coro: object, *, timeout: float) -> None:
        try:
            await asyncio.wait_for(coro, timeout=timeout)  # type: ignore[arg-type]
        except asyncio.TimeoutError:
            logger.warning("Shutdown step timed out: %s", label)
        except Exception as exc:
            logger.warning("Shutdown step failed: %s (%s)", label, exc)

    async def _cancel_task(self, task: asyncio.Task[None] | None) -> None:
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("Task %s ended with an error", task.get_name())

    # endregion

    @staticmethod
    def _module_name(module: Any) -> str:
        name = module if isinstance(module, str) else getattr(module, "name", None)
        if not name:
            raise ValueError(f"Cannot resolve module name from {module!r}")
        return str(name)

    # region contexts

    async def subscribe_reply(
        self,
        module: BotModule | str,
        key: str | None,
        is_dm: bool,
        target_id: str,
        data: Any = None,
    ) -> None:
        """Wait for the next reply in a conversation.

        ``target_id`` is the peer's user id for direct messages, otherwise the id
        of the note whose replies should be routed to ``module``'s context hook.
        """
        await self.memory.insert_context(
            module=self._module_name(module),
            key=key,
            is_dm=is_dm,
            target_id=target_id,
            data=data,
        )

    async def unsubscribe_reply(self, module: BotModule | str, key: str | None) -> int:
        return await self.memory.remove_contexts(self._module_name(module), key)

    # endregion

    # region affinity & meta

    async def increment_affinity(
        self,
        user_id: str,
        amount: float,
        user: Mapping[str, Any] | None = None,
    ) -> float:
        love = await self.memory.increment_love(user_id, amount, user=user)
        logger.info("Affinity of %s is now %.2f", user_id, love)
        return love

    async def lookup_friend(self, user_id: str) -> Optional[AffinityRecord]:
        return await self.memory.get_friend(user_id)

    async def get_meta(self) -> ProcessMeta:
        return await self.memory.get_meta()

    async def set_meta(self, **fields: MetaValue) -> None:
        await self.memory.set_meta(**fields)

    # endregion

    # region module data

    async def insert_module_data(self, module: BotModule | str, data: Mapping[str, Any]) -> int:
        return await self.memory.insert_module_data(self._module_name(module), data)

    async def find_module_data(self, module: BotModule | str, **match: Any) -> List[ModuleDataRecord]:
        return await self.memory.find_module_data(self._module_name(module), match or None)

    async def update_module_data(self, row_id: int, data: Mapping[str, Any]) -> bool:
        return await self.memory.update_module_data(row_id, data)

    async def remove_module_data(self, row_id: int) -> bool:
        return await self.memory.remove_module_data(row_id)

    # endregion

    # region outbound

    async def api(self, endpoint: str, params: Dict[str, Any] | None = None) -> Any:
        return await self.client.request(endpoint, params)

    async def post(self, **params: Any) -> Dict[str, Any]:
        return await self.client.create_note(**params)

    async def send_message(self, user_id: str, **params: Any) -> Dict[str, Any]:
        return await self.client.create_message(user_id, **params)

    async def upload(
        self,
        content: bytes,
        *,
        filename: str,
        content_type: str = "application/octet-stream",
    ) -> Dict[str, Any]:
        return await self.client.upload_file(content, filename=filename, content_type=content_type)

    # endregion
