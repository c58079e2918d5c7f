from __future__ import annotations

import asyncio
import logging
from typing import Any

from ...memory.storage.utils import now_ms
from ..hooks import invoke_hook

logger = logging.getLogger("aira_bot")


class SchedulerMixin:
    async def set_timeout_with_persistence(self, module: Any, delay_ms: int, data: Any = None) -> str:
        """Call ``module``'s timeout callback with ``data`` after ``delay_ms``.

        The timer lives in memory, so it still fires (late, never twice) after a restart.
        """
        name = self._module_name(module)
        timer = await self.memory.insert_timer(module=name, delay_ms=delay_ms, data=data)
        logger.info("Timer persisted: %s %s %sms", name, timer.id, timer.delay)
        return timer.id

    async def schedule(self, module: Any, delay_ms: int, data: Any = None) -> str:
        return await self.set_timeout_with_persistence(module, delay_ms, data)

    async def crawl_timers(self, now: int | None = None) -> int:
        """Fire every expired timer once. Returns how many callbacks ran."""
        fired = 0
        async with self._sweep_lock:
            current = now_ms() if now is None else int(now)
            for timer in await self.memory.list_expired_timers(current):
                # Removed before invoking: a timer fires at most once, even across restarts.
                if not await self.memory.claim_timer(timer.id):
                    continue
                logger.info("Timer expired: %s %s", timer.module, timer.id)

                callback = self.hooks.timeout_callbacks.get(timer.module)
                if callback is None:
                    logger.error("Timer %s dropped: module %s has no timeout callback", timer.id, timer.module)
                    continue
                try:
                    await invoke_hook(callback, timer.data)
                except asyncio.CancelledError:
                    raise
                except Exception:
                    logger.exception("Timeout callback of %s failed for timer %s", timer.module, timer.id)
                fired += 1
        return fired

    async def log_waking(self) -> None:
        await self.memory.set_meta(last_waking_at=now_ms())

    async def _timer_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.timer_sweep_seconds)
            try:
                await self.crawl_timers()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Timer sweep failed")

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.heartbeat_seconds)
            try:
                await self.log_waking()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Heartbeat write failed")
