from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict

from ..message import Message

logger = logging.getLogger("aira_bot")

EVENT_KINDS = ("mention", "reply", "renote", "messagingMessage", "notification")


def _reader_backoff(attempt: int, cap: float) -> float:
    return min(cap, 2.0 ** min(attempt, 6))


class StreamMixin:
    def _event_handlers(self) -> Dict[str, Callable[[Dict[str, Any]], Awaitable[None]]]:
        return {
            "mention": self.on_mention,
            "reply": self.on_reply,
            "renote": self.on_renote,
            "messagingMessage": self.on_messaging_message,
            "notification": self.on_notification,
        }

    def _is_own(self, payload: Dict[str, Any]) -> bool:
        user_id = payload.get("userId") or (payload.get("user") or {}).get("id")
        return user_id is not None and str(user_id) == self.account_id

    def _starts_with_own_mention(self, text: str | None) -> bool:
        return bool(text) and str(text).startswith(f"@{self.account_username}")

    async def _resolve_note(self, note: Dict[str, Any]) -> Dict[str, Any]:
        # Some notes arrive over the stream without text; the API has the full body.
        if note.get("text") is None:
            return await self.client.show_note(str(note["id"]))
        return note

    async def on_mention(self, note: Dict[str, Any]) -> None:
        if self._is_own(note):
            return
        note = await self._resolve_note(note)
        if self._starts_with_own_mention(note.get("text")):
            await self.handle_incoming(Message.from_note(note))

    async def on_reply(self, note: Dict[str, Any]) -> None:
        if self._is_own(note):
            return
        note = await self._resolve_note(note)
        # Replies that start with our mention also arrive as a mention event.
        if self._starts_with_own_mention(note.get("text")):
            return
        await self.handle_incoming(Message.from_note(note))

    async def on_renote(self, note: Dict[str, Any]) -> None:
        if self._is_own(note):
            return
        if note.get("text") is None and not note.get("files"):
            return
        await self.client.create_reaction(str(note["id"]), self.settings.renote_reaction)

    async def on_messaging_message(self, payload: Dict[str, Any]) -> None:
        if self._is_own(payload):
            return
        await self.handle_incoming(Message.from_messaging(payload))

    async def on_notification(self, notification: Dict[str, Any]) -> None:
        if notification.get("type") != "reaction":
            return
        user = notification.get("user") or {}
        user_id = user.get("id") or notification.get("userId")
        if not user_id or str(user_id) == self.account_id:
            return
        await self.increment_affinity(str(user_id), self.settings.reaction_affinity_increment, user=user)

    def _start_stream_tasks(self) -> None:
        self._event_queues = {kind: asyncio.Queue() for kind in EVENT_KINDS}
        self._tasks.append(asyncio.create_task(self._stream_reader(), name="stream-reader"))
        for kind in EVENT_KINDS:
            self._tasks.append(asyncio.create_task(self._event_consumer(kind), name=f"stream-{kind}"))

    async def _stream_reader(self) -> None:
        attempt = 0
        while True:
            try:
                async for kind, body in self.stream.events():
                    attempt = 0
                    queue = self._event_queues.get(kind)
                    if queue is None:
                        logger.debug("Ignoring stream event %s", kind)
                        continue
                    queue.put_nowait(body)
                return
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Stream reader failed")
            attempt += 1
            delay = _reader_backoff(attempt, self.settings.stream_reconnect_max_seconds)
            logger.info("Restarting stream reader in %.1fs (attempt %s)", delay, attempt)
            await asyncio.sleep(delay)

    async def _event_consumer(self, kind: str) -> None:
        handler = self._event_handlers()[kind]
        queue = self._event_queues[kind]
        while True:
            body = await queue.get()
            self._spawn_dispatch(handler(body), f"{kind}:{body.get('id', '?')}")
            queue.task_done()

    def _spawn_dispatch(self, coro: Awaitable[None], label: str) -> None:
        task = asyncio.create_task(self._guarded(coro, label), name=f"dispatch-{label}")
        self._dispatch_tasks.add(task)
        task.add_done_callback(self._dispatch_tasks.discard)

    async def _guarded(self, coro: Awaitable[None], label: str) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Stream event %s failed", label)
