from __future__ import annotations

import asyncio
import logging
from typing import Mapping, Tuple

from ..hooks import invoke_hook
from ..message import Message
from ..module import HandlerResult

logger = logging.getLogger("aira_bot")


def _is_definitive(outcome: object) -> bool:
    return outcome is True or isinstance(outcome, (HandlerResult, Mapping))


class DispatchMixin:
    async def handle_incoming(self, msg: Message) -> None:
        """Route a mention, reply or DM to its context hook or the mention hook chain."""
        logger.info("<<< Message received: %s", msg.id)

        if msg.user_id == self.account_id:
            return
        if msg.is_bot:
            return

        try:
            reaction, immediate = await self._dispatch(msg)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Hook failed while handling message %s; no acknowledgment sent", msg.id)
            return

        if not immediate:
            await self._pace()

        await self._acknowledge(msg, reaction)

    async def _pace(self) -> None:
        await asyncio.sleep(self.settings.reply_delay_seconds)

    async def _dispatch(self, msg: Message) -> Tuple[str | None, bool]:
        reaction: str | None = self.settings.default_reaction
        immediate = False

        is_no_context = not msg.is_dm and msg.reply_id is None
        context = None
        if not is_no_context:
            target_id = msg.user_id if msg.is_dm else str(msg.reply_id)
            context = await self.memory.find_context(msg.is_dm, target_id)

        if context is not None:
            hook = self.hooks.context_hooks.get(context.module)
            if hook is None:
                logger.warning(
                    "Context for %s (key=%s) has no registered context hook; falling back to mention hooks",
                    context.module,
                    context.key,
                )
                outcome: object = False
            else:
                outcome = await invoke_hook(hook, context.key, msg, context.data)
            if outcome is not False:
                return self._apply_overrides(outcome, reaction, immediate)

        for hook in self.hooks.mention_hooks:
            outcome = await invoke_hook(hook, msg)
            if _is_definitive(outcome):
                return self._apply_overrides(outcome, reaction, immediate)

        return reaction, immediate

    @staticmethod
    def _apply_overrides(outcome: object, reaction: str | None, immediate: bool) -> Tuple[str | None, bool]:
        overrides = HandlerResult.coerce(outcome)
        if overrides is None:
            return reaction, immediate
        if overrides.reaction is not None:
            reaction = overrides.reaction
        if overrides.immediate is not None:
            immediate = overrides.immediate
        return reaction, immediate

    async def _acknowledge(self, msg: Message, reaction: str | None) -> None:
        try:
            if msg.is_dm:
                await self.client.read_message(msg.id)
            elif reaction:
                await self.client.create_reaction(msg.id, reaction)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Acknowledgment for %s failed: %s", msg.id, exc)
