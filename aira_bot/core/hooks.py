from __future__ import annotations

import inspect
import logging
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Sequence

from .module import BotModule, ContextHook, InstallerResult, MentionHook, TimeoutCallback

if TYPE_CHECKING:
    from .router import AiraRouter

logger = logging.getLogger("aira_bot")


class HookRegistry:
    """Hooks collected from installed modules. Earlier modules have higher priority."""

    def __init__(self) -> None:
        self.modules: List[BotModule] = []
        self.mention_hooks: List[MentionHook] = []
        self.context_hooks: Dict[str, ContextHook] = {}
        self.timeout_callbacks: Dict[str, TimeoutCallback] = {}

    def install(self, modules: Sequence[BotModule], router: "AiraRouter") -> None:
        seen = {module.name for module in self.modules}
        for module in modules:
            name = str(getattr(module, "name", "") or "").strip()
            if not name:
                raise ValueError(f"Module {module!r} has no name")
            if name in seen:
                raise ValueError(f"Module name {name!r} is installed twice")
            seen.add(name)

            logger.info("Installing %s module...", name)
            module.init(router)
            result = InstallerResult.coerce(module.install())
            self.modules.append(module)

            if result.mention_hook is not None:
                self.mention_hooks.append(result.mention_hook)
            if result.context_hook is not None:
                self.context_hooks[name] = result.context_hook
            if result.timeout_callback is not None:
                self.timeout_callbacks[name] = result.timeout_callback

    def module_names(self) -> List[str]:
        return [module.name for module in self.modules]


async def invoke_hook(hook: Callable[..., Any], *args: Any) -> Any:
    """Call a sync or async hook and return its settled result."""
    result = hook(*args)
    if inspect.isawaitable(result):
        result = await result
    return result
