from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Mapping, Optional, Protocol, Union

from .message import Message

if TYPE_CHECKING:
    from .router import AiraRouter


@dataclass(frozen=True, slots=True)
class HandlerResult:
    """Overrides a hook can return for the acknowledgment step.

    ``reaction=None`` keeps the default reaction; an empty string sends none.
    ``immediate=True`` skips the pacing delay.
    """

    reaction: str | None = None
    immediate: bool | None = None

    @classmethod
    def coerce(cls, value: object) -> Optional["HandlerResult"]:
        if isinstance(value, HandlerResult):
            return value
        if isinstance(value, Mapping):
            immediate = value.get("immediate")
            return cls(
                reaction=value.get("reaction"),
                immediate=None if immediate is None else bool(immediate),
            )
        return None


HookOutcome = Union[bool, HandlerResult, Mapping[str, Any], None]
MentionHook = Callable[[Message], Union[HookOutcome, Awaitable[HookOutcome]]]
ContextHook = Callable[[Optional[str], Message, Any], Union[HookOutcome, Awaitable[HookOutcome]]]
TimeoutCallback = Callable[[Any], Union[None, Awaitable[None]]]


@dataclass(frozen=True, slots=True)
class InstallerResult:
    mention_hook: MentionHook | None = None
    context_hook: ContextHook | None = None
    timeout_callback: TimeoutCallback | None = None

    @classmethod
    def coerce(cls, value: object) -> "InstallerResult":
        if value is None:
            return cls()
        if isinstance(value, InstallerResult):
            return value
        if isinstance(value, Mapping):
            return cls(
                mention_hook=value.get("mention_hook"),
                context_hook=value.get("context_hook"),
                timeout_callback=value.get("timeout_callback"),
            )
        raise TypeError(f"install() must return InstallerResult, a mapping or None, got {type(value).__name__}")


class BotModule(Protocol):
    """Anything with a stable ``name`` plus ``init`` and ``install`` can be installed."""

    name: str

    def init(self, router: "AiraRouter") -> None: ...

    def install(self) -> InstallerResult | Mapping[str, Any] | None: ...
