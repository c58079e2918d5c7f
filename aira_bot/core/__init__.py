from .hooks import HookRegistry
from .message import Message
from .module import BotModule, HandlerResult, InstallerResult
from .router import AiraRouter, StartupError

__all__ = [
    "AiraRouter",
    "BotModule",
    "HandlerResult",
    "HookRegistry",
    "InstallerResult",
    "Message",
    "StartupError",
]
