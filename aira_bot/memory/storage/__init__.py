from .contexts import MemoryContextsMixin
from .friends import MemoryFriendsMixin
from .meta import MemoryMetaMixin
from .module_data import MemoryModuleDataMixin
from .schema import MemorySchemaMixin
from .timers import MemoryTimersMixin

__all__ = [
    "MemorySchemaMixin",
    "MemoryContextsMixin",
    "MemoryTimersMixin",
    "MemoryFriendsMixin",
    "MemoryMetaMixin",
    "MemoryModuleDataMixin",
]
