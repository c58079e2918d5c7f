from __future__ import annotations

from .storage.contexts import MemoryContextsMixin
from .storage.friends import MemoryFriendsMixin
from .storage.meta import MemoryMetaMixin
from .storage.module_data import MemoryModuleDataMixin
from .storage.schema import MemorySchemaMixin
from .storage.timers import MemoryTimersMixin


class MemoryStore(
    MemorySchemaMixin,
    MemoryContextsMixin,
    MemoryTimersMixin,
    MemoryFriendsMixin,
    MemoryMetaMixin,
    MemoryModuleDataMixin,
):
    """Durable memory: reply contexts, persisted timers, affinity, process meta and module data."""

    backend_name = "sqlite"
