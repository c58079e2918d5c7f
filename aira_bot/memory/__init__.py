from .records import AffinityRecord, ConversationContext, DeferredCallback, ModuleDataRecord, ProcessMeta
from .store import MemoryStore

__all__ = [
    "AffinityRecord",
    "ConversationContext",
    "DeferredCallback",
    "MemoryStore",
    "ModuleDataRecord",
    "ProcessMeta",
]
