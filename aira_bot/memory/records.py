from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Union

MetaValue = Union[str, int, float, None]


@dataclass(slots=True)
class ConversationContext:
    """A module waiting for the next reply in a DM thread or under a note."""

    row_id: int
    is_dm: bool
    target_id: str
    module: str
    key: str | None
    data: Any = None
    created_at: int = 0


@dataclass(slots=True)
class DeferredCallback:
    id: str
    module: str
    inserted_at: int
    delay: int
    data: Any = None

    @property
    def due_at(self) -> int:
        return self.inserted_at + self.delay


@dataclass(slots=True)
class AffinityRecord:
    user_id: str
    love: float = 0.0
    name: str | None = None
    user: Dict[str, Any] | None = None
    created_at: int = 0
    updated_at: int = 0


@dataclass(slots=True)
class ProcessMeta:
    last_waking_at: int
    extra: Dict[str, MetaValue] = field(default_factory=dict)


@dataclass(slots=True)
class ModuleDataRecord:
    row_id: int
    module: str
    data: Dict[str, Any]
