from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Tuple

_LEADING_MENTION = re.compile(r"^@[\w.-]+(?:@[\w.-]+)?\s*")


@dataclass(frozen=True, slots=True)
class Message:
    """A mention, reply or direct message addressed to the bot."""

    id: str
    user_id: str
    text: str | None
    is_dm: bool
    reply_id: str | None = None
    quote_id: str | None = None
    files: Tuple[Dict[str, Any], ...] = ()
    user: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_note(cls, note: Mapping[str, Any]) -> "Message":
        user = dict(note.get("user") or {})
        return cls(
            id=str(note["id"]),
            user_id=str(note.get("userId") or user.get("id") or ""),
            text=note.get("text"),
            is_dm=False,
            reply_id=note.get("replyId"),
            quote_id=note.get("renoteId"),
            files=tuple(note.get("files") or ()),
            user=user,
        )

    @classmethod
    def from_messaging(cls, payload: Mapping[str, Any]) -> "Message":
        user = dict(payload.get("user") or {})
        attached = payload.get("file")
        return cls(
            id=str(payload["id"]),
            user_id=str(payload.get("userId") or user.get("id") or ""),
            text=payload.get("text"),
            is_dm=True,
            files=(attached,) if attached else (),
            user=user,
        )

    @property
    def username(self) -> str:
        return str(self.user.get("username") or "")

    @property
    def is_bot(self) -> bool:
        return bool(self.user.get("isBot"))

    @property
    def extracted_text(self) -> str:
        """Text with the leading ``@mention`` of the bot removed."""
        return _LEADING_MENTION.sub("", (self.text or "").strip(), count=1).strip()

    def includes(self, words: Iterable[str]) -> bool:
        text = (self.text or "").casefold()
        return any(word.casefold() in text for word in words)
