"""Data models for TMI generation."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

MIN_FACT_COUNT = 1
MAX_FACT_COUNT = 10


class LengthClass(Enum):
    """How long each generated fact should be."""

    SHORT = "short"
    MEDIUM = "medium"
    LONG = "long"

    @property
    def hint(self) -> str:
        """Sentence-count hint used in the instruction."""
        return LENGTH_HINTS[self]


LENGTH_HINTS = {
    LengthClass.SHORT: "1-2 sentences per fact (keep it brief)",
    LengthClass.MEDIUM: "3-5 sentences per fact (balanced detail)",
    LengthClass.LONG: "7+ sentences per fact (comprehensive detail)",
}


@dataclass(frozen=True)
class ConversationTurn:
    """One message in the chat history.

    Attributes:
        role: 'user' or 'assistant'.
        text: Display text of the message.
        is_user: Whether the user wrote this turn.
        ordinal: Position in the history.
        name: Speaker display name, if the host knows it.
        variant_id: Currently selected response variant (swipe).
    """

    role: str
    text: str
    is_user: bool
    ordinal: int
    name: str | None = None
    variant_id: int = 0

    @property
    def speaker(self) -> str:
        if self.name:
            return self.name
        return "User" if self.is_user else "Character"

    @classmethod
    def from_dict(cls, data: dict[str, Any], ordinal: int) -> ConversationTurn:
        """Build a turn from a host chat entry."""
        is_user = bool(data.get("is_user", data.get("role") == "user"))
        return cls(
            role="user" if is_user else "assistant",
            text=str(data.get("text", data.get("content", ""))),
            is_user=is_user,
            ordinal=ordinal,
            name=data.get("name"),
            variant_id=int(data.get("variant_id", 0)),
        )


@dataclass(frozen=True)
class FactKey:
    """Identity of a FactSet and of an in-flight generation."""

    chat_id: str
    turn_id: int
    variant_id: int = 0

    def __str__(self) -> str:
        return f"{self.chat_id}:{self.turn_id}:{self.variant_id}"

    @classmethod
    def parse(cls, value: str) -> FactKey:
        """Parse the string form produced by ``str(key)``.

        The chat id may itself contain colons, so the split is from the right.

        Raises:
            ValueError: If the value is not in ``chat:turn:variant`` form.
        """
        chat_id, turn_id, variant_id = value.rsplit(":", 2)
        return cls(chat_id=chat_id, turn_id=int(turn_id), variant_id=int(variant_id))


@dataclass
class FactSet:
    """The facts generated for one turn variant."""

    items: list[str]
    visible: bool = False
    created_at: float = field(default_factory=time.time)

    def is_expired(self, retention_seconds: float, now: float | None = None) -> bool:
        """Check if this set is older than the retention window."""
        current = time.time() if now is None else now
        return (current - self.created_at) > retention_seconds

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FactSet:
        """Build a set from its stored form.

        Older entries carry a millisecond ``timestamp`` instead of
        ``created_at``.
        """
        if "created_at" in data:
            created_at = float(data["created_at"])
        else:
            created_at = float(data.get("timestamp", 0.0)) / 1000
        return cls(
            items=[str(item) for item in data.get("items", [])],
            visible=bool(data.get("visible", False)),
            created_at=created_at,
        )


@dataclass(frozen=True)
class PromptConfiguration:
    """Snapshot of prompt settings, fixed for the duration of one call.

    Attributes:
        count: Number of facts to request (1-10).
        length: Length class of each fact.
        language: Target language, None for the default.
        directive: User-editable description of what kind of facts to write.
        context_messages: Maximum number of history turns in the context.
        max_tokens: Output token budget for the backend.
    """

    count: int = 3
    length: LengthClass = LengthClass.MEDIUM
    language: str | None = None
    directive: str = ""
    context_messages: int = 20
    max_tokens: int = 500

    def __post_init__(self) -> None:
        if not MIN_FACT_COUNT <= self.count <= MAX_FACT_COUNT:
            raise ValueError(
                f"count must be between {MIN_FACT_COUNT} and {MAX_FACT_COUNT}"
            )
        if self.max_tokens < 1:
            raise ValueError("max_tokens must be at least 1")


@dataclass(frozen=True)
class ContextBundle:
    """Assembled generation input. Built per request, never persisted."""

    persona: str = ""
    character: str = ""
    world_lore: str = ""
    turns: tuple[ConversationTurn, ...] = ()

    @property
    def recent_conversation(self) -> str:
        return "\n\n".join(f"{t.speaker}: {t.text}" for t in self.turns).strip()

    def sections(self) -> list[tuple[str, str]]:
        """Non-empty (title, body) pairs in fixed order."""
        blocks = [
            ("Persona", self.persona),
            ("Character", self.character),
            ("World Lore", self.world_lore),
            ("Recent Conversation", self.recent_conversation),
        ]
        return [(title, body) for title, body in blocks if body.strip()]

    def render(self, include_conversation: bool = True) -> str:
        """Concatenate the blocks with section separators."""
        parts = []
        for title, body in self.sections():
            if title == "Recent Conversation" and not include_conversation:
                continue
            parts.append(f"### {title}\n{body.strip()}")
        return "\n\n".join(parts)
