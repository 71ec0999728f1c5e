"""Context assembly: persona, character, world lore and recent turns."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from .errors import AuxiliaryDataError
from .models import ContextBundle, ConversationTurn, PromptConfiguration

logger = logging.getLogger(__name__)

DEFAULT_LORE_BUDGET = 8000
CHARACTER_LORE_FALLBACK = 3


@dataclass(frozen=True)
class Persona:
    """The user's persona."""

    name: str
    description: str = ""


@dataclass(frozen=True)
class LoreEntry:
    """A world-info entry triggered by keywords.

    Attributes:
        keys: Trigger keywords, matched case-insensitively.
        content: Text inserted into the context when triggered.
        constant: Always active, regardless of keywords.
        comment: Free-form label.
    """

    keys: tuple[str, ...]
    content: str
    constant: bool = False
    comment: str = ""

    def matches(self, haystack: str) -> bool:
        """Check if any key occurs in an already lowercased text."""
        return any(key.lower() in haystack for key in self.keys if key.strip())

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LoreEntry:
        keys = data.get("keys", [])
        if isinstance(keys, str):
            keys = [k.strip() for k in keys.split(",")]
        return cls(
            keys=tuple(str(k) for k in keys),
            content=str(data.get("content", "")),
            constant=bool(data.get("constant", False)),
            comment=str(data.get("comment", "")),
        )


@dataclass(frozen=True)
class CharacterCard:
    """Character metadata shown to the model."""

    name: str
    description: str = ""
    personality: str = ""
    scenario: str = ""
    creator_notes: str = ""
    system_prompt: str = ""
    lore: tuple[LoreEntry, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CharacterCard:
        return cls(
            name=str(data.get("name", "")),
            description=str(data.get("description", "")),
            personality=str(data.get("personality", "")),
            scenario=str(data.get("scenario", "")),
            creator_notes=str(data.get("creator_notes", "")),
            system_prompt=str(data.get("system_prompt", "")),
            lore=tuple(LoreEntry.from_dict(e) for e in data.get("lore", [])),
        )


@dataclass(frozen=True)
class LoreScanResult:
    """Matched lore text from a scan."""

    matched_text: str = ""


class PersonaProvider(Protocol):
    def get_persona(self) -> Persona | None: ...


class CharacterProvider(Protocol):
    def get_character(self) -> CharacterCard | None: ...


class LoreProvider(Protocol):
    """Scans texts for lore triggers.

    With ``dry_run=True`` no trigger counters may be changed.
    """

    async def scan(
        self, texts: Sequence[str], budget_chars: int, dry_run: bool
    ) -> LoreScanResult: ...


class StaticPersona:
    """PersonaProvider returning a fixed persona."""

    def __init__(self, persona: Persona | None) -> None:
        self._persona = persona

    def get_persona(self) -> Persona | None:
        return self._persona


class StaticCharacter:
    """CharacterProvider returning a fixed character card."""

    def __init__(self, card: CharacterCard | None) -> None:
        self._card = card

    def get_character(self) -> CharacterCard | None:
        return self._card


@dataclass
class Lorebook:
    """In-memory keyword lorebook with per-entry trigger counters."""

    entries: list[LoreEntry] = field(default_factory=list)
    trigger_counts: dict[int, int] = field(default_factory=dict)

    async def scan(
        self, texts: Sequence[str], budget_chars: int, dry_run: bool
    ) -> LoreScanResult:
        """Collect triggered entries in order until the budget is spent.

        Entries that do not fit in the remaining budget are skipped.
        """
        haystack = "\n".join(texts).lower()
        matched: list[str] = []
        used = 0

        for index, entry in enumerate(self.entries):
            if not entry.content.strip():
                continue
            if not (entry.constant or entry.matches(haystack)):
                continue
            cost = len(entry.content) + (1 if matched else 0)
            if used + cost > budget_chars:
                continue
            matched.append(entry.content)
            used += cost
            if not dry_run:
                self.trigger_counts[index] = self.trigger_counts.get(index, 0) + 1

        return LoreScanResult(matched_text="\n".join(matched))

    @classmethod
    def load(cls, path: Path) -> Lorebook:
        """Load a lorebook from a JSON file with an ``entries`` list.

        Raises:
            AuxiliaryDataError: If the file cannot be read or parsed.
        """
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise AuxiliaryDataError(f"Cannot load lorebook {path}: {e}") from e

        if isinstance(data, dict):
            raw_entries = data.get("entries", [])
        else:
            raw_entries = data
        if isinstance(raw_entries, dict):
            raw_entries = list(raw_entries.values())

        return cls(entries=[LoreEntry.from_dict(e) for e in raw_entries])


def format_persona(persona: Persona | None) -> str:
    if persona is None:
        return ""
    lines = [f"Name: {persona.name}"]
    if persona.description.strip():
        lines.append(f"Description: {persona.description.strip()}")
    return "\n".join(lines)


def format_character(card: CharacterCard | None) -> str:
    """Render a character card, including its attached lore.

    Constant lore entries are included; if none are constant, the first
    three entries are used instead.
    """
    if card is None:
        return ""

    fields = [
        ("Name", card.name),
        ("Description", card.description),
        ("Personality", card.personality),
        ("Scenario", card.scenario),
        ("Creator Notes", card.creator_notes),
        ("System Prompt", card.system_prompt),
    ]
    lines = [f"{label}: {value.strip()}" for label, value in fields if value.strip()]

    lore = [e for e in card.lore if e.constant]
    if not lore:
        lore = list(card.lore[:CHARACTER_LORE_FALLBACK])
    lore_lines = [f"- {e.content.strip()}" for e in lore if e.content.strip()]
    if lore_lines:
        lines.append("Lore:")
        lines.extend(lore_lines)

    return "\n".join(lines)


def select_turns(
    history: Sequence[ConversationTurn], upto_index: int, max_turns: int
) -> tuple[ConversationTurn, ...]:
    """The last ``max_turns`` turns ending at ``upto_index`` (inclusive)."""
    if upto_index < 0 or max_turns <= 0:
        return ()
    start = max(0, upto_index - max_turns + 1)
    return tuple(history[start : upto_index + 1])


async def assemble(
    history: Sequence[ConversationTurn],
    upto_index: int,
    config: PromptConfiguration,
    lore: LoreProvider | None,
    persona: PersonaProvider | None,
    character: CharacterProvider | None,
    lore_budget: int = DEFAULT_LORE_BUDGET,
) -> ContextBundle:
    """Build the context for one generation.

    A failing provider yields an empty block; assembly itself never fails
    because of auxiliary data.
    """
    persona_block = ""
    if persona is not None:
        try:
            persona_block = format_persona(persona.get_persona())
        except Exception as e:
            logger.warning("Persona fetch failed: %s", e)

    character_block = ""
    if character is not None:
        try:
            character_block = format_character(character.get_character())
        except Exception as e:
            logger.warning("Character fetch failed: %s", e)

    lore_block = ""
    if lore is not None:
        texts = [turn.text for turn in history[: max(upto_index, -1) + 1]]
        try:
            result = await lore.scan(texts, lore_budget, dry_run=True)
            lore_block = result.matched_text.strip()
        except Exception as e:
            logger.warning("Lore scan failed: %s", e)

    return ContextBundle(
        persona=persona_block,
        character=character_block,
        world_lore=lore_block,
        turns=select_turns(history, upto_index, config.context_messages),
    )
