"""Tests for context assembly."""

import json
from pathlib import Path

import pytest

from tmigen.context import (
    CharacterCard,
    LoreEntry,
    Lorebook,
    LoreScanResult,
    Persona,
    StaticCharacter,
    StaticPersona,
    assemble,
    format_character,
    format_persona,
    select_turns,
)
from tmigen.errors import AuxiliaryDataError
from tmigen.models import ConversationTurn, PromptConfiguration


def make_history(count: int) -> list[ConversationTurn]:
    return [
        ConversationTurn(
            role="user" if i % 2 == 0 else "assistant",
            text=f"message {i}",
            is_user=i % 2 == 0,
            ordinal=i,
            name="Alex" if i % 2 == 0 else "Mira",
        )
        for i in range(count)
    ]


class FailingProvider:
    def get_persona(self):
        raise RuntimeError("persona backend down")

    def get_character(self):
        raise RuntimeError("character backend down")

    async def scan(self, texts, budget_chars, dry_run):
        raise RuntimeError("lore index unavailable")


class RecordingLore:
    def __init__(self) -> None:
        self.calls = []

    async def scan(self, texts, budget_chars, dry_run):
        self.calls.append((list(texts), budget_chars, dry_run))
        return LoreScanResult(matched_text="The valley is cursed.")


class TestSelectTurns:
    def test_window_ends_at_index(self):
        history = make_history(10)
        turns = select_turns(history, 6, 3)
        assert [t.ordinal for t in turns] == [4, 5, 6]

    def test_start_clamped_at_zero(self):
        history = make_history(4)
        assert [t.ordinal for t in select_turns(history, 2, 20)] == [0, 1, 2]

    def test_zero_window(self):
        assert select_turns(make_history(4), 3, 0) == ()

    def test_negative_index(self):
        assert select_turns(make_history(4), -1, 5) == ()


class TestFormatting:
    def test_persona(self):
        assert format_persona(Persona("Alex", "A wandering bard")) == (
            "Name: Alex\nDescription: A wandering bard"
        )
        assert format_persona(None) == ""

    def test_character_fields_skip_empty(self):
        card = CharacterCard(name="Mira", personality="Wry", scenario="A tavern")
        assert format_character(card) == (
            "Name: Mira\nPersonality: Wry\nScenario: A tavern"
        )

    def test_character_constant_lore_only(self):
        card = CharacterCard(
            name="Mira",
            lore=(
                LoreEntry(keys=("sword",), content="Mira owns a sword."),
                LoreEntry(keys=(), content="Mira fears deep water.", constant=True),
            ),
        )
        text = format_character(card)
        assert "- Mira fears deep water." in text
        assert "Mira owns a sword." not in text

    def test_character_lore_fallback_first_three(self):
        card = CharacterCard(
            name="Mira",
            lore=tuple(LoreEntry(keys=("k",), content=f"Entry {i}") for i in range(5)),
        )
        text = format_character(card)
        assert "- Entry 0" in text
        assert "- Entry 2" in text
        assert "Entry 3" not in text


@pytest.mark.asyncio
class TestLorebook:
    async def test_keyword_match(self):
        book = Lorebook(
            entries=[
                LoreEntry(keys=("Dragon",), content="Dragons nest in the north."),
                LoreEntry(keys=("elf",), content="Elves left long ago."),
            ]
        )
        result = await book.scan(["A dragon appeared!"], 8000, dry_run=True)
        assert result.matched_text == "Dragons nest in the north."

    async def test_dry_run_keeps_counters(self):
        book = Lorebook(entries=[LoreEntry(keys=("dragon",), content="Dragons.")])
        await book.scan(["dragon"], 8000, dry_run=True)
        assert book.trigger_counts == {}

        await book.scan(["dragon"], 8000, dry_run=False)
        assert book.trigger_counts == {0: 1}

    async def test_budget_skips_oversized_entries(self):
        book = Lorebook(
            entries=[
                LoreEntry(keys=(), content="x" * 50, constant=True),
                LoreEntry(keys=(), content="y" * 30, constant=True),
                LoreEntry(keys=(), content="z" * 10, constant=True),
            ]
        )
        result = await book.scan([""], 62, dry_run=True)
        assert result.matched_text == "x" * 50 + "\n" + "z" * 10

    async def test_load_from_file(self, tmp_path: Path):
        path = tmp_path / "lore.json"
        path.write_text(
            json.dumps({"entries": [{"keys": "ship, sail", "content": "Ships sail."}]})
        )
        book = Lorebook.load(path)
        assert book.entries[0].keys == ("ship", "sail")

    async def test_load_invalid_file(self, tmp_path: Path):
        path = tmp_path / "lore.json"
        path.write_text("{broken")
        with pytest.raises(AuxiliaryDataError):
            Lorebook.load(path)


@pytest.mark.asyncio
class TestAssemble:
    async def test_blocks_in_fixed_order(self):
        bundle = await assemble(
            make_history(4),
            3,
            PromptConfiguration(),
            RecordingLore(),
            StaticPersona(Persona("Alex")),
            StaticCharacter(CharacterCard(name="Mira")),
        )
        rendered = bundle.render()
        persona_at = rendered.index("### Persona")
        character_at = rendered.index("### Character")
        lore_at = rendered.index("### World Lore")
        conversation_at = rendered.index("### Recent Conversation")
        assert persona_at < character_at < lore_at < conversation_at

    async def test_recent_conversation_format(self):
        bundle = await assemble(
            make_history(3), 2, PromptConfiguration(context_messages=2), None, None, None
        )
        assert bundle.recent_conversation == "Mira: message 1\n\nAlex: message 2"

    async def test_lore_scan_is_dry_run_with_budget(self):
        lore = RecordingLore()
        history = make_history(6)
        bundle = await assemble(history, 3, PromptConfiguration(), lore, None, None)

        texts, budget, dry_run = lore.calls[0]
        assert texts == ["message 0", "message 1", "message 2", "message 3"]
        assert budget == 8000
        assert dry_run is True
        assert bundle.world_lore == "The valley is cursed."

    async def test_provider_failures_become_empty_blocks(self, caplog):
        failing = FailingProvider()
        bundle = await assemble(
            make_history(2), 1, PromptConfiguration(), failing, failing, failing
        )
        assert bundle.persona == ""
        assert bundle.character == ""
        assert bundle.world_lore == ""
        assert len(bundle.turns) == 2
        assert "Lore scan failed" in caplog.text

    async def test_idempotent(self):
        args = (
            make_history(8),
            7,
            PromptConfiguration(context_messages=5),
            Lorebook(entries=[LoreEntry(keys=("message",), content="Messages matter.")]),
            StaticPersona(Persona("Alex", "Bard")),
            StaticCharacter(CharacterCard(name="Mira", description="Innkeeper")),
        )
        first = await assemble(*args)
        second = await assemble(*args)
        assert first == second
        assert first.render() == second.render()
