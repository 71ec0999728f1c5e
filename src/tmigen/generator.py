"""Host-facing generator: lifecycle hooks and output events."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Protocol

from .config import GeneratorSettings
from .context import CharacterProvider, LoreProvider, PersonaProvider, assemble
from .coordinator import RequestCoordinator
from .errors import ConfigurationError, TMIError
from .logging import JSONLLogger
from .models import ConversationTurn, FactKey, FactSet
from .prompt import compose, substitute_macros
from .store import FactStore

logger = logging.getLogger(__name__)

FactsReady = Callable[[FactKey, FactSet], None]
FactsFailed = Callable[[FactKey, str], None]


class ChatHistoryProvider(Protocol):
    """Read-only view of the host's current chat."""

    @property
    def chat_id(self) -> str: ...

    def turns(self) -> Sequence[ConversationTurn]: ...


@dataclass
class ChatHistory:
    """In-memory ChatHistoryProvider."""

    chat_id: str
    messages: list[ConversationTurn] = field(default_factory=list)

    def turns(self) -> Sequence[ConversationTurn]:
        return self.messages

    def append(self, role: str, text: str, name: str | None = None) -> ConversationTurn:
        turn = ConversationTurn(
            role=role,
            text=text,
            is_user=role == "user",
            ordinal=len(self.messages),
            name=name,
        )
        self.messages.append(turn)
        return turn


class TMIGenerator:
    """Generates, restores and maintains fact sets for a chat.

    The host calls the ``on_*`` hooks from its own event handlers and
    receives results through the ``on_facts_ready`` / ``on_facts_failed``
    callbacks.
    """

    def __init__(
        self,
        history: ChatHistoryProvider,
        coordinator: RequestCoordinator,
        store: FactStore,
        settings: GeneratorSettings | None = None,
        *,
        lore: LoreProvider | None = None,
        persona: PersonaProvider | None = None,
        character: CharacterProvider | None = None,
        on_facts_ready: FactsReady | None = None,
        on_facts_failed: FactsFailed | None = None,
        event_log: JSONLLogger | None = None,
    ) -> None:
        self.history = history
        self.coordinator = coordinator
        self.store = store
        self.settings = settings or GeneratorSettings()
        self.lore = lore
        self.persona = persona
        self.character = character
        self.on_facts_ready = on_facts_ready
        self.on_facts_failed = on_facts_failed
        self.event_log = event_log

    def key_for(self, turn_id: int) -> FactKey | None:
        """Key of the turn's currently selected variant, None if out of range."""
        turns = self.history.turns()
        if not 0 <= turn_id < len(turns):
            return None
        return FactKey(self.history.chat_id, turn_id, turns[turn_id].variant_id)

    def _character_turn(self, turn_id: int) -> ConversationTurn | None:
        turns = self.history.turns()
        if not 0 <= turn_id < len(turns):
            return None
        turn = turns[turn_id]
        return None if turn.is_user else turn

    def _macros(self) -> dict[str, str]:
        values: dict[str, str] = {}
        try:
            card = self.character.get_character() if self.character else None
            if card is not None:
                values["char"] = card.name
        except Exception as e:
            logger.warning("Character lookup for macros failed: %s", e)
        try:
            persona = self.persona.get_persona() if self.persona else None
            if persona is not None:
                values["user"] = persona.name
        except Exception as e:
            logger.warning("Persona lookup for macros failed: %s", e)
        return values

    def _emit_ready(
        self, key: FactKey, fact_set: FactSet, *, restored: bool, duration_ms: float = 0.0
    ) -> None:
        if self.event_log is not None:
            self.event_log.log_facts_ready(
                key, len(fact_set.items), duration_ms, restored=restored
            )
        if self.on_facts_ready is not None:
            self.on_facts_ready(key, fact_set)

    def _emit_failed(self, key: FactKey, error: TMIError) -> None:
        logger.warning("TMI generation failed for %s: %s", key, error)
        if self.event_log is not None:
            self.event_log.log_facts_failed(key, str(error), kind=type(error).__name__)
        if self.on_facts_failed is not None:
            self.on_facts_failed(key, str(error))

    def startup(self) -> int:
        """Purge expired fact sets. Returns the number removed."""
        removed = self.store.purge_expired()
        if removed:
            logger.info("Purged %d expired fact set(s)", removed)
            if self.event_log is not None:
                self.event_log.log_purge("expired", removed)
        return removed

    async def generate(self, turn_id: int) -> FactSet | None:
        """Generate and store a fact set for a character turn.

        Failures are reported through ``on_facts_failed``. Returns None when
        nothing was generated.
        """
        if not self.settings.enabled:
            return None

        if self._character_turn(turn_id) is None:
            return None
        key = self.key_for(turn_id)
        assert key is not None

        if self.coordinator.is_pending(key):
            return None

        source = self.settings.source
        if source == "profile" and not self.settings.profile_id:
            self._emit_failed(
                key, ConfigurationError("Select a connection profile to use profile mode")
            )
            return None

        config = self.settings.to_prompt_config()
        bundle = await assemble(
            self.history.turns(),
            turn_id,
            config,
            self.lore,
            self.persona,
            self.character,
        )
        instruction = compose(substitute_macros(config.directive, self._macros()), config)

        if self.event_log is not None:
            self.event_log.log_generation_start(key, source)

        started = time.monotonic()
        try:
            fact_set = await self.coordinator.generate(
                key,
                bundle,
                instruction,
                source,
                config,
                auto_open=self.settings.auto_open,
            )
        except TMIError as e:
            self._emit_failed(key, e)
            return None

        if fact_set is None:
            return None

        self.store.record(key, fact_set)
        duration_ms = (time.monotonic() - started) * 1000
        self._emit_ready(key, fact_set, restored=False, duration_ms=duration_ms)
        return fact_set

    async def on_new_turn_rendered(self, turn_id: int) -> FactSet | None:
        """Restore a stored fact set for the turn, or generate a new one."""
        if not self.settings.enabled:
            return None

        if self._character_turn(turn_id) is None:
            return None
        key = self.key_for(turn_id)
        assert key is not None

        stored = self.store.get(key)
        if stored is not None:
            self._emit_ready(key, stored, restored=True)
            return stored

        if not self.settings.auto_generate:
            return None

        return await self.generate(turn_id)

    def on_history_switched(self) -> int:
        """Re-emit every stored fact set of the current chat. Returns the count."""
        if not self.settings.enabled:
            return 0

        restored = 0
        for turn_id, turn in enumerate(self.history.turns()):
            if turn.is_user:
                continue
            key = FactKey(self.history.chat_id, turn_id, turn.variant_id)
            stored = self.store.get(key)
            if stored is None:
                continue
            self._emit_ready(key, stored, restored=True)
            restored += 1

        logger.debug("Restored %d fact set(s) for chat %s", restored, self.history.chat_id)
        return restored

    def _rekey(self, turn_id: int) -> FactSet | None:
        key = self.key_for(turn_id)
        if key is None:
            return None
        stored = self.store.get(key)
        if stored is not None:
            self._emit_ready(key, stored, restored=True)
        return stored

    def on_turn_edited(self, turn_id: int) -> FactSet | None:
        """Re-render the stored fact set for the edited turn, if any."""
        return self._rekey(turn_id)

    def on_variant_switched(self, turn_id: int) -> FactSet | None:
        """Re-render the fact set of the newly selected variant, if any."""
        return self._rekey(turn_id)

    def on_turn_deleted(self, turn_id: int) -> int:
        """Purge the fact sets of every variant of a deleted turn."""
        removed = self.store.purge_turn(self.history.chat_id, turn_id)
        if removed and self.event_log is not None:
            self.event_log.log_purge("turn_deleted", removed)
        return removed

    async def regenerate(self, turn_id: int) -> FactSet | None:
        """Drop the stored fact set for the turn and generate a fresh one."""
        key = self.key_for(turn_id)
        if key is None:
            return None
        self.store.delete(key)
        return await self.generate(turn_id)

    def toggle_visibility(self, turn_id: int) -> FactSet | None:
        key = self.key_for(turn_id)
        if key is None:
            return None
        return self.store.toggle_visible(key)

    def clear_chat(self) -> int:
        return self.store.clear_chat(self.history.chat_id)

    def clear_all(self) -> int:
        return self.store.clear()
