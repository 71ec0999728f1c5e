"""Request coordination: one in-flight generation per key."""

import logging
from collections.abc import Mapping

from .backends import CompletionBackend
from .errors import ConfigurationError, ParseFailure, TMIError, TransportError
from .extractor import RAW_PREVIEW_CHARS, extract
from .models import ContextBundle, FactKey, FactSet, PromptConfiguration

logger = logging.getLogger(__name__)


class RequestCoordinator:
    """Dispatches generations to a backend and parses the result.

    A second request for a key that is already pending is dropped, not
    queued. The pending marker is always cleared once the backend call
    settles.
    """

    def __init__(self, backends: Mapping[str, CompletionBackend]) -> None:
        self.backends = dict(backends)
        self._pending: set[FactKey] = set()

    def is_pending(self, key: FactKey) -> bool:
        return key in self._pending

    @property
    def pending(self) -> frozenset[FactKey]:
        return frozenset(self._pending)

    def _backend(self, source: str) -> CompletionBackend:
        backend = self.backends.get(source)
        if backend is None:
            raise ConfigurationError(f"No backend configured for source '{source}'")
        return backend

    async def generate(
        self,
        key: FactKey,
        bundle: ContextBundle,
        instruction: str,
        source: str,
        config: PromptConfiguration,
        *,
        auto_open: bool = False,
    ) -> FactSet | None:
        """Generate a fact set for ``key``.

        Returns:
            The new FactSet, or None if a request for the key is in flight.

        Raises:
            ConfigurationError: If no backend exists for ``source``.
            TransportError: If the backend call fails.
            ParseFailure: If no facts could be parsed from the output.
        """
        if key in self._pending:
            logger.debug("Generation already pending for %s, skipping", key)
            return None

        backend = self._backend(source)

        # No await between the check above and this insert
        self._pending.add(key)
        try:
            try:
                raw = await backend.complete(bundle, instruction, config)
            except TMIError:
                raise
            except Exception as e:
                raise TransportError(f"Backend request failed: {e}") from e

            items = extract(raw, config.count)
            if not items:
                logger.error(
                    "Could not parse TMI response for %s: %r",
                    key,
                    raw[:RAW_PREVIEW_CHARS],
                )
                raise ParseFailure("Could not parse the TMI response", raw=raw)

            return FactSet(items=items, visible=auto_open)
        finally:
            self._pending.discard(key)
