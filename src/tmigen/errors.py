"""Error taxonomy for TMI generation.

Only ConfigurationError, TransportError and ParseFailure are surfaced to
the user. AuxiliaryDataError is recovered locally by the context assembler.
"""


class TMIError(Exception):
    """Base class for user-visible generation failures."""

    pass


class ConfigurationError(TMIError):
    """Raised when a required backend selection is missing."""

    pass


class TransportError(TMIError):
    """Raised when the completion backend call fails."""

    pass


class ParseFailure(TMIError):
    """Raised when no facts could be recovered from the model output."""

    def __init__(self, message: str, raw: str = "") -> None:
        super().__init__(message)
        self.raw = raw


class AuxiliaryDataError(Exception):
    """Raised by persona, character or lore providers."""

    pass
