"""Auto-generated extra facts (TMI) for chat replies."""

from .context import assemble
from .coordinator import RequestCoordinator
from .errors import (
    AuxiliaryDataError,
    ConfigurationError,
    ParseFailure,
    TMIError,
    TransportError,
)
from .extractor import extract
from .generator import ChatHistory, TMIGenerator
from .models import (
    ContextBundle,
    ConversationTurn,
    FactKey,
    FactSet,
    LengthClass,
    PromptConfiguration,
)
from .prompt import compose

__all__ = [
    "AuxiliaryDataError",
    "ChatHistory",
    "ConfigurationError",
    "ContextBundle",
    "ConversationTurn",
    "FactKey",
    "FactSet",
    "LengthClass",
    "ParseFailure",
    "PromptConfiguration",
    "RequestCoordinator",
    "TMIError",
    "TMIGenerator",
    "TransportError",
    "assemble",
    "compose",
    "extract",
]
