"""Generator configuration loader.

Loads settings from ~/.tmigen/config.json and derives the per-call
PromptConfiguration snapshot from them.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .models import MAX_FACT_COUNT, MIN_FACT_COUNT, LengthClass, PromptConfiguration
from .prompt import DEFAULT_DIRECTIVE
from .render import DEFAULT_ITEM_TEMPLATE

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".tmigen" / "config.json"

SOURCES = ("primary", "profile")


@dataclass
class ProfileConfig:
    """A connection profile for the profile backend."""

    id: str
    base_url: str
    model: str
    api_key: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProfileConfig":
        return cls(
            id=str(data["id"]),
            base_url=str(data["base_url"]),
            model=str(data["model"]),
            api_key=data.get("api_key"),
        )


@dataclass
class GeneratorSettings:
    """Configuration for TMI generation.

    Attributes:
        enabled: Master switch.
        auto_generate: Generate automatically when a character turn renders.
        auto_open: Whether new fact sets start expanded.
        source: 'primary' or 'profile'.
        profile_id: Connection profile used in profile mode.
        count: Number of facts per generation (1-10).
        length: 'short', 'medium' or 'long'.
        language: Target language, None for the default.
        directive: What kind of facts to generate.
        context_messages: Max history turns in the context.
        max_tokens: Output token budget.
        html_template: Per-item HTML template with a {{this}} placeholder.
        profiles: Known connection profiles by id.
    """

    enabled: bool = True
    auto_generate: bool = True
    auto_open: bool = False
    source: str = "primary"
    profile_id: str = ""
    count: int = 3
    length: str = LengthClass.MEDIUM.value
    language: str | None = None
    directive: str = DEFAULT_DIRECTIVE
    context_messages: int = 20
    max_tokens: int = 500
    html_template: str = DEFAULT_ITEM_TEMPLATE
    profiles: dict[str, ProfileConfig] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate config values."""
        if not MIN_FACT_COUNT <= self.count <= MAX_FACT_COUNT:
            raise ValueError(
                f"count must be between {MIN_FACT_COUNT} and {MAX_FACT_COUNT}"
            )
        if self.length not in {c.value for c in LengthClass}:
            raise ValueError(f"Unknown length class: {self.length}")
        if self.source not in SOURCES:
            raise ValueError(f"source must be one of {', '.join(SOURCES)}")

    def to_prompt_config(self) -> PromptConfiguration:
        """Immutable snapshot for one generation call."""
        return PromptConfiguration(
            count=self.count,
            length=LengthClass(self.length),
            language=self.language,
            directive=self.directive,
            context_messages=max(0, self.context_messages),
            max_tokens=self.max_tokens,
        )


def load_config(config_path: Path | None = None) -> GeneratorSettings:
    """Load GeneratorSettings from a JSON file.

    The config file should have this structure:
    ```json
    {
      "tmi": {
        "source": "profile",
        "profile_id": "local",
        "count": 5,
        "length": "short"
      },
      "profiles": [
        {"id": "local", "base_url": "http://localhost:5000/v1", "model": "mistral"}
      ]
    }
    ```

    Args:
        config_path: Path to config file. Uses DEFAULT_CONFIG_PATH if None.

    Returns:
        GeneratorSettings instance with loaded values.
    """
    path = config_path or DEFAULT_CONFIG_PATH

    if not path.exists():
        logger.debug("No config file at %s, using defaults", path)
        return GeneratorSettings()

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        logger.warning("Invalid JSON in %s: %s. Using defaults.", path, e)
        return GeneratorSettings()
    except OSError as e:
        logger.warning("Cannot read %s: %s. Using defaults.", path, e)
        return GeneratorSettings()

    try:
        return _parse_config(data)
    except (KeyError, TypeError, ValueError) as e:
        logger.warning("Invalid config in %s: %s. Using defaults.", path, e)
        return GeneratorSettings()


def _parse_config(data: dict[str, Any]) -> GeneratorSettings:
    """Parse config dictionary into GeneratorSettings."""
    tmi = data.get("tmi", {})
    if not isinstance(tmi, dict):
        tmi = {}

    defaults = GeneratorSettings()
    known = {
        "enabled",
        "auto_generate",
        "auto_open",
        "source",
        "profile_id",
        "count",
        "length",
        "language",
        "directive",
        "context_messages",
        "max_tokens",
        "html_template",
    }
    values = {k: v for k, v in tmi.items() if k in known}

    # Out-of-range counts fall back to the default rather than failing
    count = values.get("count", defaults.count)
    if not isinstance(count, int) or not MIN_FACT_COUNT <= count <= MAX_FACT_COUNT:
        values["count"] = defaults.count

    profiles = {}
    for item in data.get("profiles", []):
        profile = ProfileConfig.from_dict(item)
        profiles[profile.id] = profile

    return GeneratorSettings(profiles=profiles, **values)


def save_config(config: GeneratorSettings, config_path: Path | None = None) -> None:
    """Save GeneratorSettings to a JSON file.

    Args:
        config: The config to save.
        config_path: Path to write to. Uses DEFAULT_CONFIG_PATH if None.
    """
    path = config_path or DEFAULT_CONFIG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)

    data: dict[str, Any] = {
        "tmi": {
            "enabled": config.enabled,
            "auto_generate": config.auto_generate,
            "auto_open": config.auto_open,
            "source": config.source,
            "profile_id": config.profile_id,
            "count": config.count,
            "length": config.length,
            "language": config.language,
            "directive": config.directive,
            "context_messages": config.context_messages,
            "max_tokens": config.max_tokens,
            "html_template": config.html_template,
        },
    }

    if config.profiles:
        data["profiles"] = [
            {
                "id": p.id,
                "base_url": p.base_url,
                "model": p.model,
                **({"api_key": p.api_key} if p.api_key else {}),
            }
            for p in config.profiles.values()
        ]

    try:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
    except OSError as e:
        logger.error("Failed to save config to %s: %s", path, e)
        raise
