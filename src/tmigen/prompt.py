"""Instruction builder for TMI generation."""

import re

from .models import PromptConfiguration

DEFAULT_LANGUAGE = "English"

OPEN_TAG = "<tmi>"
CLOSE_TAG = "</tmi>"

DEFAULT_DIRECTIVE = """Generate interesting TMI facts about the current conversation, mixing character details and world-building.

Good TMI examples:
- Character quirks, habits, or hidden thoughts
- World-building details and lore
- Environmental or setting details
- Relationship dynamics
- Background context or history

Mix character-focused and world-focused facts naturally."""

PRESETS: dict[str, str] = {
    "default": DEFAULT_DIRECTIVE,
    "world": """Generate world-building TMI facts about the setting, environment, and lore of the current scene.

Focus on:
- Location history and significance
- Cultural or societal details
- Environmental characteristics
- Technological or magical systems
- Background events or context
- Setting atmosphere and mood""",
    "emotion": """Analyze the emotional undertones and psychological nuances of the characters in the conversation.

Focus on:
- Hidden feelings and subtext
- Relationship dynamics and tensions
- Character motivations and desires
- Inner thoughts and conflicts
- Unspoken emotions or intentions
- Psychological state and mood""",
}

FORMAT_INSTRUCTIONS = f"""CRITICAL FORMAT - You MUST use this EXACT structure:
{OPEN_TAG}
- Fact 1 here
- Fact 2 here
- Fact 3 here
{CLOSE_TAG}"""

REQUIREMENTS = """Requirements:
- Generate exactly {count} TMI facts
- Length per fact: {length_hint}
- MUST start with {open_tag} and end with {close_tag}
- Each fact on a new line starting with "- "
- NO other text outside the tags"""

_MACRO_PATTERN = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def get_preset(name: str) -> str:
    """Return the directive text of a built-in preset.

    Raises:
        KeyError: If no preset has that name.
    """
    if name not in PRESETS:
        raise KeyError(f"Unknown preset: {name}")
    return PRESETS[name]


def substitute_macros(text: str, values: dict[str, str]) -> str:
    """Replace ``{{name}}`` macros, leaving unknown ones untouched."""

    def _replace(match: re.Match[str]) -> str:
        key = match.group(1).lower()
        return values.get(key, match.group(0))

    return _MACRO_PATTERN.sub(_replace, text)


def language_directive(language: str | None) -> str:
    """Language line, empty when the default language is configured."""
    if not language or language.strip().lower() == DEFAULT_LANGUAGE.lower():
        return ""
    return f"Write all facts in {language.strip()}."


def compose(directive: str, config: PromptConfiguration) -> str:
    """Build the full generation instruction.

    Args:
        directive: The user's directive, with macros already substituted.
        config: Prompt settings for this call.

    Returns:
        Instruction string: directive, optional language line, format block,
        requirements.
    """
    parts = [directive.strip() or DEFAULT_DIRECTIVE]

    language = language_directive(config.language)
    if language:
        parts.append(language)

    parts.append(FORMAT_INSTRUCTIONS)
    parts.append(
        REQUIREMENTS.format(
            count=config.count,
            length_hint=config.length.hint,
            open_tag=OPEN_TAG,
            close_tag=CLOSE_TAG,
        )
    )

    return "\n\n".join(parts)
