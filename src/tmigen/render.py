"""HTML rendering instructions for fact sets."""

import html

from .models import FactKey, FactSet

DEFAULT_ITEM_TEMPLATE = '<div class="tmi-item">{{this}}</div>'
PLACEHOLDER = "{{this}}"


def render_items(items: list[str], template: str | None = None) -> str:
    """Apply the item template to each fact, escaping the fact text."""
    template = template or DEFAULT_ITEM_TEMPLATE
    return "".join(template.replace(PLACEHOLDER, html.escape(str(item))) for item in items)


def render_fact_set(key: FactKey, fact_set: FactSet, template: str | None = None) -> str:
    """Collapsible container markup for one fact set."""
    content_class = "tmi-content" if fact_set.visible else "tmi-content collapsed"
    icon_class = "tmi-toggle-icon expanded" if fact_set.visible else "tmi-toggle-icon"
    return (
        f'<div class="tmi-container" data-tmi-key="{html.escape(str(key))}">'
        '<div class="tmi-header">'
        f'<span class="tmi-title">TMI<span class="{icon_class}">▼</span></span>'
        '<button class="tmi-regenerate" title="Regenerate">🔄</button>'
        "</div>"
        f'<div class="{content_class}">{render_items(fact_set.items, template)}</div>'
        "</div>"
    )


def render_error(message: str) -> str:
    return f'<div class="tmi-container"><div class="tmi-error">Error: {html.escape(message)}</div></div>'
