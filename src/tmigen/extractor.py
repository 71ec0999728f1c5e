"""Fact extraction from raw model output.

Parsing runs through three tiers. Each tier is described by a rule table
so it can be exercised on its own:

1. ``tagged``: bulleted lines inside the first ``<tmi>...</tmi>`` block.
2. ``bulleted``: bulleted lines anywhere in the text.
3. ``sentences``: sentence split over the whole text.

The first tier that yields at least its minimum number of items wins.
"""

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass

from .models import MAX_FACT_COUNT
from .prompt import CLOSE_TAG, OPEN_TAG

logger = logging.getLogger(__name__)

TAG_BLOCK = re.compile(r"<tmi>\s*([\s\S]*?)\s*</tmi>", re.IGNORECASE)
TAG_TOKEN = re.compile(r"<tmi>|</tmi>", re.IGNORECASE)
BULLET_LINE = re.compile(r"^[-*•]\s+|^\d+\.\s+")
BULLET_PREFIX = re.compile(r"^[-*•]\s*")
NUMBER_PREFIX = re.compile(r"^\d+\.\s*")
SENTENCE_BREAK = re.compile(r"[.!?]\s+")

RAW_PREVIEW_CHARS = 300


@dataclass(frozen=True)
class RejectRule:
    """A named predicate; candidates matching it are dropped."""

    name: str
    test: Callable[[str], bool]


@dataclass(frozen=True)
class Tier:
    """One parsing strategy: candidate source, reject rules, minimum yield."""

    name: str
    candidates: Callable[[str], list[str]]
    rejects: tuple[RejectRule, ...]
    min_items: int


def _mentions_meta(text: str) -> bool:
    lowered = text.lower()
    return "format" in lowered or "example" in lowered


def _bulleted_items(text: str) -> list[str]:
    """Bulleted lines of ``text`` with their prefix stripped."""
    items = []
    for line in text.split("\n"):
        line = line.strip()
        if not BULLET_LINE.match(line):
            continue
        item = NUMBER_PREFIX.sub("", BULLET_PREFIX.sub("", line, count=1), count=1)
        items.append(item.strip())
    return items


def _tagged_candidates(raw: str) -> list[str]:
    match = TAG_BLOCK.search(raw)
    if match is None:
        return []
    return _bulleted_items(match.group(1))


def _sentence_candidates(raw: str) -> list[str]:
    stripped = TAG_TOKEN.sub("", raw)
    return [s.strip() for s in SENTENCE_BREAK.split(stripped)]


TAGGED_TIER = Tier(
    name="tagged",
    candidates=_tagged_candidates,
    rejects=(RejectRule("too_short", lambda s: len(s) <= 5),),
    min_items=1,
)

BULLETED_TIER = Tier(
    name="bulleted",
    candidates=_bulleted_items,
    rejects=(
        RejectRule("too_short", lambda s: len(s) < 10),
        RejectRule("too_long", lambda s: len(s) > 200),
        RejectRule("tag_leak", lambda s: OPEN_TAG in s or CLOSE_TAG in s),
        RejectRule("meta_text", _mentions_meta),
    ),
    min_items=3,
)

SENTENCE_TIER = Tier(
    name="sentences",
    candidates=_sentence_candidates,
    rejects=(
        RejectRule("too_short", lambda s: len(s) < 20),
        RejectRule("too_long", lambda s: len(s) > 150),
        RejectRule("meta_text", _mentions_meta),
        RejectRule("code_fence", lambda s: "```" in s),
        RejectRule("bracketed", lambda s: s.startswith("[")),
    ),
    min_items=3,
)

TIERS: tuple[Tier, ...] = (TAGGED_TIER, BULLETED_TIER, SENTENCE_TIER)


def run_tier(tier: Tier, raw: str) -> list[str]:
    """Apply a single tier and return every surviving candidate."""
    return [
        item
        for item in tier.candidates(raw)
        if not any(rule.test(item) for rule in tier.rejects)
    ]


def extract(raw: str, max_count: int) -> list[str] | None:
    """Recover an ordered list of facts from model output.

    Args:
        raw: The text returned by the model.
        max_count: Upper bound on returned items; 0 means the maximum (10).

    Returns:
        At most ``max_count`` facts, or None if every tier failed.
    """
    limit = max_count or MAX_FACT_COUNT

    for tier in TIERS:
        items = run_tier(tier, raw)
        if len(items) >= tier.min_items:
            logger.debug("Parsed %d items with the %s tier", len(items), tier.name)
            return items[:limit]

    logger.warning(
        "Could not parse TMI response, expected %s...%s. Received: %r",
        OPEN_TAG,
        CLOSE_TAG,
        raw[:RAW_PREVIEW_CHARS],
    )
    return None
