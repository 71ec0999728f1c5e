"""Command-line interface for tmigen.

Provides subcommands for parsing raw model output, printing the composed
instruction, running a generation over a chat file, and clearing stored
fact sets.
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any

from groq import AsyncGroq

from .backends import build_backends
from .config import DEFAULT_CONFIG_PATH, GeneratorSettings, load_config
from .context import CharacterCard, Lorebook, LoreEntry, Persona, StaticCharacter, StaticPersona
from .coordinator import RequestCoordinator
from .errors import AuxiliaryDataError
from .extractor import extract
from .generator import ChatHistory, TMIGenerator
from .logging import get_logger
from .models import MAX_FACT_COUNT, MIN_FACT_COUNT, ConversationTurn, FactKey, FactSet
from .prompt import PRESETS, compose, get_preset, substitute_macros
from .render import render_error, render_fact_set
from .store import FactStore, JSONSettingsStore

DEFAULT_STORE_PATH = Path.home() / ".tmigen" / "settings.json"


def _read_input(path: str | None) -> str:
    if path is None or path == "-":
        return sys.stdin.read()
    return Path(path).read_text(encoding="utf-8")


def _load_settings(args: argparse.Namespace) -> GeneratorSettings:
    path = args.config or Path(os.getenv("TMIGEN_CONFIG", str(DEFAULT_CONFIG_PATH)))
    return load_config(Path(path))


def _print_facts(items: list[str]) -> None:
    for i, item in enumerate(items, 1):
        print(f"{i}. {item}")


def cmd_parse(args: argparse.Namespace) -> int:
    """Run the fact extractor on raw model output."""
    raw = _read_input(args.file)
    items = extract(raw, args.count)

    if items is None:
        print("Error: Could not parse any facts from the input.", file=sys.stderr)
        return 1

    _print_facts(items)
    return 0


def cmd_prompt(args: argparse.Namespace) -> int:
    """Print the instruction that would be sent to the model."""
    settings = _load_settings(args)
    if args.preset:
        try:
            settings.directive = get_preset(args.preset)
        except KeyError:
            print(f"Error: Preset '{args.preset}' not found.", file=sys.stderr)
            return 1

    macros = {}
    if args.char:
        macros["char"] = args.char
    if args.user:
        macros["user"] = args.user
    directive = substitute_macros(settings.directive, macros)

    print(compose(directive, settings.to_prompt_config()))
    return 0


def cmd_presets(args: argparse.Namespace) -> int:
    """List built-in directive presets."""
    for name, directive in PRESETS.items():
        first_line = directive.splitlines()[0]
        if len(first_line) > 60:
            first_line = first_line[:57] + "..."
        print(f"{name:<10} {first_line}")
    return 0


def _load_chat(path: Path) -> dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, list):
        data = {"messages": data}
    return data


def _build_generator(
    chat: dict[str, Any],
    settings: GeneratorSettings,
    store_path: Path,
    html: bool = False,
    lore_path: Path | None = None,
) -> TMIGenerator:
    history = ChatHistory(
        chat_id=str(chat.get("chat_id", "cli")),
        messages=[
            ConversationTurn.from_dict(m, ordinal=i)
            for i, m in enumerate(chat.get("messages", []))
        ],
    )

    persona = chat.get("persona")
    character = chat.get("character")
    if lore_path is not None:
        lore = Lorebook.load(lore_path)
    else:
        lore = Lorebook(entries=[LoreEntry.from_dict(e) for e in chat.get("lore", [])])

    groq_client = None
    if settings.source == "primary":
        groq_client = AsyncGroq(api_key=os.getenv("GROQ_API_KEY"))
    backends = build_backends(
        settings,
        groq_client=groq_client,
        model=os.getenv("TMIGEN_MODEL", "llama-3.1-70b-versatile"),
    )

    def on_ready(key: FactKey, fact_set: FactSet) -> None:
        if not html:
            print(f"Facts for {key}:")

    def on_failed(key: FactKey, message: str) -> None:
        if html:
            print(render_error(message))
            return
        print(f"Error: TMI generation failed for {key}: {message}", file=sys.stderr)

    return TMIGenerator(
        history,
        RequestCoordinator(backends),
        FactStore(JSONSettingsStore(store_path)),
        settings,
        lore=lore,
        persona=StaticPersona(
            Persona(name=str(persona.get("name", "")), description=str(persona.get("description", "")))
            if persona
            else None
        ),
        character=StaticCharacter(CharacterCard.from_dict(character) if character else None),
        on_facts_ready=on_ready,
        on_facts_failed=on_failed,
        event_log=get_logger(),
    )


async def _generate(generator: TMIGenerator, turn_id: int, force: bool) -> FactSet | None:
    if force:
        return await generator.regenerate(turn_id)

    key = generator.key_for(turn_id)
    if key is not None:
        stored = generator.store.get(key)
        if stored is not None:
            print(f"Facts for {key} (stored):")
            return stored

    return await generator.generate(turn_id)


def cmd_generate(args: argparse.Namespace) -> int:
    """Generate facts for a turn of a chat file."""
    settings = _load_settings(args)
    if args.count:
        if not MIN_FACT_COUNT <= args.count <= MAX_FACT_COUNT:
            print(f"Error: --count must be between {MIN_FACT_COUNT} and {MAX_FACT_COUNT}.", file=sys.stderr)
            return 1
        settings.count = args.count

    if settings.source == "primary" and not os.getenv("GROQ_API_KEY"):
        print("Error: GROQ_API_KEY environment variable not set.", file=sys.stderr)
        print("Set it in your .env file or environment.", file=sys.stderr)
        return 1

    try:
        chat = _load_chat(Path(args.chat))
    except (OSError, json.JSONDecodeError) as e:
        print(f"Error: Cannot read chat file: {e}", file=sys.stderr)
        return 1

    try:
        generator = _build_generator(
            chat,
            settings,
            Path(args.store),
            html=args.html,
            lore_path=Path(args.lore) if args.lore else None,
        )
    except AuxiliaryDataError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    generator.startup()

    turns = generator.history.turns()
    turn_id = args.turn if args.turn is not None else len(turns) - 1
    if generator.key_for(turn_id) is None:
        print(f"Error: Turn {turn_id} does not exist.", file=sys.stderr)
        return 1
    if turns[turn_id].is_user:
        print(f"Error: Turn {turn_id} is a user turn.", file=sys.stderr)
        return 1

    fact_set = asyncio.run(_generate(generator, turn_id, args.force))
    if fact_set is None:
        return 1

    if args.html:
        key = generator.key_for(turn_id)
        assert key is not None
        print(render_fact_set(key, fact_set, settings.html_template))
    else:
        _print_facts(fact_set.items)
    return 0


def cmd_clear(args: argparse.Namespace) -> int:
    """Delete stored fact sets."""
    store = FactStore(JSONSettingsStore(Path(args.store)))
    if args.expired:
        count = store.purge_expired()
    elif args.chat_id:
        count = store.clear_chat(args.chat_id)
    else:
        count = store.clear()

    print(f"Removed {count} fact set(s).")
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="tmigen",
        description="Generate TMI facts from chat history",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # parse
    parse_parser = subparsers.add_parser("parse", help="Extract facts from raw model output")
    parse_parser.add_argument("file", nargs="?", help="Input file (default: stdin)")
    parse_parser.add_argument("-n", "--count", type=int, default=10, help="Maximum facts")
    parse_parser.set_defaults(func=cmd_parse)

    # prompt
    prompt_parser = subparsers.add_parser("prompt", help="Print the composed instruction")
    prompt_parser.add_argument("--config", help="Config file path")
    prompt_parser.add_argument("--preset", help="Use a built-in directive preset")
    prompt_parser.add_argument("--char", help="Character name for {{char}}")
    prompt_parser.add_argument("--user", help="User name for {{user}}")
    prompt_parser.set_defaults(func=cmd_prompt)

    # presets
    presets_parser = subparsers.add_parser("presets", help="List built-in presets")
    presets_parser.set_defaults(func=cmd_presets)

    # generate
    gen_parser = subparsers.add_parser("generate", help="Generate facts for a chat turn")
    gen_parser.add_argument("chat", help="Chat JSON file")
    gen_parser.add_argument("-t", "--turn", type=int, help="Turn index (default: last)")
    gen_parser.add_argument("-n", "--count", type=int, help="Override fact count")
    gen_parser.add_argument("--config", help="Config file path")
    gen_parser.add_argument("--store", default=str(DEFAULT_STORE_PATH), help="Fact store file")
    gen_parser.add_argument("-f", "--force", action="store_true", help="Regenerate even if stored")
    gen_parser.add_argument("--html", action="store_true", help="Print HTML markup")
    gen_parser.add_argument("--lore", help="Lorebook JSON file (overrides the chat file's lore)")
    gen_parser.set_defaults(func=cmd_generate)

    # clear
    clear_parser = subparsers.add_parser("clear", help="Delete stored fact sets")
    clear_parser.add_argument("--store", default=str(DEFAULT_STORE_PATH), help="Fact store file")
    clear_parser.add_argument("--chat-id", help="Only clear this chat")
    clear_parser.add_argument("--expired", action="store_true", help="Only purge expired sets")
    clear_parser.set_defaults(func=cmd_clear)

    return parser


def run_cli(argv: list[str] | None = None) -> int:
    """Run the CLI.

    Args:
        argv: Command-line arguments (without program name).

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        return 0

    return args.func(args)
