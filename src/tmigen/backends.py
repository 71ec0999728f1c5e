"""Completion backends and response normalization.

Two backend shapes are supported:

- ``PrimaryBackend``: one call with a context string and an instruction,
  returning plain text (wraps AsyncGroq).
- ``ProfileBackend``: role-tagged messages sent through a connection
  profile. Profile services answer with varying payload shapes, which
  ``normalize_response`` folds into a single string.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

import httpx
from groq import AsyncGroq

from .config import GeneratorSettings, ProfileConfig
from .errors import ConfigurationError
from .models import ContextBundle, PromptConfiguration

DEFAULT_MODEL = "llama-3.1-70b-versatile"


@dataclass(frozen=True)
class PlainText:
    """A backend answer that is already a string."""

    text: str

    def to_text(self) -> str:
        return self.text


@dataclass(frozen=True)
class ChatCompletion:
    """A chat-completion style answer."""

    content: str | None = None
    reasoning_content: str | None = None

    def to_text(self) -> str:
        return self.content or self.reasoning_content or ""


BackendResponse = PlainText | ChatCompletion


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def _text_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def classify_response(raw: Any) -> BackendResponse:
    """Map a raw payload onto the response sum type.

    Unrecognized shapes become an empty PlainText.
    """
    if isinstance(raw, str):
        return PlainText(raw)
    if raw is None:
        return PlainText("")

    content = _text_or_none(_field(raw, "content"))
    if content is not None:
        return PlainText(content)

    choices = _field(raw, "choices")
    if isinstance(choices, (list, tuple)) and choices:
        message = _field(choices[0], "message")
        if message is not None:
            return ChatCompletion(
                content=_text_or_none(_field(message, "content")),
                reasoning_content=_text_or_none(_field(message, "reasoning_content")),
            )

    return PlainText("")


def normalize_response(raw: Any) -> str:
    """Plain text of any supported backend payload."""
    return classify_response(raw).to_text()


class CompletionBackend(Protocol):
    """A source of raw model text for one generation."""

    async def complete(
        self, bundle: ContextBundle, instruction: str, config: PromptConfiguration
    ) -> str: ...


class PrimaryBackend:
    """Backend wrapping AsyncGroq: context as system prompt, instruction as user."""

    def __init__(self, client: AsyncGroq, model: str = DEFAULT_MODEL) -> None:
        """Initialize the backend.

        Args:
            client: The AsyncGroq client instance to wrap.
            model: The model to use for completions.
        """
        self._client = client
        self._model = model

    @property
    def model(self) -> str:
        return self._model

    async def complete(
        self, bundle: ContextBundle, instruction: str, config: PromptConfiguration
    ) -> str:
        messages: list[dict[str, Any]] = []

        system = bundle.render()
        if system:
            messages.append({"role": "system", "content": system})

        messages.append({"role": "user", "content": instruction})

        response = await self._client.chat.completions.create(
            model=self._model,
            messages=messages,
            max_tokens=config.max_tokens,
        )

        return normalize_response(response)


class ProfileService(Protocol):
    """Sends chat messages through a named connection profile."""

    async def send_request(
        self,
        profile_id: str,
        messages: list[dict[str, str]],
        max_tokens: int,
        options: dict[str, Any],
    ) -> Any: ...


class HttpProfileService:
    """ProfileService posting to OpenAI-compatible chat completion endpoints."""

    def __init__(
        self,
        profiles: dict[str, ProfileConfig],
        client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
    ) -> None:
        self._profiles = profiles
        self._client = client
        self._timeout = timeout

    async def send_request(
        self,
        profile_id: str,
        messages: list[dict[str, str]],
        max_tokens: int,
        options: dict[str, Any],
    ) -> Any:
        profile = self._profiles.get(profile_id)
        if profile is None:
            raise ConfigurationError(f"Unknown connection profile: {profile_id}")

        headers = {"Content-Type": "application/json"}
        if profile.api_key:
            headers["Authorization"] = f"Bearer {profile.api_key}"

        payload: dict[str, Any] = {
            "model": profile.model,
            "messages": messages,
            "max_tokens": max_tokens,
            "stream": bool(options.get("stream", False)),
        }
        url = profile.base_url.rstrip("/") + "/chat/completions"

        if self._client is not None:
            response = await self._client.post(url, json=payload, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(url, json=payload, headers=headers)

        response.raise_for_status()
        return response.json()


def build_profile_messages(
    bundle: ContextBundle, instruction: str
) -> list[dict[str, str]]:
    """System block, then history turns, then the instruction as user."""
    messages: list[dict[str, str]] = []

    system = bundle.render(include_conversation=False)
    if system:
        messages.append({"role": "system", "content": system})

    for turn in bundle.turns:
        messages.append({"role": "user" if turn.is_user else "assistant", "content": turn.text})

    messages.append({"role": "user", "content": instruction})
    return messages


class ProfileBackend:
    """Backend sending role-tagged messages through a ProfileService."""

    def __init__(self, service: ProfileService, profile_id: str = "") -> None:
        self._service = service
        self.profile_id = profile_id

    async def complete(
        self, bundle: ContextBundle, instruction: str, config: PromptConfiguration
    ) -> str:
        if not self.profile_id:
            raise ConfigurationError("Profile mode requires a connection profile id")

        raw = await self._service.send_request(
            self.profile_id,
            build_profile_messages(bundle, instruction),
            config.max_tokens,
            {"stream": False, "extract_data": True},
        )
        return normalize_response(raw)


def build_backends(
    settings: GeneratorSettings,
    groq_client: AsyncGroq | None = None,
    profile_service: ProfileService | None = None,
    model: str = DEFAULT_MODEL,
) -> dict[str, CompletionBackend]:
    """Create the backends available for the given settings."""
    backends: dict[str, CompletionBackend] = {}

    if groq_client is not None:
        backends["primary"] = PrimaryBackend(groq_client, model=model)

    if profile_service is None and settings.profiles:
        profile_service = HttpProfileService(settings.profiles)
    if profile_service is not None:
        backends["profile"] = ProfileBackend(profile_service, settings.profile_id)

    return backends
