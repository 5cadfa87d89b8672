"""LLM Integration Layer using LlamaIndex.

Normalizes heterogeneous chat backends behind one invocation contract:
- OpenAI
- Anthropic
- Google Gemini
- Mock (tests and offline development)

Each selectable provider tag resolves to exactly one backend held by a
``ProviderRegistry`` built once at startup. A separate critic backend is
available to internal services but cannot be selected by clients.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from shared.config import ProviderSettings, ProvidersSettings
from shared.logging import get_logger
from shared.models import ChatMessage, ProviderResponse, ProviderSelection, Role

logger = get_logger(__name__)


# Synthetic id used for tool-result turns that carry no originating call.
TOOL_CALL_PLACEHOLDER_ID = "test-tool-call"

# Receives each text delta of a streamed completion as it arrives.
DeltaCallback = Callable[[str], None]


def critic_settings(settings: ProviderSettings) -> ProviderSettings:
    """``settings`` pinned to zero temperature and a single non-streamed reply."""
    return settings.model_copy(update={"temperature": 0.0, "streaming": False})


class LLMBackend(ABC):
    """
    Abstract base class for LLM backends.

    A backend always returns one final, aggregated message. A streaming
    backend also hands each text delta to ``on_delta`` while it runs.
    """

    settings: Optional[ProviderSettings] = None

    @property
    def model_name(self) -> str:
        return self.settings.model if self.settings else "unknown"

    @abstractmethod
    async def complete(
        self,
        messages: list[ChatMessage],
        on_delta: Optional[DeltaCallback] = None
    ) -> ProviderResponse:
        """
        Generate a completion from the backend.

        Args:
            messages: Ordered provider input
            on_delta: Called with each streamed text delta, if any

        Returns:
            Final response; content may be text or a structured payload
        """
        pass


class LlamaIndexBackend(LLMBackend):
    """Shared LlamaIndex plumbing for the vendor backends."""

    def __init__(self, settings: ProviderSettings) -> None:
        self.settings = settings
        self._llm = None

    @abstractmethod
    def _create_llm(self, options: dict[str, Any]):
        """Instantiate the vendor-specific LlamaIndex LLM."""
        pass

    def _llm_options(self) -> dict[str, Any]:
        options = {
            "model": self.settings.model,
            "api_key": self.settings.api_key,
            "temperature": self.settings.temperature,
            "max_tokens": self.settings.max_tokens,
        }
        return {k: v for k, v in options.items() if v is not None}

    def _get_llm(self):
        """Lazy initialization of LlamaIndex LLM."""
        if self._llm is None:
            self._llm = self._create_llm(self._llm_options())
        return self._llm

    def _convert_messages(self, messages: list[ChatMessage]) -> list:
        """Convert internal messages to LlamaIndex format."""
        from llama_index.core.llms import ChatMessage as LlamaChatMessage, MessageRole

        role_map = {
            Role.USER: MessageRole.USER,
            Role.SYSTEM: MessageRole.SYSTEM,
            Role.ASSISTANT: MessageRole.ASSISTANT,
            Role.TOOL_RESULT: MessageRole.TOOL,
            Role.FUNCTION_RESULT: MessageRole.FUNCTION,
            Role.GENERIC_CHAT: MessageRole.CHATBOT,
        }

        result = []
        for msg in messages:
            role = role_map[msg.role]
            additional_kwargs: dict[str, Any] = {}

            if msg.role == Role.TOOL_RESULT:
                additional_kwargs["tool_call_id"] = TOOL_CALL_PLACEHOLDER_ID
            elif msg.role == Role.FUNCTION_RESULT:
                additional_kwargs["name"] = msg.name or "function"
            elif msg.role == Role.GENERIC_CHAT:
                try:
                    role = MessageRole(msg.sub_role or MessageRole.USER.value)
                except ValueError:
                    role = MessageRole.USER

            result.append(LlamaChatMessage(
                role=role,
                content=msg.content,
                additional_kwargs=additional_kwargs,
            ))

        return result

    async def complete(
        self,
        messages: list[ChatMessage],
        on_delta: Optional[DeltaCallback] = None
    ) -> ProviderResponse:
        """Generate completion, aggregating a stream when streaming is enabled."""
        llm = self._get_llm()
        chat_messages = self._convert_messages(messages)

        try:
            if self.settings.streaming:
                parts: list[str] = []
                stream = await llm.astream_chat(chat_messages)
                async for chunk in stream:
                    if chunk.delta:
                        parts.append(chunk.delta)
                        if on_delta is not None:
                            on_delta(chunk.delta)
                content: Any = "".join(parts)
            else:
                response = await llm.achat(chat_messages)
                content = response.message.content if response.message else None

            return ProviderResponse(content=content, finish_reason="stop")

        except Exception as e:
            logger.error(
                "LLM completion failed",
                backend=self.settings.backend,
                model=self.settings.model,
                error=str(e)
            )
            raise


class OpenAIBackend(LlamaIndexBackend):
    """OpenAI chat backend."""

    def _create_llm(self, options: dict[str, Any]):
        from llama_index.llms.openai import OpenAI

        if self.settings.api_base:
            options["api_base"] = self.settings.api_base
        return OpenAI(**options)


class AnthropicBackend(LlamaIndexBackend):
    """Anthropic chat backend."""

    def _create_llm(self, options: dict[str, Any]):
        from llama_index.llms.anthropic import Anthropic

        if self.settings.api_base:
            options["base_url"] = self.settings.api_base
        return Anthropic(**options)


class GoogleBackend(LlamaIndexBackend):
    """Google Gemini chat backend."""

    def _create_llm(self, options: dict[str, Any]):
        from llama_index.llms.google_genai import GoogleGenAI

        return GoogleGenAI(**options)


class MockBackend(LLMBackend):
    """Mock backend for testing without API calls."""

    def __init__(self, settings: Optional[ProviderSettings] = None) -> None:
        self.settings = settings
        self.call_history: list[list[ChatMessage]] = []
        self.delay: float = 0.0
        self._next_response: Optional[ProviderResponse] = None
        self._chunks: list[str] = []
        self._error: Optional[Exception] = None

    def set_next_response(self, response: ProviderResponse) -> None:
        """Set the next response to return."""
        self._next_response = response

    def stream_next(self, chunks: list[str]) -> None:
        """Stream ``chunks`` as deltas on the next call and reply with their join."""
        self._chunks = list(chunks)

    def fail_with(self, error: Exception) -> None:
        """Raise ``error`` on every subsequent call."""
        self._error = error

    async def complete(
        self,
        messages: list[ChatMessage],
        on_delta: Optional[DeltaCallback] = None
    ) -> ProviderResponse:
        """Return mock response."""
        self.call_history.append(list(messages))

        if self.delay:
            await asyncio.sleep(self.delay)

        chunks, self._chunks = self._chunks, []
        for chunk in chunks:
            if on_delta is not None:
                on_delta(chunk)
            await asyncio.sleep(0)

        if self._error is not None:
            raise self._error

        if chunks:
            return ProviderResponse(content="".join(chunks), finish_reason="stop")

        if self._next_response:
            response = self._next_response
            self._next_response = None
            return response

        last = messages[-1].content if messages else ""
        return ProviderResponse(
            content=f"Mock reply to: {last}",
            finish_reason="stop",
            usage={"prompt_tokens": 10, "completion_tokens": 5}
        )


_BACKENDS: dict[str, type[LLMBackend]] = {
    "openai": OpenAIBackend,
    "anthropic": AnthropicBackend,
    "google": GoogleBackend,
    "mock": MockBackend,
}


def create_backend(settings: ProviderSettings) -> LLMBackend:
    """
    Factory function to create the backend described by ``settings``.

    Raises:
        ValueError: If the backend kind is not supported
    """
    backend_class = _BACKENDS.get(settings.backend)
    if not backend_class:
        raise ValueError(
            f"Unsupported LLM backend: {settings.backend}. "
            f"Supported: {list(_BACKENDS.keys())}"
        )

    logger.info("Creating LLM backend", backend=settings.backend, model=settings.model)
    return backend_class(settings)


class ProviderRegistry:
    """
    Resolves provider selection tags to concrete backends.

    Built once at process start and passed to the components that need it.
    Backend errors propagate unchanged; nothing is retried here.
    """

    def __init__(
        self,
        backends: dict[ProviderSelection, LLMBackend],
        critic: Optional[LLMBackend] = None
    ) -> None:
        if ProviderSelection.PRIMARY not in backends:
            raise ValueError("A primary backend is required")
        self._backends = dict(backends)

        primary = backends[ProviderSelection.PRIMARY]
        if critic is None and primary.settings is not None:
            critic = create_backend(critic_settings(primary.settings))
        self._critic = critic

    @classmethod
    def from_settings(cls, settings: ProvidersSettings) -> "ProviderRegistry":
        """Create one backend per tag, plus a pinned critic, from configuration."""
        backends = {
            ProviderSelection.PRIMARY: create_backend(settings.primary),
            ProviderSelection.SECONDARY: create_backend(settings.secondary),
            ProviderSelection.TERTIARY: create_backend(settings.tertiary),
        }
        return cls(backends, critic=create_backend(critic_settings(settings.critic)))

    @property
    def critic(self) -> LLMBackend:
        """Low-temperature backend for internal checks; not client-selectable."""
        if self._critic is None:
            raise RuntimeError("No critic backend configured")
        return self._critic

    def resolve(self, selection: Any = None) -> LLMBackend:
        """Return the backend for ``selection``, falling back to primary."""
        tag = ProviderSelection.parse(selection)
        return self._backends.get(tag) or self._backends[ProviderSelection.PRIMARY]

    async def invoke(
        self,
        selection: Any,
        messages: list[ChatMessage],
        on_delta: Optional[DeltaCallback] = None
    ) -> ProviderResponse:
        """Invoke exactly one backend chosen by ``selection``."""
        backend = self.resolve(selection)
        logger.debug(
            "Invoking provider",
            selection=ProviderSelection.parse(selection).value,
            model=backend.model_name,
            message_count=len(messages)
        )
        return await backend.complete(messages, on_delta=on_delta)

    def describe(self) -> list[dict[str, str]]:
        """List the selectable tags with their backend and model."""
        options = []
        for tag in ProviderSelection:
            backend = self.resolve(tag)
            options.append({
                "value": tag.value,
                "backend": backend.settings.backend if backend.settings else "unknown",
                "model": backend.model_name,
            })
        return options
