"""External provider interfaces and their LiteLLM-backed implementations.

All embedding, generation and live-search calls route through this module.
Each call is awaited under ``asyncio.wait_for`` so a hung provider cannot
stall a request; LiteLLM's built-in retry handles transient errors.
API key presence is checked when providers are built, and a provider whose
key is missing is left unconfigured rather than failing on first use.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
from dataclasses import dataclass
from typing import Any, Protocol, Union

import litellm

from notebookqa.config import NotebookConfig
from notebookqa.errors import ProviderUnavailable

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]

logger = logging.getLogger(__name__)

# OpenAI-style content parts: {"type": "text", ...} / {"type": "image_url", ...}
Prompt = Union[str, list[dict[str, Any]]]

_CITATION_RE = re.compile(r"\[([^\[\]]+)\]")


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "google": "GOOGLE_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "groq": "GROQ_API_KEY",
    "perplexity": "PERPLEXITYAI_API_KEY",
    "together_ai": "TOGETHERAI_API_KEY",
    "ollama": None,  # Local, no key required
    "ollama_chat": None,
}


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Args:
        model: LiteLLM model string in 'provider/model' format.

    Raises:
        EnvironmentError: If the required key is missing from environment.
    """
    provider = model.split("/")[0].lower() if "/" in model else "openai"
    env_var = _PROVIDER_ENV.get(provider)

    if env_var is None:
        return  # No key required (e.g. ollama) or unknown provider

    if not os.getenv(env_var):
        raise EnvironmentError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


def extract_citations(answer: str) -> tuple[str, ...]:
    """Return the distinct ``[Name]`` references in *answer*, in order of appearance."""
    seen: dict[str, None] = {}
    for match in _CITATION_RE.findall(answer):
        seen.setdefault(match.strip(), None)
    return tuple(seen)


@dataclass(frozen=True)
class Generation:
    """Text produced by a provider plus the citations it carries."""

    text: str
    citations: tuple[str, ...] = ()


# ------------------------------------------------------------------
# Interfaces
# ------------------------------------------------------------------


class EmbeddingProvider(Protocol):
    async def embed(self, text: str) -> list[float] | None:
        """Return a vector for *text*, or None when no embedding is available."""


class GenerationProvider(Protocol):
    async def generate(self, prompt: Prompt) -> Generation | None:
        """Answer a text prompt or a list of multimodal content parts."""


class ManagedStore(Protocol):
    async def query(self, store_handle: str, question: str) -> Generation | None:
        """Ask a provider-hosted retrieval store; it chunks, ranks and generates itself."""


class LiveSearchProvider(Protocol):
    async def search(self, question: str, context_hint: str | None = None) -> Generation | None:
        """Answer *question* from live web search, optionally grounded by *context_hint*."""


# ------------------------------------------------------------------
# LiteLLM implementations
# ------------------------------------------------------------------


class LiteLLMEmbedder:
    """Embedding provider that never raises: every failure becomes None."""

    def __init__(self, model: str, timeout: float = 30.0, num_retries: int = 2) -> None:
        self.model = model
        self.timeout = timeout
        self.num_retries = num_retries

    async def embed(self, text: str) -> list[float] | None:
        if not text.strip():
            return None
        try:
            response = await asyncio.wait_for(
                litellm.aembedding(model=self.model, input=[text], num_retries=self.num_retries),
                timeout=self.timeout,
            )
            return list(response.data[0]["embedding"])
        except Exception as exc:
            logger.warning("Embedding failed (%s): %s", self.model, exc)
            return None


class LiteLLMGenerator:
    """Chat-completion provider; image-bearing prompts go to the vision model.

    Raises ProviderUnavailable on provider errors and timeouts.
    """

    def __init__(
        self,
        model: str,
        vision_model: str | None = None,
        max_tokens: int = 2048,
        temperature: float = 0.2,
        timeout: float = 120.0,
        num_retries: int = 2,
    ) -> None:
        self.model = model
        self.vision_model = vision_model or model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout = timeout
        self.num_retries = num_retries

    async def generate(self, prompt: Prompt) -> Generation | None:
        model = self.model if isinstance(prompt, str) else self.vision_model
        try:
            response = await asyncio.wait_for(
                litellm.acompletion(
                    model=model,
                    messages=[{"role": "user", "content": prompt}],
                    max_tokens=self.max_tokens,
                    temperature=self.temperature,
                    num_retries=self.num_retries,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ProviderUnavailable(f"{model} timed out after {self.timeout:.0f}s") from exc
        except Exception as exc:
            raise ProviderUnavailable(f"{model} failed: {exc}") from exc

        text = (response.choices[0].message.content or "").strip()
        if not text:
            return None
        return Generation(text=text, citations=extract_citations(text))


class LiteLLMLiveSearch:
    """Live web search through a search-grounded chat model (Perplexity Sonar by default)."""

    def __init__(self, model: str = "perplexity/sonar-pro", timeout: float = 60.0) -> None:
        self.model = model
        self.timeout = timeout

    async def search(self, question: str, context_hint: str | None = None) -> Generation | None:
        if context_hint:
            system = (
                "You are helping answer a question. The user has some source documents, "
                "but they may be incomplete. Use web search to supplement them with current, "
                "accurate information.\n\n"
                f"User's existing source context (may be limited):\n{context_hint[:2000]}\n\n"
                "Provide a comprehensive answer using both the context above and web search results."
            )
        else:
            system = "You are a helpful assistant providing accurate, up-to-date information with citations."

        try:
            response = await asyncio.wait_for(
                litellm.acompletion(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": system},
                        {"role": "user", "content": question},
                    ],
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ProviderUnavailable(f"{self.model} timed out after {self.timeout:.0f}s") from exc
        except Exception as exc:
            raise ProviderUnavailable(f"{self.model} failed: {exc}") from exc

        text = (response.choices[0].message.content or "").strip()
        if not text:
            return None
        citations = getattr(response, "citations", None) or []
        return Generation(text=text, citations=tuple(str(c) for c in citations))


@dataclass
class Providers:
    """The set of external collaborators the engine may call; None = not configured."""

    embedder: EmbeddingProvider | None = None
    generator: GenerationProvider | None = None
    managed_store: ManagedStore | None = None
    live_search: LiveSearchProvider | None = None


def _usable(model: str | None, role: str) -> bool:
    if not model:
        return False
    try:
        validate_api_key(model)
    except EnvironmentError as exc:
        logger.warning("%s provider disabled: %s", role, exc)
        return False
    return True


def build_providers(cfg: NotebookConfig, managed_store: ManagedStore | None = None) -> Providers:
    """Build LiteLLM providers from *cfg*, leaving out any without a model or API key."""
    providers = Providers(managed_store=managed_store)
    if _usable(cfg.embedding.model, "Embedding"):
        providers.embedder = LiteLLMEmbedder(cfg.embedding.model, timeout=cfg.embedding.timeout)
    if _usable(cfg.generation.model, "Generation"):
        providers.generator = LiteLLMGenerator(
            cfg.generation.model,
            vision_model=cfg.generation.vision_model,
            max_tokens=cfg.generation.max_tokens,
            temperature=cfg.generation.temperature,
            timeout=cfg.generation.timeout,
        )
    if _usable(cfg.search.model, "Live search"):
        providers.live_search = LiteLLMLiveSearch(cfg.search.model, timeout=cfg.search.timeout)
    return providers
