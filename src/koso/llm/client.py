"""LiteLLM client wrapper for embeddings and completions.

Every embedding and language-model call in koso routes through this module.
There is no retry here: ``num_retries`` defaults to 0 and a failure is
reported to the caller, who decides whether to try again later.
"""

from __future__ import annotations

import os
import threading
from collections.abc import Iterator

import litellm

from koso.errors import EmbeddingError, JobCancelled

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
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
        return

    if not os.getenv(env_var):
        raise EnvironmentError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


def complete(
    model: str,
    messages: list[dict],
    max_tokens: int = 1024,
    temperature: float = 0.0,
    num_retries: int = 0,
) -> str:
    """Call litellm.completion() and return the content string.

    Raises:
        litellm.exceptions.APIError: On API failure.
    """
    response = litellm.completion(
        model=model,
        messages=messages,
        max_tokens=max_tokens,
        temperature=temperature,
        num_retries=num_retries,
    )
    return response.choices[0].message.content or ""


def stream_complete(
    model: str,
    messages: list[dict],
    cancel: threading.Event | None = None,
    max_tokens: int = 4096,
    temperature: float = 0.0,
) -> Iterator[str]:
    """Yield text deltas from a streaming completion.

    Checks *cancel* before every delta; once set, the stream is closed and
    ``JobCancelled`` is raised.
    """
    response = litellm.completion(
        model=model,
        messages=messages,
        max_tokens=max_tokens,
        temperature=temperature,
        stream=True,
    )
    try:
        for part in response:
            if cancel is not None and cancel.is_set():
                raise JobCancelled("completion stream cancelled")
            delta = part.choices[0].delta.content
            if delta:
                yield delta
    finally:
        close = getattr(response, "close", None)
        if callable(close):
            close()


class EmbeddingClient:
    """Text → fixed-dimension vector via ``litellm.embedding``.

    Args:
        model: LiteLLM embedding model string (provider/model format).
        dimensions: Expected vector length; any other length is an error.
        num_retries: Passed through to LiteLLM. Defaults to 0 (no retry).
    """

    def __init__(
        self,
        model: str = "openai/text-embedding-3-small",
        dimensions: int = 1536,
        num_retries: int = 0,
    ) -> None:
        self.model = model
        self.dimensions = dimensions
        self.num_retries = num_retries

    def embed(self, text: str) -> list[float]:
        """Embed *text*.

        Newlines are collapsed to spaces before the call.

        Raises:
            EmbeddingError: On empty input, provider failure, or a vector of
                the wrong dimension.
        """
        cleaned = text.replace("\n", " ").strip()
        if not cleaned:
            raise EmbeddingError("Cannot embed empty text")

        try:
            response = litellm.embedding(
                model=self.model,
                input=[cleaned],
                num_retries=self.num_retries,
            )
            vector = list(response.data[0]["embedding"])
        except Exception as exc:
            raise EmbeddingError(f"Embedding call to '{self.model}' failed: {exc}") from exc

        if len(vector) != self.dimensions:
            raise EmbeddingError(
                f"Embedding model '{self.model}' returned {len(vector)} dimensions, "
                f"expected {self.dimensions}"
            )
        return vector
