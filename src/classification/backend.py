"""Completion backends for the email classifier."""
import logging
from typing import Optional, Protocol, runtime_checkable

from openai import OpenAI, OpenAIError

from src.exceptions import ClassificationError

logger = logging.getLogger(__name__)


@runtime_checkable
class CompletionBackend(Protocol):
    """Protocol for language-model completion services.

    Takes system instructions and a user prompt, returns free text that is
    expected (but not guaranteed) to contain JSON. Implementations raise
    ClassificationError when the call itself fails.
    """

    def complete(self, system_prompt: str, user_prompt: str) -> str:
        """Return the model's raw text response."""
        ...


class OpenAICompletionBackend:
    """Chat-completions backend using the OpenAI SDK."""

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gpt-4o-mini",
        timeout: float = 30.0,
        max_tokens: int = 1000,
        temperature: float = 0.1,
        client: Optional[OpenAI] = None,
    ):
        """
        Initialize the backend.

        Args:
            api_key: OpenAI API key
            model: Chat model name
            timeout: Per-request timeout in seconds
            max_tokens: Response token cap, large enough for a complete judgment
            temperature: Sampling temperature (low for consistent output)
            client: Preconfigured client (tests)
        """
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._client = client or OpenAI(api_key=api_key, timeout=timeout, max_retries=1)

    def complete(self, system_prompt: str, user_prompt: str) -> str:
        try:
            completion = self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except OpenAIError as e:
            raise ClassificationError(f"OpenAI request failed: {e}") from e

        if not completion.choices:
            raise ClassificationError("OpenAI returned no choices")
        content = completion.choices[0].message.content or ""
        usage = getattr(completion, "usage", None)
        if usage is not None:
            logger.debug(
                "OpenAI usage: %s prompt / %s completion tokens",
                usage.prompt_tokens,
                usage.completion_tokens,
            )
        return content
