from __future__ import annotations

try:
    import openai as _openai
except ImportError:
    _openai = None  # type: ignore[assignment]

from prloop_core.providers.base import BaseReviewer


class OpenAIReviewer(BaseReviewer):
    MODEL = "gpt-4o"
    TEMPERATURE = 0.2

    def __init__(self, api_key: str, model: str | None = None):
        if _openai is None:
            raise ImportError(
                "The 'openai' package is required for this provider. " "Install it with: pip install 'prloop[openai]'"
            )
        super().__init__(model)
        self.client = _openai.OpenAI(api_key=api_key)

    def _is_retryable(self, error: Exception) -> bool:
        if isinstance(error, _openai.APIConnectionError):
            return True
        return super()._is_retryable(error)

    def _is_context_overflow(self, error: Exception) -> bool:
        if getattr(error, "code", None) == "context_length_exceeded":
            return True
        return super()._is_context_overflow(error)

    def _call_api(self, system_prompt: str, messages: list[dict]) -> str:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[{"role": "system", "content": system_prompt}, *messages],
            temperature=self.TEMPERATURE,
            max_tokens=self.MAX_TOKENS,
        )
        return response.choices[0].message.content or ""
