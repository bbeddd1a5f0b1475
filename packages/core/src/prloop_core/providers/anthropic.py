from __future__ import annotations

from prloop_core.providers.base import BaseReviewer


class AnthropicReviewer(BaseReviewer):
    MODEL = "claude-sonnet-4-20250514"
    TEMPERATURE = 0.3

    def __init__(self, api_key: str, model: str | None = None):
        try:
            import anthropic
        except ImportError:
            raise ImportError(
                "The 'anthropic' package is required for this provider. "
                "Install it with: pip install 'prloop[anthropic]'"
            )
        super().__init__(model)
        self._sdk = anthropic
        self.client = anthropic.Anthropic(api_key=api_key)

    def _is_retryable(self, error: Exception) -> bool:
        # APITimeoutError is a subclass of APIConnectionError.
        if isinstance(error, self._sdk.APIConnectionError):
            return True
        return super()._is_retryable(error)

    def _call_api(self, system_prompt: str, messages: list[dict]) -> str:
        from anthropic.types import TextBlock

        response = self.client.messages.create(
            model=self.model,
            system=system_prompt,
            messages=messages,
            temperature=self.TEMPERATURE,
            max_tokens=self.MAX_TOKENS,
        )
        text_blocks = [block.text for block in response.content if isinstance(block, TextBlock)]
        return "".join(text_blocks).strip()
