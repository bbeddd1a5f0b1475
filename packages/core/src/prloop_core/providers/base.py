"""Base reviewer implementing the Template Method pattern.

All providers share the same review algorithm:
    review() → _build_system_prompt() + _build_user_prompt()
             → _call_with_retry() → _call_api()   ← only this differs per provider
             → _parse()  (one corrective re-prompt on malformed output)

Subclasses implement:
  - __init__: validate and store the SDK client
  - _call_api: make one raw API call and return the text response
  - optionally _is_retryable / _is_context_overflow, to recognise their SDK's
    exception types on top of the status-code checks done here
"""

from __future__ import annotations

import json
import logging
import re
import time
from abc import ABC, abstractmethod

from prloop_core.utils.context import USER_PROMPT_SUFFIX
from prloop_core.validation import CATEGORIES

logger = logging.getLogger(__name__)

# Shared defaults; subclasses may override them as class attributes.
_MAX_RETRIES = 3
_MAX_TOKENS = 4096

_RETRYABLE_STATUS = {408, 409, 429, 529}
_OVERFLOW_MARKERS = ("prompt is too long", "context_length_exceeded", "maximum context length", "too many tokens")

CORRECTION_PROMPT = "Your previous response was not valid JSON. Respond with ONLY a JSON array, no other text."


class ReviewerError(Exception):
    """A model call failed in a way that prevents reviewing a chunk."""


class ContextTooLargeError(ReviewerError):
    """The request exceeds the model's context window. Never retried."""


class ModelUnavailableError(ReviewerError):
    """Retries were exhausted, or the API rejected the request outright."""


class MalformedResponseError(ValueError):
    """The model's reply does not contain a JSON array."""


class BaseReviewer(ABC):
    MODEL: str = ""
    TEMPERATURE: float = 0.2
    MAX_RETRIES: int = _MAX_RETRIES
    MAX_TOKENS: int = _MAX_TOKENS

    def __init__(self, model: str | None = None):
        self.model = model or self.MODEL

    # ------------------------------------------------------------------ #
    # Public interface                                                     #
    # ------------------------------------------------------------------ #

    def review(
        self,
        chunk_text: str,
        skills: str,
        title: str = "",
        description: str = "",
        previous_feedback: str = "",
    ) -> list[dict]:
        """Review one prompt chunk and return the raw comment objects the model proposed.

        Raises ContextTooLargeError when the chunk does not fit the model and
        ModelUnavailableError when the API cannot be reached. A malformed reply
        gets exactly one corrective re-prompt; if that also fails the chunk
        yields no comments.
        """
        system = self._build_system_prompt(skills, title, description, previous_feedback)
        messages = [{"role": "user", "content": self._build_user_prompt(chunk_text)}]
        raw = self._call_with_retry(system, messages)
        try:
            return self._parse(raw)
        except MalformedResponseError:
            logger.warning("%s returned invalid JSON, re-prompting once: %s", self.__class__.__name__, raw[:200])

        messages = messages + [
            {"role": "assistant", "content": raw or "(empty response)"},
            {"role": "user", "content": CORRECTION_PROMPT},
        ]
        try:
            return self._parse(self._call_with_retry(system, messages))
        except (MalformedResponseError, ReviewerError) as e:
            logger.warning("%s corrective re-prompt failed, continuing without comments: %s", self.__class__.__name__, e)
            return []

    # ------------------------------------------------------------------ #
    # Abstract: implement in each provider                                #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def _call_api(self, system_prompt: str, messages: list[dict]) -> str:
        """Make a single API call and return the raw text response.

        It should raise on failure; _call_with_retry handles retries and logging.
        """

    # ------------------------------------------------------------------ #
    # Shared implementations                                               #
    # ------------------------------------------------------------------ #

    def _is_retryable(self, error: Exception) -> bool:
        if isinstance(error, (ConnectionError, TimeoutError)):
            return True
        status = getattr(error, "status_code", None)
        return isinstance(status, int) and (status in _RETRYABLE_STATUS or status >= 500)

    def _is_context_overflow(self, error: Exception) -> bool:
        status = getattr(error, "status_code", None)
        if status == 413:
            return True
        message = str(error).lower()
        return status == 400 and any(marker in message for marker in _OVERFLOW_MARKERS)

    def _call_with_retry(self, system_prompt: str, messages: list[dict]) -> str:
        """Call _call_api, retrying transient failures with exponential backoff.

        Waits 1s, 2s, 4s… between attempts, up to MAX_RETRIES attempts in
        total. Context overflows and other non-transient errors are raised
        immediately.
        """
        for attempt in range(self.MAX_RETRIES):
            try:
                return self._call_api(system_prompt, messages)
            except Exception as e:
                if self._is_context_overflow(e):
                    raise ContextTooLargeError(str(e)) from e
                if not self._is_retryable(e):
                    logger.error("%s API error (not retryable): %s", self.__class__.__name__, e)
                    raise ModelUnavailableError(str(e)) from e
                if attempt == self.MAX_RETRIES - 1:
                    logger.error(
                        "%s API failed after %d attempts: %s",
                        self.__class__.__name__,
                        self.MAX_RETRIES,
                        e,
                    )
                    raise ModelUnavailableError(str(e)) from e
                delay = 2**attempt
                logger.warning(
                    "%s API error (attempt %d/%d): %s. Retrying in %ds...",
                    self.__class__.__name__,
                    attempt + 1,
                    self.MAX_RETRIES,
                    e,
                    delay,
                )
                time.sleep(delay)
        raise ModelUnavailableError("no attempts made")

    def _build_system_prompt(self, skills: str, title: str, description: str, previous_feedback: str = "") -> str:
        """Build the system prompt shared by every chunk of a review."""
        categories = "\n".join(f"- `{c}`: {_CATEGORY_HELP[c]}" for c in CATEGORIES)
        return f"""You are prloop, an AI code reviewer. You review pull request diffs and
post helpful, actionable comments.

## Your review rules

{skills}

## Pull request context

Title: {title}
Description: {description}

{previous_feedback}## Instructions

- You are reviewing an entire pull request across multiple files
- Use the PR title and description to understand the author's intent
- For each file you receive the unified diff and, when it fits, the full file content
- Look for cross-file issues: broken references, inconsistent signatures, missing imports
- Each comment must have: file (path), line (number in the new file), category, body
- Only comment on lines that appear in the diff. Lines outside the diff cannot receive inline comments
- Maximum 5 comments per file, 20 comments total, prioritize by severity
- Be concise. One comment = one issue. Every comment must suggest a fix or explain why something is wrong
- Never comment on things covered by linters or formatters
- If everything looks fine, return an empty array []

## Response format

Respond with ONLY a JSON array. Each comment must include a `category` from this list:
{categories}

[
  {{"file": "src/auth.py", "line": 42, "category": "bug", "body": "This raises if `user` is None. Add a guard."}}
]"""

    def _build_user_prompt(self, chunk_text: str) -> str:
        return chunk_text + USER_PROMPT_SUFFIX

    def _parse(self, raw: str) -> list:
        """Parse the model's raw text response into a list of comment objects.

        Strips an outer ```json fence, then decodes the span from the first
        '[' to the last ']'. Anything that does not decode to a JSON array
        raises MalformedResponseError.
        """
        cleaned = re.sub(r"^```(?:json)?\s*", "", (raw or "").strip())
        cleaned = re.sub(r"\s*```$", "", cleaned.strip())
        start, end = cleaned.find("["), cleaned.rfind("]")
        if start != -1 and end > start:
            cleaned = cleaned[start : end + 1]
        try:
            parsed = json.loads(cleaned)
        except json.JSONDecodeError as e:
            raise MalformedResponseError(f"not valid JSON: {e}") from e
        if not isinstance(parsed, list):
            raise MalformedResponseError(f"expected a JSON array, got {type(parsed).__name__}")
        return parsed


_CATEGORY_HELP = {
    "bug": "logic errors, null access, off-by-one, wrong return values",
    "security": "injection, XSS, auth bypass, hardcoded secrets",
    "error-handling": "missing exception handling, swallowed errors",
    "performance": "N+1 queries, unnecessary allocations, missing caching",
    "concurrency": "race conditions, deadlocks, missing locks",
    "resource-leak": "unclosed connections, file handles, streams",
    "api-contract": "breaking changes, missing validation, wrong types",
    "other": "anything not in the above categories",
}
