"""Claude API client used to condense handoff summaries."""

import asyncio
import logging
import os
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Raised when Claude API request fails after retries."""

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class ClaudeClient:
    """Async client for single-shot Claude completions.

    No conversation memory: each call sends one prompt and returns the
    text of the reply.
    """

    SYSTEM_PROMPT = """You condense the terminal transcript of an AI coding agent into a handoff note
for the agent that replaces it. Be factual and dense. Never invent files or decisions
that do not appear in the transcript."""

    # HTTP status codes that are retryable
    RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504, 529}

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "claude-haiku-4-5-20251001",
        max_tokens: int = 1024,
        timeout: float = 30.0,
        max_retries: int = 2,
    ) -> None:
        """Initialize Claude client.

        Args:
            api_key: Anthropic API key. If not provided, reads from
                     ANTHROPIC_API_KEY environment variable.
            model: Claude model to use.
            max_tokens: Maximum tokens in response.
            timeout: Request timeout in seconds.
            max_retries: Maximum retries for transient errors.

        Raises:
            ValueError: If no API key is available.
        """
        from anthropic import AsyncAnthropic

        self._api_key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        if not self._api_key:
            raise ValueError(
                "ANTHROPIC_API_KEY environment variable not set. "
                "Please set it or pass api_key parameter."
            )

        self._client = AsyncAnthropic(
            api_key=self._api_key,
            timeout=httpx.Timeout(timeout, connect=10.0),
        )
        self._model = model
        self._max_tokens = max_tokens
        self._max_retries = max_retries

    @property
    def model(self) -> str:
        return self._model

    async def complete(self, prompt: str, system: Optional[str] = None) -> str:
        """Send one prompt and return the reply text, retrying transient errors.

        Raises:
            APIError: Non-retryable failure, or retries exhausted.
        """
        from anthropic import APIConnectionError, APIStatusError, APITimeoutError

        if not prompt.strip():
            return ""

        attempts = self._max_retries + 1
        logger.info(f"Sending {len(prompt)} chars to {self._model}")
        last_error: Optional[Exception] = None

        for attempt in range(attempts):
            try:
                message = await self._client.messages.create(
                    model=self._model,
                    max_tokens=self._max_tokens,
                    system=system or self.SYSTEM_PROMPT,
                    messages=[{"role": "user", "content": prompt}],
                )
                text = "".join(
                    block.text for block in message.content if hasattr(block, "text")
                )
                logger.debug(f"Claude replied with {len(text)} chars")
                return text

            except APITimeoutError as e:
                last_error = e
                logger.warning(f"Claude API timeout (attempt {attempt + 1}/{attempts})")

            except APIConnectionError as e:
                last_error = e
                logger.warning(f"Claude API connection error (attempt {attempt + 1}/{attempts}): {e}")

            except APIStatusError as e:
                last_error = e
                if e.status_code not in self.RETRYABLE_STATUS_CODES:
                    logger.error(f"Claude API error {e.status_code}: {e.message}")
                    raise APIError(f"Claude API error: {e.message}", retryable=False) from e
                logger.warning(
                    f"Claude API error {e.status_code} (attempt {attempt + 1}/{attempts}): {e.message}"
                )

            except Exception as e:
                logger.error(f"Unexpected error calling Claude API: {e}", exc_info=True)
                raise APIError(f"Unexpected error: {e}", retryable=False) from e

            if attempt < self._max_retries:
                delay = min(2 ** attempt, 10)  # 1s, 2s, 4s, max 10s
                logger.info(f"Retrying in {delay}s...")
                await asyncio.sleep(delay)

        logger.error(f"Claude API failed after {attempts} attempts")
        raise APIError(
            f"Claude API failed after {attempts} attempts: {last_error}",
            retryable=True,
        )
