"""Context usage estimation strategies.

Each strategy turns a ContextState snapshot into a ContextEstimate, or
returns None when it has no evidence to work with. Strategies never
mutate the state they are given.

Strategies (highest confidence first):
  robot_mode         0.95  machine-readable report emitted by the agent
  cumulative_tokens  0.70  recorded input+output tokens, discounted
  message_count      0.60  messages x average tokens per message
  duration_activity  0.30  session length x activity band
"""

import json
import logging
import re
import time
from abc import ABC, abstractmethod
from typing import Any, Optional

from .agent_state import ContextEstimate, ContextState, EstimationMethod

logger = logging.getLogger(__name__)

# Approximate context window sizes by model, in tokens
MODEL_CONTEXT_LIMITS: dict[str, int] = {
    # Claude
    "claude-sonnet-4": 200_000,
    "claude-opus-4": 200_000,
    "claude-opus-4.5": 200_000,
    "claude-sonnet-4-5": 200_000,
    "claude-opus-4-5": 200_000,
    "claude-haiku": 200_000,
    "claude-3-opus": 200_000,
    "claude-3-sonnet": 200_000,
    "claude-3-haiku": 200_000,
    "claude-3.5-sonnet": 200_000,
    "claude-3.5-haiku": 200_000,
    # OpenAI
    "gpt-4": 128_000,
    "gpt-4-turbo": 128_000,
    "gpt-4o": 128_000,
    "gpt-4o-mini": 128_000,
    "gpt-5": 256_000,
    "gpt-5-codex": 256_000,
    "o1": 128_000,
    "o1-mini": 128_000,
    "o1-preview": 128_000,
    "o3-mini": 200_000,
    # Google
    "gemini-2.0-flash": 1_000_000,
    "gemini-2.0-flash-lite": 1_000_000,
    "gemini-1.5-pro": 1_000_000,
    "gemini-1.5-flash": 1_000_000,
    "gemini-pro": 32_000,
}

DEFAULT_CONTEXT_LIMIT = 128_000

# Longest keys first so "gpt-4o-mini-x" resolves to gpt-4o-mini, not gpt-4
_PREFIX_ORDER = sorted(MODEL_CONTEXT_LIMITS, key=lambda k: (-len(k), k))

_DATE_SUFFIX = re.compile(r"-\d{8}$")

USED_FIELDS = ("context_used", "tokens_used", "used_tokens")
LIMIT_FIELDS = ("context_limit", "tokens_limit", "context_window")


def normalize_model_name(model: str) -> str:
    """Lowercase and strip a trailing -YYYYMMDD date suffix."""
    return _DATE_SUFFIX.sub("", model.strip().lower())


def get_context_limit(model: str) -> int:
    """Resolve a model name to its context window size.

    Exact match, then normalized match, then longest prefix match,
    then DEFAULT_CONTEXT_LIMIT.
    """
    if model in MODEL_CONTEXT_LIMITS:
        return MODEL_CONTEXT_LIMITS[model]

    normalized = normalize_model_name(model)
    if normalized in MODEL_CONTEXT_LIMITS:
        return MODEL_CONTEXT_LIMITS[normalized]

    if normalized:
        for key in _PREFIX_ORDER:
            if normalized.startswith(key):
                return MODEL_CONTEXT_LIMITS[key]

    return DEFAULT_CONTEXT_LIMIT


def estimate_tokens(chars: int) -> int:
    """Rough token count for a character count (~3.5 chars per token)."""
    return int(chars / 3.5)


def parse_token_count(value: Any) -> Optional[int]:
    """Parse token counts like 145000, "145,000", "145k" or "1.5M"."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if not isinstance(value, str):
        return None

    text = value.strip().replace(",", "").lower()
    multiplier = 1
    if text.endswith("k"):
        multiplier = 1_000
        text = text[:-1]
    elif text.endswith("m"):
        multiplier = 1_000_000
        text = text[:-1]

    try:
        return int(float(text) * multiplier)
    except ValueError:
        return None


def _load_report(output: str) -> Optional[dict]:
    """Find the JSON object in a report: whole text or last JSON line."""
    text = output.strip()
    if not text:
        return None
    try:
        data = json.loads(text)
        if isinstance(data, dict):
            return data
    except json.JSONDecodeError:
        pass

    for line in reversed(text.splitlines()):
        line = line.strip()
        if not (line.startswith("{") and line.endswith("}")):
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data
    return None


def _first_field(data: dict, names: tuple[str, ...]) -> Optional[int]:
    for name in names:
        if name in data:
            parsed = parse_token_count(data[name])
            if parsed is not None:
                return parsed
    return None


def parse_robot_mode_context(
    output: str,
    model: str = "",
    now: Optional[float] = None,
) -> Optional[ContextEstimate]:
    """Parse a direct context report such as
    {"context_used": 145000, "context_limit": 200000}.

    A missing limit falls back to the model's known limit. Returns None
    when there is no "used" value or the limit is zero.
    """
    data = _load_report(output)
    if data is None:
        return None

    used = _first_field(data, USED_FIELDS)
    if used is None:
        return None

    limit = _first_field(data, LIMIT_FIELDS)
    if limit is None:
        limit = get_context_limit(model)
    if limit <= 0:
        return None

    return ContextEstimate(
        tokens_used=used,
        context_limit=limit,
        confidence=DirectReportEstimator.CONFIDENCE,
        method=EstimationMethod.ROBOT_MODE,
        model=model,
        updated_at=now if now is not None else time.time(),
    )


class ContextEstimator(ABC):
    """A single estimation strategy."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Strategy name for logs."""

    @property
    @abstractmethod
    def confidence(self) -> float:
        """Base confidence of estimates produced by this strategy."""

    @abstractmethod
    def estimate(
        self, state: ContextState, now: Optional[float] = None
    ) -> Optional[ContextEstimate]:
        """Estimate usage for the given state, or None without evidence."""

    def _build(
        self, state: ContextState, tokens: int, method: EstimationMethod, now: Optional[float]
    ) -> ContextEstimate:
        return ContextEstimate(
            tokens_used=tokens,
            context_limit=get_context_limit(state.model),
            confidence=self.confidence,
            method=method,
            model=state.model,
            updated_at=now if now is not None else time.time(),
        )


class DirectReportEstimator(ContextEstimator):
    """Uses the last machine-readable report the agent emitted."""

    CONFIDENCE = 0.95

    def __init__(self, max_age: float = 30.0) -> None:
        self._max_age = max_age

    @property
    def max_age(self) -> float:
        return self._max_age

    @property
    def name(self) -> str:
        return EstimationMethod.ROBOT_MODE.value

    @property
    def confidence(self) -> float:
        return self.CONFIDENCE

    def estimate(
        self, state: ContextState, now: Optional[float] = None
    ) -> Optional[ContextEstimate]:
        if not state.last_report or state.last_report_at is None:
            return None
        now = now if now is not None else time.time()
        if now - state.last_report_at > self._max_age:
            return None
        return parse_robot_mode_context(
            state.last_report, model=state.model, now=state.last_report_at
        )


class CumulativeTokenEstimator(ContextEstimator):
    """Sums recorded tokens and discounts for vendor-side compaction."""

    DEFAULT_DISCOUNT = 0.7

    def __init__(self, compaction_discount: float = DEFAULT_DISCOUNT) -> None:
        if compaction_discount <= 0 or compaction_discount > 1:
            compaction_discount = self.DEFAULT_DISCOUNT
        self._discount = compaction_discount

    @property
    def name(self) -> str:
        return EstimationMethod.CUMULATIVE_TOKENS.value

    @property
    def confidence(self) -> float:
        return 0.70

    def estimate(
        self, state: ContextState, now: Optional[float] = None
    ) -> Optional[ContextEstimate]:
        total = state.total_tokens
        if total <= 0:
            return None
        tokens = int(total * self._discount)
        return self._build(state, tokens, EstimationMethod.CUMULATIVE_TOKENS, now)


class MessageCountEstimator(ContextEstimator):
    """Messages times an average per-message token cost."""

    def __init__(self, tokens_per_message: int = 1500) -> None:
        self._tokens_per_message = tokens_per_message if tokens_per_message > 0 else 1500

    @property
    def name(self) -> str:
        return EstimationMethod.MESSAGE_COUNT.value

    @property
    def confidence(self) -> float:
        return 0.60

    def estimate(
        self, state: ContextState, now: Optional[float] = None
    ) -> Optional[ContextEstimate]:
        if state.message_count <= 0:
            return None
        tokens = state.message_count * self._tokens_per_message
        return self._build(state, tokens, EstimationMethod.MESSAGE_COUNT, now)


class DurationActivityEstimator(ContextEstimator):
    """Infers usage from session length and message rate.

    Activity bands by messages per minute:
      > 2    high
      > 0.5  medium
      else   low
    """

    MIN_SESSION_SECONDS = 60.0

    def __init__(
        self,
        tokens_per_minute_high: int = 1000,
        tokens_per_minute_medium: int = 550,
        tokens_per_minute_low: int = 100,
    ) -> None:
        self._tpm_high = tokens_per_minute_high
        self._tpm_medium = tokens_per_minute_medium
        self._tpm_low = tokens_per_minute_low

    @property
    def name(self) -> str:
        return EstimationMethod.DURATION_ACTIVITY.value

    @property
    def confidence(self) -> float:
        return 0.30

    def tokens_per_minute(self, messages_per_minute: float) -> int:
        if messages_per_minute > 2:
            return self._tpm_high
        if messages_per_minute > 0.5:
            return self._tpm_medium
        return self._tpm_low

    def estimate(
        self, state: ContextState, now: Optional[float] = None
    ) -> Optional[ContextEstimate]:
        age = state.session_age(now)
        if age < self.MIN_SESSION_SECONDS:
            return None
        minutes = age / 60.0
        rate = state.message_count / minutes
        tokens = int(minutes * self.tokens_per_minute(rate))
        return self._build(state, tokens, EstimationMethod.DURATION_ACTIVITY, now)


def default_estimators(
    tokens_per_message: int = 1500,
    compaction_discount: float = 0.7,
    tokens_per_minute_high: int = 1000,
    tokens_per_minute_medium: int = 550,
    tokens_per_minute_low: int = 100,
    direct_report_max_age: float = 30.0,
) -> list[ContextEstimator]:
    """The standard strategy set, highest confidence first."""
    return [
        DirectReportEstimator(max_age=direct_report_max_age),
        CumulativeTokenEstimator(compaction_discount=compaction_discount),
        MessageCountEstimator(tokens_per_message=tokens_per_message),
        DurationActivityEstimator(
            tokens_per_minute_high=tokens_per_minute_high,
            tokens_per_minute_medium=tokens_per_minute_medium,
            tokens_per_minute_low=tokens_per_minute_low,
        ),
    ]
