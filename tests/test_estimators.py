"""Tests for context estimation strategies."""

import pytest

from baton.context.agent_state import ContextEstimate, ContextState, EstimationMethod
from baton.context.estimators import (
    DEFAULT_CONTEXT_LIMIT,
    CumulativeTokenEstimator,
    DirectReportEstimator,
    DurationActivityEstimator,
    MessageCountEstimator,
    default_estimators,
    estimate_tokens,
    get_context_limit,
    normalize_model_name,
    parse_robot_mode_context,
    parse_token_count,
)


def make_state(**kwargs) -> ContextState:
    defaults = dict(agent_id="proj__cc_1", pane_id="%1", model="claude-sonnet-4", session_start=0.0)
    defaults.update(kwargs)
    return ContextState(**defaults)


# ---------------------------------------------------------------------------
# Model limits
# ---------------------------------------------------------------------------

class TestContextLimits:
    def test_exact_match(self):
        assert get_context_limit("claude-sonnet-4") == 200_000
        assert get_context_limit("gemini-pro") == 32_000

    def test_date_suffix_is_stripped(self):
        assert normalize_model_name("Claude-Sonnet-4-20250514") == "claude-sonnet-4"
        assert get_context_limit("claude-sonnet-4-20250514") == 200_000

    def test_case_insensitive(self):
        assert get_context_limit("GPT-5-Codex") == 256_000

    def test_longest_prefix_wins(self):
        assert get_context_limit("gemini-pro-vision") == 32_000
        assert get_context_limit("gemini-2.0-flash-exp") == 1_000_000
        assert get_context_limit("o3-mini-high") == 200_000

    def test_unknown_model_uses_default(self):
        assert get_context_limit("mystery-model") == DEFAULT_CONTEXT_LIMIT
        assert get_context_limit("") == DEFAULT_CONTEXT_LIMIT

    def test_estimate_tokens(self):
        assert estimate_tokens(350) == 100
        assert estimate_tokens(0) == 0


class TestParseTokenCount:
    @pytest.mark.parametrize(
        "value,expected",
        [
            (145000, 145000),
            (1500.7, 1500),
            ("145000", 145000),
            ("145,000", 145000),
            ("145k", 145000),
            ("1.5M", 1_500_000),
            (" 20K ", 20000),
        ],
    )
    def test_valid(self, value, expected):
        assert parse_token_count(value) == expected

    @pytest.mark.parametrize("value", [None, True, "lots", "", [1]])
    def test_invalid(self, value):
        assert parse_token_count(value) is None


# ---------------------------------------------------------------------------
# Direct reports
# ---------------------------------------------------------------------------

class TestParseRobotModeContext:
    def test_basic_report(self):
        est = parse_robot_mode_context(
            '{"context_used": 145000, "context_limit": 200000}', now=100.0
        )
        assert est is not None
        assert est.tokens_used == 145000
        assert est.context_limit == 200000
        assert est.usage_percent == pytest.approx(72.5)
        assert est.confidence == 0.95
        assert est.method == EstimationMethod.ROBOT_MODE
        assert est.updated_at == 100.0

    def test_field_aliases_and_suffixes(self):
        est = parse_robot_mode_context('{"tokens_used": "50k", "context_window": "100k"}')
        assert est.tokens_used == 50000
        assert est.context_limit == 100000
        assert est.usage_percent == pytest.approx(50.0)

    def test_missing_limit_uses_model_limit(self):
        est = parse_robot_mode_context('{"context_used": 64000}', model="gpt-4o")
        assert est.context_limit == 128_000
        assert est.model == "gpt-4o"

    def test_report_on_last_json_line(self):
        output = 'Working on it...\n{"not": "this"}\ndone\n{"used_tokens": 1000}\n'
        est = parse_robot_mode_context(output, model="claude-sonnet-4")
        assert est.tokens_used == 1000
        assert est.context_limit == 200_000

    def test_zero_limit_is_absent(self):
        assert parse_robot_mode_context('{"context_used": 5, "context_limit": 0}') is None

    @pytest.mark.parametrize(
        "output",
        ["", "   ", "no json here", "{broken", '{"context_limit": 200000}', "[1, 2]"],
    )
    def test_no_report(self, output):
        assert parse_robot_mode_context(output) is None


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

class TestDirectReportEstimator:
    def test_fresh_report(self):
        state = make_state(
            last_report='{"context_used": 150000, "context_limit": 200000}',
            last_report_at=1000.0,
        )
        est = DirectReportEstimator().estimate(state, now=1010.0)
        assert est.tokens_used == 150000
        assert est.updated_at == 1000.0
        assert est.confidence == 0.95

    def test_stale_report(self):
        state = make_state(last_report='{"context_used": 150000}', last_report_at=1000.0)
        assert DirectReportEstimator(max_age=30).estimate(state, now=1031.0) is None

    def test_no_report(self):
        assert DirectReportEstimator().estimate(make_state(), now=10.0) is None


class TestCumulativeTokenEstimator:
    def test_discounted_total(self):
        state = make_state(input_tokens=10000, output_tokens=10000)
        est = CumulativeTokenEstimator().estimate(state, now=5.0)
        assert est.tokens_used == 14000
        assert est.context_limit == 200_000
        assert est.confidence == 0.70
        assert est.method == EstimationMethod.CUMULATIVE_TOKENS

    def test_custom_discount(self):
        state = make_state(input_tokens=1000)
        assert CumulativeTokenEstimator(compaction_discount=0.5).estimate(state).tokens_used == 500

    def test_invalid_discount_falls_back(self):
        state = make_state(input_tokens=1000)
        assert CumulativeTokenEstimator(compaction_discount=1.5).estimate(state).tokens_used == 700

    def test_no_tokens(self):
        assert CumulativeTokenEstimator().estimate(make_state(message_count=3)) is None


class TestMessageCountEstimator:
    def test_messages_times_average(self):
        est = MessageCountEstimator().estimate(make_state(message_count=10))
        assert est.tokens_used == 15000
        assert est.confidence == 0.60
        assert est.method == EstimationMethod.MESSAGE_COUNT

    def test_custom_average(self):
        assert MessageCountEstimator(2000).estimate(make_state(message_count=3)).tokens_used == 6000

    def test_no_messages(self):
        assert MessageCountEstimator().estimate(make_state()) is None


class TestDurationActivityEstimator:
    def test_too_young(self):
        assert DurationActivityEstimator().estimate(make_state(), now=30.0) is None

    def test_high_activity(self):
        # 30 messages over 10 minutes -> 3/min
        est = DurationActivityEstimator().estimate(make_state(message_count=30), now=600.0)
        assert est.tokens_used == 10000
        assert est.confidence == 0.30
        assert est.method == EstimationMethod.DURATION_ACTIVITY

    def test_medium_activity(self):
        est = DurationActivityEstimator().estimate(make_state(message_count=10), now=600.0)
        assert est.tokens_used == 5500

    def test_low_activity(self):
        est = DurationActivityEstimator().estimate(make_state(), now=600.0)
        assert est.tokens_used == 1000

    def test_band_boundaries(self):
        estimator = DurationActivityEstimator()
        assert estimator.tokens_per_minute(2.0) == 550
        assert estimator.tokens_per_minute(2.01) == 1000
        assert estimator.tokens_per_minute(0.5) == 100


class TestDefaultEstimators:
    def test_order_and_names(self):
        names = [e.name for e in default_estimators()]
        assert names == ["robot_mode", "cumulative_tokens", "message_count", "duration_activity"]

    def test_confidences_descending(self):
        confidences = [e.confidence for e in default_estimators()]
        assert confidences == sorted(confidences, reverse=True)

    def test_tuning_is_passed_through(self):
        estimators = default_estimators(tokens_per_message=100)
        est = estimators[2].estimate(make_state(message_count=4))
        assert est.tokens_used == 400


class TestContextEstimate:
    def test_usage_percent_zero_limit(self):
        est = ContextEstimate(
            tokens_used=10, context_limit=0, confidence=0.5, method=EstimationMethod.MESSAGE_COUNT
        )
        assert est.usage_percent == 0.0

    def test_to_dict(self):
        est = ContextEstimate(
            tokens_used=1500,
            context_limit=2000,
            confidence=0.6,
            method=EstimationMethod.MESSAGE_COUNT,
            model="m",
            updated_at=1.0,
        )
        d = est.to_dict()
        assert d["usage_percent"] == 75.0
        assert d["method"] == "message_count"
        assert est.age(now=11.0) == 10.0
