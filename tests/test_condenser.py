"""Tests for the LLM handoff condenser and its Claude client."""

import logging
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from baton.context.condenser import MAX_TRANSCRIPT_CHARS, HandoffCondenser
from baton.context.summary import SummaryGenerator, SummarySource
from baton.llm.claude import APIError, ClaudeClient


CONDENSED_REPLY = """\
## CURRENT TASK
Porting the scheduler to asyncio

## ACTIVE FILES
- sched/core.py
"""


# ---------------------------------------------------------------------------
# HandoffCondenser
# ---------------------------------------------------------------------------

class TestHandoffCondenser:
    @pytest.mark.asyncio
    async def test_condense(self):
        client = MagicMock()
        client.complete = AsyncMock(return_value=CONDENSED_REPLY)
        condenser = HandoffCondenser(client, SummaryGenerator())

        summary = await condenser.condense("proj__cc_1", "claude", "proj", "lots of output")

        assert summary.source == SummarySource.CONDENSED
        assert summary.current_task == "Porting the scheduler to asyncio"
        assert summary.active_files == ("sched/core.py",)
        prompt = client.complete.await_args.args[0]
        assert '"proj__cc_1" (claude)' in prompt
        assert prompt.rstrip().endswith("lots of output")

    @pytest.mark.asyncio
    async def test_empty_output_skips_call(self):
        client = MagicMock()
        client.complete = AsyncMock()
        condenser = HandoffCondenser(client, SummaryGenerator())

        assert await condenser.condense("a", "claude", "s", "  \n") is None
        client.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_long_transcript_keeps_tail(self):
        client = MagicMock()
        client.complete = AsyncMock(return_value=CONDENSED_REPLY)
        condenser = HandoffCondenser(client, SummaryGenerator())

        output = "A" * MAX_TRANSCRIPT_CHARS + "TAIL"
        await condenser.condense("a", "claude", "s", output)

        prompt = client.complete.await_args.args[0]
        assert "TAIL" in prompt
        assert "A" * (MAX_TRANSCRIPT_CHARS + 1) not in prompt

    @pytest.mark.asyncio
    async def test_logs_transcript_size(self, caplog):
        client = MagicMock()
        client.complete = AsyncMock(return_value=CONDENSED_REPLY)
        condenser = HandoffCondenser(client, SummaryGenerator())

        with caplog.at_level(logging.DEBUG, logger="baton.context.condenser"):
            await condenser.condense("proj__cc_1", "claude", "s", "x" * 700)

        assert any("~200 tokens" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_api_error(self):
        client = MagicMock()
        client.complete = AsyncMock(side_effect=APIError("overloaded", retryable=True))
        condenser = HandoffCondenser(client, SummaryGenerator())
        assert await condenser.condense("a", "claude", "s", "output") is None

    @pytest.mark.asyncio
    async def test_unstructured_reply(self):
        client = MagicMock()
        client.complete = AsyncMock(return_value="I can't help with that.")
        condenser = HandoffCondenser(client, SummaryGenerator())
        assert await condenser.condense("a", "claude", "s", "output") is None


# ---------------------------------------------------------------------------
# ClaudeClient
# ---------------------------------------------------------------------------

def make_message(text: str) -> MagicMock:
    message = MagicMock()
    message.content = [MagicMock(text=text)]
    return message


class TestClaudeClient:
    def test_requires_api_key(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        with pytest.raises(ValueError, match="ANTHROPIC_API_KEY"):
            ClaudeClient()

    @pytest.mark.asyncio
    async def test_complete_uses_system_prompt(self):
        with patch("anthropic.AsyncAnthropic") as MockAnthropic:
            mock_client = AsyncMock()
            mock_client.messages.create = AsyncMock(return_value=make_message("summary"))
            MockAnthropic.return_value = mock_client

            client = ClaudeClient(api_key="test-key", model="claude-haiku-4-5")
            assert await client.complete("condense this") == "summary"

            call_kwargs = mock_client.messages.create.call_args.kwargs
            assert call_kwargs["system"] == ClaudeClient.SYSTEM_PROMPT
            assert call_kwargs["model"] == "claude-haiku-4-5"
            assert call_kwargs["messages"] == [{"role": "user", "content": "condense this"}]

    @pytest.mark.asyncio
    async def test_empty_prompt(self):
        with patch("anthropic.AsyncAnthropic") as MockAnthropic:
            mock_client = AsyncMock()
            MockAnthropic.return_value = mock_client

            client = ClaudeClient(api_key="test-key")
            assert await client.complete("   ") == ""
            mock_client.messages.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_retries_then_gives_up(self):
        from anthropic import APIConnectionError

        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        with patch("anthropic.AsyncAnthropic") as MockAnthropic, patch(
            "baton.llm.claude.asyncio.sleep", new_callable=AsyncMock
        ) as sleep:
            mock_client = AsyncMock()
            mock_client.messages.create = AsyncMock(side_effect=APIConnectionError(request=request))
            MockAnthropic.return_value = mock_client

            client = ClaudeClient(api_key="test-key", max_retries=2)
            with pytest.raises(APIError) as exc_info:
                await client.complete("hello")

        assert exc_info.value.retryable
        assert mock_client.messages.create.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1, 2]

    @pytest.mark.asyncio
    async def test_non_retryable_status(self):
        from anthropic import APIStatusError

        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        response = httpx.Response(400, request=request)
        error = APIStatusError("bad request", response=response, body=None)

        with patch("anthropic.AsyncAnthropic") as MockAnthropic:
            mock_client = AsyncMock()
            mock_client.messages.create = AsyncMock(side_effect=error)
            MockAnthropic.return_value = mock_client

            client = ClaudeClient(api_key="test-key")
            with pytest.raises(APIError) as exc_info:
                await client.complete("hello")

        assert not exc_info.value.retryable
        assert mock_client.messages.create.await_count == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_is_wrapped(self):
        with patch("anthropic.AsyncAnthropic") as MockAnthropic:
            mock_client = AsyncMock()
            mock_client.messages.create = AsyncMock(side_effect=ValueError("bad response shape"))
            MockAnthropic.return_value = mock_client

            client = ClaudeClient(api_key="test-key", max_retries=2)
            with pytest.raises(APIError, match="bad response shape") as exc_info:
                await client.complete("hello")

        assert not exc_info.value.retryable
        assert mock_client.messages.create.await_count == 1
