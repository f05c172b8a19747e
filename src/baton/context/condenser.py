"""LLM-backed handoff summaries for agents that did not write their own."""

import logging
from typing import Optional

from ..llm.claude import APIError, ClaudeClient
from .estimators import estimate_tokens
from .summary import HandoffSummary, SummaryGenerator, SummarySource

logger = logging.getLogger(__name__)

CONDENSE_PROMPT = """\
The coding agent "{agent_id}" ({agent_type}) is being replaced because its context window is full.
It did not answer a request for a handoff summary, so write one from its recent terminal output.

Use exactly these section headers:

## CURRENT TASK
## PROGRESS
## KEY DECISIONS
## ACTIVE FILES
## BLOCKERS

List sections use one "- " bullet per item. Leave a section empty if the transcript says nothing about it.
Keep the whole summary under 400 words.

Terminal output:
{output}
"""

# Keep the tail of long transcripts; recent output matters most
MAX_TRANSCRIPT_CHARS = 24_000


class HandoffCondenser:
    """Asks Claude to turn raw pane output into a structured handoff summary."""

    def __init__(self, client: ClaudeClient, generator: SummaryGenerator) -> None:
        self._client = client
        self._generator = generator

    async def condense(
        self, agent_id: str, agent_type: str, session: str, output: str
    ) -> Optional[HandoffSummary]:
        """Condensed summary, or None when the call fails or yields nothing usable."""
        transcript = output.strip()
        if not transcript:
            return None
        if len(transcript) > MAX_TRANSCRIPT_CHARS:
            transcript = transcript[-MAX_TRANSCRIPT_CHARS:]
        logger.debug(f"Condensing {agent_id} output (~{estimate_tokens(len(transcript))} tokens)")

        prompt = CONDENSE_PROMPT.format(
            agent_id=agent_id, agent_type=agent_type, output=transcript
        )
        try:
            reply = await self._client.complete(prompt)
        except APIError as e:
            logger.warning(f"Condenser call for {agent_id} failed: {e}")
            return None

        summary = self._generator.parse_agent_response(
            agent_id, agent_type, session, reply, source=SummarySource.CONDENSED
        )
        if summary.is_empty:
            logger.warning(f"Condenser reply for {agent_id} had no recognizable sections")
            return None

        logger.info(f"Condensed handoff summary for {agent_id} ({summary.token_estimate} tokens)")
        return summary
