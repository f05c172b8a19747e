"""Handoff summaries passed from a retiring agent to its replacement.

The retiring agent is asked for a structured summary. When it does not
produce one, a fallback summary is assembled heuristically from its
recent terminal output.
"""

import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Sequence

logger = logging.getLogger(__name__)

SUMMARY_PROMPT = """\
CONTEXT ROTATION - HANDOFF SUMMARY REQUIRED

Your context window is approaching capacity. Please provide a brief handoff summary (max 500 words) that will be passed to a fresh agent to continue your work.

Include the following sections:

## CURRENT TASK
What task are you currently working on?

## PROGRESS
- What have you accomplished so far?
- What still needs to be done?

## KEY DECISIONS
List any important technical decisions or choices made.

## ACTIVE FILES
List the files you are currently modifying or have modified.

## BLOCKERS
Note any problems, blockers, or issues the next agent should be aware of.

Please format your response with the section headers above so it can be parsed."""

PROMPT_CLOSING_LINE = SUMMARY_PROMPT.rstrip().splitlines()[-1]

TRUNCATION_MARKER = "\n\n[Summary truncated due to token limit]"

SECTION_HEADERS = ("CURRENT TASK", "PROGRESS", "KEY DECISIONS", "ACTIVE FILES", "BLOCKERS")

FALLBACK_HEADER = "## FALLBACK SUMMARY (Agent did not respond to summary request)"

# Fallback limits
MAX_FALLBACK_CHUNKS = 5
MAX_CHUNK_CHARS = 500
MAX_TASK_CHARS = 200

FILE_EXTENSIONS = (
    ".go", ".py", ".js", ".ts", ".tsx", ".jsx", ".rs", ".rb", ".java", ".c", ".h", ".cpp",
    ".md", ".txt", ".json", ".yaml", ".yml", ".toml",
    ".html", ".css", ".scss", ".sh", ".bash",
    ".sql", ".proto", ".graphql",
)

_FILE_PATTERNS = [
    # file.ext
    re.compile(r"(?:^|\s)([\w./-]+\.[A-Za-z]{1,10})(?=\s|$|:|,)", re.M),
    # dir/sub/file.ext
    re.compile(r"(?:^|\s)((?:[\w-]+/)+[\w-]+\.[A-Za-z]{1,10})", re.M),
    # project-convention directories
    re.compile(r"(?:^|\s)((?:src|internal|cmd|pkg|lib|tests)/[\w./-]+)", re.M),
]

_VERSION_RE = re.compile(r"^v?\d+(?:\.\d+)+")

_TASK_PATTERNS = [
    re.compile(
        r"(?:working on|implementing|fixing|adding|creating|updating)\s+(.+?)(?:\.(?=\s|$)|$)",
        re.I | re.M,
    ),
    re.compile(r"(?:task|issue|feature|bug):\s*(.+?)$", re.I | re.M),
    re.compile(r"(?:TODO|DOING):\s*(.+?)$", re.I | re.M),
]

_BULLET_RE = re.compile(r"^(?:[-*•]|\d+[.)])\s+")


class SummarySource(str, Enum):
    AGENT = "agent"  # Parsed from the agent's own answer
    FALLBACK = "fallback"  # Heuristic extraction from terminal output
    CONDENSED = "condensed"  # Produced by the LLM condenser


@dataclass(frozen=True)
class HandoffSummary:
    """What a fresh agent needs to continue the previous agent's work."""

    old_agent_id: str
    old_agent_type: str = ""
    session: str = ""
    current_task: str = ""
    progress: str = ""
    key_decisions: tuple[str, ...] = ()
    active_files: tuple[str, ...] = ()
    blockers: tuple[str, ...] = ()
    raw_summary: str = ""
    token_estimate: int = 0
    source: SummarySource = SummarySource.AGENT
    generated_at: float = field(default_factory=time.time)

    @property
    def is_empty(self) -> bool:
        """True when no structured section was recovered."""
        return not (
            self.current_task
            or self.progress
            or self.key_decisions
            or self.active_files
            or self.blockers
        )

    def format_for_new_agent(self) -> str:
        """Render the handoff message injected into the replacement agent."""
        parts = [
            "## HANDOFF CONTEXT - CONTINUING FROM PREVIOUS AGENT\n\n",
            "A previous agent session was rotated due to context window limits. "
            "Here is the handoff summary to help you continue the work:\n\n",
        ]

        if self.current_task:
            parts.append(f"### Current Task\n{self.current_task}\n\n")
        if self.progress:
            parts.append(f"### Progress\n{self.progress}\n\n")
        for title, items in (
            ("Key Decisions Made", self.key_decisions),
            ("Active Files", self.active_files),
            ("Blockers/Issues", self.blockers),
        ):
            if items:
                parts.append(f"### {title}\n")
                parts.extend(f"- {item}\n" for item in items)
                parts.append("\n")

        if self.source == SummarySource.FALLBACK and self.raw_summary:
            parts.append(f"{self.raw_summary.rstrip()}\n\n")

        parts.append("---\n")
        parts.append("Please continue from where the previous agent left off.\n")
        return "".join(parts)

    def to_dict(self) -> dict:
        return {
            "generated_at": _isoformat(self.generated_at),
            "old_agent_id": self.old_agent_id,
            "old_agent_type": self.old_agent_type,
            "session": self.session,
            "current_task": self.current_task,
            "progress": self.progress,
            "key_decisions": list(self.key_decisions),
            "active_files": list(self.active_files),
            "blockers": list(self.blockers),
            "raw_summary": self.raw_summary,
            "token_estimate": self.token_estimate,
            "source": self.source.value,
        }


def _isoformat(ts: float) -> str:
    return datetime.fromtimestamp(ts, timezone.utc).isoformat(timespec="seconds")


def estimate_summary_tokens(text: str) -> int:
    """Rough token count: UTF-8 bytes / 4."""
    return len(text.encode("utf-8")) // 4


# Smallest cap the truncation marker fits in
MIN_SUMMARY_TOKENS = estimate_summary_tokens(TRUNCATION_MARKER)


def truncate_to_tokens(text: str, max_tokens: int) -> str:
    """Cut text so that it, marker included, fits in max_tokens.

    Prefers a sentence end or newline in the last quarter of the budget.
    Text already within budget is returned unchanged.

    Raises:
        ValueError: max_tokens is below MIN_SUMMARY_TOKENS.
    """
    if estimate_summary_tokens(text) <= max_tokens:
        return text
    if max_tokens < MIN_SUMMARY_TOKENS:
        raise ValueError(f"max_tokens must be at least {MIN_SUMMARY_TOKENS}, got {max_tokens}")

    budget = max_tokens * 4 - len(TRUNCATION_MARKER.encode("utf-8"))
    if budget <= 0:
        return TRUNCATION_MARKER

    # Slice on bytes so multi-byte text cannot overrun the budget
    cut = text.encode("utf-8")[:budget].decode("utf-8", errors="ignore")

    floor = len(cut) * 3 // 4
    sentence_end = max(cut.rfind("."), cut.rfind("!"), cut.rfind("?"))
    newline = cut.rfind("\n")
    if sentence_end > floor:
        cut = cut[: sentence_end + 1]
    elif newline > floor:
        cut = cut[: newline + 1]

    return cut + TRUNCATION_MARKER


def strip_prompt_echo(captured: str, closing_line: str = PROMPT_CLOSING_LINE) -> str:
    """Drop everything up to the last echo of the prompt's closing line.

    Captured pane output includes the prompt we typed; only what follows
    it is the agent's answer. Output without an echo is returned as-is.
    """
    idx = captured.rfind(closing_line)
    if idx == -1:
        return captured.strip()
    return captured[idx + len(closing_line):].strip()


_PROMPT_BLOCK_RE = re.compile(
    re.escape(SUMMARY_PROMPT.splitlines()[0]) + r".*?" + re.escape(PROMPT_CLOSING_LINE),
    re.S,
)


def remove_prompt_echo(captured: str) -> str:
    """Remove every echoed copy of the summary prompt from captured output."""
    return _PROMPT_BLOCK_RE.sub("", captured)


def split_output_chunks(text: str) -> list[str]:
    """Split terminal output into blank-line separated chunks."""
    return [chunk.strip() for chunk in re.split(r"\n[ \t]*\n", text) if chunk.strip()]


def _section_patterns(header: str) -> list[re.Pattern]:
    h = re.escape(header)
    others = "|".join(re.escape(x) for x in SECTION_HEADERS if x != header)
    flags = re.I | re.S
    return [
        re.compile(rf"##[ \t]*{h}[ \t]*:?[ \t]*\n(.*?)(?=\n##|\Z)", flags),
        re.compile(rf"\*\*{h}:?\*\*:?[ \t]*\n?(.*?)(?=\n\*\*|\n##|\Z)", flags),
        re.compile(
            rf"(?:^|\n)[ \t]*{h}(?::[ \t]*|[ \t]*\n)(.*?)"
            rf"(?=\n[ \t]*(?:#+[ \t]*|\*\*)?(?:{others})\**[ \t]*(?::|\n)|\Z)",
            flags,
        ),
    ]


def extract_section(response: str, header: str) -> str:
    """Body of a section, tried as ``## HEADER``, ``**HEADER**``, ``HEADER:``."""
    for pattern in _section_patterns(header):
        match = pattern.search(response)
        if match:
            body = match.group(1).strip()
            if body:
                return body
    return ""


def extract_list_section(response: str, header: str) -> tuple[str, ...]:
    section = extract_section(response, header)
    items = []
    for line in section.splitlines():
        line = _BULLET_RE.sub("", line.strip()).strip()
        if line:
            items.append(line)
    return tuple(items)


def is_likely_file_path(candidate: str) -> bool:
    if "://" in candidate or candidate.startswith("www."):
        return False
    if _VERSION_RE.match(candidate):
        return False
    if candidate.endswith(FILE_EXTENSIONS):
        return True
    return "/" in candidate


def extract_file_paths(text: str) -> list[str]:
    """File paths mentioned in text, in first-seen order."""
    seen = set()
    files = []
    for pattern in _FILE_PATTERNS:
        for match in pattern.finditer(text):
            path = match.group(1).strip().rstrip(".,:;)")
            if path and path not in seen and is_likely_file_path(path):
                seen.add(path)
                files.append(path)
    return files


def extract_last_task(text: str) -> str:
    """Most recent task phrase in text, capped at MAX_TASK_CHARS."""
    for pattern in _TASK_PATTERNS:
        matches = pattern.findall(text)
        if matches:
            task = matches[-1].strip()
            if len(task) > MAX_TASK_CHARS:
                task = task[:MAX_TASK_CHARS] + "..."
            return task
    return ""


class SummaryGenerator:
    """Builds handoff summaries within a token budget."""

    def __init__(self, max_tokens: int = 2000) -> None:
        self.max_tokens = max(max_tokens, MIN_SUMMARY_TOKENS) if max_tokens > 0 else 2000

    def generate_prompt(self) -> str:
        return SUMMARY_PROMPT

    def parse_agent_response(
        self,
        agent_id: str,
        agent_type: str,
        session: str,
        response: str,
        source: SummarySource = SummarySource.AGENT,
    ) -> HandoffSummary:
        """Parse a reply to the summary prompt into a HandoffSummary."""
        raw = response
        tokens = estimate_summary_tokens(raw)
        if tokens > self.max_tokens:
            raw = truncate_to_tokens(raw, self.max_tokens)
            tokens = estimate_summary_tokens(raw)
            logger.debug(f"Summary from {agent_id} truncated to {tokens} tokens")

        return HandoffSummary(
            old_agent_id=agent_id,
            old_agent_type=agent_type,
            session=session,
            current_task=extract_section(response, "CURRENT TASK"),
            progress=extract_section(response, "PROGRESS"),
            key_decisions=extract_list_section(response, "KEY DECISIONS"),
            active_files=extract_list_section(response, "ACTIVE FILES"),
            blockers=extract_list_section(response, "BLOCKERS"),
            raw_summary=raw,
            token_estimate=tokens,
            source=source,
        )

    def generate_fallback_summary(
        self,
        agent_id: str,
        agent_type: str,
        session: str,
        chunks: Sequence[str],
        now: Optional[float] = None,
    ) -> HandoffSummary:
        """Summarize from recent output when the agent gave no usable answer."""
        generated_at = now if now is not None else time.time()
        combined = "\n".join(chunks)
        active_files = tuple(extract_file_paths(combined))
        current_task = extract_last_task(combined)

        lines = [
            f"{FALLBACK_HEADER}\n",
            "### Context",
            f"- Agent: {agent_id} ({agent_type})",
            f"- Session: {session}",
            f"- Generated: {_isoformat(generated_at)}\n",
        ]
        if current_task:
            lines.append(f"### Last Detected Task\n{current_task}\n")
        if active_files:
            lines.append("### Detected Active Files")
            lines.extend(f"- {path}" for path in active_files)
            lines.append("")

        lines.append("### Recent Output (last messages)")
        for chunk in list(chunks)[-MAX_FALLBACK_CHUNKS:]:
            if len(chunk) > MAX_CHUNK_CHARS:
                chunk = chunk[:MAX_CHUNK_CHARS] + "..."
            lines.append(f"```\n{chunk}\n```\n")

        raw = "\n".join(lines)
        raw = truncate_to_tokens(raw, self.max_tokens)
        logger.info(
            f"Built fallback summary for {agent_id}: {len(active_files)} files, "
            f"task {'found' if current_task else 'not found'}"
        )

        return HandoffSummary(
            old_agent_id=agent_id,
            old_agent_type=agent_type,
            session=session,
            current_task=current_task,
            active_files=active_files,
            raw_summary=raw,
            token_estimate=estimate_summary_tokens(raw),
            source=SummarySource.FALLBACK,
            generated_at=generated_at,
        )
