"""Context window monitoring, compaction and handoff summaries.

The rotator lives in ``baton.context.rotation`` and is imported from
there directly; it depends on the pane layer, which depends on this
package.
"""

from .agent_state import ContextEstimate, ContextState, EstimationMethod
from .compactor import (
    CompactionCommand,
    CompactionError,
    CompactionMethod,
    CompactionResult,
    Compactor,
    get_agent_capabilities,
)
from .estimators import (
    ContextEstimator,
    CumulativeTokenEstimator,
    DirectReportEstimator,
    DurationActivityEstimator,
    MessageCountEstimator,
    default_estimators,
    get_context_limit,
)
from .monitor import AgentContextInfo, ContextMonitor
from .summary import HandoffSummary, SummaryGenerator, SummarySource

__all__ = [
    "AgentContextInfo",
    "CompactionCommand",
    "CompactionError",
    "CompactionMethod",
    "CompactionResult",
    "Compactor",
    "ContextEstimate",
    "ContextEstimator",
    "ContextMonitor",
    "ContextState",
    "CumulativeTokenEstimator",
    "DirectReportEstimator",
    "DurationActivityEstimator",
    "EstimationMethod",
    "HandoffSummary",
    "MessageCountEstimator",
    "SummaryGenerator",
    "SummarySource",
    "default_estimators",
    "get_context_limit",
]
