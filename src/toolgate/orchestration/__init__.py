"""
Toolgate Orchestration

One user turn, stage by stage:
    ContextBroker -> Router -> ToolSelector -> ToolRunner
        -> OutcomeSummarizer -> FinalComposer

sequenced by ToolAwarePipeline into a stream of PipelineEvents.
"""

from toolgate.orchestration.composer import FinalComposer, render_summary
from toolgate.orchestration.context import ContextBroker, ConversationStore
from toolgate.orchestration.pipeline import (
    TRANSITIONS,
    PipelineState,
    ToolAwarePipeline,
    can_transition,
)
from toolgate.orchestration.router import Router
from toolgate.orchestration.runner import ToolRunner
from toolgate.orchestration.selector import PermissionGate, ToolSelector
from toolgate.orchestration.summarizer import OutcomeSummarizer, fallback_summary

__all__ = [
    "ContextBroker",
    "ConversationStore",
    "FinalComposer",
    "OutcomeSummarizer",
    "PermissionGate",
    "PipelineState",
    "Router",
    "TRANSITIONS",
    "ToolAwarePipeline",
    "ToolRunner",
    "ToolSelector",
    "can_transition",
    "fallback_summary",
    "render_summary",
]
