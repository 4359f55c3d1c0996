"""Progress events emitted by an analysis pipeline run.

The set of event kinds is closed: every event is one of the models below,
discriminated by ``type``. Timestamps are epoch milliseconds.
"""

import json
import time
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from tender_engine.core.schemas_analysis import (
    AgentName,
    AnalysisResult,
    MarketIntelligence,
    ParsedDce,
    ReviewResult,
    WrittenSection,
)

SSE_DONE_FRAME = "data: [DONE]\n\n"


def now_ms() -> int:
    return int(time.time() * 1000)


class _Event(BaseModel):
    timestamp: int = Field(default_factory=now_ms)


class AgentStart(_Event):
    type: Literal["agent_start"] = "agent_start"
    agent: AgentName


class AgentDone(_Event):
    type: Literal["agent_done"] = "agent_done"
    agent: AgentName
    duration_ms: int


class AgentError(_Event):
    type: Literal["agent_error"] = "agent_error"
    agent: AgentName
    error: str


class ParserResult(_Event):
    type: Literal["parser_result"] = "parser_result"
    data: ParsedDce


class IntelligenceResult(_Event):
    type: Literal["intelligence_result"] = "intelligence_result"
    data: MarketIntelligence


class AnalysisResultEvent(_Event):
    type: Literal["analysis_result"] = "analysis_result"
    data: AnalysisResult


class SectionStream(_Event):
    type: Literal["section_stream"] = "section_stream"
    section_id: str
    text: str


class SectionDone(_Event):
    type: Literal["section_done"] = "section_done"
    section: WrittenSection


class SectionError(_Event):
    type: Literal["section_error"] = "section_error"
    section_id: str
    error: str


class ReviewResultEvent(_Event):
    type: Literal["review_result"] = "review_result"
    data: ReviewResult


class PipelineDone(_Event):
    type: Literal["pipeline_done"] = "pipeline_done"
    total_ms: int


class PipelineError(_Event):
    type: Literal["pipeline_error"] = "pipeline_error"
    error: str


PipelineEvent = Annotated[
    Union[
        AgentStart,
        AgentDone,
        AgentError,
        ParserResult,
        IntelligenceResult,
        AnalysisResultEvent,
        SectionStream,
        SectionDone,
        SectionError,
        ReviewResultEvent,
        PipelineDone,
        PipelineError,
    ],
    Field(discriminator="type"),
]


TERMINAL_EVENT_TYPES = frozenset({"pipeline_done", "pipeline_error"})


def is_terminal(event: _Event) -> bool:
    return getattr(event, "type", None) in TERMINAL_EVENT_TYPES


def to_sse_frame(event: _Event) -> str:
    """Frame one event as a Server-Sent Events ``data:`` line."""
    return f"data: {json.dumps(event.model_dump(mode='json'), ensure_ascii=False)}\n\n"
