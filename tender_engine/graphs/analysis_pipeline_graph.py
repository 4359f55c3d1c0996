"""Analysis Pipeline Graph.

6-node LangGraph StateGraph over one interactive run:
1. parser: structural extraction of the document (fatal on failure)
2. intelligence: buyer / sector market context (degrades to empty context)
3. analyst: go / maybe / pass assessment (degradable)
4. writer: proposal sections, streamed one at a time
5. reviewer: completeness review of the drafted sections
6. finish: terminal event (pipeline_done or pipeline_error)

Every stage publishes ``agent_start -> ... -> agent_done | agent_error`` on the
run's event bus. The cancellation token is checked before each stage and
before each event; once it fires no further work is scheduled and no
``pipeline_done`` is sent.
"""

import time
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, Literal
from uuid import uuid4

from langchain_core.runnables import RunnableConfig
from langgraph.graph import END, StateGraph

from tender_engine.agents.analyst_agent import run_analyst
from tender_engine.agents.intelligence_agent import run_intelligence
from tender_engine.agents.parser_agent import run_parser
from tender_engine.agents.reviewer_agent import run_reviewer
from tender_engine.agents.writer_agent import plan_sections, stream_section
from tender_engine.core.cancellation import CancellationToken
from tender_engine.core.cascade import (
    ProviderCascade,
    get_pipeline_cascade,
    get_writer_cascade,
)
from tender_engine.core.config import get_settings
from tender_engine.core.errors import OperationCancelled
from tender_engine.core.event_bus import EventBus, EventOrderError
from tender_engine.core.events import (
    AgentDone,
    AgentError,
    AgentStart,
    AnalysisResultEvent,
    IntelligenceResult,
    ParserResult,
    PipelineDone,
    PipelineError,
    ReviewResultEvent,
    SectionDone,
    SectionError,
    SectionStream,
)
from tender_engine.core.logging import get_logger
from tender_engine.core.schemas_analysis import (
    AGENT_ORDER,
    AgentName,
    AnalysisOptions,
    AnalysisResult,
    CompanyProfileInput,
    MarketIntelligence,
    ParsedDce,
    ReviewResult,
    WrittenSection,
)

logger = get_logger(__name__)

MAX_STEPS = 8

AgentStatus = Literal["pending", "running", "done", "error"]


class WriterFailed(RuntimeError):
    """Every planned section failed."""


@dataclass
class AgentState:
    status: AgentStatus = "pending"
    duration_ms: int | None = None
    error: str | None = None


@dataclass
class PipelineRun:
    """In-memory record of one interactive analysis, discarded with the response."""

    # Input
    text: str
    profile: CompanyProfileInput
    options: AnalysisOptions = field(default_factory=AnalysisOptions)
    filename: str | None = None
    page_count: int = 0
    pdf_size_bytes: int = 0

    # Context
    run_id: str = field(default_factory=lambda: str(uuid4()))
    user_email: str | None = None
    plan: str | None = None
    token: CancellationToken = field(default_factory=CancellationToken)

    # Per-agent state
    agents: dict[str, AgentState] = field(
        default_factory=lambda: {agent: AgentState() for agent in AGENT_ORDER}
    )

    # Outputs
    parsed: ParsedDce | None = None
    intelligence: MarketIntelligence | None = None
    analysis: AnalysisResult | None = None
    sections: dict[str, WrittenSection] = field(default_factory=dict)
    section_errors: dict[str, str] = field(default_factory=dict)
    review: ReviewResult | None = None

    started_at: float = field(default_factory=time.perf_counter)

    @property
    def elapsed_ms(self) -> int:
        return int((time.perf_counter() - self.started_at) * 1000)


@dataclass
class PipelineDeps:
    """Per-run collaborators, passed to the nodes through the graph config."""

    bus: EventBus
    cascade: ProviderCascade
    writer_cascade: ProviderCascade


@dataclass
class AnalysisGraphState:
    """State for the analysis pipeline graph."""

    run: PipelineRun | None = None
    step_count: int = 0
    halted: bool = False


# =============================================================================
# Stage helpers
# =============================================================================


def _deps(config: RunnableConfig) -> PipelineDeps:
    return config["configurable"]["deps"]


def _check_max_steps(state: AnalysisGraphState) -> int:
    step_count = state.step_count + 1
    if step_count > MAX_STEPS:
        raise RuntimeError(f"Exceeded max steps ({MAX_STEPS})")
    return step_count


async def _emit(run: PipelineRun, bus: EventBus, event: Any) -> None:
    run.token.raise_if_cancelled()
    await bus.publish(event)


async def _run_stage(run: PipelineRun, bus: EventBus, agent: AgentName, work) -> tuple[Any, bool]:
    """
    Run one stage with its start / done / error events.

    Returns:
        (result, True) on success, (None, False) when the stage failed
    """
    run.token.raise_if_cancelled()
    state = run.agents[agent]
    state.status = "running"
    start = time.perf_counter()
    await _emit(run, bus, AgentStart(agent=agent))

    try:
        result = await work()
    except (OperationCancelled, EventOrderError):
        raise
    except Exception as e:
        state.status = "error"
        state.error = str(e) or e.__class__.__name__
        state.duration_ms = int((time.perf_counter() - start) * 1000)
        logger.warning(
            f"Stage {agent} failed after {state.duration_ms}ms: {state.error}",
            extra={"run_id": run.run_id, "agent": agent},
        )
        await _emit(run, bus, AgentError(agent=agent, error=state.error))
        return None, False

    state.status = "done"
    state.duration_ms = int((time.perf_counter() - start) * 1000)
    logger.info(
        f"Stage {agent} done in {state.duration_ms}ms",
        extra={"run_id": run.run_id, "agent": agent},
    )
    await _emit(run, bus, AgentDone(agent=agent, duration_ms=state.duration_ms))
    return result, True


# =============================================================================
# Nodes
# =============================================================================


async def parser_node(state: AnalysisGraphState, config: RunnableConfig) -> dict[str, Any]:
    step_count = _check_max_steps(state)
    run, deps = state.run, _deps(config)
    max_chars = get_settings().MAX_PARSER_CHARS

    parsed, ok = await _run_stage(
        run, deps.bus, "parser",
        lambda: run_parser(run.text, deps.cascade, run.token, max_chars),
    )
    if ok:
        run.parsed = parsed
        await _emit(run, deps.bus, ParserResult(data=parsed))
    return {"step_count": step_count, "halted": not ok}


async def intelligence_node(state: AnalysisGraphState, config: RunnableConfig) -> dict[str, Any]:
    step_count = _check_max_steps(state)
    run, deps = state.run, _deps(config)

    intel, ok = await _run_stage(
        run, deps.bus, "intelligence", lambda: run_intelligence(run.parsed, run.token)
    )
    if ok:
        run.intelligence = intel
        await _emit(run, deps.bus, IntelligenceResult(data=intel))
    return {"step_count": step_count}


async def analyst_node(state: AnalysisGraphState, config: RunnableConfig) -> dict[str, Any]:
    step_count = _check_max_steps(state)
    run, deps = state.run, _deps(config)
    intel = run.intelligence or MarketIntelligence.empty()

    analysis, ok = await _run_stage(
        run, deps.bus, "analyst",
        lambda: run_analyst(run.parsed, intel, run.profile, deps.cascade, run.token),
    )
    if ok:
        run.analysis = analysis
        await _emit(run, deps.bus, AnalysisResultEvent(data=analysis))
    return {"step_count": step_count}


async def _write_sections(run: PipelineRun, deps: PipelineDeps) -> list[WrittenSection]:
    plan = plan_sections(run.parsed, run.options)
    log_extra = {"run_id": run.run_id, "agent": "writer"}

    for section in plan:
        run.token.raise_if_cancelled()
        chunks: list[str] = []
        error: str | None = None

        try:
            async with aclosing(
                stream_section(
                    section, run.parsed, run.profile, run.options,
                    deps.writer_cascade, run.analysis, run.token,
                )
            ) as fragments:
                async for fragment in fragments:
                    chunks.append(fragment)
                    await _emit(run, deps.bus, SectionStream(section_id=section.id, text=fragment))
        except (OperationCancelled, EventOrderError):
            raise
        except Exception as e:
            error = str(e) or e.__class__.__name__

        content = "".join(chunks)
        if error is None and not content.strip():
            error = "Empty section"

        if error is not None:
            run.section_errors[section.id] = error
            logger.warning(f"Section {section.id} failed: {error}", extra={**log_extra, "section_id": section.id})
            await _emit(run, deps.bus, SectionError(section_id=section.id, error=error))
            continue

        written = WrittenSection.from_content(section.id, section.title, content)
        run.sections[section.id] = written
        await _emit(run, deps.bus, SectionDone(section=written))

    if plan and not run.sections:
        raise WriterFailed(f"All {len(plan)} sections failed")
    return list(run.sections.values())


async def writer_node(state: AnalysisGraphState, config: RunnableConfig) -> dict[str, Any]:
    step_count = _check_max_steps(state)
    run, deps = state.run, _deps(config)

    await _run_stage(run, deps.bus, "writer", lambda: _write_sections(run, deps))
    return {"step_count": step_count}


async def reviewer_node(state: AnalysisGraphState, config: RunnableConfig) -> dict[str, Any]:
    step_count = _check_max_steps(state)
    run, deps = state.run, _deps(config)

    review, ok = await _run_stage(
        run, deps.bus, "reviewer",
        lambda: run_reviewer(run.parsed, list(run.sections.values()), deps.cascade, run.token),
    )
    if ok:
        run.review = review
        await _emit(run, deps.bus, ReviewResultEvent(data=review))
    return {"step_count": step_count}


async def finish_node(state: AnalysisGraphState, config: RunnableConfig) -> dict[str, Any]:
    step_count = _check_max_steps(state)
    run, deps = state.run, _deps(config)

    if state.halted:
        error = run.agents["parser"].error or "Document parsing failed"
        await _emit(run, deps.bus, PipelineError(error=error))
    else:
        await _emit(run, deps.bus, PipelineDone(total_ms=run.elapsed_ms))
    return {"step_count": step_count}


def should_continue_after_parser(state: AnalysisGraphState) -> str:
    """Parser failure short-circuits to the terminal error."""
    if state.halted:
        return "finish"
    return "intelligence"


def build_analysis_pipeline_graph() -> StateGraph:
    """Build the analysis pipeline graph."""
    graph = StateGraph(AnalysisGraphState)

    graph.add_node("parser", parser_node)
    graph.add_node("intelligence", intelligence_node)
    graph.add_node("analyst", analyst_node)
    graph.add_node("writer", writer_node)
    graph.add_node("reviewer", reviewer_node)
    graph.add_node("finish", finish_node)

    graph.set_entry_point("parser")

    graph.add_conditional_edges(
        "parser",
        should_continue_after_parser,
        {
            "intelligence": "intelligence",
            "finish": "finish",
        },
    )
    graph.add_edge("intelligence", "analyst")
    graph.add_edge("analyst", "writer")
    graph.add_edge("writer", "reviewer")
    graph.add_edge("reviewer", "finish")
    graph.add_edge("finish", END)

    return graph


# Compiled graph singleton. No checkpointer: the state holds live run objects
# and lives only as long as the response.
_analysis_graph = None


def get_analysis_pipeline_graph():
    """Get the compiled analysis pipeline graph."""
    global _analysis_graph
    if _analysis_graph is None:
        _analysis_graph = build_analysis_pipeline_graph().compile()
    return _analysis_graph


async def _abort(run: PipelineRun, bus: EventBus, error: str) -> None:
    """Close the open stage, if any, and send the terminal error."""
    if bus.terminal_sent:
        return
    try:
        agent = bus.open_stage
        if agent is not None:
            run.agents[agent].status = "error"
            run.agents[agent].error = error
            await bus.publish(AgentError(agent=agent, error=error))
        await bus.publish(PipelineError(error=error))
    except EventOrderError as e:
        logger.error(f"Could not close event stream: {e}", extra={"run_id": run.run_id})


async def run_analysis_pipeline(
    run: PipelineRun,
    bus: EventBus,
    cascade: ProviderCascade | None = None,
    writer_cascade: ProviderCascade | None = None,
) -> PipelineRun:
    """
    Drive one run through the five stages, publishing progress on ``bus``.

    The bus is always closed on return. Errors never escape: a cancellation or
    an unexpected failure becomes a ``pipeline_error`` event.

    Args:
        run: Run input and context
        bus: Event bus of the run
        cascade: Cascade for parser, analyst and reviewer calls
        writer_cascade: Cascade for streamed section drafting

    Returns:
        The run with its outputs and per-agent states filled in
    """
    graph = get_analysis_pipeline_graph()
    deps = PipelineDeps(
        bus=bus,
        cascade=cascade or get_pipeline_cascade(),
        writer_cascade=writer_cascade or get_writer_cascade(),
    )
    config = {"configurable": {"thread_id": run.run_id, "deps": deps}}

    logger.info(
        f"Analysis pipeline starting ({len(run.text)} chars, {run.page_count} pages)",
        extra={"run_id": run.run_id},
    )

    try:
        await graph.ainvoke(AnalysisGraphState(run=run), config=config)
    except OperationCancelled as e:
        logger.info(f"Analysis pipeline cancelled: {e.reason}", extra={"run_id": run.run_id})
        await _abort(run, bus, f"Analysis cancelled: {e.reason}")
    except Exception as e:
        logger.error(f"Analysis pipeline failed: {e}", exc_info=True, extra={"run_id": run.run_id})
        await _abort(run, bus, "Internal pipeline error")
    finally:
        await bus.close()

    logger.info(
        f"Analysis pipeline finished in {run.elapsed_ms}ms: "
        + ", ".join(f"{a}={s.status}" for a, s in run.agents.items()),
        extra={"run_id": run.run_id},
    )
    return run
