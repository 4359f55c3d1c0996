"""Tests for the five-stage analysis pipeline driven over the event bus."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from tender_engine.core.event_bus import EventBus
from tender_engine.core.schemas_analysis import (
    AGENT_ORDER,
    AnalysisOptions,
    CompanyProfileInput,
    Competitor,
    MarketIntelligence,
)
from tender_engine.graphs.analysis_pipeline_graph import PipelineRun, run_analysis_pipeline
from tests.fakes.fake_providers import RoutedProvider, fenced, make_cascade

PARSER = "extracteur structurel"
ANALYST = "analyste strategique"
WRITER = "Redige la section"
REVIEWER = "reviewer expert"

PARSED = {
    "lots": [{"number": 1, "title": "Maintenance applicative"}],
    "criteria": [{"name": "Valeur technique", "weight": 60}, {"name": "Prix", "weight": 40}],
    "documents": [{"name": "DC1", "is_critical": True}],
    "deadlines": [{"type": "depot", "date": "2026-03-15 12:00"}],
    "buyer_name": "Ville de Lyon",
    "cpv_codes": ["72000000-5"],
    "procedure_type": "appel_offres",
    "estimated_budget": 150000,
}

ANALYSIS = {
    "recommendation": {"verdict": "go", "headline": "Bon alignement", "reasons": ["R1"], "confidence_score": 80},
    "score_criteria": [{"label": "Eligibilite", "score": 16, "icon": "Shield", "description": "ok"}],
    "vigilance_points": [{"type": "risk", "title": "Delai court", "description": "3 semaines"}],
    "strategic_advice": "Mettre en avant les references locales.",
}

REVIEW = {
    "completeness_score": 72,
    "suggestions": [{"section_id": None, "type": "missing", "message": "Planning detaille"}],
    "overall_advice": "Solide",
}

INTEL = MarketIntelligence(
    competitors=[Competitor(name="Sopra", wins=6, market_share=60.0)],
    hhi=3600,
)


def _routes(**overrides):
    routes = {
        PARSER: fenced(PARSED),
        ANALYST: fenced(ANALYSIS),
        REVIEWER: fenced(REVIEW),
        WRITER: ["**Notre societe** ", "intervient depuis 2010."],
    }
    routes.update(overrides)
    return routes


def _run(**kwargs) -> PipelineRun:
    return PipelineRun(
        text="Reglement de consultation. Marche de maintenance applicative.",
        profile=CompanyProfileInput(company_name="Acme Conseil", sectors=["informatique"]),
        **kwargs,
    )


async def _execute(run: PipelineRun, provider: RoutedProvider, intelligence=None) -> list:
    bus = EventBus(maxsize=1024, run_id=run.run_id)
    cascade = make_cascade(provider)
    events: list = []

    async def consume():
        async for event in bus:
            events.append(event)

    consumer = asyncio.create_task(consume())
    intel_mock = intelligence or AsyncMock(return_value=INTEL)
    with patch("tender_engine.graphs.analysis_pipeline_graph.run_intelligence", intel_mock):
        await run_analysis_pipeline(run, bus, cascade=cascade, writer_cascade=cascade)
    await asyncio.wait_for(consumer, timeout=5)
    return events


def _types(events) -> list[str]:
    return [e.type for e in events]


def _started(events) -> list[str]:
    return [e.agent for e in events if e.type == "agent_start"]


@pytest.mark.asyncio
async def test_happy_path_runs_all_stages_in_order():
    run = _run()
    events = await _execute(run, RoutedProvider(_routes()))

    assert _started(events) == list(AGENT_ORDER)
    assert events[-1].type == "pipeline_done"
    assert "pipeline_error" not in _types(events)

    for kind in ("parser_result", "intelligence_result", "analysis_result", "review_result"):
        assert _types(events).count(kind) == 1

    done_sections = [e.section for e in events if e.type == "section_done"]
    assert [s.section_id for s in done_sections] == ["sec-1", "sec-2", "sec-3", "sec-4", "sec-5"]
    assert done_sections[0].content == "**Notre societe** intervient depuis 2010."
    assert done_sections[0].word_count == 5

    assert run.parsed.buyer_name == "Ville de Lyon"
    assert run.analysis.recommendation.verdict == "go"
    assert run.review.completeness_score == 72
    assert all(state.status == "done" for state in run.agents.values())


@pytest.mark.asyncio
async def test_each_stage_is_bracketed_by_start_and_settle():
    events = await _execute(_run(), RoutedProvider(_routes()))

    open_stage = None
    for event in events:
        if event.type == "agent_start":
            assert open_stage is None
            open_stage = event.agent
        elif event.type in ("agent_done", "agent_error"):
            assert event.agent == open_stage
            open_stage = None
        elif event.type.startswith("section_"):
            assert open_stage == "writer"
    assert open_stage is None


@pytest.mark.asyncio
async def test_parser_failure_short_circuits_to_pipeline_error():
    intelligence = AsyncMock(return_value=INTEL)
    run = _run()

    events = await _execute(run, RoutedProvider(_routes(**{PARSER: "pas du json"})), intelligence)

    assert _types(events) == ["agent_start", "agent_error", "pipeline_error"]
    assert events[1].agent == "parser"
    assert "malformed" in events[2].error.lower()
    intelligence.assert_not_awaited()
    assert run.agents["intelligence"].status == "pending"


@pytest.mark.asyncio
async def test_parser_provider_failure_is_reported():
    events = await _execute(_run(), RoutedProvider(_routes(**{PARSER: RuntimeError("quota exceeded")})))

    assert events[-1].type == "pipeline_error"
    assert "quota exceeded" in events[-1].error


@pytest.mark.asyncio
async def test_intelligence_failure_degrades_and_pipeline_completes():
    provider = RoutedProvider(_routes())
    intelligence = AsyncMock(side_effect=RuntimeError("attributions table unavailable"))
    run = _run()

    events = await _execute(run, provider, intelligence)

    errors = [e for e in events if e.type == "agent_error"]
    assert [e.agent for e in errors] == ["intelligence"]
    assert "intelligence_result" not in _types(events)
    assert _started(events) == list(AGENT_ORDER)
    assert events[-1].type == "pipeline_done"

    analyst_prompt = next(p for p in provider.prompts if ANALYST in p)
    assert "hhi: 0" in analyst_prompt


@pytest.mark.asyncio
async def test_analyst_failure_is_degradable():
    run = _run()
    events = await _execute(run, RoutedProvider(_routes(**{ANALYST: "{broken"})))

    assert run.agents["analyst"].status == "error"
    assert "analysis_result" not in _types(events)
    assert run.agents["writer"].status == "done"
    assert events[-1].type == "pipeline_done"


@pytest.mark.asyncio
async def test_one_failed_section_does_not_stop_the_others():
    routes = {"Methodologie et organisation": RuntimeError("provider timeout"), **_routes()}
    run = _run()

    events = await _execute(run, RoutedProvider(routes))

    done = [e.section.section_id for e in events if e.type == "section_done"]
    failed = [e for e in events if e.type == "section_error"]
    assert done == ["sec-1", "sec-2", "sec-4", "sec-5"]
    assert [e.section_id for e in failed] == ["sec-3"]
    assert "provider timeout" in failed[0].error

    writer_settle = next(e for e in events if e.type in ("agent_done", "agent_error") and e.agent == "writer")
    assert writer_settle.type == "agent_done"
    assert "review_result" in _types(events)
    assert events[-1].type == "pipeline_done"
    assert set(run.sections) == {"sec-1", "sec-2", "sec-4", "sec-5"}
    assert set(run.section_errors) == {"sec-3"}


@pytest.mark.asyncio
async def test_all_sections_failing_settles_writer_and_reviewer_as_errors():
    run = _run()
    provider = RoutedProvider(_routes(**{WRITER: RuntimeError("down")}))

    events = await _execute(run, provider)

    assert _types(events).count("section_error") == 5
    assert run.agents["writer"].status == "error"
    assert run.agents["reviewer"].status == "error"
    assert not any(REVIEWER in p for p in provider.prompts)
    assert events[-1].type == "pipeline_done"


@pytest.mark.asyncio
async def test_lot_sections_and_section_filter():
    parsed = {
        **PARSED,
        "lots": [{"number": n, "title": f"Lot {n}"} for n in range(1, 5)],
    }
    run = _run(options=AnalysisOptions(sections=["sec-1", "sec-lot-2", "sec-lot-4"]))

    events = await _execute(run, RoutedProvider(_routes(**{PARSER: fenced(parsed)})))

    done = [e.section.section_id for e in events if e.type == "section_done"]
    assert done == ["sec-1", "sec-lot-2"]


@pytest.mark.asyncio
async def test_cancellation_stops_work_without_pipeline_done():
    run = _run()

    async def cancel_during_analysis(prompt: str) -> str:
        run.token.cancel("Client disconnected")
        await asyncio.sleep(10)
        return fenced(ANALYSIS)

    provider = RoutedProvider(_routes(**{ANALYST: cancel_during_analysis}))
    events = await _execute(run, provider)

    assert "pipeline_done" not in _types(events)
    assert events[-1].type == "pipeline_error"
    assert "cancelled" in events[-1].error.lower()
    assert "writer" not in _started(events)
    assert not any(WRITER in p for p in provider.prompts)
    assert run.agents["analyst"].status == "error"


@pytest.mark.asyncio
async def test_detached_consumer_receives_nothing_after_disconnect():
    run = _run()
    bus = EventBus(maxsize=1024, run_id=run.run_id)
    bus.detach()
    run.token.cancel("Client disconnected")

    with patch("tender_engine.graphs.analysis_pipeline_graph.run_intelligence", AsyncMock()):
        cascade = make_cascade(RoutedProvider(_routes()))
        await run_analysis_pipeline(run, bus, cascade=cascade, writer_cascade=cascade)

    assert bus.published == 0
    assert all(state.status == "pending" for state in run.agents.values())
