"""Tests for event models and the per-run event bus ordering rules."""

import asyncio
import json

import pytest

from tender_engine.core.event_bus import EventBus, EventOrderError
from tender_engine.core.events import (
    SSE_DONE_FRAME,
    AgentDone,
    AgentError,
    AgentStart,
    ParserResult,
    PipelineDone,
    PipelineError,
    SectionDone,
    SectionError,
    SectionStream,
    is_terminal,
    to_sse_frame,
)
from tender_engine.core.schemas_analysis import ParsedDce, WrittenSection


async def _publish_all(bus: EventBus, events) -> None:
    for event in events:
        await bus.publish(event)


async def _drain(bus: EventBus) -> list:
    await bus.close()
    return [event async for event in bus]


@pytest.mark.asyncio
async def test_valid_stage_sequence_is_delivered_in_order():
    bus = EventBus()
    section = WrittenSection.from_content("sec-1", "Presentation", "Texte de la section")
    events = [
        AgentStart(agent="parser"),
        AgentDone(agent="parser", duration_ms=12),
        ParserResult(data=ParsedDce(buyer_name="Ville de Lyon")),
        AgentStart(agent="intelligence"),
        AgentError(agent="intelligence", error="db down"),
        AgentStart(agent="writer"),
        SectionStream(section_id="sec-1", text="Texte "),
        SectionDone(section=section),
        SectionError(section_id="sec-2", error="provider down"),
        AgentDone(agent="writer", duration_ms=40),
        PipelineDone(total_ms=100),
    ]

    await _publish_all(bus, events)
    received = await _drain(bus)

    assert [e.type for e in received] == [e.type for e in events]
    assert bus.terminal_sent
    assert bus.published == len(events)


@pytest.mark.asyncio
async def test_stage_cannot_start_while_another_is_running():
    bus = EventBus()
    await bus.publish(AgentStart(agent="parser"))

    with pytest.raises(EventOrderError, match="still running"):
        await bus.publish(AgentStart(agent="intelligence"))


@pytest.mark.asyncio
async def test_stages_cannot_go_backwards_or_repeat():
    bus = EventBus()
    await _publish_all(bus, [AgentStart(agent="analyst"), AgentDone(agent="analyst", duration_ms=1)])

    with pytest.raises(EventOrderError, match="started after analyst"):
        await bus.publish(AgentStart(agent="parser"))
    with pytest.raises(EventOrderError, match="started twice"):
        await bus.publish(AgentStart(agent="analyst"))


@pytest.mark.asyncio
async def test_done_requires_the_stage_to_be_running():
    bus = EventBus()

    with pytest.raises(EventOrderError, match="not running"):
        await bus.publish(AgentDone(agent="parser", duration_ms=1))


@pytest.mark.asyncio
async def test_section_events_only_inside_writer_stage():
    bus = EventBus()
    await bus.publish(AgentStart(agent="analyst"))

    with pytest.raises(EventOrderError, match="outside the writer stage"):
        await bus.publish(SectionStream(section_id="sec-1", text="x"))


@pytest.mark.asyncio
async def test_settled_section_cannot_stream_again():
    bus = EventBus()
    await _publish_all(
        bus,
        [AgentStart(agent="writer"), SectionError(section_id="sec-1", error="down")],
    )

    with pytest.raises(EventOrderError, match="already settled"):
        await bus.publish(SectionStream(section_id="sec-1", text="late"))


@pytest.mark.asyncio
async def test_result_event_requires_completed_stage():
    bus = EventBus()
    await bus.publish(AgentStart(agent="parser"))

    with pytest.raises(EventOrderError, match="before parser completed"):
        await bus.publish(ParserResult(data=ParsedDce()))


@pytest.mark.asyncio
async def test_terminal_event_is_last():
    bus = EventBus()
    await bus.publish(PipelineError(error="parse failed"))

    with pytest.raises(EventOrderError, match="after the terminal event"):
        await bus.publish(AgentStart(agent="parser"))


@pytest.mark.asyncio
async def test_terminal_event_rejected_while_stage_open():
    bus = EventBus()
    await bus.publish(AgentStart(agent="writer"))

    assert bus.open_stage == "writer"
    with pytest.raises(EventOrderError):
        await bus.publish(PipelineDone(total_ms=5))


@pytest.mark.asyncio
async def test_publish_after_close_raises():
    bus = EventBus()
    await bus.close()

    with pytest.raises(EventOrderError, match="closed"):
        await bus.publish(AgentStart(agent="parser"))


@pytest.mark.asyncio
async def test_detach_unblocks_producer_and_drops_events():
    bus = EventBus(maxsize=1)
    await bus.publish(AgentStart(agent="parser"))

    blocked = asyncio.create_task(bus.publish(AgentDone(agent="parser", duration_ms=1)))
    await asyncio.sleep(0)
    assert not blocked.done()

    bus.detach()
    await asyncio.wait_for(blocked, timeout=1)
    published = bus.published
    await bus.publish(PipelineDone(total_ms=1))

    assert bus.detached
    assert bus.published == published
    assert bus.terminal_sent


def test_sse_frame_format():
    frame = to_sse_frame(SectionStream(section_id="sec-1", text="Réponse", timestamp=1700000000000))

    assert frame.startswith("data: ")
    assert frame.endswith("\n\n")
    payload = json.loads(frame[len("data: "):])
    assert payload == {
        "type": "section_stream",
        "section_id": "sec-1",
        "text": "Réponse",
        "timestamp": 1700000000000,
    }
    assert SSE_DONE_FRAME == "data: [DONE]\n\n"


def test_only_pipeline_outcomes_are_terminal():
    assert not is_terminal(AgentDone(agent="writer", duration_ms=5))
    assert not is_terminal(SectionError(section_id="sec-1", error="x"))
    assert is_terminal(PipelineDone(total_ms=10))
    assert is_terminal(PipelineError(error="x"))


def test_unknown_agent_is_rejected():
    from pydantic import ValidationError

    with pytest.raises(ValidationError):
        AgentStart(agent="formatter")
