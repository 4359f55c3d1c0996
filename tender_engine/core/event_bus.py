"""Per-run event bus between the pipeline driver and the SSE transport.

One bounded queue, a single producer and a single consumer. The bus validates
ordering as events are published so a driver bug surfaces as an exception
instead of a confusing stream on the client side:

- a stage is ``agent_start -> (stream events)* -> agent_done | agent_error``;
- stages start in pipeline order and never overlap;
- section events only occur while the writer stage is open, and a section
  never streams again once it is settled;
- a stage's result event follows its ``agent_done``;
- the terminal event is the last one and no stage may be open when it is sent.
"""

import asyncio
from collections.abc import AsyncIterator

from tender_engine.core.events import (
    PipelineEvent,
    is_terminal,
)
from tender_engine.core.logging import get_logger
from tender_engine.core.schemas_analysis import AGENT_ORDER

logger = get_logger(__name__)

_CLOSED = object()

_RESULT_EVENT_AGENT = {
    "parser_result": "parser",
    "intelligence_result": "intelligence",
    "analysis_result": "analyst",
    "review_result": "reviewer",
}
_SECTION_EVENTS = frozenset({"section_stream", "section_done", "section_error"})


class EventOrderError(RuntimeError):
    """An event was published out of the allowed per-stage order."""


class EventBus:
    """Bounded single-producer/single-consumer event channel for one run."""

    def __init__(self, maxsize: int = 256, run_id: str | None = None):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.run_id = run_id
        self._open_stage: str | None = None
        self._stage_status: dict[str, str] = {}
        self._settled_sections: set[str] = set()
        self._terminal_sent = False
        self._closed = False
        self._detached = False
        self.published: int = 0

    @property
    def detached(self) -> bool:
        """True once the consumer went away (client disconnect)."""
        return self._detached

    @property
    def terminal_sent(self) -> bool:
        return self._terminal_sent

    @property
    def open_stage(self) -> str | None:
        """Agent whose stage is started but not yet settled."""
        return self._open_stage

    async def publish(self, event: PipelineEvent) -> None:
        """
        Validate ordering and enqueue ``event``.

        Blocks while the queue is full. Events published after the consumer
        detached are dropped.

        Raises:
            EventOrderError: If the event violates the ordering rules or the bus
                is already closed
        """
        if self._closed:
            raise EventOrderError(f"Bus closed, cannot publish {event.type}")
        self._check_order(event)
        self._advance(event)

        if self._detached:
            return
        await self._queue.put(event)
        self.published += 1

    async def close(self) -> None:
        """Signal end of stream to the consumer. Idempotent."""
        if self._closed:
            return
        self._closed = True
        if not self._detached:
            await self._queue.put(_CLOSED)

    def detach(self) -> None:
        """Consumer-side disconnect: drop queued events and unblock the producer."""
        if self._detached:
            return
        self._detached = True
        while not self._queue.empty():
            self._queue.get_nowait()
        logger.info("Event consumer detached", extra={"run_id": self.run_id})

    async def __aiter__(self) -> AsyncIterator[PipelineEvent]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item

    # ------------------------------------------------------------------
    # Ordering rules
    # ------------------------------------------------------------------

    def _check_order(self, event: PipelineEvent) -> None:
        kind = event.type

        if self._terminal_sent:
            raise EventOrderError(f"{kind} published after the terminal event")

        if kind == "agent_start":
            if self._open_stage is not None:
                raise EventOrderError(
                    f"{event.agent} started while {self._open_stage} is still running"
                )
            if event.agent in self._stage_status:
                raise EventOrderError(f"{event.agent} started twice")
            started = [a for a in AGENT_ORDER if a in self._stage_status]
            if started and AGENT_ORDER.index(event.agent) < AGENT_ORDER.index(started[-1]):
                raise EventOrderError(f"{event.agent} started after {started[-1]}")
            return

        if kind in ("agent_done", "agent_error"):
            if self._open_stage != event.agent:
                raise EventOrderError(f"{kind} for {event.agent} which is not running")
            return

        if kind in _SECTION_EVENTS:
            if self._open_stage != "writer":
                raise EventOrderError(f"{kind} outside the writer stage")
            section_id = event.section.section_id if kind == "section_done" else event.section_id
            if section_id in self._settled_sections:
                raise EventOrderError(f"{kind} for section {section_id} which is already settled")
            return

        if kind in _RESULT_EVENT_AGENT:
            agent = _RESULT_EVENT_AGENT[kind]
            if self._stage_status.get(agent) != "done" or self._open_stage is not None:
                raise EventOrderError(f"{kind} before {agent} completed")
            return

        if is_terminal(event):
            if self._open_stage is not None:
                raise EventOrderError(f"{kind} while {self._open_stage} is still running")
            return

        raise EventOrderError(f"Unknown event type {kind}")

    def _advance(self, event: PipelineEvent) -> None:
        kind = event.type
        if kind == "agent_start":
            self._open_stage = event.agent
            self._stage_status[event.agent] = "running"
        elif kind == "agent_done":
            self._open_stage = None
            self._stage_status[event.agent] = "done"
        elif kind == "agent_error":
            self._open_stage = None
            self._stage_status[event.agent] = "error"
        elif kind == "section_done":
            self._settled_sections.add(event.section.section_id)
        elif kind == "section_error":
            self._settled_sections.add(event.section_id)
        elif is_terminal(event):
            self._terminal_sent = True
