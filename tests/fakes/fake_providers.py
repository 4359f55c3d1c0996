"""Scripted generation providers for cascade and pipeline tests."""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Union

from tender_engine.core.cascade import ProviderCascade
from tender_engine.core.metrics import ProviderMetrics
from tender_engine.core.providers import BaseProvider

# A scripted answer: text, an exception to raise, a list of stream fragments
# (exceptions allowed mid-list) or an async callable taking the prompt.
Answer = Union[str, Exception, list, Callable[[str], Awaitable[str]]]


class ScriptedProvider(BaseProvider):
    """Provider that replays scripted answers in order (the last one repeats)."""

    def __init__(self, name: str, answers: list[Answer] | Answer, available: bool = True):
        self.name = name
        self.answers = list(answers) if isinstance(answers, (list, tuple)) else [answers]
        self._available = available
        self.prompts: list[str] = []

    def available(self) -> bool:
        return self._available

    def _next(self) -> Answer:
        if len(self.answers) > 1:
            return self.answers.pop(0)
        return self.answers[0]

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return await _resolve(self._next(), prompt)

    async def stream(self, prompt: str) -> AsyncIterator[str]:
        self.prompts.append(prompt)
        async for fragment in _fragments(self._next(), prompt):
            yield fragment


class RoutedProvider(BaseProvider):
    """Provider answering by the first marker found in the prompt."""

    def __init__(self, routes: dict[str, Answer], name: str = "routed"):
        self.name = name
        self.routes = routes
        self.prompts: list[str] = []

    def available(self) -> bool:
        return True

    def _answer_for(self, prompt: str) -> Answer:
        for marker, answer in self.routes.items():
            if marker in prompt:
                return answer
        raise AssertionError(f"No scripted answer for prompt: {prompt[:80]!r}")

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return await _resolve(self._answer_for(prompt), prompt)

    async def stream(self, prompt: str) -> AsyncIterator[str]:
        self.prompts.append(prompt)
        async for fragment in _fragments(self._answer_for(prompt), prompt):
            yield fragment


async def _resolve(answer: Answer, prompt: str) -> str:
    await asyncio.sleep(0)
    if isinstance(answer, Exception):
        raise answer
    if isinstance(answer, list):
        return "".join(a for a in answer if isinstance(a, str))
    if callable(answer):
        return await answer(prompt)
    return answer


async def _fragments(answer: Answer, prompt: str) -> AsyncIterator[str]:
    if isinstance(answer, list):
        for item in answer:
            await asyncio.sleep(0)
            if isinstance(item, Exception):
                raise item
            yield item
        return
    text = await _resolve(answer, prompt)
    middle = len(text) // 2
    yield text[:middle]
    yield text[middle:]


def make_cascade(
    *providers: BaseProvider, operation: str = "test", timeout_seconds: float | None = None
) -> ProviderCascade:
    """Cascade over ``providers`` with its own metrics recorder."""
    return ProviderCascade(
        list(providers), metrics=ProviderMetrics(), operation=operation, timeout_seconds=timeout_seconds
    )


def fenced(payload: Any) -> str:
    """Wrap a JSON payload the way chat models often answer."""
    import json

    return f"Voici le resultat :\n```json\n{json.dumps(payload)}\n```"
