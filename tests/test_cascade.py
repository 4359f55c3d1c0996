"""Tests for the provider cascade."""

import asyncio

import pytest

from tender_engine.core.cancellation import CancellationToken
from tender_engine.core.errors import AllProvidersFailedError, OperationCancelled
from tender_engine.core.providers import FunctionProvider, build_providers
from tests.fakes.fake_providers import ScriptedProvider, make_cascade


@pytest.mark.asyncio
async def test_first_provider_answer_wins():
    first = ScriptedProvider("first", "from first")
    second = ScriptedProvider("second", "from second")

    result = await make_cascade(first, second).run("prompt")

    assert result == "from first"
    assert second.prompts == []


@pytest.mark.asyncio
async def test_failing_and_empty_providers_fall_through():
    failing = ScriptedProvider("failing", RuntimeError("boom"))
    empty = ScriptedProvider("empty", "   ")
    good = ScriptedProvider("good", "answer")
    cascade = make_cascade(failing, empty, good)

    assert await cascade.run("prompt") == "answer"

    stats = cascade.metrics.snapshot()
    assert stats["failing"]["failures"] == 1
    assert stats["failing"]["last_error"] == "boom"
    assert stats["empty"]["last_error"] == "empty response"
    assert stats["good"]["successes"] == 1


@pytest.mark.asyncio
async def test_unavailable_provider_is_skipped_without_attempt():
    offline = ScriptedProvider("offline", "never", available=False)
    online = ScriptedProvider("online", "ok")
    cascade = make_cascade(offline, online)

    assert await cascade.run("prompt") == "ok"
    assert offline.prompts == []
    assert "offline" not in cascade.metrics.snapshot()


@pytest.mark.asyncio
async def test_all_failing_raises_with_every_attempt():
    cascade = make_cascade(
        ScriptedProvider("a", RuntimeError("first down")),
        ScriptedProvider("b", ValueError("second down")),
    )

    with pytest.raises(AllProvidersFailedError) as exc_info:
        await cascade.run("prompt")

    error = exc_info.value
    assert [a.provider for a in error.attempts] == ["a", "b"]
    assert error.last_error == "second down"
    assert "b: second down" in str(error)


@pytest.mark.asyncio
async def test_no_available_provider_raises():
    cascade = make_cascade(ScriptedProvider("a", "x", available=False))

    with pytest.raises(AllProvidersFailedError, match="No generation provider is available"):
        await cascade.run("prompt")


@pytest.mark.asyncio
async def test_cancellation_aborts_without_trying_next_provider():
    token = CancellationToken()

    async def slow(prompt: str) -> str:
        token.cancel("client went away")
        await asyncio.sleep(10)
        return "too late"

    second = ScriptedProvider("second", "should not run")
    cascade = make_cascade(FunctionProvider("slow", slow), second)

    with pytest.raises(OperationCancelled, match="client went away"):
        await cascade.run("prompt", token)

    assert second.prompts == []


@pytest.mark.asyncio
async def test_cancelled_token_raises_before_any_call():
    token = CancellationToken()
    token.cancel()
    provider = ScriptedProvider("a", "x")

    with pytest.raises(OperationCancelled):
        await make_cascade(provider).run("prompt", token)

    assert provider.prompts == []


@pytest.mark.asyncio
async def test_hanging_provider_times_out_and_falls_through():
    async def hang(prompt: str) -> str:
        await asyncio.sleep(3600)
        return "never"

    async def answer(prompt: str) -> str:
        return "fallback answer"

    cascade = make_cascade(
        FunctionProvider("gemini", hang), FunctionProvider("ollama", answer), timeout_seconds=0.05
    )

    assert await cascade.run("prompt") == "fallback answer"

    stats = cascade.metrics.snapshot()
    assert stats["gemini"]["failures"] == 1
    assert stats["gemini"]["last_error"] == "timed out after 0.05s"
    assert stats["ollama"]["successes"] == 1


async def _collect(cascade, token=None) -> list[str]:
    return [fragment async for fragment in cascade.stream("prompt", token)]


@pytest.mark.asyncio
async def test_stream_falls_back_before_first_fragment():
    broken = ScriptedProvider("broken", [[RuntimeError("no stream")]])
    good = ScriptedProvider("good", [["Bonjour ", "le monde"]])

    assert await _collect(make_cascade(broken, good)) == ["Bonjour ", "le monde"]


@pytest.mark.asyncio
async def test_stream_failure_after_output_does_not_fall_back():
    flaky = ScriptedProvider("flaky", [["partial ", RuntimeError("connection reset")]])
    backup = ScriptedProvider("backup", [["full text"]])
    cascade = make_cascade(flaky, backup)

    received: list[str] = []
    with pytest.raises(AllProvidersFailedError, match="connection reset"):
        async for fragment in cascade.stream("prompt"):
            received.append(fragment)

    assert received == ["partial "]
    assert backup.prompts == []


@pytest.mark.asyncio
async def test_stream_uses_full_text_of_non_streaming_provider():
    async def execute(prompt: str) -> str:
        return "one shot"

    provider = FunctionProvider("plain", execute)

    assert await _collect(make_cascade(provider)) == ["one shot"]


@pytest.mark.asyncio
async def test_stream_timeout_only_applies_before_first_fragment():
    async def unused(prompt: str) -> str:
        raise AssertionError("stream providers only")

    async def hanging_stream(prompt: str):
        await asyncio.sleep(3600)
        yield "never"

    async def slow_stream(prompt: str):
        yield "Bonjour "
        await asyncio.sleep(0.2)
        yield "le monde"

    cascade = make_cascade(
        FunctionProvider("hanging", unused, stream=hanging_stream),
        FunctionProvider("slow", unused, stream=slow_stream),
        timeout_seconds=0.05,
    )

    assert await _collect(cascade) == ["Bonjour ", "le monde"]
    assert cascade.metrics.snapshot()["hanging"]["last_error"] == "timed out after 0.05s"


@pytest.mark.asyncio
async def test_stream_with_only_empty_providers_raises():
    cascade = make_cascade(ScriptedProvider("empty", [[""]]))

    with pytest.raises(AllProvidersFailedError, match="empty response"):
        await _collect(cascade)


def test_build_providers_skips_unknown_names():
    from tender_engine.core.config import get_settings

    providers = build_providers(["gemini", "carrier-pigeon", "ollama"], get_settings())

    assert [p.name for p in providers] == ["gemini", "ollama"]
    assert not any(p.available() for p in providers)
