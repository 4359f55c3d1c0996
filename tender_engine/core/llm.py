"""Helpers for turning raw provider output into validated models."""

import json
import re
from typing import Any, TypeVar

from pydantic import BaseModel

from tender_engine.core.cancellation import CancellationToken
from tender_engine.core.cascade import ProviderCascade

T = TypeVar("T", bound=BaseModel)

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)```", re.DOTALL)


def _strip_llm_fences(raw_output: str) -> str:
    """Strip markdown code fences from LLM output."""
    cleaned = raw_output.strip()

    fence_match = _FENCE_RE.search(cleaned)
    if fence_match:
        return fence_match.group(1).strip()

    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def _outer_json_object(text: str) -> str:
    """Cut ``text`` down to its outermost ``{...}`` span.

    Smaller open-weight models like to wrap JSON in a sentence of prose.
    """
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return text
    return text[start : end + 1]


def parse_llm_json_dict(raw_output: str) -> dict[str, Any]:
    """
    Parse LLM output as a JSON object.

    Handles markdown fences, surrounding prose and whitespace.

    Raises:
        json.JSONDecodeError: If no JSON object can be decoded
        ValueError: If the decoded JSON is not an object
    """
    cleaned = _outer_json_object(_strip_llm_fences(raw_output))
    parsed = json.loads(cleaned)
    if not isinstance(parsed, dict):
        raise ValueError(f"Expected a JSON object, got {type(parsed).__name__}")
    return parsed


def parse_llm_json(raw_output: str, model: type[T]) -> T:
    """
    Parse LLM output as JSON and validate against a Pydantic model.

    Raises:
        json.JSONDecodeError: If JSON parsing fails after cleanup
        pydantic.ValidationError: If parsed JSON doesn't match schema
    """
    return model.model_validate(parse_llm_json_dict(raw_output))


async def generate_model(
    cascade: ProviderCascade,
    prompt: str,
    model: type[T],
    token: CancellationToken | None = None,
) -> T:
    """
    Run one cascade call and validate the answer against ``model``.

    A malformed answer is not retried on another provider: the cascade only
    falls through on provider failure, and the caller decides whether a parse
    error is fatal.
    """
    raw = await cascade.run(prompt, token)
    return parse_llm_json(raw, model)
