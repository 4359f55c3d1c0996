"""Reviewer agent: completeness review of the drafted proposal."""

import json

from pydantic import ValidationError

from tender_engine.agents.pipeline_prompts import build_reviewer_prompt
from tender_engine.core.cancellation import CancellationToken
from tender_engine.core.cascade import ProviderCascade
from tender_engine.core.errors import MalformedResponseError
from tender_engine.core.llm import parse_llm_json
from tender_engine.core.logging import get_logger
from tender_engine.core.schemas_analysis import ParsedDce, ReviewResult, WrittenSection

logger = get_logger(__name__)


class NothingToReview(ValueError):
    """No section was drafted, so there is nothing to review."""


async def run_reviewer(
    parsed: ParsedDce,
    sections: list[WrittenSection],
    cascade: ProviderCascade,
    token: CancellationToken | None = None,
) -> ReviewResult:
    """
    Review drafted sections against the tender's selection criteria.

    Raises:
        NothingToReview: If ``sections`` is empty (no provider call is made)
        AllProvidersFailedError: If no provider answered
        MalformedResponseError: If the answer is not a valid review
        OperationCancelled: If the token fired
    """
    if not sections:
        raise NothingToReview("No drafted section to review")

    raw = await cascade.run(build_reviewer_prompt(parsed, sections), token)

    try:
        review = parse_llm_json(raw, ReviewResult)
    except (json.JSONDecodeError, ValidationError, ValueError) as e:
        logger.warning(f"Reviewer returned malformed JSON: {e}", extra={"agent": "reviewer"})
        raise MalformedResponseError("Reviewer returned malformed JSON") from e

    logger.info(
        f"Review completeness={review.completeness_score} suggestions={len(review.suggestions)}",
        extra={"agent": "reviewer"},
    )
    return review
