"""Analyst agent: go / maybe / pass assessment of the tender for the company."""

import json

from pydantic import ValidationError

from tender_engine.agents.pipeline_prompts import build_analyst_prompt
from tender_engine.core.cancellation import CancellationToken
from tender_engine.core.cascade import ProviderCascade
from tender_engine.core.errors import MalformedResponseError
from tender_engine.core.llm import parse_llm_json
from tender_engine.core.logging import get_logger
from tender_engine.core.schemas_analysis import (
    AnalysisResult,
    CompanyProfileInput,
    MarketIntelligence,
    ParsedDce,
)

logger = get_logger(__name__)


async def run_analyst(
    parsed: ParsedDce,
    intel: MarketIntelligence,
    profile: CompanyProfileInput,
    cascade: ProviderCascade,
    token: CancellationToken | None = None,
) -> AnalysisResult:
    """
    Score the fit between tender, market and company profile.

    Raises:
        AllProvidersFailedError: If no provider answered
        MalformedResponseError: If the answer is not a valid assessment
        OperationCancelled: If the token fired
    """
    raw = await cascade.run(build_analyst_prompt(parsed, intel, profile), token)

    try:
        result = parse_llm_json(raw, AnalysisResult)
    except (json.JSONDecodeError, ValidationError, ValueError) as e:
        logger.warning(f"Analyst returned malformed JSON: {e}", extra={"agent": "analyst"})
        raise MalformedResponseError("Analyst returned malformed JSON") from e

    logger.info(
        f"Analysis verdict={result.recommendation.verdict} "
        f"confidence={result.recommendation.confidence_score}",
        extra={"agent": "analyst"},
    )
    return result
