"""Parser agent: structural extraction of a tender document."""

import json

from pydantic import ValidationError

from tender_engine.agents.pipeline_prompts import build_parser_prompt
from tender_engine.core.cancellation import CancellationToken
from tender_engine.core.cascade import ProviderCascade
from tender_engine.core.errors import MalformedResponseError
from tender_engine.core.llm import parse_llm_json
from tender_engine.core.logging import get_logger
from tender_engine.core.schemas_analysis import ParsedDce

logger = get_logger(__name__)

DEFAULT_MAX_CHARS = 30_000


async def run_parser(
    text: str,
    cascade: ProviderCascade,
    token: CancellationToken | None = None,
    max_chars: int = DEFAULT_MAX_CHARS,
) -> ParsedDce:
    """
    Extract lots, criteria, documents, deadlines and buyer data from document text.

    Args:
        text: Extracted document text (truncated to ``max_chars``)
        cascade: Provider cascade
        token: Cancellation token
        max_chars: Max characters of text sent to the provider

    Raises:
        AllProvidersFailedError: If no provider answered
        MalformedResponseError: If the answer is not a valid parse
        OperationCancelled: If the token fired
    """
    prompt = build_parser_prompt(text, max_chars)
    raw = await cascade.run(prompt, token)

    try:
        parsed = parse_llm_json(raw, ParsedDce)
    except (json.JSONDecodeError, ValidationError, ValueError) as e:
        logger.warning(f"Parser returned malformed JSON: {e}", extra={"agent": "parser"})
        raise MalformedResponseError("Parser returned malformed JSON") from e

    logger.info(
        f"Parsed tender: buyer={parsed.buyer_name!r} lots={len(parsed.lots)} "
        f"criteria={len(parsed.criteria)}",
        extra={"agent": "parser"},
    )
    return parsed
