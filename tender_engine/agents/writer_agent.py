"""Writer agent: technical proposal sections, drafted one at a time and streamed."""

from collections.abc import AsyncIterator

from tender_engine.agents.pipeline_prompts import (
    DEFAULT_SECTIONS,
    MAX_LOT_SECTIONS,
    build_writer_prompt,
)
from tender_engine.core.cancellation import CancellationToken
from tender_engine.core.cascade import ProviderCascade
from tender_engine.core.schemas_analysis import (
    AnalysisOptions,
    AnalysisResult,
    CompanyProfileInput,
    ParsedDce,
    SectionPlan,
)


def plan_sections(parsed: ParsedDce, options: AnalysisOptions | None = None) -> list[SectionPlan]:
    """
    Sections to draft for a tender.

    The five default sections, plus one section per lot (first three lots) when
    the tender has more than one lot, optionally filtered by ``options.sections``.
    """
    sections = list(DEFAULT_SECTIONS)

    if len(parsed.lots) > 1:
        sections.extend(
            SectionPlan(
                id=f"sec-lot-{lot.number}",
                title=f"Lot {lot.number} : {lot.title}",
                buyer_expectation=f"Reponse technique specifique au lot {lot.number}",
            )
            for lot in parsed.lots[:MAX_LOT_SECTIONS]
        )

    if options is not None and options.sections is not None:
        wanted = set(options.sections)
        sections = [s for s in sections if s.id in wanted]

    return sections


async def stream_section(
    section: SectionPlan,
    parsed: ParsedDce,
    profile: CompanyProfileInput,
    options: AnalysisOptions,
    cascade: ProviderCascade,
    analysis: AnalysisResult | None = None,
    token: CancellationToken | None = None,
) -> AsyncIterator[str]:
    """
    Stream the text of one section.

    Raises:
        AllProvidersFailedError: If no provider produced the section
        OperationCancelled: If the token fired
    """
    prompt = build_writer_prompt(section, parsed, profile, options, analysis)
    async for fragment in cascade.stream(prompt, token):
        yield fragment
