"""Maps a completed interactive pipeline run onto the stored dashboard payload.

Batch and interactive analyses persist the same ``DceAnalysis`` shape; stages
that failed simply leave their part of the payload empty.
"""

from typing import TYPE_CHECKING

from tender_engine.agents.writer_agent import plan_sections
from tender_engine.chains.analyze_dce import rescale_weights
from tender_engine.core.schemas_analysis import (
    DceAnalysis,
    Recommendation,
    RequiredDocumentDetail,
    SelectionCriterion,
    TechnicalPlanSection,
)

if TYPE_CHECKING:
    from tender_engine.graphs.analysis_pipeline_graph import PipelineRun

CRITICAL_DOCUMENT_HINT = "Piece obligatoire, son absence rend l'offre irreguliere"


def _summary(run: "PipelineRun") -> str:
    parsed = run.parsed
    parts = [f"Marche {parsed.procedure_type or 'public'} publie par {parsed.buyer_name or 'un acheteur public'}"]
    if parsed.lots:
        parts.append(f"{len(parsed.lots)} lot(s)")
    if parsed.estimated_budget:
        parts.append(f"budget estime {parsed.estimated_budget:,.0f} EUR".replace(",", " "))
    if parsed.execution_duration:
        parts.append(f"duree {parsed.execution_duration}")
    summary = ", ".join(parts) + "."
    if run.analysis and run.analysis.strategic_advice:
        summary = f"{summary} {run.analysis.strategic_advice}"
    return summary


def pipeline_run_to_analysis(run: "PipelineRun") -> DceAnalysis:
    """
    Build the dashboard payload from a pipeline run.

    Raises:
        ValueError: If the run has no parse (the parser stage failed)
    """
    if run.parsed is None:
        raise ValueError("Cannot build an analysis without a parsed document")

    parsed = run.parsed
    criteria = rescale_weights([c.model_dump() for c in parsed.criteria])

    plan = []
    for section in plan_sections(parsed, run.options):
        written = run.sections.get(section.id)
        plan.append(
            TechnicalPlanSection(
                id=section.id,
                title=section.title,
                buyer_expectation=section.buyer_expectation,
                ai_draft=written.content if written else "",
                word_count=written.word_count if written else 0,
            )
        )

    documents = [
        RequiredDocumentDetail(
            name=d.name,
            hint=CRITICAL_DOCUMENT_HINT if d.is_critical else "",
            is_critical=d.is_critical,
        )
        for d in parsed.documents
    ]

    checklist = [d.name for d in parsed.documents if d.is_critical]
    if run.review:
        checklist.extend(s.message for s in run.review.suggestions if s.type == "missing")

    analysis = DceAnalysis(
        ai_summary=_summary(run),
        selection_criteria=[SelectionCriterion(**c) for c in criteria],
        technical_plan_sections=plan,
        required_documents_detailed=documents,
        compliance_checklist=checklist,
    )

    if run.analysis:
        analysis.executive_summary = run.analysis.recommendation.headline
        analysis.score_criteria = run.analysis.score_criteria
        analysis.vigilance_points = run.analysis.vigilance_points
        analysis.recommendation = run.analysis.recommendation
    else:
        analysis.recommendation = Recommendation(verdict="maybe", headline="A etudier")

    if run.intelligence:
        analysis.buyer_history = [
            c.model_dump() for c in run.intelligence.buyer_history.recent_contracts
        ]
        analysis.competitors = [c.model_dump() for c in run.intelligence.competitors]

    return analysis
