"""Tests for mapping an interactive run onto the stored analysis payload."""

import pytest

from tender_engine.core.result_adapter import CRITICAL_DOCUMENT_HINT, pipeline_run_to_analysis
from tender_engine.core.schemas_analysis import (
    AnalysisOptions,
    AnalysisResult,
    BuyerHistory,
    CompanyProfileInput,
    Competitor,
    ContractSummary,
    MarketIntelligence,
    ParsedDce,
    ReviewResult,
    WrittenSection,
)
from tender_engine.graphs.analysis_pipeline_graph import PipelineRun

PARSED = ParsedDce.model_validate(
    {
        "lots": [{"number": 1, "title": "Voirie"}, {"number": 2, "title": "Eclairage"}],
        "criteria": [{"name": "Valeur technique", "weight": 3}, {"name": "Prix", "weight": 2}],
        "documents": [{"name": "DC1", "is_critical": True}, {"name": "Memoire technique"}],
        "buyer_name": "Ville de Lyon",
        "procedure_type": "appel_offres",
        "estimated_budget": 150000,
        "execution_duration": "12 mois",
    }
)


def _run(**kwargs) -> PipelineRun:
    return PipelineRun(
        text="Reglement de consultation",
        profile=CompanyProfileInput(company_name="Acme"),
        parsed=PARSED,
        **kwargs,
    )


def test_requires_a_parse():
    run = PipelineRun(text="x", profile=CompanyProfileInput(company_name="Acme"))
    with pytest.raises(ValueError):
        pipeline_run_to_analysis(run)


def test_parse_only_run():
    analysis = pipeline_run_to_analysis(_run())

    assert analysis.ai_summary == (
        "Marche appel_offres publie par Ville de Lyon, 2 lot(s), "
        "budget estime 150 000 EUR, duree 12 mois."
    )
    assert [c.weight for c in analysis.selection_criteria] == [60, 40]
    assert analysis.recommendation.verdict == "maybe"
    assert analysis.recommendation.headline == "A etudier"
    assert analysis.compliance_checklist == ["DC1"]
    assert analysis.required_documents_detailed[0].hint == CRITICAL_DOCUMENT_HINT
    assert analysis.required_documents_detailed[1].hint == ""
    # Five default sections plus one per lot, none written
    assert [s.id for s in analysis.technical_plan_sections][-2:] == ["sec-lot-1", "sec-lot-2"]
    assert all(s.ai_draft == "" for s in analysis.technical_plan_sections)


def test_full_run():
    run = _run(
        options=AnalysisOptions(sections=["sec-1", "sec-lot-2"]),
        analysis=AnalysisResult.model_validate(
            {
                "recommendation": {"verdict": "go", "headline": "Bon alignement"},
                "score_criteria": [{"label": "Eligibilite", "score": 18}],
                "vigilance_points": [{"type": "risk", "title": "Delai court"}],
                "strategic_advice": "Insister sur la proximite.",
            }
        ),
        intelligence=MarketIntelligence(
            buyer_history=BuyerHistory(
                total_contracts=1,
                recent_contracts=[ContractSummary(title="Voirie 2024", winner="Colas", amount=90000)],
            ),
            competitors=[Competitor(name="Colas", wins=4, market_share=80.0)],
            hhi=6400,
        ),
        sections={
            "sec-1": WrittenSection(section_id="sec-1", title="Presentation", content="Acme est", word_count=2)
        },
        review=ReviewResult.model_validate(
            {
                "completeness_score": 60,
                "suggestions": [
                    {"type": "missing", "message": "Ajouter le planning"},
                    {"type": "tip", "message": "Citer les certifications"},
                ],
            }
        ),
    )

    analysis = pipeline_run_to_analysis(run)

    assert analysis.ai_summary.endswith("Insister sur la proximite.")
    assert analysis.executive_summary == "Bon alignement"
    assert analysis.recommendation.verdict == "go"
    assert analysis.score_criteria[0].score == 18
    assert [s.id for s in analysis.technical_plan_sections] == ["sec-1", "sec-lot-2"]
    assert analysis.technical_plan_sections[0].ai_draft == "Acme est"
    assert analysis.technical_plan_sections[0].word_count == 2
    assert analysis.compliance_checklist == ["DC1", "Ajouter le planning"]
    assert analysis.buyer_history[0]["winner"] == "Colas"
    assert analysis.competitors[0]["market_share"] == 80.0
