"""Single-pass tender document analysis.

One provider call over the extracted document text produces the whole
dashboard payload (summary, criteria, scores, vigilance points, proposal plan,
required documents, verdict). Used by the batch scheduler, where a full
five-stage pipeline would not fit the time budget.
"""

import json
from typing import Any

from pydantic import ValidationError

from tender_engine.core.cancellation import CancellationToken
from tender_engine.core.cascade import ProviderCascade, get_batch_cascade
from tender_engine.core.config import Settings, get_settings
from tender_engine.core.document_processing import UnreadableDocument, extract_pdf_text
from tender_engine.core.errors import MalformedResponseError
from tender_engine.core.llm import parse_llm_json_dict
from tender_engine.core.logging import get_logger
from tender_engine.core.schemas_analysis import DceAnalysis

logger = get_logger(__name__)


DCE_PROMPT = """Tu es un expert en marches publics francais. Analyse ce DCE (Dossier de Consultation des Entreprises) et extrais les informations au format JSON strict.

Texte du DCE :
---
{text}
---

Reponds UNIQUEMENT avec un JSON valide (pas de markdown, pas de commentaires) suivant cette structure exacte :
{{
  "ai_summary": "Resume du marche en 3-4 phrases",
  "executive_summary": "Resume executif pour la direction en 2 phrases",
  "selection_criteria": [{{"name": "Nom du critere", "weight": 60}}],
  "score_criteria": [{{"label": "Eligibilite", "score": 15, "icon": "Shield", "description": "Explication"}}],
  "vigilance_points": [{{"type": "risk|warning|opportunity", "title": "Titre", "description": "Detail"}}],
  "technical_plan_sections": [{{"id": "sec-1", "title": "Titre section", "buyer_expectation": "Attente acheteur", "ai_draft": "Brouillon IA", "word_count": 80}}],
  "required_documents_detailed": [{{"name": "Nom", "hint": "Conseil", "is_critical": true, "category": "profile|ao-specific"}}],
  "compliance_checklist": ["Element 1", "Element 2"],
  "recommendation": {{"verdict": "go|maybe|pass", "headline": "Titre", "reasons": ["Raison 1"]}},
  "buyer_history": [],
  "competitors": []
}}

Regles strictes :
- Les scores sont des entiers de 0 a 20
- Les poids (weight) sont des entiers positifs et totalisent exactement 100
- Genere exactement 5 score_criteria dans cet ordre : Eligibilite, Alignement, Rentabilite, Concurrence, Delais
- Genere 5-7 technical_plan_sections avec des id sequentiels (sec-1, sec-2...) et ai_draft de 50-100 mots
- Les icons possibles : Shield, Target, TrendingUp, Users, Clock (une par score_criteria dans cet ordre)
- vigilance_points : 3-5 elements, types strictement parmi "risk", "warning", "opportunity"
- verdict : strictement "go", "maybe" ou "pass", base sur les informations du DCE uniquement
- IMPORTANT : retourne du JSON brut, sans backticks, sans texte avant ou apres"""


def validate_document_bytes(content: bytes, max_bytes: int) -> None:
    """
    Reject empty or oversized documents before extraction.

    Raises:
        UnreadableDocument: If the document is empty or too large
    """
    if not content:
        raise UnreadableDocument("Document is empty", extractor="pdf")
    if len(content) > max_bytes:
        raise UnreadableDocument(
            f"Document exceeds {max_bytes // (1024 * 1024)} MB", extractor="pdf"
        )


def rescale_weights(criteria: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Rescale selection criterion weights so they total 100."""
    weights = []
    for c in criteria:
        try:
            weights.append(float(c.get("weight") or 0))
        except (TypeError, ValueError):
            weights.append(0.0)
    total = sum(weights)
    if total <= 0 or total == 100:
        return criteria
    return [{**c, "weight": round(w / total * 100)} for c, w in zip(criteria, weights)]


def normalize_analysis(data: dict[str, Any]) -> DceAnalysis:
    """
    Validate a raw single-pass answer into a ``DceAnalysis``.

    Scores are clamped to 0-20, selection weights rescaled to 100 and an
    unknown verdict becomes ``maybe``.

    Raises:
        MalformedResponseError: If the payload cannot be coerced to the schema
    """
    payload = dict(data)
    criteria = payload.get("selection_criteria") or []
    if isinstance(criteria, list):
        payload["selection_criteria"] = rescale_weights(
            [c for c in criteria if isinstance(c, dict)]
        )
    if not payload.get("recommendation"):
        payload.pop("recommendation", None)

    try:
        return DceAnalysis.model_validate(payload)
    except ValidationError as e:
        raise MalformedResponseError(f"AI response does not match the analysis schema: {e}") from e


async def analyze_dce(
    content: bytes,
    cascade: ProviderCascade | None = None,
    token: CancellationToken | None = None,
    settings: Settings | None = None,
) -> DceAnalysis:
    """
    Analyse one tender document in a single provider call.

    Args:
        content: PDF bytes
        cascade: Provider cascade (defaults to the batch cascade)
        token: Cancellation token
        settings: Settings override

    Returns:
        Normalised analysis payload

    Raises:
        UnreadableDocument: If the bytes are empty, oversized or not a PDF
        EmptyDocument: If the PDF has no text layer
        AllProvidersFailedError: If no provider produced an answer
        MalformedResponseError: If the answer is not valid analysis JSON
        OperationCancelled: If the token fired
    """
    settings = settings or get_settings()
    cascade = cascade or get_batch_cascade()

    validate_document_bytes(content, settings.MAX_DOCUMENT_BYTES)
    extraction = await extract_pdf_text(content, size_limit=settings.MAX_DOCUMENT_BYTES)

    prompt = DCE_PROMPT.format(text=extraction.truncated(settings.MAX_ANALYSIS_CHARS))
    raw = await cascade.run(prompt, token)

    try:
        data = parse_llm_json_dict(raw)
    except (json.JSONDecodeError, ValueError) as e:
        raise MalformedResponseError("Malformed AI response") from e

    analysis = normalize_analysis(data)
    logger.info(
        f"Single-pass analysis done: verdict={analysis.recommendation.verdict}",
        extra={"extra_data": {"pages": extraction.page_count, "chars": len(extraction.text)}},
    )
    return analysis
