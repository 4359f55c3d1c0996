"""Pydantic schemas for tender document analysis."""

import re
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

Verdict = Literal["go", "maybe", "pass"]
AgentName = Literal["parser", "intelligence", "analyst", "writer", "reviewer"]

AGENT_ORDER: tuple[str, ...] = ("parser", "intelligence", "analyst", "writer", "reviewer")

_SIRET_LIKE = re.compile(r"^\d{9,14}$")


def is_siret_like(name: str | None) -> bool:
    """True when ``name`` is a bare SIREN/SIRET number rather than a company name."""
    return bool(_SIRET_LIKE.match((name or "").strip()))


def _clamp(value: Any, low: float, high: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        number = low
    return max(low, min(high, number))


def count_words(text: str) -> int:
    return len(text.split())


# =============================================================================
# Parser output
# =============================================================================


class Lot(BaseModel):
    number: str
    title: str = ""
    estimated_amount: float | None = None

    @field_validator("number", mode="before")
    @classmethod
    def _number_as_str(cls, v: Any) -> str:
        return str(v)


class SelectionCriterion(BaseModel):
    name: str
    weight: float = 0


class RequiredDocument(BaseModel):
    name: str
    is_critical: bool = False


class TenderDeadline(BaseModel):
    type: str
    date: str


class ParsedDce(BaseModel):
    """Structural extraction of a tender document (DCE)."""

    lots: list[Lot] = Field(default_factory=list)
    criteria: list[SelectionCriterion] = Field(default_factory=list)
    documents: list[RequiredDocument] = Field(default_factory=list)
    deadlines: list[TenderDeadline] = Field(default_factory=list)
    buyer_name: str = ""
    buyer_siret: str | None = None
    cpv_codes: list[str] = Field(default_factory=list)
    procedure_type: str = ""
    estimated_budget: float | None = None
    execution_duration: str | None = None

    @property
    def cpv_sector(self) -> str:
        """Two-digit CPV division of the first code, or empty."""
        return self.cpv_codes[0][:2] if self.cpv_codes else ""


# =============================================================================
# Market intelligence
# =============================================================================


class WinnerCount(BaseModel):
    name: str
    count: int


class ContractSummary(BaseModel):
    title: str = ""
    winner: str = ""
    amount: float = 0


class BuyerHistory(BaseModel):
    total_contracts: int = 0
    avg_amount: float = 0
    top_winners: list[WinnerCount] = Field(default_factory=list)
    recent_contracts: list[ContractSummary] = Field(default_factory=list)


class Competitor(BaseModel):
    name: str
    wins: int
    market_share: float  # percent, 0-100


class SectorStats(BaseModel):
    avg_offers: float = 0
    avg_amount: float = 0
    total_contracts: int = 0


class NewsItem(BaseModel):
    title: str
    url: str = ""
    snippet: str = ""


class WebIntel(BaseModel):
    buyer_summary: str | None = None
    buyer_contacts: list[str] = Field(default_factory=list)
    serp_news: list[NewsItem] = Field(default_factory=list)


class MarketIntelligence(BaseModel):
    """Market context for the buyer and the CPV sector."""

    buyer_history: BuyerHistory = Field(default_factory=BuyerHistory)
    competitors: list[Competitor] = Field(default_factory=list)
    sector_stats: SectorStats = Field(default_factory=SectorStats)
    hhi: int = 0  # Herfindahl-Hirschman Index, 0-10000
    web_intel: WebIntel | None = None

    @classmethod
    def empty(cls) -> "MarketIntelligence":
        return cls()

    @property
    def concentration(self) -> str:
        if self.hhi > 2500:
            return "forte"
        if self.hhi > 1500:
            return "moderee"
        return "faible"


# =============================================================================
# Analyst output
# =============================================================================


class Recommendation(BaseModel):
    verdict: Verdict = "maybe"
    headline: str = ""
    reasons: list[str] = Field(default_factory=list)
    confidence_score: int = 50

    @field_validator("verdict", mode="before")
    @classmethod
    def _known_verdict(cls, v: Any) -> str:
        verdict = str(v or "").strip().lower()
        return verdict if verdict in ("go", "maybe", "pass") else "maybe"

    @field_validator("confidence_score", mode="before")
    @classmethod
    def _clamp_confidence(cls, v: Any) -> int:
        return round(_clamp(v, 0, 100))


class ScoreCriterion(BaseModel):
    label: str
    score: int = 0  # 0-20
    icon: str = ""
    description: str = ""

    @field_validator("score", mode="before")
    @classmethod
    def _clamp_score(cls, v: Any) -> int:
        return round(_clamp(v, 0, 20))


class VigilancePoint(BaseModel):
    type: Literal["risk", "warning", "opportunity"] = "warning"
    title: str
    description: str = ""

    @field_validator("type", mode="before")
    @classmethod
    def _known_type(cls, v: Any) -> str:
        kind = str(v or "").strip().lower()
        return kind if kind in ("risk", "warning", "opportunity") else "warning"


class AnalysisResult(BaseModel):
    """Fit assessment between the tender and the candidate company."""

    recommendation: Recommendation
    score_criteria: list[ScoreCriterion] = Field(default_factory=list)
    vigilance_points: list[VigilancePoint] = Field(default_factory=list)
    strategic_advice: str = ""


# =============================================================================
# Writer / reviewer output
# =============================================================================


class SectionPlan(BaseModel):
    """A technical proposal section to draft."""

    id: str
    title: str
    buyer_expectation: str


class WrittenSection(BaseModel):
    section_id: str
    title: str
    content: str
    word_count: int

    @classmethod
    def from_content(cls, section_id: str, title: str, content: str) -> "WrittenSection":
        return cls(section_id=section_id, title=title, content=content, word_count=count_words(content))


class ReviewSuggestion(BaseModel):
    section_id: str | None = None
    type: Literal["tip", "warning", "missing"] = "tip"
    message: str

    @field_validator("type", mode="before")
    @classmethod
    def _known_type(cls, v: Any) -> str:
        kind = str(v or "").strip().lower()
        return kind if kind in ("tip", "warning", "missing") else "tip"


class ReviewResult(BaseModel):
    completeness_score: int = 0  # 0-100
    suggestions: list[ReviewSuggestion] = Field(default_factory=list)
    overall_advice: str = ""

    @field_validator("completeness_score", mode="before")
    @classmethod
    def _clamp_score(cls, v: Any) -> int:
        return round(_clamp(v, 0, 100))


# =============================================================================
# Request inputs
# =============================================================================


class CompanyReference(BaseModel):
    client: str
    title: str
    amount: str = ""
    period: str = ""


class TeamMember(BaseModel):
    name: str
    role: str = ""
    certifications: list[str] = Field(default_factory=list)
    experience: int = 0  # years


class CompanyProfileInput(BaseModel):
    """Candidate company profile sent with an interactive analysis."""

    company_name: str = Field(..., min_length=1)
    siret: str | None = None
    sectors: list[str] = Field(default_factory=list)
    ca_n1: str | None = None
    ca_n2: str | None = None
    ca_n3: str | None = None
    references: list[CompanyReference] = Field(default_factory=list)
    team: list[TeamMember] = Field(default_factory=list)


class AnalysisOptions(BaseModel):
    sections: list[str] | None = None
    tone: Literal["formal", "standard"] = "standard"
    length: Literal["short", "medium", "detailed"] = "medium"


# =============================================================================
# Persisted dashboard payload (dce_analyses.analysis)
# =============================================================================


class TechnicalPlanSection(BaseModel):
    id: str
    title: str
    buyer_expectation: str = ""
    ai_draft: str = ""
    word_count: int = 0


class RequiredDocumentDetail(BaseModel):
    name: str
    hint: str = ""
    is_critical: bool = False
    category: str = "ao-specific"


class DceAnalysis(BaseModel):
    """Analysis payload stored on a job row, shared by batch and interactive runs."""

    ai_summary: str = ""
    executive_summary: str = ""
    selection_criteria: list[SelectionCriterion] = Field(default_factory=list)
    score_criteria: list[ScoreCriterion] = Field(default_factory=list)
    vigilance_points: list[VigilancePoint] = Field(default_factory=list)
    technical_plan_sections: list[TechnicalPlanSection] = Field(default_factory=list)
    required_documents_detailed: list[RequiredDocumentDetail] = Field(default_factory=list)
    compliance_checklist: list[str] = Field(default_factory=list)
    recommendation: Recommendation = Field(
        default_factory=lambda: Recommendation(verdict="maybe", headline="A etudier")
    )
    buyer_history: list[dict[str, Any]] = Field(default_factory=list)
    competitors: list[dict[str, Any]] = Field(default_factory=list)

    @property
    def required_documents(self) -> list[str]:
        return [d.name for d in self.required_documents_detailed]

    @property
    def technical_plan(self) -> list[str]:
        return [f"{s.id.replace('sec-', '')}. {s.title}" for s in self.technical_plan_sections]

    def to_payload(self) -> dict[str, Any]:
        """JSON-ready dict including the derived summary lists."""
        payload = self.model_dump(mode="json")
        payload["required_documents"] = self.required_documents
        payload["technical_plan"] = self.technical_plan
        return payload
