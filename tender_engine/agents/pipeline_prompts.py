"""Prompt templates and builders for the five analysis pipeline agents.

Structured context (parsed tender, market data, company profile) is rendered in
compact tabular notation to keep prompts short.
"""

from tender_engine.core.schemas_analysis import (
    AnalysisOptions,
    AnalysisResult,
    CompanyProfileInput,
    MarketIntelligence,
    ParsedDce,
    SectionPlan,
    WrittenSection,
)
from tender_engine.core.toon import to_toon

# =============================================================================
# Parser
# =============================================================================

PARSER_PROMPT = """Tu es un extracteur structurel de DCE (Dossier de Consultation des Entreprises) pour les marches publics francais.
Extrais la structure du document suivant. Retourne UNIQUEMENT du JSON valide.

Texte DCE :
---
{text}
---

Format JSON :
{{
  "lots": [{{"number": "1", "title": "Titre lot", "estimated_amount": 50000}}],
  "criteria": [{{"name": "Prix", "weight": 60}}],
  "documents": [{{"name": "DC1", "is_critical": true}}],
  "deadlines": [{{"type": "depot", "date": "2026-03-15 12:00"}}],
  "buyer_name": "Nom acheteur",
  "buyer_siret": "12345678901234",
  "cpv_codes": ["72000000-5"],
  "procedure_type": "appel_offres",
  "estimated_budget": 150000,
  "execution_duration": "24 mois"
}}

Regles :
- Poids (weight) : entiers positifs totalisant 100
- Documents critiques : DC1, DC2, memoire technique, attestations
- procedure_type : appel_offres, marche_negocie, accord_cadre, dialogue_competitif
- Si une information est absente, omets le champ ou retourne un tableau vide"""


def build_parser_prompt(text: str, max_chars: int) -> str:
    return PARSER_PROMPT.format(text=text[:max_chars])


# =============================================================================
# Analyst
# =============================================================================

ANALYST_PROMPT = """Tu es un analyste strategique senior en marches publics francais.
Analyse ce DCE en croisant les donnees du marche et le profil de l'entreprise.
Les donnees structurees sont en format tabulaire compact.

**DCE parse :**
{dce}

**Intelligence marche :**
{intel}

**Profil entreprise :**
{profile}{web}

Retourne UNIQUEMENT du JSON valide :
{{
  "recommendation": {{"verdict": "go|maybe|pass", "headline": "Titre", "reasons": ["R1"], "confidence_score": 75}},
  "score_criteria": [{{"label": "Eligibilite", "score": 15, "icon": "Shield", "description": "..."}}],
  "vigilance_points": [{{"type": "risk|warning|opportunity", "title": "T", "description": "D"}}],
  "strategic_advice": "Conseil strategique global en 3-5 phrases"
}}

Regles :
- 5 score_criteria : Eligibilite, Alignement, Rentabilite, Concurrence, Delais (scores 0-20)
- Icons dans l'ordre : Shield, Target, TrendingUp, Users, Clock
- 3-5 vigilance_points
- confidence_score 0-100 (base sur la quantite de donnees disponibles)
- strategic_advice : cite des chiffres concrets (HHI, nombre d'offres, historique acheteur)"""


def build_analyst_prompt(
    parsed: ParsedDce, intel: MarketIntelligence, profile: CompanyProfileInput
) -> str:
    dce = to_toon({
        "acheteur": parsed.buyer_name,
        "procedure": parsed.procedure_type,
        "budget": parsed.estimated_budget if parsed.estimated_budget is not None else "inconnu",
        "lots": len(parsed.lots),
        "criteres": [{"nom": c.name, "poids": f"{c.weight:g}%"} for c in parsed.criteria],
        "delais": [{"type": d.type, "date": d.date} for d in parsed.deadlines],
    })

    intel_block = to_toon({
        "historique_acheteur": {
            "contrats": intel.buyer_history.total_contracts,
            "montant_moyen": intel.buyer_history.avg_amount,
            "top_gagnants": ", ".join(w.name for w in intel.buyer_history.top_winners[:3]),
        },
        "secteur": {
            "offres_moyennes": intel.sector_stats.avg_offers,
            "montant_moyen": intel.sector_stats.avg_amount,
            "hhi": intel.hhi,
            "concentration": intel.concentration,
        },
        "concurrents": [
            {"nom": c.name, "parts": f"{c.market_share:g}%"} for c in intel.competitors[:5]
        ],
    })

    profile_block = to_toon({
        "nom": profile.company_name,
        "secteurs": ", ".join(profile.sectors),
        "ca": {"n1": profile.ca_n1 or "", "n2": profile.ca_n2 or ""},
        "references": len(profile.references),
        "equipe": len(profile.team),
    })

    web = ""
    if intel.web_intel:
        web_block = to_toon({
            "site_acheteur": intel.web_intel.buyer_summary or "non disponible",
            "actualites": [n.title for n in intel.web_intel.serp_news[:3]],
        })
        web = f"\n\n**Intelligence web (temps reel) :**\n{web_block}"

    return ANALYST_PROMPT.format(dce=dce, intel=intel_block, profile=profile_block, web=web)


# =============================================================================
# Writer
# =============================================================================

DEFAULT_SECTIONS: tuple[SectionPlan, ...] = (
    SectionPlan(
        id="sec-1",
        title="Presentation de la societe",
        buyer_expectation="Connaitre le candidat, son experience et ses moyens",
    ),
    SectionPlan(
        id="sec-2",
        title="Comprehension du besoin",
        buyer_expectation="Demontrer la bonne comprehension des enjeux du marche",
    ),
    SectionPlan(
        id="sec-3",
        title="Methodologie et organisation",
        buyer_expectation="Plan de travail, organisation, calendrier, moyens",
    ),
    SectionPlan(
        id="sec-4",
        title="Moyens humains et techniques",
        buyer_expectation="Equipe dediee, profils, certifications, outils",
    ),
    SectionPlan(
        id="sec-5",
        title="References et retour d'experience",
        buyer_expectation="Projets similaires realises avec succes",
    ),
)

MAX_LOT_SECTIONS = 3

LENGTH_TARGETS = {"short": "150-200", "medium": "250-350", "detailed": "400-500"}

WRITER_PROMPT = """Tu es un expert en redaction de memoires techniques pour les marches publics francais.

Redige la section "{title}" d'un memoire technique.

**Acheteur** : {buyer}
**Procedure** : {procedure}
**Attente acheteur** : {expectation}

**Profil entreprise** :
{profile}{strategy}

**Instructions** :
{tone}
Longueur cible : {length} mots.
- Personnalise avec les donnees reelles de l'entreprise
- Structure avec des **titres en gras** et des puces
- Cite des chiffres concrets : montants, annees, certifications
- INTERDIT : n'invente aucune donnee non fournie
- Format : Markdown simple (gras, puces, sous-titres)"""


def build_writer_prompt(
    section: SectionPlan,
    parsed: ParsedDce,
    profile: CompanyProfileInput,
    options: AnalysisOptions,
    analysis: AnalysisResult | None = None,
) -> str:
    profile_block = to_toon({
        "nom": profile.company_name,
        "secteurs": ", ".join(profile.sectors),
        "ca": {"n1": profile.ca_n1, "n2": profile.ca_n2, "n3": profile.ca_n3},
        "references": [
            {"titre": r.title, "client": r.client, "montant": r.amount} for r in profile.references
        ],
        "equipe": [
            {"nom": t.name, "role": t.role, "certifications": " / ".join(t.certifications)}
            for t in profile.team
        ],
    })

    strategy = ""
    if analysis is not None and analysis.strategic_advice:
        strategy = f"\n\n**Axe strategique** : {analysis.strategic_advice}"

    tone = (
        "Ton tres formel et administratif."
        if options.tone == "formal"
        else "Ton professionnel et direct."
    )

    return WRITER_PROMPT.format(
        title=section.title,
        buyer=parsed.buyer_name,
        procedure=parsed.procedure_type,
        expectation=section.buyer_expectation,
        profile=profile_block,
        strategy=strategy,
        tone=tone,
        length=LENGTH_TARGETS[options.length],
    )


# =============================================================================
# Reviewer
# =============================================================================

REVIEWER_PROMPT = """Tu es un reviewer expert de memoires techniques pour les marches publics francais.
Evalue la qualite et la completude de ce memoire technique.
Les donnees sont en format tabulaire compact.

**Criteres de selection** :
{criteria}

**Documents requis** : {documents}

**Sections du memoire** :
{sections}

Retourne UNIQUEMENT du JSON valide :
{{
  "completeness_score": 72,
  "suggestions": [
    {{"section_id": "sec-1", "type": "tip", "message": "Conseil..."}},
    {{"section_id": null, "type": "missing", "message": "Element manquant..."}}
  ],
  "overall_advice": "Conseil global en 2-3 phrases"
}}

Regles :
- completeness_score 0-100
- types : "tip" (positif), "warning" (attention), "missing" (absent)
- section_id : id de la section ou null si global
- 5-8 suggestions maximum
- Verifie l'adequation de chaque section avec les poids des criteres"""

REVIEW_EXCERPT_CHARS = 500


def build_reviewer_prompt(parsed: ParsedDce, sections: list[WrittenSection]) -> str:
    sections_block = to_toon([
        {
            "id": s.section_id,
            "titre": s.title,
            "mots": s.word_count,
            "extrait": s.content[:REVIEW_EXCERPT_CHARS],
        }
        for s in sections
    ])
    criteria_block = to_toon([
        {"critere": c.name, "poids": f"{c.weight:g}%"} for c in parsed.criteria
    ])
    documents = ", ".join(d.name for d in parsed.documents if d.is_critical) or "non precises"

    return REVIEWER_PROMPT.format(
        criteria=criteria_block or "non precises",
        documents=documents,
        sections=sections_block,
    )
