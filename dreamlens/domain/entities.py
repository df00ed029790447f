"""Modèle de données du pipeline d'interprétation de rêves.

Ce module regroupe les modèles Pydantic échangés entre les étapes du pipeline : requête, éléments
extraits, fragments de connaissance, gabarit de prompt, tentatives de complétion et interprétation
finale. Les modèles de portée requête sont figés (immutables) une fois construits.

Les noms de champs sont en snake_case côté Python et exposés en camelCase sur le fil (contrat
appelant `{dreamText, personaId, analysisDepth, userContext?, priorDreams?}`).
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from dreamlens.core.constants import SIMILARITY_MAX, SIMILARITY_MIN
from dreamlens.domain.errors import ErrorClass


class DreamlensModel(BaseModel):
    """Base commune : alias camelCase et peuplement par nom."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FrozenModel(DreamlensModel):
    """Base des modèles de portée requête, immuables après construction."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class AnalysisDepth(str, Enum):
    """Profondeur d'analyse demandée."""

    INITIAL = "initial"
    DEEP = "deep"
    TRANSFORMATIVE = "transformative"


class EmotionalTone(str, Enum):
    """Tonalité émotionnelle dominante du récit."""

    POSITIVE = "positive"
    NEGATIVE = "negative"
    MIXED = "mixed"
    NEUTRAL = "neutral"


class DreamType(str, Enum):
    """Type de rêve déduit des déclencheurs lexicaux et des thèmes."""

    ORDINARY = "ordinary"
    NIGHTMARE = "nightmare"
    RECURRING = "recurring"
    LUCID = "lucid"
    BIG_DREAM = "big_dream"


# --------------------------------------------------------------------------- requête


class UserContext(FrozenModel):
    """Contexte facultatif fourni par le rêveur."""

    age: int | None = None
    current_life_situation: str | None = None
    emotional_state: str | None = None
    recurring_symbols: list[str] = Field(default_factory=list)
    recent_major_events: list[str] = Field(default_factory=list)

    def is_rich(self) -> bool:
        """Vrai si le contexte permet une personnalisation (situation, émotion, symboles)."""
        return bool(
            (self.current_life_situation or "").strip()
            or (self.emotional_state or "").strip()
            or self.recurring_symbols
        )


class PriorDream(FrozenModel):
    """Rêve antérieur résumé, utilisé comme contexte."""

    text: str
    themes: list[str] = Field(default_factory=list)
    date: str | None = None


class DreamRequest(FrozenModel):
    """Requête d'interprétation, immuable une fois soumise."""

    dream_text: str = ""
    persona_id: str
    analysis_depth: AnalysisDepth = AnalysisDepth.INITIAL
    user_context: UserContext | None = None
    prior_dreams: list[PriorDream] = Field(default_factory=list)
    dream_id: str | None = None


# --------------------------------------------------------------------------- extraction


class Theme(DreamlensModel):
    """Thème de référence (code stable, libellé, embedding précalculé)."""

    code: str
    label: str
    keywords: list[str] = Field(default_factory=list)
    embedding: list[float] | None = None


class ThemeCandidate(FrozenModel):
    """Thème détecté dans un récit avec son poids de pertinence."""

    code: str
    label: str
    relevance: float = Field(ge=0.0, le=1.0)
    matched_keywords: list[str] = Field(default_factory=list)


class DreamElements(FrozenModel):
    """Résultat de l'extraction lexicale."""

    themes: list[ThemeCandidate] = Field(default_factory=list)
    symbols: list[str] = Field(default_factory=list)
    settings: list[str] = Field(default_factory=list)
    characters: list[str] = Field(default_factory=list)
    actions: list[str] = Field(default_factory=list)
    emotional_tone: EmotionalTone = EmotionalTone.NEUTRAL
    dream_type: DreamType = DreamType.ORDINARY

    @property
    def theme_codes(self) -> list[str]:
        """Codes des thèmes détectés, par pertinence décroissante."""
        return [t.code for t in self.themes]


# --------------------------------------------------------------------------- connaissances


class KnowledgeFragment(DreamlensModel):
    """Extrait de source rattaché à une persona propriétaire."""

    id: str
    text: str
    persona_id: str
    source: str = ""
    chapter: str | None = None
    topics: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    embedding: list[float] | None = Field(default=None, exclude=True)


class FragmentThemeAssociation(FrozenModel):
    """Triplet (fragment, thème, similarité) précalculé hors ligne."""

    fragment_id: str
    theme_code: str
    similarity: float = Field(ge=SIMILARITY_MIN, le=SIMILARITY_MAX)


class ScoredFragment(FrozenModel):
    """Fragment retenu avec son meilleur thème et sa similarité maximale."""

    fragment: KnowledgeFragment
    best_theme: str
    matched_themes: list[str] = Field(default_factory=list)
    similarity: float


class RetrievalResult(FrozenModel):
    """Fragments classés pour une requête, avec statistiques d'observabilité."""

    fragments: list[ScoredFragment] = Field(default_factory=list)
    total_candidates: int = 0
    degraded: bool = False
    reason: str | None = None
    method: str = "theme_associations"

    @property
    def fragments_kept(self) -> int:
        """Nombre de fragments transmis à l'étape suivante."""
        return len(self.fragments)


class RetrievalStats(FrozenModel):
    """Statistiques du filtre qualité, reprises dans les métadonnées de génération."""

    total_fragments_retrieved: int = 0
    fragments_used_after_filter: int = 0
    themes_represented: list[str] = Field(default_factory=list)


# --------------------------------------------------------------------------- prompt et complétion


class PromptTemplate(FrozenModel):
    """Gabarit de prompt reconstructible à partir de la requête et des fragments."""

    system_prompt: str
    analysis_structure: str
    output_format: str
    variables: dict[str, str] = Field(default_factory=dict)

    def to_messages(self, dream_text: str) -> list[dict[str, str]]:
        """Construit les messages (rôles system/user) envoyés à l'API de complétion."""
        system = "\n\n".join(
            part for part in (self.system_prompt, self.analysis_structure, self.output_format) if part
        )
        user = (
            f'Please interpret this dream:\n\n"{dream_text}"\n\n'
            "Remember: respond with ONLY the JSON object as specified."
        )
        return [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ]


class TokenUsage(FrozenModel):
    """Compteurs de tokens d'un appel."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_dict(cls, usage: dict[str, int] | None) -> TokenUsage:
        """Construit l'usage depuis un dict fournisseur (total recalculé si absent)."""
        usage = usage or {}
        prompt = int(usage.get("prompt_tokens") or 0)
        completion = int(usage.get("completion_tokens") or 0)
        total = int(usage.get("total_tokens") or 0) or prompt + completion
        return cls(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)


class CompletionResponse(FrozenModel):
    """Réponse d'une complétion réussie."""

    text: str
    model: str
    usage: TokenUsage = Field(default_factory=TokenUsage)


class CompletionAttempt(FrozenModel):
    """Trace d'une tentative sur un modèle de la chaîne de repli."""

    model: str
    succeeded: bool
    error_class: ErrorClass | None = None
    error_message: str | None = None
    usage: TokenUsage = Field(default_factory=TokenUsage)
    latency_ms: int = 0


# --------------------------------------------------------------------------- résultat


class SymbolMeaning(DreamlensModel):
    """Symbole normalisé avec ses trois niveaux de lecture."""

    symbol: str
    personal_meaning: str
    cultural_meaning: str
    archetypal_meaning: str


class Interpretation(DreamlensModel):
    """Interprétation typée par persona, immuable après création."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    persona_id: str
    dream_topic: str
    symbols: list[SymbolMeaning] = Field(default_factory=list)
    emotional_tone: EmotionalTone = EmotionalTone.NEUTRAL
    quick_take: str = ""
    interpretation: str
    persona_insight: dict[str, str] = Field(default_factory=dict)
    self_reflection: str
    is_fallback: bool = False


class GenerationMetadata(DreamlensModel):
    """Métadonnées de génération renvoyées avec l'interprétation."""

    knowledge_fragments_used: int = 0
    total_fragments_retrieved: int = 0
    fragment_ids_used: list[str] = Field(default_factory=list)
    themes: list[str] = Field(default_factory=list)
    dream_type: DreamType = DreamType.ORDINARY
    model: str | None = None
    attempts: int = 0
    processing_time_ms: int = 0
    parse_strategy: str | None = None
    retrieval_degraded: bool = False
    degraded_reason: str | None = None
    quality_warnings: list[str] = Field(default_factory=list)


class InterpretationResponse(DreamlensModel):
    """Enveloppe renvoyée à l'appelant, succès ou échec."""

    success: bool
    interpretation: Interpretation | None = None
    generation_metadata: GenerationMetadata | None = None
    error: str | None = None
    attempt_history: list[CompletionAttempt] = Field(default_factory=list)
