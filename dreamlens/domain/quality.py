"""
Contrôle qualité des fragments récupérés et revue de l'interprétation générée.

- `QualityControlFilter` : déduplication, plafond de fragments et règle de diversité par thème
  avant l'assemblage du prompt.
- `review_interpretation` : vérifications post-génération (phrases interdites, champs vides,
  intégration des références). Les constats sont journalisés et rapportés, jamais bloquants.
"""

from __future__ import annotations

import math
import re
from collections import Counter

import structlog

from dreamlens.app.metrics import QC_FRAGMENTS_USED
from dreamlens.core.constants import DREAM_TOPIC_MAX_WORDS, DREAM_TOPIC_MIN_WORDS
from dreamlens.domain.entities import (
    Interpretation,
    RetrievalResult,
    RetrievalStats,
    ScoredFragment,
    ThemeCandidate,
)
from dreamlens.domain.personas.base import Persona

# Mots des fragments considérés comme significatifs pour la vérification d'intégration
MIN_SIGNIFICANT_WORD_LENGTH = 6

logger = structlog.get_logger(__name__)


class QualityControlFilter:
    """Filtre dédup/plafond/diversité appliqué aux fragments classés."""

    def __init__(self, max_fragments: int = 10, max_theme_share: float = 0.6) -> None:
        """Initialise le filtre.

        Args:
            max_fragments: Nombre maximal de fragments transmis au prompt.
            max_theme_share: Part maximale du plafond qu'un seul thème peut occuper quand
                plusieurs thèmes ont été détectés.
        """
        self.max_fragments = max(0, max_fragments)
        self.max_theme_share = max_theme_share

    def apply(
        self, result: RetrievalResult, themes: list[ThemeCandidate]
    ) -> tuple[list[ScoredFragment], RetrievalStats]:
        """Filtre les fragments et calcule les statistiques de retrieval.

        Args:
            result: Résultat classé du retriever.
            themes: Thèmes détectés dans le rêve.

        Returns:
            tuple: Fragments retenus (ordre de score conservé) et statistiques.
        """
        seen: set[str] = set()
        candidates: list[ScoredFragment] = []
        for scored in result.fragments:
            if scored.fragment.id in seen or not scored.fragment.text.strip():
                continue
            seen.add(scored.fragment.id)
            candidates.append(scored)

        cap = self.max_fragments
        theme_codes = {t.code for t in themes} | {c.best_theme for c in candidates}
        if len(themes) > 1 and len(theme_codes) > 1:
            per_theme = max(1, math.ceil(cap * self.max_theme_share))
            selected: list[ScoredFragment] = []
            deferred: list[ScoredFragment] = []
            counts: Counter[str] = Counter()
            for scored in candidates:
                if len(selected) >= cap:
                    break
                if counts[scored.best_theme] >= per_theme:
                    deferred.append(scored)
                    continue
                counts[scored.best_theme] += 1
                selected.append(scored)
            # places restantes complétées par score une fois les autres thèmes épuisés
            for scored in deferred:
                if len(selected) >= cap:
                    break
                selected.append(scored)
            selected.sort(key=lambda s: s.similarity, reverse=True)
        else:
            selected = candidates[:cap]

        represented: list[str] = []
        for scored in selected:
            if scored.best_theme not in represented:
                represented.append(scored.best_theme)
        stats = RetrievalStats(
            total_fragments_retrieved=len(result.fragments),
            fragments_used_after_filter=len(selected),
            themes_represented=represented,
        )
        QC_FRAGMENTS_USED.observe(len(selected))
        logger.info(
            "quality_control_applied",
            total_fragments_retrieved=stats.total_fragments_retrieved,
            fragments_used_after_filter=stats.fragments_used_after_filter,
            themes_represented=represented,
        )
        return selected, stats


def review_interpretation(
    interp: Interpretation, persona: Persona, fragments: list[ScoredFragment]
) -> list[str]:
    """Revue post-génération d'une interprétation.

    Args:
        interp: Interprétation normalisée.
        persona: Persona ayant produit l'interprétation.
        fragments: Fragments transmis au prompt.

    Returns:
        list[str]: Codes d'avertissement (vide si rien à signaler).
    """
    warnings: list[str] = []
    text = " ".join([interp.dream_topic, interp.quick_take, interp.interpretation]).lower()
    for phrase in persona.forbidden_phrases:
        if phrase.lower() in text:
            warnings.append(f"forbidden_phrase:{phrase}")

    if not interp.interpretation.strip():
        warnings.append("empty_field:interpretation")
    if not interp.symbols:
        warnings.append("empty_field:symbols")
    topic_words = len(interp.dream_topic.split())
    if not DREAM_TOPIC_MIN_WORDS <= topic_words <= DREAM_TOPIC_MAX_WORDS:
        warnings.append("dream_topic_length")

    if fragments and not interp.is_fallback:
        narrative = interp.interpretation.lower()
        keywords = {
            word
            for scored in fragments
            for word in re.findall(r"[a-z]+", scored.fragment.text.lower())
            if len(word) >= MIN_SIGNIFICANT_WORD_LENGTH
        }
        if keywords and not any(word in narrative for word in keywords):
            warnings.append("references_not_integrated")

    for warning in warnings:
        logger.warning("interpretation_quality_warning", persona=persona.persona_id, warning=warning)
    return warnings
