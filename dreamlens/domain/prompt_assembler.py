"""
Assemblage du prompt d'interprétation.

Le gabarit produit combine :
- le prompt système de la persona, précédé d'un bloc de contexte du rêveur (chemin riche) ou d'une
  consigne de sobriété (chemin minimal) ;
- la structure d'analyse (étapes exigées et éléments détectés) ;
- le format de sortie, qui embarque les fragments filtrés comme références étiquetées avec leur
  provenance, dans la limite d'un budget de tokens.
"""

from __future__ import annotations

import structlog

from dreamlens.core.constants import (
    MIN_PARTIAL_REFERENCE_CHARS,
    MIN_PARTIAL_REFERENCE_TOKENS,
    PARTIAL_REFERENCE_MARGIN,
)
from dreamlens.domain.entities import (
    DreamElements,
    DreamRequest,
    PromptTemplate,
    ScoredFragment,
    UserContext,
)
from dreamlens.domain.personas.base import truncate_words
from dreamlens.domain.personas.registry import get_persona
from dreamlens.infra.llm.tokens import count_tokens, trim_to_tokens

PRIOR_DREAM_SUMMARY_WORDS = 30
NO_REFERENCES = (
    "No reference material was retrieved for this dream. Work from the dream itself and your "
    "own expertise."
)

logger = structlog.get_logger(__name__)


def reference_header(index: int, scored: ScoredFragment) -> str:
    """En-tête de provenance d'une référence : `[REF n] source=... id=... similarity=...`."""
    fragment = scored.fragment
    source = fragment.source or "unknown"
    if fragment.chapter:
        source = f"{source}/{fragment.chapter}"
    return f"[REF {index}] source={source} id={fragment.id} similarity={scored.similarity:.2f}"


def format_references(fragments: list[ScoredFragment], token_budget: int) -> tuple[str, list[str]]:
    """Formate les fragments en références, les plus pertinents d'abord, dans le budget.

    Le dernier fragment qui dépasse le budget est tronqué s'il reste assez de place, sinon omis.

    Args:
        fragments: Fragments triés par similarité décroissante.
        token_budget: Budget de tokens des références.

    Returns:
        tuple: Texte des références et identifiants effectivement inclus.
    """
    blocks: list[str] = []
    included: list[str] = []
    used = 0
    for scored in fragments:
        header = reference_header(len(blocks) + 1, scored)
        block = f"{header}\n{scored.fragment.text.strip()}"
        tokens = count_tokens(block)
        if used + tokens <= token_budget:
            blocks.append(block)
            included.append(scored.fragment.id)
            used += tokens
            continue
        remaining = token_budget - used
        if remaining > MIN_PARTIAL_REFERENCE_TOKENS:
            trimmed = trim_to_tokens(
                scored.fragment.text.strip(),
                remaining - PARTIAL_REFERENCE_MARGIN - count_tokens(header),
            )
            if len(trimmed) > MIN_PARTIAL_REFERENCE_CHARS:
                blocks.append(f"{header}\n{trimmed}")
                included.append(scored.fragment.id)
        break
    if len(included) < len(fragments):
        logger.info(
            "references_trimmed_to_budget",
            budget=token_budget,
            kept=len(included),
            available=len(fragments),
        )
    return ("\n\n".join(blocks) if blocks else NO_REFERENCES), included


def context_section(request: DreamRequest) -> tuple[str, bool]:
    """Bloc de contexte du rêveur ; retourne aussi le chemin choisi (riche ou non)."""
    ctx = request.user_context or UserContext()
    rich = ctx.is_rich()
    lines = ["DREAMER CONTEXT:"]
    if ctx.age:
        lines.append(f"- Age: {ctx.age}")
    if rich:
        if ctx.current_life_situation:
            lines.append(f"- Current life situation: {ctx.current_life_situation.strip()}")
        if ctx.emotional_state:
            lines.append(f"- Emotional state: {ctx.emotional_state.strip()}")
        if ctx.recurring_symbols:
            lines.append("- Recurring symbols: " + ", ".join(ctx.recurring_symbols))
        if ctx.recent_major_events:
            lines.append("- Recent major events: " + "; ".join(ctx.recent_major_events))
    if request.prior_dreams:
        lines.append("- Prior dreams:")
        for prior in request.prior_dreams:
            summary = truncate_words(prior.text, PRIOR_DREAM_SUMMARY_WORDS)
            label = f"{prior.date}: " if prior.date else ""
            themes = f" (themes: {', '.join(prior.themes)})" if prior.themes else ""
            lines.append(f"  - {label}{summary}{themes}")
    if rich:
        lines.append("Use this rich context to provide deeply personalized insights.")
    else:
        lines.append(
            "Little is known about the dreamer. Do not invent personal details, relationships or "
            "events.\nWork with what you have. Focus on the most evident symbols and themes."
        )
    return "\n".join(lines), rich


class PromptAssembler:
    """Construit le `PromptTemplate` d'une requête pour sa persona."""

    def __init__(self, reference_token_budget: int = 2000) -> None:
        self.reference_token_budget = reference_token_budget

    def assemble(
        self,
        request: DreamRequest,
        elements: DreamElements,
        fragments: list[ScoredFragment],
    ) -> PromptTemplate:
        """Assemble le gabarit de prompt.

        Raises:
            UnknownPersonaError: Persona inconnue.
        """
        persona = get_persona(request.persona_id)
        context, rich = context_section(request)
        references, included = format_references(fragments, self.reference_token_budget)
        template = PromptTemplate(
            system_prompt=persona.build_system_prompt(context, request.user_context),
            analysis_structure=persona.build_analysis_structure(request.analysis_depth, elements),
            output_format=persona.build_output_format(references),
            variables={
                "persona": persona.persona_id,
                "analysis_depth": request.analysis_depth.value,
                "context_mode": "rich" if rich else "minimal",
                "dream_type": elements.dream_type.value,
                "emotional_tone": elements.emotional_tone.value,
                "themes": ", ".join(elements.theme_codes),
                "symbols": ", ".join(elements.symbols),
                "settings": ", ".join(elements.settings),
                "reference_ids": ",".join(included),
                "reference_count": str(len(included)),
            },
        )
        logger.info(
            "prompt_assembled",
            persona=persona.persona_id,
            context_mode=template.variables["context_mode"],
            references=len(included),
        )
        return template
