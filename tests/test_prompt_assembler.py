# ============================================================
# Tests : tests/test_prompt_assembler.py
# Objet  : Assemblage du prompt (contexte, références, budget).
# ============================================================
"""Tests pour l'assemblage du prompt.

Ce module teste les chemins de contexte riche et minimal, l'étiquetage des références avec leur
provenance et le respect du budget de tokens.
"""

from __future__ import annotations

import pytest

from dreamlens.domain.entities import (
    AnalysisDepth,
    DreamRequest,
    PriorDream,
    ScoredFragment,
    UserContext,
)
from dreamlens.domain.errors import UnknownPersonaError
from dreamlens.domain.extractor import ThemeExtractor
from dreamlens.domain.prompt_assembler import (
    NO_REFERENCES,
    PromptAssembler,
    context_section,
    format_references,
    reference_header,
)
from dreamlens.infra.llm import tokens
from dreamlens.infra.llm.tokens import count_tokens
from tests.fakes import CHASE_DREAM, fragment

# Constantes pour éviter les erreurs PLR2004 (Magic values)
LARGE_BUDGET = 10_000
PARTIAL_MARGIN = 150
SMALL_MARGIN = 10
CHAR_ESTIMATE_TOKENS = 3


def _scored(fid: str, text: str, similarity: float = 0.78, chapter: str | None = "VII"):
    return ScoredFragment(
        fragment=fragment(fid, "freud", text, source="The Interpretation of Dreams", chapter=chapter),
        best_theme="chase",
        matched_themes=["chase"],
        similarity=similarity,
    )


def test_reference_header_carries_provenance():
    """Teste le format de l'en-tête de provenance d'une référence."""
    header = reference_header(1, _scored("f1", "text"))
    assert header == "[REF 1] source=The Interpretation of Dreams/VII id=f1 similarity=0.78"
    assert "source=The Interpretation of Dreams id=f2" in reference_header(
        2, _scored("f2", "text", chapter=None)
    )


def test_format_references_empty():
    """Teste le texte de remplacement quand aucun fragment n'est disponible."""
    assert format_references([], LARGE_BUDGET) == (NO_REFERENCES, [])


def test_format_references_keeps_all_within_budget():
    """Teste que tous les fragments sont inclus si le budget le permet."""
    fragments = [_scored("f1", "First passage."), _scored("f2", "Second passage.", 0.5)]
    text, included = format_references(fragments, LARGE_BUDGET)
    assert included == ["f1", "f2"]
    assert text.index("[REF 1]") < text.index("[REF 2]")


def test_format_references_drops_when_little_budget_remains():
    """Teste qu'un fragment est omis quand il reste trop peu de budget pour le tronquer."""
    first = _scored("f1", "First passage about anxiety.")
    second = _scored("f2", "word " * 500, 0.5)
    block = f"{reference_header(1, first)}\n{first.fragment.text}"
    _, included = format_references([first, second], count_tokens(block) + SMALL_MARGIN)
    assert included == ["f1"]


def test_format_references_truncates_last_fragment():
    """Teste la troncature du dernier fragment quand le budget restant est suffisant."""
    first = _scored("f1", "First passage about anxiety.")
    second = _scored("f2", "wish " * 2000, 0.5)
    block = f"{reference_header(1, first)}\n{first.fragment.text}"
    text, included = format_references([first, second], count_tokens(block) + PARTIAL_MARGIN)
    assert included == ["f1", "f2"]
    assert text.endswith("...")


def test_context_section_rich_and_minimal():
    """Teste le choix du chemin de contexte selon les informations du rêveur."""
    rich_request = DreamRequest(
        dream_text=CHASE_DREAM,
        persona_id="freud",
        user_context=UserContext(age=42, emotional_state="anxious about a new job"),
    )
    text, rich = context_section(rich_request)
    assert rich is True
    assert "Emotional state: anxious about a new job" in text
    assert "Use this rich context to provide deeply personalized insights." in text

    minimal_request = DreamRequest(
        dream_text=CHASE_DREAM, persona_id="freud", user_context=UserContext(age=42)
    )
    text, rich = context_section(minimal_request)
    assert rich is False
    assert "Age: 42" in text
    assert "Work with what you have. Focus on the most evident symbols and themes." in text


def test_context_section_prior_dreams():
    """Teste le résumé des rêves antérieurs dans le contexte."""
    request = DreamRequest(
        dream_text=CHASE_DREAM,
        persona_id="jung",
        prior_dreams=[PriorDream(text="A flood in my childhood home", themes=["water"], date="2024-05-01")],
    )
    text, _ = context_section(request)
    assert "2024-05-01: A flood in my childhood home (themes: water)" in text


def test_assemble_template():
    """Teste l'assemblage complet d'un gabarit pour la persona freudienne."""
    request = DreamRequest(
        dream_text=CHASE_DREAM, persona_id="freud", analysis_depth=AnalysisDepth.DEEP
    )
    elements = ThemeExtractor().extract(CHASE_DREAM)
    template = PromptAssembler().assemble(
        request, elements, [_scored("freud-anxiety", "Anxiety dreams of being pursued.")]
    )
    assert "Berggasse 19" in template.system_prompt
    assert "Oedipus complex" in template.system_prompt
    assert "ANALYSIS STRUCTURE (deep analysis)" in template.analysis_structure
    assert "Day residue" in template.analysis_structure
    assert "DETECTED DREAM ELEMENTS" in template.analysis_structure
    assert "[REF 1]" in template.output_format
    assert '"freudianInsight"' in template.output_format
    assert template.variables["context_mode"] == "minimal"
    assert template.variables["reference_ids"] == "freud-anxiety"
    assert template.variables["dream_type"] == "nightmare"

    messages = template.to_messages(CHASE_DREAM)
    assert [m["role"] for m in messages] == ["system", "user"]
    assert CHASE_DREAM in messages[1]["content"]


def test_assemble_without_references():
    """Teste que l'absence de fragments est signalée dans le format de sortie."""
    request = DreamRequest(dream_text=CHASE_DREAM, persona_id="mary")
    template = PromptAssembler().assemble(request, ThemeExtractor().extract(CHASE_DREAM), [])
    assert NO_REFERENCES in template.output_format
    assert template.variables["reference_count"] == "0"


def test_assemble_unknown_persona():
    """Teste qu'une persona inconnue lève UnknownPersonaError."""
    request = DreamRequest(dream_text=CHASE_DREAM, persona_id="nobody")
    with pytest.raises(UnknownPersonaError):
        PromptAssembler().assemble(request, ThemeExtractor().extract(CHASE_DREAM), [])


def test_token_helpers_without_encoding(monkeypatch):
    """Teste l'estimation par caractères quand l'encodage tiktoken est indisponible."""
    monkeypatch.setattr(tokens, "_encoding", lambda model: None)
    assert tokens.count_tokens("abcdefghi") == CHAR_ESTIMATE_TOKENS
    assert tokens.count_tokens("") == 0
    assert tokens.trim_to_tokens("word " * 10, 2) == "word wor..."
    assert tokens.trim_to_tokens("short", 2) == "short"
    assert tokens.trim_to_tokens("anything", 0) == ""
