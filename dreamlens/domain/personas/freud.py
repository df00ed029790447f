"""Persona freudienne : désir, contenu latent et mécanismes de défense."""

from __future__ import annotations

from typing import Any

from dreamlens.domain.entities import AnalysisDepth, DreamElements, UserContext
from dreamlens.domain.personas.base import InsightBlock, Persona, SamplingParams

DEFAULT_AGE = 30


class FreudianInsight(InsightBlock):
    manifest_wish: str = ""
    latent_content: str = ""
    defense_mechanisms: str = ""
    childhood_connections: str = ""


def developmental_phase(age: int) -> str:
    """Phase développementale, dans le vocabulaire psychanalytique."""
    if age < 25:
        return "navigating the challenges of early adulthood, establishing ego autonomy"
    if age < 35:
        return "in the prime of genital maturity, balancing love and work"
    if age < 45:
        return "confronting the neuroses of achievement and intimacy"
    if age < 55:
        return "facing midlife's return of the repressed and narcissistic challenges"
    if age < 65:
        return "working through late-life anxieties about legacy and mortality"
    return "approaching life's end with concerns about ego integrity and the death drive"


class FreudPersona(Persona):
    persona_id = "freud"
    display_name = "Sigmund Freud"
    insight_key = "freudianInsight"
    insight_schema = FreudianInsight
    insight_descriptions = {
        "manifestWish": "the wish the dream stages, stated plainly",
        "latentContent": "the hidden thought behind the dream's surface",
        "defenseMechanisms": "displacement, condensation or other defenses at work",
        "childhoodConnections": "early experiences the dream may be reworking",
    }
    sampling = SamplingParams(temperature=0.6, max_tokens=1500)
    reference_corpus = "excerpts from Freud's writings on dreams"
    forbidden_phrases = (
        "Oedipus complex",
        "Wolf Man",
        "Rat Man",
        "manifest vs latent content",
        "What we have here",
    )
    generic_topic = "A hidden wish seeking disguised expression"
    default_reflection = "What wish might this dream be fulfilling for you?"

    def voice(self, user_context: UserContext | None) -> str:
        age = (user_context.age if user_context else None) or DEFAULT_AGE
        return (
            "You are Dr. Sigmund Freud in your study at Berggasse 19, Vienna. A patient has just "
            "told you their dream from the couch, and you answer with the precision of a clinician "
            "who has listened to thousands of dreams.\n"
            "Your voice is incisive, curious and unhurried. Follow the dream's details as "
            "associations, attend to what is displaced or condensed, and speak to the dreamer as "
            f"'you'. The dreamer is {age}, {developmental_phase(age)}."
        )

    def analysis_steps(self, depth: AnalysisDepth) -> list[str]:
        steps = [
            "Dream topic: 5-9 words naming the core conflict.",
            "Symbols: 3-8 symbols from the dream, each with its possible disguise.",
            "Quick take: about 40 words on the wish the dream is staging.",
            "Interpretation: 100-450 words tracing wish, censorship and defense.",
        ]
        if depth is not AnalysisDepth.INITIAL:
            steps.insert(3, "Day residue: which recent impressions the dream borrows from.")
        if depth is AnalysisDepth.TRANSFORMATIVE:
            steps.append("Childhood connections: early scenes the dream may be repeating.")
        steps.append("Self-reflection: one question starting with When, Where, What or How.")
        return steps

    def fallback_payload(self, elements: DreamElements) -> dict[str, Any]:
        symbols = elements.symbols[:3] or ["the dream image"]
        return {
            "dreamTopic": self.generic_topic,
            "symbols": symbols,
            "emotionalTone": elements.emotional_tone.value,
            "quickTake": (
                "A complete analysis could not be produced now, but every dream carries a wish "
                "that is worth following."
            ),
            "interpretation": (
                "A full interpretation is not available at the moment. Note the details that stay "
                f"with you, such as {', '.join(symbols)}, and the first associations they call up. "
                "Those associations are the path toward the dream's meaning."
            ),
            self.insight_key: {},
            "selfReflection": self.default_reflection,
            "isFallback": True,
        }
