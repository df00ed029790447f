"""Persona jungienne : lecture archétypale, ombre et fonction compensatoire."""

from __future__ import annotations

from typing import Any

from dreamlens.domain.entities import AnalysisDepth, DreamElements, UserContext
from dreamlens.domain.personas.base import InsightBlock, Persona, SamplingParams

DEFAULT_AGE = 30


class JungianInsight(InsightBlock):
    primary_archetype: str = ""
    shadow_elements: str = ""
    compensatory_function: str = ""
    individuation_guidance: str = ""


def life_phase(age: int) -> str:
    """Phase de vie en langage naturel, selon l'âge du rêveur."""
    if age < 25:
        return "in the spring of life, building your identity"
    if age < 35:
        return "establishing yourself in the world"
    if age < 45:
        return "approaching the great turning point of midlife"
    if age < 55:
        return "in the afternoon of life, seeking deeper meaning"
    if age < 65:
        return "harvesting the wisdom of your experience"
    return "in the evening of life, approaching the great mystery"


class JungPersona(Persona):
    persona_id = "jung"
    display_name = "Carl Jung"
    insight_key = "jungianInsight"
    insight_schema = JungianInsight
    insight_descriptions = {
        "primaryArchetype": "the archetype most active in this dream",
        "shadowElements": "what disowned content the dream brings forward",
        "compensatoryFunction": "which conscious attitude the dream balances",
        "individuationGuidance": "how to work with this material on your path",
    }
    sampling = SamplingParams(temperature=0.7, max_tokens=1500)
    reference_corpus = "excerpts from Jung's collected works"
    forbidden_phrases = (
        "shadow material that's trying to integrate",
        "Your unconscious is",
        "The dream shows",
        "As I listen to your dream, I'm struck by",
    )

    def voice(self, user_context: UserContext | None) -> str:
        age = (user_context.age if user_context else None) or DEFAULT_AGE
        return (
            "You are Carl Jung speaking directly to a patient in your study in Küsnacht, "
            "Switzerland. You have just listened to them share their dream, and you respond with "
            "decades of clinical wisdom.\n"
            "Your voice is warm yet penetrating, scholarly yet accessible. Use 'I' for your "
            "observations and 'you' for the dreamer. Speak from lived experience, not textbook "
            f"knowledge. The dreamer is about {age}, {life_phase(age)}.\n"
            "Use at most four technical terms (anima/animus, Self, shadow, complex, "
            "individuation, archetype, collective unconscious, persona)."
        )

    def analysis_steps(self, depth: AnalysisDepth) -> list[str]:
        steps = [
            "Opening observation: what genuinely strikes you about this specific dream.",
            "Symbol exploration: two or three key symbols, personal and collective meaning.",
            "Shadow or compensatory insight: what the psyche is balancing or revealing.",
        ]
        if depth is not AnalysisDepth.INITIAL:
            steps.append("Complexes and ego/unconscious relationship visible in the dream's plot.")
        if depth is AnalysisDepth.TRANSFORMATIVE:
            steps.append("Individuation: which stage or task of becoming is being presented.")
        steps.append("Closing reflection: one question that will stay with the dreamer.")
        return steps

    def fallback_payload(self, elements: DreamElements) -> dict[str, Any]:
        symbols = elements.symbols[:3] or ["the dream image"]
        return {
            "dreamTopic": self.generic_topic,
            "symbols": symbols,
            "emotionalTone": elements.emotional_tone.value,
            "quickTake": (
                "I could not complete a full reading of this dream, yet its images are addressing "
                "you and deserve your attention."
            ),
            "interpretation": (
                "A full interpretation is not available at the moment. What remains is the dream "
                f"itself: images such as {', '.join(symbols)} came to you for a reason. Write them "
                "down, stay with the feeling they leave behind, and notice where they echo your "
                "waking life."
            ),
            self.insight_key: {
                "primaryArchetype": "",
                "shadowElements": "",
                "compensatoryFunction": "",
                "individuationGuidance": "Return to this dream when you can and let it speak again.",
            },
            "selfReflection": self.default_reflection,
            "isFallback": True,
        }
