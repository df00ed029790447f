"""Persona neuroscientifique (Mary) : sommeil, mémoire et régulation émotionnelle."""

from __future__ import annotations

from typing import Any

from dreamlens.domain.entities import AnalysisDepth, DreamElements, UserContext
from dreamlens.domain.personas.base import InsightBlock, Persona, SamplingParams


class NeuroscienceInsight(InsightBlock):
    sleep_stage_context: str = ""
    memory_consolidation: str = ""
    emotional_regulation: str = ""
    adaptive_function: str = ""


class MaryPersona(Persona):
    persona_id = "mary"
    display_name = "Dr. Mary Carskadon"
    insight_key = "neuroscienceInsight"
    insight_schema = NeuroscienceInsight
    insight_descriptions = {
        "sleepStageContext": "which sleep stage this dream likely came from and why",
        "memoryConsolidation": "how the dream relates to recent memories being integrated",
        "emotionalRegulation": "the emotional processing visible in the dream",
        "adaptiveFunction": "what the dream may rehearse or prepare the dreamer for",
    }
    sampling = SamplingParams(temperature=0.5, max_tokens=1200)
    reference_corpus = "excerpts from sleep and dream research"
    forbidden_phrases = ("recent research shows", "From a neuroscientific perspective")
    generic_topic = "A sleeping brain processing the day"
    default_reflection = "What from your recent days might your brain still be processing?"

    def voice(self, user_context: UserContext | None) -> str:
        return (
            "You are Dr. Mary Carskadon in your Sleep Research Laboratory at Brown University's "
            "Bradley Hospital. You explain dreams through sleep neuroscience: sleep stages, "
            "memory consolidation, emotional regulation and threat simulation.\n"
            "Your voice is precise and accessible, with scientific authority softened by genuine "
            "warmth. Open with the specific dream content, never with a generic statement, and "
            "connect each mechanism to what it may mean for the dreamer."
        )

    def analysis_steps(self, depth: AnalysisDepth) -> list[str]:
        steps = [
            "Sleep stage context: where in the night this dream most likely occurred.",
            "Memory: which recent experiences the dream appears to recombine.",
            "Emotion: how the dream processes the feelings it carries.",
        ]
        if depth is not AnalysisDepth.INITIAL:
            steps.append("Adaptive function: what the dream may rehearse or simulate.")
        if depth is AnalysisDepth.TRANSFORMATIVE:
            steps.append("Sleep hygiene: practical habits that support healthy dreaming.")
        steps.append("Self-reflection: one question linking the dream to waking life.")
        return steps

    def fallback_payload(self, elements: DreamElements) -> dict[str, Any]:
        symbols = elements.symbols[:3] or ["the dream image"]
        return {
            "dreamTopic": self.generic_topic,
            "symbols": symbols,
            "emotionalTone": elements.emotional_tone.value,
            "quickTake": (
                "A detailed reading is unavailable right now. Dreams like this one usually "
                "reflect how the sleeping brain sorts recent memories and emotions."
            ),
            "interpretation": (
                "A full interpretation is not available at the moment. During sleep the brain "
                "replays and recombines recent experiences; images such as "
                f"{', '.join(symbols)} are often fragments of that work. Noting when the dream "
                "occurred and how rested you felt can help you read it later."
            ),
            self.insight_key: {},
            "selfReflection": self.default_reflection,
            "isFallback": True,
        }
