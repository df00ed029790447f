"""Socle commun des personas d'interprétation.

Une persona est une variante fermée (une classe par voix interprétative) qui implémente la même
interface de capacités : construction du prompt système, de la structure d'analyse et du format de
sortie, puis normalisation de la réponse du modèle en `Interpretation`. La sélection se fait une
fois par requête via la table de `registry.py`.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from dreamlens.core.constants import DREAM_TOPIC_MAX_WORDS
from dreamlens.domain.entities import (
    AnalysisDepth,
    DreamElements,
    EmotionalTone,
    Interpretation,
    SymbolMeaning,
    UserContext,
)

QUICK_TAKE_MAX_WORDS = 40
_TONES = {t.value for t in EmotionalTone}


class InsightBlock(BaseModel):
    """Bloc d'analyse propre à une persona ; jeu de champs fermé, tous textuels."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


@dataclass(frozen=True)
class SamplingParams:
    """Paramètres d'échantillonnage de la complétion."""

    temperature: float
    max_tokens: int


def as_text(value: Any) -> str:
    """Convertit une valeur JSON quelconque en texte (listes jointes, objets sérialisés)."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, list):
        return "; ".join(as_text(v) for v in value if as_text(v))
    if isinstance(value, dict):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def ensure_question(text: str, default: str) -> str:
    """Garantit une question de réflexion bien formée (terminée par '?')."""
    text = (text or "").strip()
    if not text:
        return default
    if not text.endswith("?"):
        text = text.rstrip(".!:;, ") + "?"
    return text


def truncate_words(text: str, max_words: int) -> str:
    """Tronque un texte à `max_words` mots."""
    words = (text or "").split()
    return " ".join(words[:max_words])


class Persona(ABC):
    """Variante de persona : voix, schéma de sortie et normalisation."""

    persona_id: ClassVar[str]
    display_name: ClassVar[str]
    insight_key: ClassVar[str]
    insight_schema: ClassVar[type[InsightBlock]]
    insight_descriptions: ClassVar[dict[str, str]]
    sampling: ClassVar[SamplingParams]
    reference_corpus: ClassVar[str]
    forbidden_phrases: ClassVar[tuple[str, ...]] = ()
    # Chaîne de modèles propre à la persona ; vide = chaîne globale
    preferred_models: ClassVar[tuple[str, ...]] = ()
    default_reflection: ClassVar[str] = "What does this dream awaken in you?"
    generic_topic: ClassVar[str] = "Unconscious communication seeking integration"

    # -------------------- Prompt --------------------

    @abstractmethod
    def voice(self, user_context: UserContext | None) -> str:
        """Présentation de la persona (identité, ton, vocabulaire)."""

    @abstractmethod
    def analysis_steps(self, depth: AnalysisDepth) -> list[str]:
        """Étapes de raisonnement exigées, selon la profondeur d'analyse."""

    def build_system_prompt(self, context_section: str, user_context: UserContext | None) -> str:
        """Assemble le prompt système : voix, contexte du rêveur, règles de réponse."""
        rules = [
            "Speak directly to the dreamer in the second person.",
            "Ground every claim in the dream's own images; never invent biographical facts.",
            "You always answer with a single JSON object and never with free-form prose.",
        ]
        if self.forbidden_phrases:
            rules.append("Never use these phrases: " + ", ".join(self.forbidden_phrases) + ".")
        return "\n\n".join(
            [
                self.voice(user_context),
                context_section,
                "RULES:\n" + "\n".join(f"- {r}" for r in rules),
            ]
        )

    def build_analysis_structure(self, depth: AnalysisDepth, elements: DreamElements) -> str:
        """Décrit les étapes d'analyse et les éléments détectés dans le récit."""
        steps = "\n".join(f"{i}. {step}" for i, step in enumerate(self.analysis_steps(depth), 1))
        detected = [
            f"- Dream type: {elements.dream_type.value.replace('_', ' ')}",
            f"- Emotional tone: {elements.emotional_tone.value}",
        ]
        if elements.themes:
            detected.append("- Themes: " + ", ".join(t.label for t in elements.themes))
        if elements.symbols:
            detected.append("- Surface symbols: " + ", ".join(elements.symbols))
        if elements.settings:
            detected.append("- Settings: " + ", ".join(elements.settings))
        if elements.characters:
            detected.append("- Characters: " + ", ".join(elements.characters))
        return (
            f"ANALYSIS STRUCTURE ({depth.value} analysis):\n{steps}\n\n"
            "DETECTED DREAM ELEMENTS (keyword analysis, may be incomplete):\n" + "\n".join(detected)
        )

    def output_schema(self) -> dict[str, Any]:
        """Schéma JSON attendu (valeurs = consignes de contenu)."""
        return {
            "dreamTopic": "5-9 words naming the core tension of the dream",
            "symbols": [
                {
                    "symbol": "a symbol from the dream",
                    "personalMeaning": "what it may mean for this dreamer",
                    "culturalMeaning": "its shared or cultural meaning",
                    "archetypalMeaning": "its deeper or universal meaning",
                }
            ],
            "emotionalTone": "positive | negative | mixed | neutral",
            "quickTake": "about 40 words: the question this dream is posing",
            "interpretation": "100-450 words, paragraphs separated by blank lines",
            self.insight_key: dict(self.insight_descriptions),
            "selfReflection": "one question starting with When, Where, What or How",
        }

    def build_output_format(self, references: str) -> str:
        """Section de format de sortie : références étiquetées puis contrat JSON fermé."""
        return (
            f"REFERENCE MATERIAL ({self.reference_corpus}):\n{references}\n\n"
            "Use the references to ground your reading. Paraphrase them; do not quote them "
            "verbatim and do not mention reference numbers.\n\n"
            "OUTPUT FORMAT:\n"
            "Respond with ONE JSON object and nothing else: no markdown, no commentary before or "
            "after. Use exactly these fields, no more, no less:\n"
            + json.dumps(self.output_schema(), indent=2, ensure_ascii=False)
        )

    # -------------------- Réponse --------------------

    def parse_response(self, payload: dict[str, Any], elements: DreamElements) -> Interpretation:
        """Normalise une réponse décodée en `Interpretation` validée par le schéma de la persona.

        Les champs valides sont repris tels quels ; seuls les champs absents ou mal typés sont
        complétés (symboles nus enveloppés, tonalité issue de l'extraction, question garantie).
        """
        payload = self._flatten(payload)
        narrative = as_text(payload.get("interpretation"))
        topic = as_text(payload.get("dreamTopic") or payload.get("dream_topic"))
        tone = as_text(payload.get("emotionalTone") or payload.get("emotional_tone")).lower()
        quick_take = as_text(payload.get("quickTake") or payload.get("quick_take"))
        return Interpretation(
            persona_id=self.persona_id,
            dream_topic=self._dream_topic(topic, elements),
            symbols=self.normalize_symbols(payload.get("symbols"), elements),
            emotional_tone=EmotionalTone(tone) if tone in _TONES else elements.emotional_tone,
            quick_take=quick_take or truncate_words(narrative, QUICK_TAKE_MAX_WORDS),
            interpretation=narrative,
            persona_insight=self._insight(payload),
            self_reflection=ensure_question(
                as_text(payload.get("selfReflection") or payload.get("self_reflection")),
                self.default_reflection,
            ),
            is_fallback=bool(payload.get("isFallback", False)),
        )

    def normalize_symbols(self, raw: Any, elements: DreamElements) -> list[SymbolMeaning]:
        """Enveloppe les symboles nus et complète les significations manquantes."""
        items = raw if isinstance(raw, list) else []
        if not items:
            items = list(elements.symbols)
        symbols: list[SymbolMeaning] = []
        for item in items:
            if isinstance(item, dict):
                name = as_text(item.get("symbol") or item.get("name"))
                personal = as_text(
                    item.get("personalMeaning") or item.get("personal_meaning") or item.get("meaning")
                )
                cultural = as_text(item.get("culturalMeaning") or item.get("cultural_meaning"))
                archetypal = as_text(item.get("archetypalMeaning") or item.get("archetypal_meaning"))
            else:
                name, personal, cultural, archetypal = as_text(item), "", "", ""
            if not name:
                continue
            symbols.append(
                SymbolMeaning(
                    symbol=name,
                    personal_meaning=personal
                    or f"What {name} evokes for you personally is worth exploring.",
                    cultural_meaning=cultural or f"{name.capitalize()} carries shared meanings.",
                    archetypal_meaning=archetypal
                    or f"{name.capitalize()} may point to a recurring human pattern.",
                )
            )
        return symbols

    @abstractmethod
    def fallback_payload(self, elements: DreamElements) -> dict[str, Any]:
        """Interprétation de repli, clairement étiquetée, au format de sortie de la persona."""

    def prose_headings(self) -> dict[str, str]:
        """Titres reconnus dans une réponse en prose -> clé du format JSON."""
        headings = {
            "dream topic": "dreamTopic",
            "topic": "dreamTopic",
            "symbols": "symbols",
            "key symbols": "symbols",
            "emotional tone": "emotionalTone",
            "quick take": "quickTake",
            "summary": "quickTake",
            "interpretation": "interpretation",
            "analysis": "interpretation",
            "self reflection": "selfReflection",
            "self-reflection": "selfReflection",
            "reflection": "selfReflection",
            "reflection question": "selfReflection",
        }
        for field in self.insight_schema.model_fields:
            headings[field.replace("_", " ")] = f"{self.insight_key}.{to_camel(field)}"
        return headings

    # -------------------- Helpers internes --------------------

    def _flatten(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Ancien format : `interpretation` est un objet contenant les autres champs."""
        nested = payload.get("interpretation")
        if not isinstance(nested, dict):
            return payload
        flat = {k: v for k, v in payload.items() if k != "interpretation"}
        for key, value in nested.items():
            flat.setdefault(key, value)
        if not isinstance(flat.get("interpretation"), str):
            flat["interpretation"] = as_text(
                nested.get("text") or nested.get("narrative") or nested.get("interpretation")
            )
        return flat

    def _insight(self, payload: dict[str, Any]) -> dict[str, str]:
        raw = payload.get(self.insight_key)
        if not isinstance(raw, dict):
            # forme sérialisée d'une `Interpretation`
            raw = payload.get("personaInsight")
        block: dict[str, Any] = dict(raw) if isinstance(raw, dict) else {}
        for name in self.insight_schema.model_fields:
            alias = to_camel(name)
            if alias not in block and name not in block and alias in payload:
                block[alias] = payload[alias]
        cleaned = {k: as_text(v) for k, v in block.items()}
        validated = self.insight_schema.model_validate(cleaned)
        return {k: v for k, v in validated.model_dump(by_alias=True).items()}

    def _dream_topic(self, topic: str, elements: DreamElements) -> str:
        if topic:
            return truncate_words(topic, DREAM_TOPIC_MAX_WORDS)
        if elements.themes:
            labels = [t.label.lower() for t in elements.themes[:2]]
            return truncate_words("A dream of " + " and ".join(labels), DREAM_TOPIC_MAX_WORDS)
        return self.generic_topic
