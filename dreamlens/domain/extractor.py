"""Extraction des thèmes et symboles d'un récit de rêve.

Analyse purement lexicale (aucun appel réseau) : les mots du récit sont normalisés par une
racinisation légère puis comparés à des vocabulaires fixes. Le module ne lève jamais d'exception
sur une entrée vide ou très courte ; il renvoie alors une liste de thèmes vide et une tonalité
neutre.
"""

from __future__ import annotations

import re
from collections import Counter

import structlog

from dreamlens.core.constants import (
    BIG_DREAM_MIN_RELEVANCE,
    BIG_DREAM_MIN_THEMES,
    MAX_SYMBOLS,
    MAX_THEMES,
    MIN_DREAM_WORDS,
)
from dreamlens.domain.entities import (
    DreamElements,
    DreamType,
    EmotionalTone,
    Theme,
    ThemeCandidate,
)
from dreamlens.domain.themes import (
    ACTIONS_VOCABULARY,
    CHARACTERS_VOCABULARY,
    COMMON_SYMBOLS,
    LUCID_TRIGGERS,
    NEGATIVE_WORDS,
    NIGHTMARE_TRIGGERS,
    POSITIVE_WORDS,
    RECURRING_TRIGGERS,
    SETTINGS_VOCABULARY,
    UNIVERSAL_THEMES,
)

logger = structlog.get_logger(__name__)

_WORD_RE = re.compile(r"[a-z0-9']+")
_SUFFIXES = ("ing", "ed", "es", "s")
_MIN_STEM = 3


def stem(word: str) -> str:
    """Racinise un mot anglais de façon conservatrice (chased/chasing/chase -> chas)."""
    w = word.lower().strip("'")
    if w.endswith("'s"):
        w = w[:-2]
    for suffix in _SUFFIXES:
        if w.endswith(suffix) and len(w) - len(suffix) >= _MIN_STEM:
            w = w[: -len(suffix)]
            # running -> run, mais falling -> fall
            if len(w) > _MIN_STEM and w[-1] == w[-2] and w[-1] not in "lsz":
                w = w[:-1]
            break
    if w.endswith("e") and len(w) > _MIN_STEM:
        w = w[:-1]
    return w


def tokenize(text: str) -> list[str]:
    """Découpe le texte en racines de mots, dans l'ordre."""
    return [stem(w) for w in _WORD_RE.findall((text or "").lower())]


def _phrase(term: str) -> tuple[str, ...]:
    return tuple(tokenize(term))


def _contains(stems: list[str], index: set[str], phrase: tuple[str, ...]) -> bool:
    if not phrase:
        return False
    if len(phrase) == 1:
        return phrase[0] in index
    n = len(phrase)
    return any(tuple(stems[i : i + n]) == phrase for i in range(len(stems) - n + 1))


class ThemeExtractor:
    """Extracteur de thèmes, symboles, décors, personnages et actions."""

    def __init__(self, themes: list[Theme] | None = None) -> None:
        """Initialise l'extracteur.

        Args:
            themes: Catalogue de thèmes (catalogue universel par défaut).
        """
        self.themes = themes if themes is not None else UNIVERSAL_THEMES
        self._theme_phrases = [
            (theme, [(kw, _phrase(kw)) for kw in theme.keywords]) for theme in self.themes
        ]

    def extract(self, text: str) -> DreamElements:
        """Analyse un récit et retourne les éléments détectés.

        Args:
            text: Récit brut du rêve.

        Returns:
            DreamElements: Thèmes triés par pertinence décroissante, symboles et tonalité.
        """
        stems = tokenize(text)
        if len(stems) < MIN_DREAM_WORDS:
            logger.debug("dream_text_too_short", words=len(stems))
            return DreamElements()
        index = set(stems)

        themes = self._match_themes(stems, index)
        elements = DreamElements(
            themes=themes,
            symbols=self._symbols(themes, stems, index),
            settings=self._vocabulary(SETTINGS_VOCABULARY, stems, index),
            characters=self._vocabulary(CHARACTERS_VOCABULARY, stems, index),
            actions=self._vocabulary(ACTIONS_VOCABULARY, stems, index),
            emotional_tone=self._emotional_tone(stems),
            dream_type=self._dream_type(themes, stems, index),
        )
        logger.debug(
            "dream_elements_extracted",
            themes=elements.theme_codes,
            tone=elements.emotional_tone.value,
            dream_type=elements.dream_type.value,
        )
        return elements

    def _match_themes(self, stems: list[str], index: set[str]) -> list[ThemeCandidate]:
        candidates: list[ThemeCandidate] = []
        for theme, phrases in self._theme_phrases:
            matched = [kw for kw, phrase in phrases if _contains(stems, index, phrase)]
            if not matched or not phrases:
                continue
            relevance = min(1.0, len(matched) / len(phrases))
            candidates.append(
                ThemeCandidate(
                    code=theme.code,
                    label=theme.label,
                    relevance=round(relevance, 4),
                    matched_keywords=matched,
                )
            )
        # tri stable : à pertinence égale, l'ordre du catalogue est conservé
        candidates.sort(key=lambda c: c.relevance, reverse=True)
        return candidates[:MAX_THEMES]

    def _symbols(
        self, themes: list[ThemeCandidate], stems: list[str], index: set[str]
    ) -> list[str]:
        found: list[str] = []
        for candidate in themes:
            found.extend(candidate.matched_keywords)
        found.extend(self._vocabulary(COMMON_SYMBOLS, stems, index))
        return list(dict.fromkeys(found))[:MAX_SYMBOLS]

    @staticmethod
    def _vocabulary(words: list[str], stems: list[str], index: set[str]) -> list[str]:
        return [w for w in words if _contains(stems, index, _phrase(w))]

    @staticmethod
    def _emotional_tone(stems: list[str]) -> EmotionalTone:
        counts = Counter(stems)
        positive = sum(counts[stem(w)] * weight for w, weight in POSITIVE_WORDS.items())
        negative = sum(counts[stem(w)] * weight for w, weight in NEGATIVE_WORDS.items())
        if positive > negative:
            return EmotionalTone.POSITIVE
        if negative > positive:
            return EmotionalTone.NEGATIVE
        if positive > 0:
            return EmotionalTone.MIXED
        return EmotionalTone.NEUTRAL

    @staticmethod
    def _dream_type(
        themes: list[ThemeCandidate], stems: list[str], index: set[str]
    ) -> DreamType:
        def triggered(triggers: list[str]) -> bool:
            return any(_contains(stems, index, _phrase(t)) for t in triggers)

        if triggered(LUCID_TRIGGERS):
            return DreamType.LUCID
        if triggered(NIGHTMARE_TRIGGERS):
            return DreamType.NIGHTMARE
        if triggered(RECURRING_TRIGGERS):
            return DreamType.RECURRING
        strong = [t for t in themes if t.relevance > BIG_DREAM_MIN_RELEVANCE]
        if len(strong) >= BIG_DREAM_MIN_THEMES:
            return DreamType.BIG_DREAM
        return DreamType.ORDINARY
