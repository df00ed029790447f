"""
Analyse et normalisation de la réponse du modèle.

La réponse est décodée par une chaîne ordonnée de stratégies, chacune retournant un `ParseResult`
(valeur ou erreur) ; `first_success` retient la première qui réussit :

1. `strict_json`    : bloc ```json``` ou portée du premier `{` au dernier `}`
2. `repaired_json`  : suppression des caractères de contrôle et des virgules finales, puis retry
3. `prose_sections` : extraction par titres de sections (markdown, gras, `Titre:`)
4. `safe_fallback`  : interprétation de repli de la persona, clairement étiquetée

Le payload retenu est ensuite normalisé par la persona en `Interpretation`.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

import structlog
from pydantic import ValidationError

from dreamlens.app.metrics import PARSE_STRATEGY_TOTAL
from dreamlens.domain.entities import DreamElements, Interpretation
from dreamlens.domain.personas.base import Persona

logger = structlog.get_logger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.IGNORECASE | re.DOTALL)
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_MD_HEADING_RE = re.compile(r"^\s{0,3}#{1,6}\s*(.+?)\s*#*\s*$")
_BOLD_HEADING_RE = re.compile(r"^\s*\*\*(.+?)\*\*\s*:?\s*(.*)$")
_LABEL_RE = re.compile(r"^\s*([A-Za-z][A-Za-z \-_']{1,40}):\s*(.*)$")
_BULLET_RE = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+")
_CAMEL_RE = re.compile(r"(?<=[a-z])(?=[A-Z])")
_SYMBOL_SPLIT_RE = re.compile(r":|\s[-–]\s")


@dataclass(frozen=True)
class ParseResult:
    """Résultat d'une stratégie : payload décodé ou erreur de parsing."""

    strategy: str
    value: dict[str, Any] | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.value is not None

    @classmethod
    def success(cls, strategy: str, value: dict[str, Any]) -> ParseResult:
        return cls(strategy=strategy, value=value)

    @classmethod
    def failure(cls, strategy: str, error: str) -> ParseResult:
        return cls(strategy=strategy, error=error)


Strategy = Callable[[str, Persona, DreamElements], ParseResult]


def first_success(
    strategies: Sequence[Strategy], text: str, persona: Persona, elements: DreamElements
) -> tuple[ParseResult, list[str]]:
    """Applique les stratégies dans l'ordre et retourne le premier succès.

    Returns:
        tuple: Premier résultat réussi (ou dernier échec) et erreurs des stratégies écartées.
    """
    errors: list[str] = []
    result = ParseResult.failure("none", "no_strategy")
    for strategy in strategies:
        result = strategy(text, persona, elements)
        if result.ok:
            return result, errors
        errors.append(f"{result.strategy}: {result.error}")
    return result, errors


def _has_narrative(payload: dict[str, Any]) -> bool:
    narrative = payload.get("interpretation")
    if isinstance(narrative, dict):
        return any(isinstance(v, str) and v.strip() for v in narrative.values())
    return isinstance(narrative, str) and bool(narrative.strip())


def _json_candidate(text: str) -> str | None:
    fenced = _FENCE_RE.search(text or "")
    body = fenced.group(1) if fenced else (text or "")
    start, end = body.find("{"), body.rfind("}")
    if start == -1 or end <= start:
        return None
    return body[start : end + 1]


def _decode(strategy: str, candidate: str, *, strict: bool) -> ParseResult:
    try:
        payload = json.loads(candidate, strict=strict)
    except json.JSONDecodeError as exc:
        return ParseResult.failure(strategy, f"invalid_json at {exc.pos}")
    if not isinstance(payload, dict):
        return ParseResult.failure(strategy, "not_an_object")
    if not _has_narrative(payload):
        return ParseResult.failure(strategy, "missing_interpretation")
    return ParseResult.success(strategy, payload)


def strict_json(text: str, persona: Persona, elements: DreamElements) -> ParseResult:
    """Décode l'objet JSON de la réponse sans réparation."""
    candidate = _json_candidate(text)
    if candidate is None:
        return ParseResult.failure("strict_json", "no_json_object")
    return _decode("strict_json", candidate, strict=True)


def repaired_json(text: str, persona: Persona, elements: DreamElements) -> ParseResult:
    """Réparations prudentes (contrôles, virgules finales) puis un seul nouvel essai."""
    candidate = _json_candidate(text)
    if candidate is None:
        return ParseResult.failure("repaired_json", "no_json_object")
    repaired = _TRAILING_COMMA_RE.sub(r"\1", _CONTROL_RE.sub("", candidate))
    return _decode("repaired_json", repaired, strict=False)


def _normalize_heading(label: str) -> str:
    label = _CAMEL_RE.sub(" ", label.strip().strip("*#:").strip())
    label = re.sub(r"^\d+[.)]\s*", "", label)
    return re.sub(r"[\s_]+", " ", label).lower()


def _match_heading(line: str, headings: dict[str, str]) -> tuple[str | None, str]:
    """Reconnaît `## Titre`, `**Titre**: texte` ou `Titre: texte` ; retourne (clé, texte en ligne)."""
    md = _MD_HEADING_RE.match(line)
    if md:
        line = md.group(1)
        key = headings.get(_normalize_heading(line))
        if key:
            return key, ""
    for pattern in (_BOLD_HEADING_RE, _LABEL_RE):
        match = pattern.match(line)
        if match:
            key = headings.get(_normalize_heading(match.group(1)))
            if key:
                return key, match.group(2)
    return None, ""


def _parse_symbols(lines: list[str]) -> list[Any]:
    items = [_BULLET_RE.sub("", line).strip() for line in lines if line.strip()]
    if len(items) == 1 and "," in items[0] and ":" not in items[0]:
        return [s.strip() for s in items[0].split(",") if s.strip()]
    symbols: list[Any] = []
    for item in items:
        parts = _SYMBOL_SPLIT_RE.split(item, maxsplit=1)
        name = parts[0].strip().strip("*").strip()
        meaning = parts[1].strip() if len(parts) > 1 else ""
        if not name:
            continue
        if meaning:
            symbols.append({"symbol": name, "personalMeaning": meaning})
        else:
            symbols.append(name)
    return symbols


def prose_sections(text: str, persona: Persona, elements: DreamElements) -> ParseResult:
    """Extraction heuristique des champs d'une réponse en prose structurée par des titres."""
    headings = persona.prose_headings()
    sections: dict[str, list[str]] = {}
    preamble: list[str] = []
    current: str | None = None
    for line in (text or "").splitlines():
        key, inline = _match_heading(line, headings)
        if key:
            current = key
            sections.setdefault(current, [])
            if inline.strip():
                sections[current].append(inline.strip())
            continue
        if current is None:
            preamble.append(line)
        else:
            sections[current].append(line)

    if not sections:
        return ParseResult.failure("prose_sections", "no_recognized_headings")

    payload: dict[str, Any] = {}
    for key, lines in sections.items():
        if key == "symbols":
            payload["symbols"] = _parse_symbols(lines)
            continue
        body = "\n".join(lines).strip()
        if key == "emotionalTone":
            body = (body.split() or [""])[0].strip(".,;").lower()
        if "." in key:
            block, field_name = key.split(".", 1)
            payload.setdefault(block, {})[field_name] = body
        else:
            payload[key] = body

    if not str(payload.get("interpretation") or "").strip():
        intro = "\n".join(preamble).strip()
        if not intro:
            return ParseResult.failure("prose_sections", "missing_interpretation")
        payload["interpretation"] = intro
    return ParseResult.success("prose_sections", payload)


def safe_fallback(text: str, persona: Persona, elements: DreamElements) -> ParseResult:
    """Interprétation de repli de la persona (toujours un succès, marquée `isFallback`)."""
    return ParseResult.success("safe_fallback", persona.fallback_payload(elements))


DEFAULT_STRATEGIES: tuple[Strategy, ...] = (strict_json, repaired_json, prose_sections, safe_fallback)


@dataclass
class ParseOutcome:
    """Interprétation normalisée et stratégie gagnante."""

    interpretation: Interpretation
    strategy: str
    errors: list[str] = field(default_factory=list)

    @property
    def is_fallback(self) -> bool:
        return self.interpretation.is_fallback


class ResponseParser:
    """Décode la réponse brute puis la normalise selon le schéma de la persona."""

    def __init__(self, strategies: Sequence[Strategy] = DEFAULT_STRATEGIES) -> None:
        self.strategies = tuple(strategies)

    def parse(self, text: str, persona: Persona, elements: DreamElements) -> ParseOutcome:
        """Retourne toujours une `Interpretation` (au pire l'interprétation de repli).

        Args:
            text: Texte brut de la complétion.
            persona: Persona de la requête.
            elements: Éléments extraits (tonalité et symboles de secours).

        Returns:
            ParseOutcome: Interprétation, stratégie retenue et erreurs des stratégies écartées.
        """
        result, errors = first_success(self.strategies, text, persona, elements)
        if not result.ok:
            result = safe_fallback(text, persona, elements)
        try:
            interpretation = persona.parse_response(result.value, elements)
        except ValidationError as exc:
            errors.append(f"{result.strategy}: schema_validation_failed ({exc.error_count()})")
            result = safe_fallback(text, persona, elements)
            interpretation = persona.parse_response(result.value, elements)

        PARSE_STRATEGY_TOTAL.labels(result.strategy).inc()
        if errors:
            logger.info(
                "response_parse_recovered",
                persona=persona.persona_id,
                strategy=result.strategy,
                errors=errors,
            )
        return ParseOutcome(interpretation=interpretation, strategy=result.strategy, errors=errors)

    def rejection(self, text: str, persona: Persona, elements: DreamElements) -> str | None:
        """Motif de rejet d'une réponse qu'aucune stratégie de décodage ne récupère.

        L'interprétation de repli n'est pas un décodage : elle est ignorée ici, pour que
        l'orchestrateur puisse essayer le modèle suivant avant de s'y résoudre.

        Returns:
            str | None: Erreurs des stratégies, ou None si la réponse est exploitable.
        """
        decoders = [s for s in self.strategies if s is not safe_fallback]
        result, errors = first_success(decoders, text, persona, elements)
        if not result.ok:
            return "; ".join(errors) or "no_strategy"
        try:
            persona.parse_response(result.value, elements)
        except ValidationError as exc:
            return f"{result.strategy}: schema_validation_failed ({exc.error_count()})"
        return None

    def fallback(self, persona: Persona, elements: DreamElements) -> ParseOutcome:
        """Interprétation de repli étiquetée (aucune réponse exploitable dans la chaîne)."""
        result = safe_fallback("", persona, elements)
        PARSE_STRATEGY_TOTAL.labels(result.strategy).inc()
        return ParseOutcome(
            interpretation=persona.parse_response(result.value, elements), strategy=result.strategy
        )
