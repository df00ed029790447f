"""
Garde d'entrée du texte de rêve.

Ce module implémente la sanitisation du récit avant toute analyse : suppression des caractères de
contrôle, limite de longueur et détection des injections de prompt. Deux modes :
- `enforce` : toute violation bloque la requête (`success: false`) ;
- avertissement : la violation est journalisée et comptée, le texte (tronqué) poursuit son chemin.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

import structlog

from dreamlens.app.metrics import LLM_GUARD_BLOCKS, LLM_GUARD_WARN
from dreamlens.domain.errors import InputGuardViolation

DEFAULT_MAX_LENGTH = 5000

_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
INJECTION_PATTERNS = [
    r"ignore\s+(?:all\s+)?previous\s+instructions",
    r"disregard\s+(?:all\s+)?(?:previous|prior)\s+instructions",
    r"system\s+prompt",
    r"jailbreak",
    r"do\s+anything\s+now",
    r"you\s+are\s+no\s+longer\s+(?:a|an)\s+",
    # FR variants (accented/unaccented)
    r"ignore\s+les\s+instructions\s+pr[ée]c[ée]dentes",
    r"ignorer\s+les\s+instructions\s+pr[ée]c[ée]dentes",
]

logger = structlog.get_logger(__name__)


def clean_text(text: str) -> str:
    """Retire les caractères de contrôle et les espaces superflus en bordure."""
    return _CONTROL_RE.sub("", text or "").strip()


def sanitize_dream_text(
    text: str, max_length: int = DEFAULT_MAX_LENGTH, *, enabled: bool = True
) -> str:
    """
    Sanitize dream text (control characters, length, injection denylist).

    - Trim whitespace and control characters.
    - Enforce max length (DREAM_MAX_LENGTH).
    - Deny common prompt-injection phrases (EN/FR).
    - If the guard is disabled, only cleaning is applied.

    Raises:
        InputGuardViolation: on violation ("dream_too_long", "prompt_injection").
    """
    clean = clean_text(text)
    if not enabled:
        return clean
    if len(clean) > max_length:
        raise InputGuardViolation("dream_too_long")
    for pat in INJECTION_PATTERNS:
        if re.search(pat, clean, flags=re.IGNORECASE):
            raise InputGuardViolation("prompt_injection")
    return clean


@dataclass(frozen=True)
class GuardDecision:
    """Décision de la garde : texte à analyser, règle violée éventuelle, blocage."""

    text: str
    rule: str | None = None
    blocked: bool = False


def apply_guard(
    text: str,
    *,
    max_length: int = DEFAULT_MAX_LENGTH,
    enabled: bool = True,
    enforce: bool = False,
) -> GuardDecision:
    """
    Applique la garde selon le mode configuré.

    Args:
        text: Texte de rêve brut.
        max_length: Longueur maximale acceptée.
        enabled: Active les règles (sinon simple nettoyage).
        enforce: Bloque en cas de violation au lieu d'avertir.

    Returns:
        GuardDecision: Texte retenu et issue de la garde.
    """
    try:
        return GuardDecision(text=sanitize_dream_text(text, max_length, enabled=enabled))
    except InputGuardViolation as exc:
        rule = exc.rule
        if enforce:
            LLM_GUARD_BLOCKS.labels(rule=rule).inc()
            logger.warning("input_guard_blocked", rule=rule, length=len(text or ""))
            return GuardDecision(text="", rule=rule, blocked=True)
        # warn-only path: increment metric and continue with truncated text
        LLM_GUARD_WARN.labels(rule=rule).inc()
        logger.warning("input_guard_warning", rule=rule, length=len(text or ""))
        return GuardDecision(text=clean_text(text)[:max_length], rule=rule)
