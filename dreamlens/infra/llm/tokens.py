"""Comptage et troncature de tokens.

Le texte n'est jamais journalisé. Si l'encodage tiktoken ne peut pas être chargé (cache
absent, pas de réseau), le comptage retombe sur une estimation à ~4 caractères par token.
"""

from __future__ import annotations

from functools import lru_cache

import structlog
import tiktoken

DEFAULT_MODEL_ENCODING = "cl100k_base"
CHARS_PER_TOKEN = 4

logger = structlog.get_logger(__name__)


@lru_cache(maxsize=32)
def _encoding(model: str | None):
    """Retourne l'encodage tiktoken du modèle, ou None s'il est indisponible."""
    try:
        if model:
            try:
                return tiktoken.encoding_for_model(model.split("/")[-1])
            except KeyError:
                pass
        return tiktoken.get_encoding(DEFAULT_MODEL_ENCODING)
    except Exception as exc:
        logger.warning("tiktoken_encoding_unavailable", error=str(exc))
        return None


def count_tokens(text: str, model: str | None = None) -> int:
    """Compte les tokens d'un texte (tiktoken, sinon estimation par caractères)."""
    enc = _encoding(model)
    if enc is None:
        return -(-len(text or "") // CHARS_PER_TOKEN)
    return len(enc.encode(text or ""))


def trim_to_tokens(text: str, max_tokens: int, model: str | None = None) -> str:
    """Tronque un texte à `max_tokens` tokens, avec points de suspension si coupé."""
    if max_tokens <= 0:
        return ""
    enc = _encoding(model)
    if enc is None:
        limit = max_tokens * CHARS_PER_TOKEN
        if len(text or "") <= limit:
            return text
        return text[:limit].rstrip() + "..."
    tokens = enc.encode(text or "")
    if len(tokens) <= max_tokens:
        return text
    return enc.decode(tokens[:max_tokens]).rstrip() + "..."
