"""
Registre des coûts LLM (usage de tokens et dépense estimée par modèle).

Ce module implémente le registre de coûts partagé du processus : chaque tentative de complétion
dispatchée y est enregistrée, qu'elle ait réussi ou non (des tokens consommés sont facturés). Seules
les dernières entrées sont conservées ; les totaux et les agrégats par modèle et par persona sont
incrémentés sous le verrou à chaque enregistrement, en temps constant.
"""

# ============================================================
# Module : dreamlens/app/cost_ledger.py
# Objet  : Registre de coûts LLM (agrégats cumulés, seuil d'alerte).
# ============================================================

from __future__ import annotations

import json
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone

import structlog

from dreamlens.app.metrics import LLM_COST_USD, LLM_TOKENS_TOTAL, labelize_model
from dreamlens.core.constants import (
    COST_BLOCK_THRESHOLD,
    COST_WARNING_THRESHOLD,
    DEFAULT_PRICE_PER_1K,
    RECENT_COST_ENTRIES,
    TOKENS_PER_PRICE_UNIT,
)
from dreamlens.domain.entities import TokenUsage

logger = structlog.get_logger(__name__)


def check_budget(spent_usd: float, threshold_usd: float) -> str:
    """Retourne l'état de dépense ('ok' | 'warn' | 'alert') par rapport au seuil."""
    if threshold_usd <= 0:
        return "ok"
    ratio = spent_usd / threshold_usd
    if ratio >= COST_BLOCK_THRESHOLD:
        return "alert"
    if ratio >= COST_WARNING_THRESHOLD:
        return "warn"
    return "ok"


@dataclass(frozen=True)
class CostEntry:
    """Entrée immuable du registre : une tentative de complétion dispatchée."""

    timestamp: datetime
    model: str
    usage: TokenUsage
    estimated_cost_usd: float
    persona_id: str | None = None
    dream_id: str | None = None
    succeeded: bool = True

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "model": self.model,
            "promptTokens": self.usage.prompt_tokens,
            "completionTokens": self.usage.completion_tokens,
            "totalTokens": self.usage.total_tokens,
            "estimatedCostUsd": round(self.estimated_cost_usd, 6),
            "personaId": self.persona_id,
            "dreamId": self.dream_id,
            "succeeded": self.succeeded,
        }


@dataclass
class CostLedger:
    """
    Registre de coûts partagé entre requêtes concurrentes.

    - Tarifs par modèle (USD / 1000 tokens) chargés depuis MODEL_PRICING_JSON
      (ex: '{"openai/gpt-4o-mini": 0.0006}'); modèles gratuits à 0, inconnus au tarif par défaut.
    - Seules les `max_entries` dernières entrées sont gardées en mémoire ; les totaux couvrent
      toutes les entrées enregistrées depuis le dernier `reset`.
    - Alerte journalisée une seule fois quand la dépense cumulée franchit le seuil.
    """

    pricing: dict[str, float] = field(default_factory=dict)
    alert_threshold_usd: float = 0.0
    metrics_allowlist: str = ""
    max_entries: int = RECENT_COST_ENTRIES
    _entries: deque = field(init=False, repr=False)
    _calls: int = field(default=0, init=False, repr=False)
    _failed: int = field(default=0, init=False, repr=False)
    _tokens: int = field(default=0, init=False, repr=False)
    _cost: float = field(default=0.0, init=False, repr=False)
    _by_model: dict[str, dict] = field(default_factory=dict, init=False, repr=False)
    _by_persona: dict[str, dict] = field(default_factory=dict, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _alerted: bool = field(default=False, init=False, repr=False)

    def __post_init__(self) -> None:
        self._entries = deque(maxlen=max(1, self.max_entries))

    @classmethod
    def from_settings(cls, settings) -> CostLedger:
        """
        Crée un registre à partir de la configuration.

        Args:
            settings: Instance `Settings` (MODEL_PRICING_JSON, COST_ALERT_THRESHOLD_USD).

        Returns:
            CostLedger: Registre vide configuré.
        """
        try:
            pricing = json.loads(settings.MODEL_PRICING_JSON or "{}")
        except (TypeError, ValueError) as exc:
            logger.warning("invalid_model_pricing_json", msg="fallback to {}", error=str(exc))
            pricing = {}
        if not isinstance(pricing, dict):
            logger.warning("invalid_model_pricing_json", msg="fallback to {}", error="not_an_object")
            pricing = {}
        return cls(
            pricing={str(k): float(v) for k, v in pricing.items()},
            alert_threshold_usd=float(settings.COST_ALERT_THRESHOLD_USD),
            metrics_allowlist=settings.METRICS_MODEL_ALLOWLIST,
        )

    def price_per_1k(self, model: str) -> float:
        """Tarif USD pour 1000 tokens (0 pour les modèles ':free')."""
        if model in self.pricing:
            return self.pricing[model]
        if model.endswith(":free"):
            return 0.0
        return DEFAULT_PRICE_PER_1K

    def record(
        self,
        model: str,
        usage: TokenUsage,
        *,
        persona_id: str | None = None,
        dream_id: str | None = None,
        succeeded: bool = True,
    ) -> CostEntry:
        """
        Enregistre une tentative et met à jour les agrégats et les métriques.

        Args:
            model: Modèle appelé.
            usage: Usage de tokens rapporté (nul si le fournisseur n'en a pas rapporté).
            persona_id: Persona de la requête.
            dream_id: Identifiant du rêve, s'il est connu.
            succeeded: Issue de la tentative.

        Returns:
            CostEntry: Entrée enregistrée.
        """
        cost = usage.total_tokens / TOKENS_PER_PRICE_UNIT * self.price_per_1k(model)
        entry = CostEntry(
            timestamp=datetime.now(timezone.utc),
            model=model,
            usage=usage,
            estimated_cost_usd=cost,
            persona_id=persona_id,
            dream_id=dream_id,
            succeeded=succeeded,
        )
        with self._lock:
            self._entries.append(entry)
            self._calls += 1
            self._failed += 0 if succeeded else 1
            self._tokens += usage.total_tokens
            self._cost += cost
            for bucket, key in ((self._by_model, model), (self._by_persona, persona_id or "unknown")):
                agg = bucket.setdefault(key, {"calls": 0, "tokens": 0, "costUsd": 0.0})
                agg["calls"] += 1
                agg["tokens"] += usage.total_tokens
                agg["costUsd"] += cost
            total = self._cost
            crossed = not self._alerted and check_budget(total, self.alert_threshold_usd) == "alert"
            if crossed:
                self._alerted = True

        label = labelize_model(model, self.metrics_allowlist)
        persona = persona_id or "unknown"
        if usage.total_tokens:
            LLM_TOKENS_TOTAL.labels(persona=persona, model=label).inc(usage.total_tokens)
        if cost > 0:
            LLM_COST_USD.labels(persona=persona, model=label).inc(cost)
        if crossed:
            logger.warning(
                "cost_alert_threshold_exceeded",
                total_cost_usd=round(total, 6),
                threshold_usd=self.alert_threshold_usd,
            )
        return entry

    def snapshot(self) -> dict:
        """
        Agrégats courants du registre.

        Returns:
            dict: Totaux, agrégats par modèle et par persona, dernières entrées et statut.
        """
        with self._lock:
            recent = [e.to_dict() for e in self._entries]
            by_model = {k: dict(v) for k, v in self._by_model.items()}
            by_persona = {k: dict(v) for k, v in self._by_persona.items()}
            calls, failed, tokens, total_cost = self._calls, self._failed, self._tokens, self._cost
        return {
            "totalCalls": calls,
            "failedCalls": failed,
            "totalTokens": tokens,
            "totalCostUsd": round(total_cost, 6),
            "byModel": by_model,
            "byPersona": by_persona,
            "recent": recent[-RECENT_COST_ENTRIES:],
            "status": check_budget(total_cost, self.alert_threshold_usd),
        }

    def reset(self) -> None:
        """Vide le registre (démarrage du processus, tests)."""
        with self._lock:
            self._entries.clear()
            self._calls = self._failed = self._tokens = 0
            self._cost = 0.0
            self._by_model.clear()
            self._by_persona.clear()
            self._alerted = False

    def __len__(self) -> int:
        """Nombre total de tentatives enregistrées depuis le dernier `reset`."""
        with self._lock:
            return self._calls
