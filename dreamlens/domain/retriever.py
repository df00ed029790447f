"""
Récupération des fragments de connaissance associés aux thèmes d'un rêve.

Pour chaque thème détecté, le retriever obtient un embedding (précalculé par le magasin, sinon
calculé par le client d'embeddings) puis interroge le magasin. Les lignes sont regroupées par
fragment (similarité maximale, meilleur thème, union des thèmes), triées, filtrées sur la persona
propriétaire et tronquées.

Une erreur transitoire du magasin est retentée une fois ; au-delà, le retriever dégrade vers un
résultat vide marqué `degraded` plutôt que d'échouer.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field

import structlog

from dreamlens.app.metrics import (
    RETRIEVAL_ERRORS,
    RETRIEVAL_HITS_TOTAL,
    RETRIEVAL_LATENCY,
    RETRIEVAL_QUERIES_TOTAL,
)
from dreamlens.domain.entities import (
    FragmentThemeAssociation,
    RetrievalResult,
    ScoredFragment,
    ThemeCandidate,
)
from dreamlens.domain.errors import KnowledgeStoreError
from dreamlens.infra.embeddings.base import Embeddings
from dreamlens.infra.knowledge.base import KnowledgeStore

logger = structlog.get_logger(__name__)


@dataclass
class _FragmentHits:
    similarity: float
    best_theme: str
    themes: list[str] = field(default_factory=list)


class KnowledgeRetriever:
    """Retriever thèmes -> fragments, avec retry unique et dégradation."""

    def __init__(
        self,
        store: KnowledgeStore,
        embedder: Embeddings | None = None,
        *,
        similarity_floor: float = 0.3,
        candidate_limit: int = 200,
        top_n: int = 20,
        retry_backoff_s: float = 0.2,
        timeout: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialise le retriever.

        Args:
            store: Magasin de connaissances.
            embedder: Client d'embeddings pour les thèmes sans embedding précalculé.
            similarity_floor: Similarité minimale d'une association retenue.
            candidate_limit: Nombre maximal d'associations lues par thème.
            top_n: Nombre maximal de fragments retournés.
            retry_backoff_s: Pause avant l'unique nouvelle tentative.
            timeout: Timeout passé au magasin pour chaque appel.
            sleep: Fonction de pause (injectable en test).
        """
        self.store = store
        self.embedder = embedder
        self.similarity_floor = similarity_floor
        self.candidate_limit = candidate_limit
        self.top_n = top_n
        self.retry_backoff_s = retry_backoff_s
        self.timeout = timeout
        self._sleep = sleep

    def retrieve(self, themes: list[ThemeCandidate], persona_id: str) -> RetrievalResult:
        """Retourne les fragments de la persona les plus proches des thèmes détectés.

        Args:
            themes: Thèmes détectés, par pertinence décroissante.
            persona_id: Persona propriétaire des fragments recherchés.

        Returns:
            RetrievalResult: Fragments classés (vide et `degraded` si le magasin est indisponible).
        """
        if not themes:
            return RetrievalResult(method="none")

        backend = self.store.backend_name
        RETRIEVAL_QUERIES_TOTAL.labels(backend, persona_id).inc()
        start = time.perf_counter()
        try:
            result = self._with_retry(lambda: self._query(themes, persona_id))
        except KnowledgeStoreError as exc:
            RETRIEVAL_ERRORS.labels(backend, "degraded").inc()
            logger.warning(
                "retrieval_degraded", backend=backend, persona=persona_id, reason=str(exc)
            )
            return RetrievalResult(degraded=True, reason=f"knowledge_store_unavailable: {exc}")
        finally:
            RETRIEVAL_LATENCY.labels(backend).observe(time.perf_counter() - start)

        if result.fragments:
            RETRIEVAL_HITS_TOTAL.labels(backend, persona_id).inc()
        else:
            logger.info(
                "retrieval_empty",
                backend=backend,
                persona=persona_id,
                themes=[t.code for t in themes],
                total_candidates=result.total_candidates,
            )
        return result

    # -------------------- Helpers internes --------------------

    def _with_retry(self, call: Callable[[], RetrievalResult]) -> RetrievalResult:
        try:
            return call()
        except KnowledgeStoreError as exc:
            RETRIEVAL_ERRORS.labels(self.store.backend_name, "retry").inc()
            logger.info("retrieval_retry", backend=self.store.backend_name, reason=str(exc))
            self._sleep(self.retry_backoff_s)
            return call()

    def _query(self, themes: list[ThemeCandidate], persona_id: str) -> RetrievalResult:
        rows: list[FragmentThemeAssociation] = []
        for theme in themes:
            embedding = self._theme_embedding(theme)
            matched = self.store.match_associations(
                theme.code,
                embedding,
                similarity_floor=self.similarity_floor,
                limit=self.candidate_limit,
                timeout=self.timeout,
            )
            # le seuil est réappliqué quel que soit le magasin
            rows.extend(r for r in matched if r.similarity >= self.similarity_floor)

        grouped: dict[str, _FragmentHits] = {}
        for row in rows:
            hits = grouped.get(row.fragment_id)
            if hits is None:
                grouped[row.fragment_id] = _FragmentHits(row.similarity, row.theme_code, [row.theme_code])
                continue
            if row.theme_code not in hits.themes:
                hits.themes.append(row.theme_code)
            if row.similarity > hits.similarity:
                hits.similarity = row.similarity
                hits.best_theme = row.theme_code

        ranked = sorted(grouped.items(), key=lambda kv: kv[1].similarity, reverse=True)
        fragments = {
            f.id: f
            for f in self.store.get_fragments([fid for fid, _ in ranked], timeout=self.timeout)
        }
        scored: list[ScoredFragment] = []
        for fragment_id, hits in ranked:
            fragment = fragments.get(fragment_id)
            if fragment is None or fragment.persona_id != persona_id:
                continue
            scored.append(
                ScoredFragment(
                    fragment=fragment,
                    best_theme=hits.best_theme,
                    matched_themes=list(hits.themes),
                    similarity=hits.similarity,
                )
            )
            if len(scored) >= self.top_n:
                break
        return RetrievalResult(fragments=scored, total_candidates=len(grouped))

    def _theme_embedding(self, theme: ThemeCandidate) -> list[float] | None:
        embedding = self.store.theme_embedding(theme.code, timeout=self.timeout)
        if embedding is not None or self.embedder is None:
            return embedding
        try:
            return self.embedder.embed([theme.label])[0]
        except Exception as exc:
            logger.warning("theme_embedding_failed", theme=theme.code, error=type(exc).__name__)
            return None
