"""
Magasin de connaissances en mémoire, chargé depuis un fichier JSON.

Les associations précalculées sont servies directement. Pour un thème sans association, la
recherche vectorielle passe par un index FAISS à produit scalaire (IndexFlatIP) construit à la
demande sur les embeddings normalisés des fragments, soit une similarité cosinus.

Format du fichier :
    {"themes": [...], "fragments": [...], "associations": [...]}
"""

from __future__ import annotations

import json
import os
import threading
from collections import defaultdict

import faiss  # type: ignore
import numpy as np  # type: ignore
import structlog

from dreamlens.core.constants import SIMILARITY_MAX, SIMILARITY_MIN
from dreamlens.domain.entities import FragmentThemeAssociation, KnowledgeFragment, Theme
from dreamlens.domain.errors import KnowledgeStoreError
from dreamlens.domain.themes import UNIVERSAL_THEMES
from dreamlens.infra.knowledge.base import KnowledgeStore

logger = structlog.get_logger(__name__)


class InMemoryKnowledgeStore(KnowledgeStore):
    """Magasin de fragments en mémoire avec index FAISS paresseux."""

    backend_name = "memory"

    def __init__(
        self,
        themes: list[Theme] | None = None,
        fragments: list[KnowledgeFragment] | None = None,
        associations: list[FragmentThemeAssociation] | None = None,
    ) -> None:
        """Initialise le magasin.

        Args:
            themes: Thèmes de référence (catalogue universel par défaut).
            fragments: Fragments de connaissance.
            associations: Associations précalculées fragment/thème.
        """
        self._themes = {t.code: t for t in (themes if themes is not None else UNIVERSAL_THEMES)}
        self._fragments = {f.id: f for f in fragments or []}
        by_theme: dict[str, list[FragmentThemeAssociation]] = defaultdict(list)
        for assoc in associations or []:
            by_theme[assoc.theme_code].append(assoc)
        for rows in by_theme.values():
            rows.sort(key=lambda a: a.similarity, reverse=True)
        self._by_theme = dict(by_theme)
        self._index: faiss.IndexFlatIP | None = None
        self._index_ids: list[str] = []
        self._index_lock = threading.Lock()

    @classmethod
    def from_json(cls, path: str) -> InMemoryKnowledgeStore:
        """Charge un magasin depuis un fichier JSON (magasin vide si le fichier est absent)."""
        if not os.path.exists(path):
            logger.warning("knowledge_seed_missing", path=path)
            return cls()
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        themes = [Theme.model_validate(t) for t in data.get("themes") or []]
        store = cls(
            themes=themes or None,
            fragments=[KnowledgeFragment.model_validate(f) for f in data.get("fragments") or []],
            associations=[
                FragmentThemeAssociation.model_validate(a) for a in data.get("associations") or []
            ],
        )
        logger.info(
            "knowledge_seed_loaded",
            path=path,
            fragments=len(store._fragments),
            associations=sum(len(r) for r in store._by_theme.values()),
        )
        return store

    def theme_embedding(self, theme_code: str, *, timeout: float | None = None) -> list[float] | None:
        """Retourne l'embedding précalculé d'un thème, s'il existe."""
        theme = self._themes.get(theme_code)
        return theme.embedding if theme else None

    def match_associations(
        self,
        theme_code: str,
        embedding: list[float] | None,
        *,
        similarity_floor: float,
        limit: int,
        timeout: float | None = None,
    ) -> list[FragmentThemeAssociation]:
        """Associations précalculées au-dessus du seuil, sinon recherche vectorielle FAISS."""
        rows = [a for a in self._by_theme.get(theme_code, []) if a.similarity >= similarity_floor]
        if rows or embedding is None:
            return rows[: max(0, limit)]
        return self._search(theme_code, embedding, similarity_floor, limit)

    def get_fragments(
        self, ids: list[str], *, timeout: float | None = None
    ) -> list[KnowledgeFragment]:
        """Retourne les fragments connus, dans l'ordre des identifiants demandés."""
        return [self._fragments[i] for i in ids if i in self._fragments]

    # -------------------- Helpers internes --------------------

    def _ensure_index(self) -> faiss.IndexFlatIP | None:
        with self._index_lock:
            if self._index is not None:
                return self._index
            embedded = [f for f in self._fragments.values() if f.embedding]
            if not embedded:
                return None
            dim = len(embedded[0].embedding)
            embedded = [f for f in embedded if len(f.embedding) == dim]
            xb = np.array([f.embedding for f in embedded], dtype="float32")
            faiss.normalize_L2(xb)
            index = faiss.IndexFlatIP(dim)
            index.add(xb)
            self._index_ids = [f.id for f in embedded]
            self._index = index
            return index

    def _search(
        self, theme_code: str, embedding: list[float], similarity_floor: float, limit: int
    ) -> list[FragmentThemeAssociation]:
        index = self._ensure_index()
        if index is None or limit <= 0:
            return []
        qx = np.array([embedding], dtype="float32")
        if qx.shape[1] != index.d:
            raise KnowledgeStoreError("embedding_dimension_mismatch")
        faiss.normalize_L2(qx)
        k = min(limit, index.ntotal)
        scores, indices = index.search(qx, k)
        rows: list[FragmentThemeAssociation] = []
        for score, idx in zip(scores[0], indices[0], strict=True):
            if idx == -1:
                continue
            similarity = min(SIMILARITY_MAX, max(SIMILARITY_MIN, float(score)))
            if similarity < similarity_floor:
                continue
            rows.append(
                FragmentThemeAssociation(
                    fragment_id=self._index_ids[idx],
                    theme_code=theme_code,
                    similarity=similarity,
                )
            )
        return rows
