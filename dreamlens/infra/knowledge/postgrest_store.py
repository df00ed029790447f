"""Magasin de connaissances distant via une API PostgREST (ex: Supabase + pgvector).

Tables et fonctions utilisées :
  - `themes(code, label, embedding)`
  - `fragment_themes(fragment_id, theme_code, similarity)` : associations précalculées
  - `knowledge_fragments(id, text, source, chapter, interpreter, metadata)`
  - RPC `search_fragments(query_embedding, similarity_threshold, max_results)` : recherche
    vectorielle pour un thème sans association

Chaque appel est borné par un timeout explicite ; toute erreur HTTP ou réseau est remontée en
`KnowledgeStoreError` (le retriever décide du retry). Les lignes mal formées sont ignorées avec un
avertissement ; les similarités sont bornées comme pour le magasin en mémoire.
"""

from __future__ import annotations

import json
import math
from typing import Any

import httpx
import structlog

from dreamlens.core.constants import SIMILARITY_MAX, SIMILARITY_MIN
from dreamlens.domain.entities import FragmentThemeAssociation, KnowledgeFragment
from dreamlens.domain.errors import KnowledgeStoreError
from dreamlens.infra.knowledge.base import KnowledgeStore

logger = structlog.get_logger(__name__)


class PostgrestKnowledgeStore(KnowledgeStore):
    """Adaptateur PostgREST pour les fragments, thèmes et associations."""

    backend_name = "postgrest"

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 5.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialise l'adaptateur.

        Args:
            base_url: URL de l'API REST (ex: https://<projet>.supabase.co/rest/v1).
            api_key: Clé de service, envoyée en `apikey` et en Bearer.
            timeout: Timeout par défaut des requêtes, en secondes.
            transport: Transport httpx alternatif (tests).
        """
        headers: dict[str, str] = {"Content-Type": "application/json", "Accept": "application/json"}
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"
        self.timeout = timeout
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(timeout),
            limits=httpx.Limits(max_keepalive_connections=20, max_connections=50),
            transport=transport,
        )

    def theme_embedding(self, theme_code: str, *, timeout: float | None = None) -> list[float] | None:
        """Lit l'embedding d'un thème (pgvector le sérialise en chaîne JSON)."""
        rows = self._request(
            "GET",
            "/themes",
            params={"select": "embedding", "code": f"eq.{theme_code}", "limit": "1"},
            timeout=timeout,
        )
        if not rows or not isinstance(rows[0], dict) or rows[0].get("embedding") is None:
            return None
        raw = rows[0]["embedding"]
        try:
            return [float(x) for x in (json.loads(raw) if isinstance(raw, str) else raw)]
        except (TypeError, ValueError) as exc:
            logger.warning("knowledge_store_malformed_embedding", theme_code=theme_code)
            raise KnowledgeStoreError("malformed_embedding") from exc

    def match_associations(
        self,
        theme_code: str,
        embedding: list[float] | None,
        *,
        similarity_floor: float,
        limit: int,
        timeout: float | None = None,
    ) -> list[FragmentThemeAssociation]:
        """Associations précalculées au-dessus du seuil, sinon RPC de recherche vectorielle."""
        rows = self._request(
            "GET",
            "/fragment_themes",
            params={
                "select": "fragment_id,theme_code,similarity",
                "theme_code": f"eq.{theme_code}",
                "similarity": f"gte.{similarity_floor}",
                "order": "similarity.desc",
                "limit": str(limit),
            },
            timeout=timeout,
        )
        if not rows and embedding is not None:
            hits = self._request(
                "POST",
                "/rpc/search_fragments",
                payload={
                    "query_embedding": embedding,
                    "similarity_threshold": similarity_floor,
                    "max_results": limit,
                },
                timeout=timeout,
            )
            rows = [
                {"fragment_id": h.get("id"), "theme_code": theme_code, "similarity": h.get("similarity")}
                for h in hits
                if isinstance(h, dict)
            ]
        return [a for a in (_association(r) for r in rows) if a is not None]

    def get_fragments(
        self, ids: list[str], *, timeout: float | None = None
    ) -> list[KnowledgeFragment]:
        """Lit les fragments par identifiant ; `interpreter` désigne la persona propriétaire."""
        if not ids:
            return []
        rows = self._request(
            "GET",
            "/knowledge_fragments",
            params={
                "select": "id,text,source,chapter,interpreter,metadata",
                "id": f"in.({','.join(ids)})",
            },
            timeout=timeout,
        )
        return [f for f in (_fragment(r) for r in rows) if f is not None]

    def close(self) -> None:
        """Ferme le pool de connexions HTTP."""
        self._client.close()

    # -------------------- Helpers internes --------------------

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        payload: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> list[dict[str, Any]]:
        try:
            resp = self._client.request(
                method, path, params=params, json=payload, timeout=timeout or self.timeout
            )
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as exc:
            code = exc.response.status_code if exc.response is not None else 0
            logger.warning("knowledge_store_http_error", path=path, status=code)
            raise KnowledgeStoreError(f"store_http_{code}") from exc
        except httpx.HTTPError as exc:
            logger.warning("knowledge_store_network_error", path=path, error=type(exc).__name__)
            raise KnowledgeStoreError(type(exc).__name__) from exc
        except ValueError as exc:
            raise KnowledgeStoreError("invalid_json") from exc
        if not isinstance(data, list):
            raise KnowledgeStoreError("unexpected_payload")
        return data


# -------------------- Conversion des lignes --------------------


def _association(row: Any) -> FragmentThemeAssociation | None:
    """Convertit une ligne d'association ; une ligne mal formée est ignorée (None).

    La similarité est ramenée dans [SIMILARITY_MIN, SIMILARITY_MAX] : pgvector peut renvoyer
    1.0000001 pour des vecteurs identiques.
    """
    try:
        if row.get("fragment_id") is None or row.get("similarity") is None:
            raise ValueError("missing_field")
        similarity = float(row["similarity"])
        if not math.isfinite(similarity):
            raise ValueError("non_finite_similarity")
        return FragmentThemeAssociation(
            fragment_id=str(row["fragment_id"]),
            theme_code=str(row["theme_code"]),
            similarity=min(SIMILARITY_MAX, max(SIMILARITY_MIN, similarity)),
        )
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        logger.warning("knowledge_store_malformed_row", table="fragment_themes", error=str(exc))
        return None


def _fragment(row: Any) -> KnowledgeFragment | None:
    """Convertit une ligne de fragment ; une ligne mal formée est ignorée (None)."""
    try:
        return KnowledgeFragment(
            id=str(row["id"]),
            text=row.get("text") or "",
            persona_id=row.get("interpreter") or "",
            source=row.get("source") or "",
            chapter=None if row.get("chapter") is None else str(row["chapter"]),
            metadata=row.get("metadata") or {},
        )
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        logger.warning("knowledge_store_malformed_row", table="knowledge_fragments", error=str(exc))
        return None
