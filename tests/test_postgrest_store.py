# ============================================================
# Tests : tests/test_postgrest_store.py
# Objet  : Adaptateur PostgREST du magasin de connaissances.
# ============================================================
"""Tests pour le magasin PostgREST.

Ce module teste les requêtes envoyées (chemins, filtres, en-têtes), le repli sur la RPC de recherche
vectorielle, la traduction des erreurs HTTP en `KnowledgeStoreError` et le traitement des lignes mal
formées, via `httpx.MockTransport`.
"""

from __future__ import annotations

import json

import httpx
import pytest

from dreamlens.domain.entities import ThemeCandidate
from dreamlens.domain.errors import KnowledgeStoreError
from dreamlens.domain.retriever import KnowledgeRetriever
from dreamlens.infra.knowledge.postgrest_store import PostgrestKnowledgeStore

# Constantes pour éviter les erreurs PLR2004 (Magic values)
FLOOR = 0.3
LIMIT = 50
HIGH_SIMILARITY = 0.82
RPC_SIMILARITY = 0.61
OVERSHOOT = 1.0000001

BASE_URL = "https://kb.example.test/rest/v1"


def _store(handler, api_key: str | None = "service-key") -> PostgrestKnowledgeStore:
    return PostgrestKnowledgeStore(BASE_URL, api_key=api_key, transport=httpx.MockTransport(handler))


def test_match_associations_query_and_headers():
    """Teste les filtres envoyés pour les associations et les en-têtes d'authentification."""
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        rows = [{"fragment_id": "jung-pursuer-02", "theme_code": "chase", "similarity": HIGH_SIMILARITY}]
        return httpx.Response(200, json=rows)

    rows = _store(handler).match_associations(
        "chase", None, similarity_floor=FLOOR, limit=LIMIT
    )
    assert [r.fragment_id for r in rows] == ["jung-pursuer-02"]
    assert rows[0].similarity == pytest.approx(HIGH_SIMILARITY)

    request = seen[0]
    assert request.url.path == "/rest/v1/fragment_themes"
    assert request.url.params["theme_code"] == "eq.chase"
    assert request.url.params["similarity"] == f"gte.{FLOOR}"
    assert request.url.params["order"] == "similarity.desc"
    assert request.url.params["limit"] == str(LIMIT)
    assert request.headers["apikey"] == "service-key"
    assert request.headers["Authorization"] == "Bearer service-key"


def test_match_associations_falls_back_to_rpc():
    """Teste le repli sur la RPC vectorielle quand aucune association n'existe."""
    paths: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        if request.url.path.endswith("/rpc/search_fragments"):
            body = json.loads(request.content)
            assert body["similarity_threshold"] == pytest.approx(FLOOR)
            assert body["max_results"] == LIMIT
            return httpx.Response(200, json=[{"id": "freud-wish-01", "similarity": RPC_SIMILARITY}])
        return httpx.Response(200, json=[])

    rows = _store(handler).match_associations(
        "lost", [0.1, 0.2, 0.3], similarity_floor=FLOOR, limit=LIMIT
    )
    assert paths == ["/rest/v1/fragment_themes", "/rest/v1/rpc/search_fragments"]
    assert rows[0].fragment_id == "freud-wish-01"
    assert rows[0].theme_code == "lost"


def test_no_rpc_without_embedding():
    """Teste qu'aucune recherche vectorielle n'est tentée sans embedding."""
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        return httpx.Response(200, json=[])

    assert _store(handler).match_associations("lost", None, similarity_floor=FLOOR, limit=LIMIT) == []
    assert len(calls) == 1


def test_get_fragments_maps_interpreter():
    """Teste que la colonne `interpreter` désigne la persona propriétaire."""

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["id"] == "in.(freud-wish-01,jung-shadow-01)"
        return httpx.Response(
            200,
            json=[
                {
                    "id": "freud-wish-01",
                    "text": "A dream is the fulfilment of a wish.",
                    "source": "The Interpretation of Dreams",
                    "chapter": 3,
                    "interpreter": "freud",
                    "metadata": None,
                }
            ],
        )

    fragments = _store(handler).get_fragments(["freud-wish-01", "jung-shadow-01"])
    assert len(fragments) == 1
    assert fragments[0].persona_id == "freud"
    assert fragments[0].chapter == "3"
    assert fragments[0].metadata == {}


def test_get_fragments_empty_ids_skips_request():
    """Teste qu'une liste d'identifiants vide n'envoie aucune requête."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    assert _store(handler).get_fragments([]) == []


def test_theme_embedding_from_json_string():
    """Teste la lecture d'un embedding sérialisé en chaîne par pgvector."""

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["code"] == "eq.water"
        return httpx.Response(200, json=[{"embedding": "[0.5, 0.25]"}])

    assert _store(handler).theme_embedding("water") == [0.5, 0.25]


def test_theme_embedding_unknown():
    """Teste qu'un thème inconnu n'a pas d'embedding."""
    store = _store(lambda request: httpx.Response(200, json=[]))
    assert store.theme_embedding("unknown") is None


def test_http_error_raises_store_error():
    """Teste la traduction d'une erreur HTTP en `KnowledgeStoreError`."""
    store = _store(lambda request: httpx.Response(503, json={"message": "down"}))
    with pytest.raises(KnowledgeStoreError, match="store_http_503"):
        store.match_associations("chase", None, similarity_floor=FLOOR, limit=LIMIT)


def test_network_error_raises_store_error():
    """Teste la traduction d'une erreur réseau en `KnowledgeStoreError`."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(KnowledgeStoreError, match="ConnectTimeout"):
        _store(handler).get_fragments(["freud-wish-01"])


def test_unexpected_payload():
    """Teste le rejet d'une réponse qui n'est pas une liste."""
    store = _store(lambda request: httpx.Response(200, json={"rows": []}))
    with pytest.raises(KnowledgeStoreError, match="unexpected_payload"):
        store.get_fragments(["freud-wish-01"])


def test_no_auth_headers_without_key():
    """Teste l'absence d'en-têtes d'authentification sans clé."""
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[])

    _store(handler, api_key=None).theme_embedding("water")
    assert "apikey" not in seen[0].headers
    assert "authorization" not in seen[0].headers


def test_similarity_above_one_is_clamped():
    """Teste qu'une similarité légèrement supérieure à 1 est ramenée à 1."""
    rows = [{"fragment_id": "jung-shadow-01", "theme_code": "chase", "similarity": OVERSHOOT}]
    store = _store(lambda request: httpx.Response(200, json=rows))
    matched = store.match_associations("chase", None, similarity_floor=FLOOR, limit=LIMIT)
    assert [r.similarity for r in matched] == [1.0]


def test_malformed_association_rows_are_skipped():
    """Teste que les lignes mal formées sont ignorées sans faire échouer la requête."""
    rows = [
        {"fragment_id": "a", "theme_code": "chase", "similarity": "high"},
        {"fragment_id": "b", "similarity": HIGH_SIMILARITY},
        {"fragment_id": "c", "theme_code": "chase", "similarity": "NaN"},
        {"fragment_id": None, "theme_code": "chase", "similarity": HIGH_SIMILARITY},
        "not-a-row",
        {"fragment_id": "jung-pursuer-02", "theme_code": "chase", "similarity": HIGH_SIMILARITY},
    ]
    store = _store(lambda request: httpx.Response(200, json=rows))
    matched = store.match_associations("chase", None, similarity_floor=FLOOR, limit=LIMIT)
    assert [r.fragment_id for r in matched] == ["jung-pursuer-02"]


def test_malformed_rpc_hits_are_skipped():
    """Teste que les résultats RPC mal formés sont ignorés."""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/rpc/search_fragments"):
            hits = [None, {"id": "x", "similarity": [1]}, {"id": "freud-wish-01", "similarity": 1}]
            return httpx.Response(200, json=hits)
        return httpx.Response(200, json=[])

    matched = _store(handler).match_associations(
        "lost", [0.1, 0.2], similarity_floor=FLOOR, limit=LIMIT
    )
    assert [(r.fragment_id, r.theme_code) for r in matched] == [("freud-wish-01", "lost")]


def test_malformed_fragment_rows_are_skipped():
    """Teste qu'un fragment sans identifiant ou aux métadonnées invalides est ignoré."""
    rows = [
        {"text": "no id", "interpreter": "freud"},
        {"id": "freud-wish-02", "text": "t", "interpreter": "freud", "metadata": "oops"},
        {"id": "freud-wish-01", "text": "A wish.", "interpreter": "freud"},
    ]
    store = _store(lambda request: httpx.Response(200, json=rows))
    fragments = store.get_fragments(["freud-wish-01", "freud-wish-02"])
    assert [f.id for f in fragments] == ["freud-wish-01"]


def test_malformed_embedding_raises_store_error():
    """Teste qu'un embedding illisible est remonté en `KnowledgeStoreError`."""
    store = _store(lambda request: httpx.Response(200, json=[{"embedding": "[0.5, oops"}]))
    with pytest.raises(KnowledgeStoreError, match="malformed_embedding"):
        store.theme_embedding("water")


def test_retriever_degrades_on_malformed_embedding():
    """Teste que la recherche se dégrade au lieu d'échouer sur une réponse illisible."""
    store = _store(lambda request: httpx.Response(200, json=[{"embedding": {"x": 1}}]))
    retriever = KnowledgeRetriever(store, sleep=lambda s: None)
    themes = [ThemeCandidate(code="chase", label="Being chased", relevance=1.0)]
    result = retriever.retrieve(themes, "jung")
    assert result.degraded is True
    assert result.fragments == []
