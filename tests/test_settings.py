# ============================================================
# Tests : tests/test_settings.py
# Objet  : Paramètres applicatifs et assemblage du conteneur.
# ============================================================
"""Tests pour les settings et le conteneur.

Ce module teste la lecture de la chaîne de modèles (CSV ou JSON), le chargement depuis
l'environnement et un fichier .env, et les fabriques du conteneur.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from dreamlens.core.container import build_embedder, build_store, persona_chains
from dreamlens.core.settings import DEFAULT_MODEL_CHAIN, Settings
from dreamlens.infra.knowledge.memory_store import InMemoryKnowledgeStore

# Constantes pour éviter les erreurs PLR2004 (Magic values)
CUSTOM_FLOOR = 0.45
CUSTOM_MAX_LENGTH = 1200


def test_default_model_chain():
    """Teste la chaîne de modèles par défaut."""
    assert Settings(_env_file=None).model_chain() == DEFAULT_MODEL_CHAIN


def test_model_chain_csv_dedupes():
    """Teste la lecture CSV de la chaîne, sans doublons ni entrées vides."""
    s = Settings(_env_file=None, LLM_MODEL_CHAIN=" a/one , b/two,, a/one ")
    assert s.model_chain() == ["a/one", "b/two"]


def test_model_chain_json_list():
    """Teste la lecture d'une chaîne au format liste JSON."""
    s = Settings(_env_file=None, LLM_MODEL_CHAIN='["x/primary", "y/fallback"]')
    assert s.model_chain() == ["x/primary", "y/fallback"]


def test_settings_from_environment(monkeypatch):
    """Teste que les variables d'environnement surchargent les valeurs par défaut."""
    monkeypatch.setenv("RETRIEVAL_SIMILARITY_FLOOR", str(CUSTOM_FLOOR))
    monkeypatch.setenv("LLM_GUARD_ENFORCE", "true")
    s = Settings(_env_file=None)
    assert s.RETRIEVAL_SIMILARITY_FLOOR == pytest.approx(CUSTOM_FLOOR)
    assert s.LLM_GUARD_ENFORCE is True


def test_settings_reads_env_file(tmp_path: Path):
    """Teste que les settings lisent un fichier .env explicite."""
    env = tmp_path / ".env.custom"
    env.write_text(
        f"DREAM_MAX_LENGTH={CUSTOM_MAX_LENGTH}\nKNOWLEDGE_BACKEND=memory\n", encoding="utf-8"
    )
    s = Settings(_env_file=str(env))
    assert s.DREAM_MAX_LENGTH == CUSTOM_MAX_LENGTH


def test_persona_chains_parsing():
    """Teste la lecture des chaînes par persona et le repli sur JSON invalide."""
    s = Settings(_env_file=None, PERSONA_MODEL_CHAINS_JSON='{"freud": ["a", "b"], "jung": "c"}')
    assert persona_chains(s) == {"freud": ["a", "b"]}
    assert persona_chains(Settings(_env_file=None, PERSONA_MODEL_CHAINS_JSON="{oops")) == {}
    assert persona_chains(Settings(_env_file=None, PERSONA_MODEL_CHAINS_JSON="[1]")) == {}


def test_build_store_memory_from_seed():
    """Teste que le backend mémoire charge le seed livré avec le paquet."""
    store = build_store(Settings(_env_file=None))
    assert isinstance(store, InMemoryKnowledgeStore)
    rows = store.match_associations("chase", None, similarity_floor=0.3, limit=50)
    assert rows


def test_build_store_postgrest_requires_url():
    """Teste que le backend PostgREST exige une URL."""
    with pytest.raises(RuntimeError):
        build_store(Settings(_env_file=None, KNOWLEDGE_BACKEND="postgrest"))


def test_build_embedder_without_key(monkeypatch):
    """Teste l'absence d'embedder quand aucune clé n'est configurée."""
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    assert build_embedder(Settings(_env_file=None, EMBEDDINGS_PROVIDER="openai")) is None
