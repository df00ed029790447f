"""Embedder local utilisant Sentence Transformers.

Utilisé pour construire les associations fragment/thème hors ligne sans appel réseau une fois le
modèle en cache. Nécessite l'extra `local` (sentence-transformers).
"""

from __future__ import annotations

from sentence_transformers import SentenceTransformer

from dreamlens.infra.embeddings.base import Embeddings


class LocalEmbedder(Embeddings):
    """Embedder local utilisant Sentence Transformers.

    Le modèle est chargé une seule fois par processus et partagé entre instances.
    """

    _models: dict[str, SentenceTransformer] = {}

    def __init__(self, model_name: str = "all-MiniLM-L6-v2"):
        """Initialise l'embedder local avec le modèle spécifié.

        Args:
            model_name: Nom du modèle Sentence Transformers à utiliser.
        """
        if model_name not in LocalEmbedder._models:
            LocalEmbedder._models[model_name] = SentenceTransformer(model_name)
        self.model = LocalEmbedder._models[model_name]

    def embed(self, texts: list[str]) -> list[list[float]]:
        """Génère des embeddings vectoriels normalisés pour une liste de textes.

        Args:
            texts: Liste des textes à convertir en embeddings.

        Returns:
            list[list[float]]: Liste des vecteurs d'embedding.
        """
        if not texts:
            return []
        return self.model.encode(
            texts, convert_to_numpy=True, normalize_embeddings=True
        ).tolist()
