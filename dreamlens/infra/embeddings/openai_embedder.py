"""
Embedder OpenAI pour la génération d'embeddings.

Ce module implémente un embedder utilisant l'endpoint `embeddings` de l'API OpenAI.
"""

from __future__ import annotations

from openai import OpenAI

from dreamlens.infra.embeddings.base import Embeddings


class OpenAIEmbedder(Embeddings):
    """Embedder OpenAI pour la génération d'embeddings."""

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        timeout: float = 10.0,
    ) -> None:
        """
        Initialise l'embedder OpenAI.

        Args:
            api_key: Clé d'API OpenAI.
            model: Modèle d'embedding.
            timeout: Timeout de chaque appel réseau, en secondes.
        """
        self.client = OpenAI(api_key=api_key, timeout=timeout)
        self.model = model

    def embed(self, texts: list[str]) -> list[list[float]]:
        """
        Génère des embeddings vectoriels via l'API OpenAI.

        Args:
            texts: Liste des textes à convertir en embeddings.

        Returns:
            list[list[float]]: Liste des vecteurs d'embedding, dans l'ordre des textes.
        """
        if not texts:
            return []
        resp = self.client.embeddings.create(model=self.model, input=texts)
        return [d.embedding for d in sorted(resp.data, key=lambda d: d.index)]
