"""Interface de base pour les clients de complétion."""

from __future__ import annotations

from abc import ABC, abstractmethod

from dreamlens.domain.entities import CompletionResponse


class CompletionClient(ABC):
    """Interface abstraite pour les API de complétion à messages."""

    @abstractmethod
    def complete(
        self,
        messages: list[dict[str, str]],
        *,
        model: str,
        temperature: float,
        max_tokens: int,
        timeout: float,
    ) -> CompletionResponse:
        """Exécute une complétion sur un modèle donné.

        Raises:
            CompletionError: Sous-classe portant la classe d'erreur (modération, indisponibilité,
                corps vide, authentification, configuration).
        """
        ...
