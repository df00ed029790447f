"""Interface de base pour les magasins de connaissances.

Un magasin de connaissances sert les associations fragment/thème précalculées (filtrées par un seuil
de similarité) et la lecture des fragments par identifiant, avec leur persona propriétaire. Les
opérations réseau acceptent un timeout explicite.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from dreamlens.domain.entities import FragmentThemeAssociation, KnowledgeFragment


class KnowledgeStore(ABC):
    """Interface abstraite d'un magasin vectoriel de fragments."""

    backend_name: str = "unknown"

    @abstractmethod
    def theme_embedding(self, theme_code: str, *, timeout: float | None = None) -> list[float] | None:
        """Retourne l'embedding précalculé d'un thème, ou None s'il est inconnu."""
        raise NotImplementedError

    @abstractmethod
    def match_associations(
        self,
        theme_code: str,
        embedding: list[float] | None,
        *,
        similarity_floor: float,
        limit: int,
        timeout: float | None = None,
    ) -> list[FragmentThemeAssociation]:
        """Retourne les associations du thème dont la similarité est >= au seuil.

        Les associations précalculées sont prioritaires ; à défaut, l'embedding du thème sert de
        requête vectorielle. Les lignes sont triées par similarité décroissante.

        Raises:
            KnowledgeStoreError: En cas d'erreur transitoire du magasin.
        """
        raise NotImplementedError

    @abstractmethod
    def get_fragments(
        self, ids: list[str], *, timeout: float | None = None
    ) -> list[KnowledgeFragment]:
        """Retourne les fragments connus parmi `ids` (les identifiants absents sont ignorés).

        Raises:
            KnowledgeStoreError: En cas d'erreur transitoire du magasin.
        """
        raise NotImplementedError
