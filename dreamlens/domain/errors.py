"""Taxonomie des erreurs du pipeline d'interprétation.

Les erreurs de complétion portent leur classe (`ErrorClass`) afin que l'orchestrateur décide, sans
inspection de type, s'il faut passer au modèle suivant ou abandonner immédiatement.
"""

from __future__ import annotations

from enum import Enum


class ErrorClass(str, Enum):
    """Classes d'erreurs d'une tentative de complétion."""

    MODERATION = "moderation"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    MALFORMED_RESPONSE = "malformed_response"
    AUTHENTICATION = "authentication"
    CONFIGURATION = "configuration"
    CANCELLED = "cancelled"
    DEADLINE_EXCEEDED = "deadline_exceeded"

    @property
    def retryable(self) -> bool:
        """Indique si l'erreur autorise le passage au modèle suivant."""
        return self in RETRYABLE_ERROR_CLASSES


RETRYABLE_ERROR_CLASSES = frozenset(
    {
        ErrorClass.MODERATION,
        ErrorClass.PROVIDER_UNAVAILABLE,
        ErrorClass.MALFORMED_RESPONSE,
    }
)


class DreamlensError(Exception):
    """Erreur de base du projet."""


class UnknownPersonaError(DreamlensError, KeyError):
    """Identifiant de persona absent de la table des personas."""

    def __init__(self, persona_id: str) -> None:
        """Initialise l'erreur avec l'identifiant inconnu."""
        self.persona_id = persona_id
        super().__init__(f"unknown persona: {persona_id!r}")

    def __str__(self) -> str:
        return self.args[0]


class InputGuardViolation(DreamlensError, ValueError):
    """Texte de rêve refusé par la garde d'entrée (la règle est le message)."""

    def __init__(self, rule: str) -> None:
        self.rule = rule
        super().__init__(rule)


class KnowledgeStoreError(DreamlensError):
    """Erreur transitoire du magasin de connaissances (réseau, timeout, 5xx)."""


class CompletionError(DreamlensError):
    """Erreur d'un appel de complétion, classée pour l'orchestrateur."""

    error_class: ErrorClass = ErrorClass.PROVIDER_UNAVAILABLE

    def __init__(
        self,
        message: str = "",
        *,
        usage: dict[str, int] | None = None,
        reasons: list[str] | None = None,
    ) -> None:
        """Initialise l'erreur.

        Args:
            message: Description lisible (jamais le contenu du rêve).
            usage: Usage de tokens rapporté malgré l'échec, s'il existe.
            reasons: Codes de raison machine (ex: catégories de modération).
        """
        self.usage = usage or {}
        self.reasons = reasons or []
        super().__init__(message or self.error_class.value)

    @property
    def retryable(self) -> bool:
        """Indique si l'orchestrateur peut essayer le modèle suivant."""
        return self.error_class.retryable


class ModerationError(CompletionError):
    """Rejet par la politique de contenu du fournisseur."""

    error_class = ErrorClass.MODERATION


class ProviderUnavailableError(CompletionError):
    """Indisponibilité transitoire du fournisseur (5xx, 429, timeout, réseau)."""

    error_class = ErrorClass.PROVIDER_UNAVAILABLE


class MalformedCompletionError(CompletionError):
    """Corps de complétion absent ou vide."""

    error_class = ErrorClass.MALFORMED_RESPONSE


class CompletionAuthError(CompletionError):
    """Clé d'API refusée; inutile d'essayer d'autres modèles."""

    error_class = ErrorClass.AUTHENTICATION


class CompletionConfigError(CompletionError):
    """Configuration invalide (clé absente, paramètres refusés)."""

    error_class = ErrorClass.CONFIGURATION
