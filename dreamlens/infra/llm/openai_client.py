"""
Client de complétion basé sur le SDK OpenAI, pointé vers OpenRouter.

Implémente l'interface `CompletionClient` :
- appel chat.completions avec timeout explicite par tentative (pas de retry interne du SDK,
  la chaîne de repli est gérée par l'orchestrateur)
- mode JSON demandé uniquement pour les modèles qui le supportent
- traduction des exceptions du SDK en erreurs de complétion classées
"""

from __future__ import annotations

from typing import Any

import openai
import structlog
from openai import OpenAI

from dreamlens.core.constants import (
    HTTP_STATUS_BAD_REQUEST,
    HTTP_STATUS_FORBIDDEN,
    HTTP_STATUS_NOT_FOUND,
    HTTP_STATUS_TOO_MANY_REQUESTS,
    HTTP_STATUS_SERVER_ERROR_MIN,
)
from dreamlens.domain.entities import CompletionResponse, TokenUsage
from dreamlens.domain.errors import (
    CompletionAuthError,
    CompletionConfigError,
    CompletionError,
    MalformedCompletionError,
    ModerationError,
    ProviderUnavailableError,
)
from dreamlens.infra.llm.base import CompletionClient

# Modèles qui refusent `response_format={"type": "json_object"}`
JSON_MODE_UNSUPPORTED = ("llama-4", "gemma")
_MODERATION_MARKERS = ("moderation", "flagged", "content policy", "content_filter", "safety")

logger = structlog.get_logger(__name__)


def supports_json_mode(model: str) -> bool:
    """Indique si le modèle accepte le mode JSON natif."""
    name = (model or "").lower()
    return not any(marker in name for marker in JSON_MODE_UNSUPPORTED)


def _error_details(body: Any) -> tuple[str, list[str]]:
    """Extrait (message, raisons) d'un corps d'erreur OpenRouter/OpenAI."""
    if not isinstance(body, dict):
        return str(body or ""), []
    message = str(body.get("message") or "")
    metadata = body.get("metadata") or {}
    reasons = metadata.get("reasons") if isinstance(metadata, dict) else None
    return message, [str(r) for r in (reasons or [])]


def _is_moderation(status: int, message: str, reasons: list[str]) -> bool:
    if status not in (HTTP_STATUS_BAD_REQUEST, HTTP_STATUS_FORBIDDEN):
        return False
    lowered = message.lower()
    return bool(reasons) or any(marker in lowered for marker in _MODERATION_MARKERS)


def classify_sdk_error(exc: Exception) -> CompletionError:
    """Traduit une exception du SDK OpenAI en erreur de complétion classée.

    Args:
        exc: Exception levée par le SDK.

    Returns:
        CompletionError: Erreur typée (modération, indisponibilité, auth, configuration).
    """
    if isinstance(exc, openai.APITimeoutError):
        return ProviderUnavailableError("timeout")
    if isinstance(exc, openai.APIConnectionError):
        return ProviderUnavailableError("connection_error")
    if isinstance(exc, openai.APIStatusError):
        status = int(exc.status_code)
        message, reasons = _error_details(exc.body)
        if _is_moderation(status, message, reasons):
            return ModerationError(message or "moderation_rejected", reasons=reasons)
        if isinstance(exc, openai.AuthenticationError | openai.PermissionDeniedError):
            return CompletionAuthError(f"auth_error_{status}")
        if status == HTTP_STATUS_TOO_MANY_REQUESTS or status >= HTTP_STATUS_SERVER_ERROR_MIN:
            return ProviderUnavailableError(f"provider_status_{status}")
        if status == HTTP_STATUS_NOT_FOUND:
            # modèle ou endpoint indisponible chez le fournisseur : le modèle suivant peut répondre
            return ProviderUnavailableError("model_not_found")
        return CompletionConfigError(f"request_rejected_{status}: {message}".strip())
    return ProviderUnavailableError(type(exc).__name__)


class OpenRouterClient(CompletionClient):
    """
    Client de complétion OpenAI-compatible (OpenRouter par défaut).

    Un client sans clé d'API lève `CompletionConfigError` à chaque appel : l'orchestrateur
    l'interprète comme une erreur terminale, sans consommer la chaîne de repli.
    """

    def __init__(
        self,
        api_key: str | None,
        base_url: str = "https://openrouter.ai/api/v1",
        app_name: str = "dreamlens",
    ) -> None:
        """Initialise le client.

        Args:
            api_key: Clé d'API du fournisseur.
            base_url: URL de base de l'API compatible OpenAI.
            app_name: Nom transmis dans l'en-tête `X-Title` (classement OpenRouter).
        """
        self.base_url = base_url
        self.client: OpenAI | None = None
        if api_key:
            self.client = OpenAI(
                api_key=api_key,
                base_url=base_url,
                max_retries=0,
                default_headers={"X-Title": app_name},
            )

    def complete(
        self,
        messages: list[dict[str, str]],
        *,
        model: str,
        temperature: float,
        max_tokens: int,
        timeout: float,
    ) -> CompletionResponse:
        """Exécute une complétion chat et retourne texte, modèle et usage.

        Raises:
            CompletionError: Erreur classée (voir `classify_sdk_error`).
        """
        if self.client is None:
            raise CompletionConfigError("missing_api_key")
        kwargs: dict[str, Any] = {}
        if supports_json_mode(model):
            kwargs["response_format"] = {"type": "json_object"}
        try:
            resp = self.client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                timeout=timeout,
                **kwargs,
            )
        except openai.OpenAIError as exc:
            error = classify_sdk_error(exc)
            logger.warning(
                "completion_call_failed",
                model=model,
                error_class=error.error_class.value,
                reasons=error.reasons,
            )
            raise error from exc

        usage = self._extract_usage_dict(resp)
        choices = getattr(resp, "choices", None) or []
        if not choices:
            raise self._error_from_empty_body(resp, usage)
        choice = choices[0]
        content = getattr(getattr(choice, "message", None), "content", None)
        if getattr(choice, "finish_reason", None) == "content_filter" and not content:
            raise ModerationError("content_filter", usage=usage)
        if not content or not str(content).strip():
            raise MalformedCompletionError("empty_completion", usage=usage)
        return CompletionResponse(
            text=str(content),
            model=str(getattr(resp, "model", None) or model),
            usage=TokenUsage.from_dict(usage),
        )

    # -------------------- Helpers internes --------------------

    def _error_from_empty_body(self, resp: Any, usage: dict[str, int]) -> CompletionError:
        """OpenRouter peut renvoyer un HTTP 200 dont le corps porte une erreur."""
        body = getattr(resp, "error", None)
        if isinstance(body, dict):
            message, reasons = _error_details(body)
            try:
                status = int(body.get("code") or 0)
            except (TypeError, ValueError):
                status = 0
            if _is_moderation(status, message, reasons):
                return ModerationError(message or "moderation_rejected", usage=usage, reasons=reasons)
            if status == HTTP_STATUS_TOO_MANY_REQUESTS or status >= HTTP_STATUS_SERVER_ERROR_MIN:
                return ProviderUnavailableError(f"provider_status_{status}", usage=usage)
        return MalformedCompletionError("no_choices", usage=usage)

    def _extract_usage_dict(self, resp: Any) -> dict[str, int]:
        """
        Extrait les infos d'usage depuis la réponse OpenAI.

        Toujours un dict.
        """
        usage = getattr(resp, "usage", None)
        if not usage:
            return {}
        return {
            "prompt_tokens": int(getattr(usage, "prompt_tokens", 0) or 0),
            "completion_tokens": int(getattr(usage, "completion_tokens", 0) or 0),
            "total_tokens": int(getattr(usage, "total_tokens", 0) or 0),
        }
