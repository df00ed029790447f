"""
Orchestrateur de complétion : chaîne de repli de modèles sous forme de machine à états.

États d'une requête : NOT_STARTED -> ATTEMPTING(model_i) -> SUCCESS
                                                         | RETRYABLE_FAILURE -> ATTEMPTING(model_i+1)
                                                         | TERMINAL_FAILURE

`transition` est une fonction pure ; `CompletionOrchestrator.run` l'applique à chaque tentative.
Les modèles sont essayés un par un, dans l'ordre, avec un timeout par tentative borné par
l'échéance globale. Chaque tentative dispatchée est inscrite au registre de coûts.

Une réponse non vide refusée par l'appelant (callback `accept`) compte comme une réponse mal
formée : la chaîne passe au modèle suivant.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

import structlog

from dreamlens.app.cost_ledger import CostLedger
from dreamlens.app.metrics import LLM_ATTEMPT_LATENCY, LLM_ATTEMPTS_TOTAL, labelize_model
from dreamlens.domain.entities import (
    CompletionAttempt,
    CompletionResponse,
    PromptTemplate,
    TokenUsage,
)
from dreamlens.domain.errors import CompletionError, ErrorClass
from dreamlens.domain.personas.base import Persona
from dreamlens.infra.llm.base import CompletionClient

logger = structlog.get_logger(__name__)

# préfixe du message d'une tentative dont la réponse a été refusée par `accept`
UNPARSEABLE_RESPONSE = "unparseable_response"


class AttemptState(str, Enum):
    """États de la machine de repli."""

    NOT_STARTED = "not_started"
    ATTEMPTING = "attempting"
    SUCCESS = "success"
    RETRYABLE_FAILURE = "retryable_failure"
    TERMINAL_FAILURE = "terminal_failure"


_FINAL_STATES = frozenset({AttemptState.SUCCESS, AttemptState.TERMINAL_FAILURE})


def transition(
    state: AttemptState,
    *,
    error_class: ErrorClass | None = None,
    has_next: bool = False,
) -> AttemptState:
    """Calcule l'état suivant de la machine de repli.

    Args:
        state: État courant.
        error_class: Classe d'erreur de l'évènement (None = tentative réussie / pas d'erreur).
        has_next: Vrai s'il reste un modèle à essayer.

    Returns:
        AttemptState: État suivant.

    Raises:
        ValueError: Si l'état courant est final.
    """
    if state in _FINAL_STATES:
        raise ValueError(f"no transition from final state {state.value}")
    if state is AttemptState.ATTEMPTING:
        if error_class is None:
            return AttemptState.SUCCESS
        return (
            AttemptState.RETRYABLE_FAILURE if error_class.retryable else AttemptState.TERMINAL_FAILURE
        )
    if error_class is not None and not error_class.retryable:
        return AttemptState.TERMINAL_FAILURE
    return AttemptState.ATTEMPTING if has_next else AttemptState.TERMINAL_FAILURE


def dedupe(models: list[str] | tuple[str, ...]) -> list[str]:
    """Supprime les doublons et les entrées vides en conservant l'ordre."""
    seen: set[str] = set()
    out: list[str] = []
    for model in models:
        model = (model or "").strip()
        if model and model not in seen:
            seen.add(model)
            out.append(model)
    return out


@dataclass
class CompletionOutcome:
    """Issue de l'orchestration : réponse retenue ou échec terminal, avec l'historique."""

    state: AttemptState
    response: CompletionResponse | None = None
    error_class: ErrorClass | None = None
    error: str | None = None
    attempts: list[CompletionAttempt] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state is AttemptState.SUCCESS and self.response is not None


class CompletionOrchestrator:
    """Exécute la chaîne de repli pour un gabarit de prompt et une persona."""

    def __init__(
        self,
        client: CompletionClient,
        ledger: CostLedger,
        *,
        model_chain: list[str],
        persona_chains: dict[str, list[str]] | None = None,
        attempt_timeout_s: float = 30.0,
        fallback_delay_s: float = 0.5,
        deadline_s: float = 90.0,
        metrics_allowlist: str = "",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialise l'orchestrateur.

        Args:
            client: Client de complétion.
            ledger: Registre de coûts partagé.
            model_chain: Chaîne globale (primaire puis replis).
            persona_chains: Chaînes propres à certaines personas.
            attempt_timeout_s: Timeout d'une tentative.
            fallback_delay_s: Pause avant chaque modèle de repli.
            deadline_s: Échéance globale par défaut d'une requête.
            metrics_allowlist: Modèles autorisés comme label Prometheus.
            clock: Horloge monotone (injectable en test).
            sleep: Fonction de pause (injectable en test).
        """
        self.client = client
        self.ledger = ledger
        self.model_chain = dedupe(model_chain)
        self.persona_chains = {k: dedupe(v) for k, v in (persona_chains or {}).items()}
        self.attempt_timeout_s = attempt_timeout_s
        self.fallback_delay_s = fallback_delay_s
        self.deadline_s = deadline_s
        self.metrics_allowlist = metrics_allowlist
        self._clock = clock
        self._sleep = sleep

    def deadline_from_now(self) -> float:
        """Échéance absolue d'une requête qui commence maintenant."""
        return self._clock() + self.deadline_s

    def models_for(self, persona: Persona) -> list[str]:
        """Chaîne de modèles d'une persona (configuration, préférence de la persona, globale)."""
        return (
            self.persona_chains.get(persona.persona_id)
            or dedupe(persona.preferred_models)
            or self.model_chain
        )

    def run(
        self,
        template: PromptTemplate,
        dream_text: str,
        persona: Persona,
        *,
        dream_id: str | None = None,
        cancel_event: threading.Event | None = None,
        deadline: float | None = None,
        accept: Callable[[str], str | None] | None = None,
    ) -> CompletionOutcome:
        """Essaie les modèles dans l'ordre jusqu'au premier succès ou à un échec terminal.

        Args:
            template: Gabarit de prompt assemblé.
            dream_text: Texte du rêve (message utilisateur).
            persona: Persona (paramètres d'échantillonnage, chaîne de modèles).
            dream_id: Identifiant du rêve pour le registre de coûts.
            cancel_event: Annulation coopérative, vérifiée avant chaque dispatch.
            deadline: Échéance absolue (horloge de l'orchestrateur) ; défaut : maintenant +
                `deadline_s`.
            accept: Contrôle d'une réponse non vide ; retourne un motif de rejet (tentative mal
                formée, modèle suivant) ou None pour la retenir.

        Returns:
            CompletionOutcome: Réponse retenue ou échec terminal avec l'historique complet.
        """
        chain = self.models_for(persona)
        deadline_at = deadline if deadline is not None else self._clock() + self.deadline_s
        messages = template.to_messages(dream_text)
        attempts: list[CompletionAttempt] = []

        state = transition(AttemptState.NOT_STARTED, has_next=bool(chain))
        if state is AttemptState.TERMINAL_FAILURE:
            logger.error("completion_chain_empty", persona=persona.persona_id)
            return CompletionOutcome(
                state=state, error_class=ErrorClass.CONFIGURATION, error="empty_model_chain"
            )

        last_class: ErrorClass | None = None
        last_message: str | None = None
        for index, model in enumerate(chain):
            if index > 0 and self.fallback_delay_s > 0:
                self._sleep(min(self.fallback_delay_s, max(0.0, deadline_at - self._clock())))

            stop = self._stop_reason(cancel_event, deadline_at)
            if stop is not None:
                state = transition(state, error_class=stop)
                logger.warning(
                    "completion_stopped",
                    persona=persona.persona_id,
                    reason=stop.value,
                    attempts=len(attempts),
                )
                return CompletionOutcome(
                    state=state, error_class=stop, error=stop.value, attempts=attempts
                )

            timeout = max(0.0, min(self.attempt_timeout_s, deadline_at - self._clock()))
            attempt, response = self._attempt(
                model, messages, persona, timeout=timeout, dream_id=dream_id, accept=accept
            )
            attempts.append(attempt)
            state = transition(state, error_class=attempt.error_class)
            if state is AttemptState.SUCCESS:
                logger.info(
                    "completion_succeeded",
                    persona=persona.persona_id,
                    model=attempt.model,
                    attempts=len(attempts),
                    latency_ms=attempt.latency_ms,
                )
                return CompletionOutcome(state=state, response=response, attempts=attempts)

            last_class, last_message = attempt.error_class, attempt.error_message
            if state is AttemptState.TERMINAL_FAILURE:
                break
            state = transition(state, has_next=index < len(chain) - 1)
            if state is AttemptState.ATTEMPTING:
                logger.info(
                    "completion_fallback",
                    persona=persona.persona_id,
                    failed_model=model,
                    next_model=chain[index + 1],
                    error_class=last_class.value if last_class else None,
                )

        terminal = last_class is not None and not last_class.retryable
        logger.error(
            "completion_failed",
            persona=persona.persona_id,
            attempts=len(attempts),
            error_class=last_class.value if last_class else None,
            exhausted=not terminal,
        )
        return CompletionOutcome(
            state=AttemptState.TERMINAL_FAILURE,
            error_class=last_class,
            error=(last_class.value if terminal and last_class else "all_models_failed"),
            attempts=attempts,
        )

    # -------------------- Helpers internes --------------------

    def _stop_reason(
        self, cancel_event: threading.Event | None, deadline_at: float
    ) -> ErrorClass | None:
        if cancel_event is not None and cancel_event.is_set():
            return ErrorClass.CANCELLED
        if self._clock() >= deadline_at:
            return ErrorClass.DEADLINE_EXCEEDED
        return None

    def _attempt(
        self,
        model: str,
        messages: list[dict[str, str]],
        persona: Persona,
        *,
        timeout: float,
        dream_id: str | None,
        accept: Callable[[str], str | None] | None = None,
    ) -> tuple[CompletionAttempt, CompletionResponse | None]:
        """Une tentative : appel, classement de l'erreur, inscription au registre."""
        start = time.perf_counter()
        response: CompletionResponse | None = None
        error_class: ErrorClass | None = None
        error_message: str | None = None
        usage = TokenUsage()
        try:
            response = self.client.complete(
                messages,
                model=model,
                temperature=persona.sampling.temperature,
                max_tokens=persona.sampling.max_tokens,
                timeout=timeout,
            )
            usage = response.usage
            if not response.text.strip():
                error_class, error_message = ErrorClass.MALFORMED_RESPONSE, "empty_completion"
                response = None
        except CompletionError as exc:
            error_class, error_message = exc.error_class, str(exc)
            usage = TokenUsage.from_dict(exc.usage)
        except Exception as exc:
            # erreur inattendue du client : traitée comme une indisponibilité du fournisseur
            logger.warning(
                "completion_client_unexpected_error",
                model=model,
                error=type(exc).__name__,
                exc_info=True,
            )
            error_class, error_message = ErrorClass.PROVIDER_UNAVAILABLE, type(exc).__name__
        if response is not None and accept is not None:
            reason = accept(response.text)
            if reason is not None:
                error_class = ErrorClass.MALFORMED_RESPONSE
                error_message = f"{UNPARSEABLE_RESPONSE}: {reason}"
                response = None
        latency = time.perf_counter() - start

        succeeded = error_class is None
        self.ledger.record(
            model,
            usage,
            persona_id=persona.persona_id,
            dream_id=dream_id,
            succeeded=succeeded,
        )
        label = labelize_model(model, self.metrics_allowlist)
        LLM_ATTEMPTS_TOTAL.labels(label, "success" if succeeded else error_class.value).inc()
        LLM_ATTEMPT_LATENCY.labels(label).observe(latency)
        if not succeeded:
            logger.warning(
                "completion_attempt_failed",
                persona=persona.persona_id,
                model=model,
                error_class=error_class.value,
                retryable=error_class.retryable,
            )
        attempt = CompletionAttempt(
            model=model,
            succeeded=succeeded,
            error_class=error_class,
            error_message=error_message,
            usage=usage,
            latency_ms=int(latency * 1000),
        )
        return attempt, response
