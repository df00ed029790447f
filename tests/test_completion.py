# ============================================================
# Tests : tests/test_completion.py
# Objet  : Chaîne de repli des modèles (machine à états).
# ============================================================
"""Tests pour l'orchestrateur de complétion.

Ce module teste la table de transitions, le repli sur modération ou indisponibilité, l'arrêt sur
erreur terminale, le refus d'une réponse illisible, l'annulation, l'échéance globale et
l'inscription au registre de coûts.
"""

from __future__ import annotations

import threading

import pytest

from dreamlens.app.cost_ledger import CostLedger
from dreamlens.domain.completion import (
    UNPARSEABLE_RESPONSE,
    AttemptState,
    CompletionOrchestrator,
    dedupe,
    transition,
)
from dreamlens.domain.entities import PromptTemplate
from dreamlens.domain.errors import (
    CompletionAuthError,
    ErrorClass,
    ModerationError,
    ProviderUnavailableError,
)
from dreamlens.domain.personas.registry import get_persona
from tests.fakes import ScriptedCompletionClient

# Constantes pour éviter les erreurs PLR2004 (Magic values)
CHAIN = ["model-a", "model-b", "model-c"]
EXPECTED_ATTEMPTS_2 = 2
EXPECTED_ATTEMPTS_3 = 3
FREUD_TEMPERATURE = 0.6
FREUD_MAX_TOKENS = 1500
ATTEMPT_TIMEOUT = 30.0
DEADLINE = 10.0


class _FakeClock:
    """Horloge monotone manuelle."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _template() -> PromptTemplate:
    return PromptTemplate(system_prompt="sys", analysis_structure="steps", output_format="json")


def _orchestrator(client, ledger=None, **kwargs) -> CompletionOrchestrator:
    kwargs.setdefault("model_chain", CHAIN)
    kwargs.setdefault("fallback_delay_s", 0.0)
    return CompletionOrchestrator(client, ledger if ledger is not None else CostLedger(), sleep=lambda s: None, **kwargs)


@pytest.mark.parametrize(
    ("state", "error_class", "has_next", "expected"),
    [
        (AttemptState.NOT_STARTED, None, True, AttemptState.ATTEMPTING),
        (AttemptState.NOT_STARTED, None, False, AttemptState.TERMINAL_FAILURE),
        (AttemptState.ATTEMPTING, None, False, AttemptState.SUCCESS),
        (AttemptState.ATTEMPTING, ErrorClass.MODERATION, True, AttemptState.RETRYABLE_FAILURE),
        (AttemptState.ATTEMPTING, ErrorClass.MALFORMED_RESPONSE, True, AttemptState.RETRYABLE_FAILURE),
        (AttemptState.ATTEMPTING, ErrorClass.AUTHENTICATION, True, AttemptState.TERMINAL_FAILURE),
        (AttemptState.ATTEMPTING, ErrorClass.CANCELLED, True, AttemptState.TERMINAL_FAILURE),
        (AttemptState.RETRYABLE_FAILURE, None, True, AttemptState.ATTEMPTING),
        (AttemptState.RETRYABLE_FAILURE, None, False, AttemptState.TERMINAL_FAILURE),
    ],
)
def test_transition_table(state, error_class, has_next, expected):
    """Teste la table de transitions de la machine de repli."""
    assert transition(state, error_class=error_class, has_next=has_next) is expected


@pytest.mark.parametrize("state", [AttemptState.SUCCESS, AttemptState.TERMINAL_FAILURE])
def test_transition_from_final_state_raises(state):
    """Teste qu'aucune transition n'est possible depuis un état final."""
    with pytest.raises(ValueError):
        transition(state)


def test_dedupe_keeps_order():
    """Teste la suppression des doublons et des entrées vides de la chaîne."""
    assert dedupe(["a", " b ", "a", "", "c", "b"]) == ["a", "b", "c"]


def test_first_model_success():
    """Teste le succès direct sur le modèle primaire avec les paramètres de la persona."""
    client = ScriptedCompletionClient('{"interpretation": "ok"}')
    outcome = _orchestrator(client, attempt_timeout_s=ATTEMPT_TIMEOUT).run(
        _template(), "dream", get_persona("freud")
    )
    assert outcome.succeeded
    assert outcome.response.model == "model-a"
    assert len(outcome.attempts) == 1
    call = client.calls[0]
    assert call["temperature"] == FREUD_TEMPERATURE
    assert call["max_tokens"] == FREUD_MAX_TOKENS
    assert 0 < call["timeout"] <= ATTEMPT_TIMEOUT


def test_moderation_falls_back_to_next_model():
    """Teste qu'un rejet de modération fait passer au modèle suivant."""
    ledger = CostLedger()
    client = ScriptedCompletionClient(
        ModerationError("flagged", reasons=["violence"]), '{"interpretation": "ok"}'
    )
    outcome = _orchestrator(client, ledger).run(
        _template(), "dream", get_persona("freud"), dream_id="d1"
    )
    assert outcome.succeeded
    assert client.models_called == ["model-a", "model-b"]
    assert [a.succeeded for a in outcome.attempts] == [False, True]
    assert outcome.attempts[0].error_class is ErrorClass.MODERATION
    assert len(ledger) == EXPECTED_ATTEMPTS_2
    snapshot = ledger.snapshot()
    assert snapshot["failedCalls"] == 1
    assert snapshot["recent"][0]["dreamId"] == "d1"


def test_all_models_fail():
    """Teste l'épuisement de la chaîne : une tentative par modèle, dans l'ordre."""
    client = ScriptedCompletionClient(ProviderUnavailableError("provider_status_503"))
    outcome = _orchestrator(client).run(_template(), "dream", get_persona("jung"))
    assert not outcome.succeeded
    assert outcome.state is AttemptState.TERMINAL_FAILURE
    assert outcome.error == "all_models_failed"
    assert [a.model for a in outcome.attempts] == CHAIN
    assert len(outcome.attempts) == EXPECTED_ATTEMPTS_3


def test_auth_error_is_terminal():
    """Teste qu'une erreur d'authentification arrête la chaîne immédiatement."""
    client = ScriptedCompletionClient(CompletionAuthError("auth_error_401"))
    outcome = _orchestrator(client).run(_template(), "dream", get_persona("jung"))
    assert outcome.error == "authentication"
    assert outcome.error_class is ErrorClass.AUTHENTICATION
    assert client.models_called == ["model-a"]


def test_empty_completion_is_retryable():
    """Teste qu'une réponse vide est traitée comme malformée et déclenche le repli."""
    client = ScriptedCompletionClient("   ", '{"interpretation": "ok"}')
    outcome = _orchestrator(client).run(_template(), "dream", get_persona("mary"))
    assert outcome.succeeded
    assert outcome.attempts[0].error_class is ErrorClass.MALFORMED_RESPONSE


def test_unexpected_exception_is_provider_unavailable():
    """Teste qu'une exception inattendue du client est classée en indisponibilité."""
    client = ScriptedCompletionClient(RuntimeError("socket closed"), '{"interpretation": "ok"}')
    outcome = _orchestrator(client).run(_template(), "dream", get_persona("mary"))
    assert outcome.succeeded
    assert outcome.attempts[0].error_class is ErrorClass.PROVIDER_UNAVAILABLE


def test_cancelled_before_dispatch():
    """Teste qu'une annulation empêche tout appel au fournisseur."""
    client = ScriptedCompletionClient('{"interpretation": "ok"}')
    cancel = threading.Event()
    cancel.set()
    outcome = _orchestrator(client).run(
        _template(), "dream", get_persona("freud"), cancel_event=cancel
    )
    assert outcome.error == "cancelled"
    assert outcome.attempts == []
    assert client.calls == []


def test_deadline_stops_fallback():
    """Teste que l'échéance globale interrompt la chaîne entre deux tentatives."""
    clock = _FakeClock()

    class _SlowFailingClient(ScriptedCompletionClient):
        def complete(self, messages, **kwargs):
            clock.now += DEADLINE * 2
            return super().complete(messages, **kwargs)

    client = _SlowFailingClient(ProviderUnavailableError("timeout"))
    orchestrator = CompletionOrchestrator(
        client,
        CostLedger(),
        model_chain=CHAIN,
        deadline_s=DEADLINE,
        fallback_delay_s=0.0,
        clock=clock,
        sleep=lambda s: None,
    )
    outcome = orchestrator.run(_template(), "dream", get_persona("freud"))
    assert outcome.error == "deadline_exceeded"
    assert len(outcome.attempts) == 1


def test_empty_chain_is_configuration_error():
    """Teste qu'une chaîne vide est une erreur de configuration sans appel."""
    client = ScriptedCompletionClient('{"interpretation": "ok"}')
    outcome = _orchestrator(client, model_chain=[]).run(_template(), "dream", get_persona("freud"))
    assert outcome.error == "empty_model_chain"
    assert outcome.error_class is ErrorClass.CONFIGURATION
    assert client.calls == []


def test_persona_chain_overrides_global_chain():
    """Teste qu'une chaîne configurée pour une persona remplace la chaîne globale."""
    client = ScriptedCompletionClient('{"interpretation": "ok"}')
    orchestrator = _orchestrator(client, persona_chains={"freud": ["special", "special"]})
    assert orchestrator.models_for(get_persona("freud")) == ["special"]
    assert orchestrator.models_for(get_persona("jung")) == CHAIN
    orchestrator.run(_template(), "dream", get_persona("freud"))
    assert client.models_called == ["special"]


def test_fallback_delay_is_applied_between_models():
    """Teste la pause de repli avant chaque modèle secondaire."""
    pauses: list[float] = []
    client = ScriptedCompletionClient(ProviderUnavailableError("x"))
    orchestrator = CompletionOrchestrator(
        client, CostLedger(), model_chain=CHAIN, fallback_delay_s=0.5, sleep=pauses.append
    )
    orchestrator.run(_template(), "dream", get_persona("lakshmi"))
    assert pauses == [0.5, 0.5]


def test_rejected_reply_is_malformed_and_falls_back():
    """Teste qu'une réponse refusée par `accept` est malformée et fait passer au modèle suivant."""
    ledger = CostLedger()
    client = ScriptedCompletionClient("I cannot help with that.", '{"interpretation": "ok"}')

    def accept(text: str) -> str | None:
        return None if text.startswith("{") else "no_json"

    outcome = _orchestrator(client, ledger).run(
        _template(), "dream", get_persona("freud"), accept=accept
    )
    assert outcome.succeeded
    assert client.models_called == ["model-a", "model-b"]
    first = outcome.attempts[0]
    assert first.error_class is ErrorClass.MALFORMED_RESPONSE
    assert first.error_message == f"{UNPARSEABLE_RESPONSE}: no_json"
    assert ledger.snapshot()["failedCalls"] == 1


def test_rejected_replies_exhaust_chain():
    """Teste l'épuisement de la chaîne quand chaque réponse est refusée."""
    client = ScriptedCompletionClient("no json here")
    outcome = _orchestrator(client).run(
        _template(), "dream", get_persona("jung"), accept=lambda text: "no_json"
    )
    assert outcome.error == "all_models_failed"
    assert outcome.response is None
    assert client.models_called == CHAIN
