"""
Pipeline d'interprétation de bout en bout.

texte -> garde d'entrée -> extraction -> retrieval -> contrôle qualité -> assemblage du prompt
      -> chaîne de complétion -> parsing/normalisation -> revue -> `InterpretationResponse`

Chaque étape consomme la sortie de la précédente. Le pipeline ne lève jamais vers l'appelant :
toute issue est un `InterpretationResponse` bien formé (succès, échec typé ou repli étiqueté).
"""

from __future__ import annotations

import threading
import time

import structlog
from opentelemetry import trace

from dreamlens.app.input_guard import apply_guard
from dreamlens.app.metrics import INTERPRETATION_LATENCY, INTERPRETATION_REQUESTS
from dreamlens.domain.completion import UNPARSEABLE_RESPONSE, CompletionOrchestrator
from dreamlens.domain.entities import (
    CompletionAttempt,
    DreamElements,
    DreamRequest,
    GenerationMetadata,
    InterpretationResponse,
)
from dreamlens.domain.errors import UnknownPersonaError
from dreamlens.domain.extractor import ThemeExtractor
from dreamlens.domain.personas.base import Persona
from dreamlens.domain.personas.registry import ALIASES, PERSONAS, get_persona
from dreamlens.domain.prompt_assembler import PromptAssembler
from dreamlens.domain.quality import QualityControlFilter, review_interpretation
from dreamlens.domain.response_parser import ResponseParser
from dreamlens.domain.retriever import KnowledgeRetriever

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)


class InterpretationPipeline:
    """Compose les étapes du pipeline pour une requête."""

    def __init__(
        self,
        extractor: ThemeExtractor,
        retriever: KnowledgeRetriever,
        quality: QualityControlFilter,
        assembler: PromptAssembler,
        orchestrator: CompletionOrchestrator,
        parser: ResponseParser,
        *,
        max_dream_length: int = 5000,
        guard_enabled: bool = True,
        guard_enforce: bool = False,
    ) -> None:
        self.extractor = extractor
        self.retriever = retriever
        self.quality = quality
        self.assembler = assembler
        self.orchestrator = orchestrator
        self.parser = parser
        self.max_dream_length = max_dream_length
        self.guard_enabled = guard_enabled
        self.guard_enforce = guard_enforce

    def interpret(
        self, request: DreamRequest, cancel_event: threading.Event | None = None
    ) -> InterpretationResponse:
        """Interprète un rêve ; ne lève jamais.

        Args:
            request: Requête immuable.
            cancel_event: Annulation coopérative (vérifiée avant chaque appel de complétion).

        Returns:
            InterpretationResponse: `success: true` avec interprétation et métadonnées, ou
            `success: false` avec l'erreur et l'historique des tentatives.
        """
        start = time.perf_counter()
        key = (request.persona_id or "").strip().lower()
        key = ALIASES.get(key, key)
        persona_label = key if key in PERSONAS else "unknown"
        with tracer.start_as_current_span("dream.interpret") as span:
            span.set_attribute("dream.persona", request.persona_id)
            span.set_attribute("dream.length", len(request.dream_text or ""))
            try:
                response = self._run(request, cancel_event, start)
            except Exception:
                logger.error(
                    "interpretation_internal_error", persona=request.persona_id, exc_info=True
                )
                response = InterpretationResponse(success=False, error="internal_error")
            span.set_attribute("dream.success", response.success)

        outcome = "success" if response.success else (response.error or "failure")
        INTERPRETATION_REQUESTS.labels(persona_label, outcome).inc()
        INTERPRETATION_LATENCY.labels(persona_label).observe(time.perf_counter() - start)
        logger.info(
            "interpretation_completed",
            persona=request.persona_id,
            success=response.success,
            error=response.error,
            dream_length=len(request.dream_text or ""),
        )
        return response

    # -------------------- Helpers internes --------------------

    def _run(
        self, request: DreamRequest, cancel_event: threading.Event | None, start: float
    ) -> InterpretationResponse:
        deadline = self.orchestrator.deadline_from_now()
        try:
            persona = get_persona(request.persona_id)
        except UnknownPersonaError:
            logger.warning("unknown_persona", persona=request.persona_id)
            return InterpretationResponse(success=False, error="unknown_persona")

        guard = apply_guard(
            request.dream_text,
            max_length=self.max_dream_length,
            enabled=self.guard_enabled,
            enforce=self.guard_enforce,
        )
        if guard.blocked:
            return InterpretationResponse(success=False, error=guard.rule)
        if not guard.text:
            return self._empty_dream(persona, start)
        text = guard.text

        with tracer.start_as_current_span("dream.extract"):
            elements = self.extractor.extract(text)
        with tracer.start_as_current_span("dream.retrieve") as span:
            retrieval = self.retriever.retrieve(elements.themes, persona.persona_id)
            span.set_attribute("retrieval.fragments", retrieval.fragments_kept)
            span.set_attribute("retrieval.degraded", retrieval.degraded)
        fragments, stats = self.quality.apply(retrieval, elements.themes)
        template = self.assembler.assemble(request, elements, fragments)

        with tracer.start_as_current_span("dream.complete") as span:
            outcome = self.orchestrator.run(
                template,
                text,
                persona,
                dream_id=request.dream_id,
                cancel_event=cancel_event,
                deadline=deadline,
                accept=lambda reply: self.parser.rejection(reply, persona, elements),
            )
            span.set_attribute("completion.attempts", len(outcome.attempts))
        if outcome.succeeded:
            with tracer.start_as_current_span("dream.parse"):
                parsed = self.parser.parse(outcome.response.text, persona, elements)
        elif outcome.error == "all_models_failed" and _any_unparseable(outcome.attempts):
            parsed = self.parser.fallback(persona, elements)
        else:
            return InterpretationResponse(
                success=False, error=outcome.error, attempt_history=outcome.attempts
            )

        # identifiants réellement présents dans le prompt (après budget de tokens)
        reference_ids = [i for i in template.variables.get("reference_ids", "").split(",") if i]
        prompted = [s for s in fragments if s.fragment.id in reference_ids]
        warnings = review_interpretation(parsed.interpretation, persona, prompted)
        if guard.rule:
            warnings.insert(0, f"input_guard:{guard.rule}")

        metadata = GenerationMetadata(
            knowledge_fragments_used=len(reference_ids),
            total_fragments_retrieved=stats.total_fragments_retrieved,
            fragment_ids_used=reference_ids,
            themes=elements.theme_codes,
            dream_type=elements.dream_type,
            model=outcome.response.model if outcome.response else None,
            attempts=len(outcome.attempts),
            processing_time_ms=int((time.perf_counter() - start) * 1000),
            parse_strategy=parsed.strategy,
            retrieval_degraded=retrieval.degraded,
            degraded_reason=retrieval.reason,
            quality_warnings=warnings,
        )
        if parsed.is_fallback:
            return InterpretationResponse(
                success=False,
                error="interpretation_unavailable",
                interpretation=parsed.interpretation,
                generation_metadata=metadata,
                attempt_history=outcome.attempts,
            )
        return InterpretationResponse(
            success=True, interpretation=parsed.interpretation, generation_metadata=metadata
        )

    def _empty_dream(self, persona: Persona, start: float) -> InterpretationResponse:
        """Récit vide : interprétation générique dégradée, sans appel au modèle."""
        elements = DreamElements()
        interpretation = persona.parse_response(persona.fallback_payload(elements), elements)
        logger.info("empty_dream_text", persona=persona.persona_id)
        return InterpretationResponse(
            success=True,
            interpretation=interpretation,
            generation_metadata=GenerationMetadata(
                processing_time_ms=int((time.perf_counter() - start) * 1000),
                degraded_reason="empty_dream_text",
            ),
        )


def _any_unparseable(attempts: list[CompletionAttempt]) -> bool:
    """Indique si au moins un modèle a répondu sans qu'aucune stratégie ne récupère la réponse."""
    return any((a.error_message or "").startswith(UNPARSEABLE_RESPONSE) for a in attempts)
