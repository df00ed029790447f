"""Routes d'interprétation de rêves.

Ce module fournit l'endpoint d'interprétation (pipeline complet) et la liste des personas
disponibles avec leurs paramètres effectifs. Le pipeline, synchrone, tourne dans le pool de threads ;
une déconnexion du client arme son annulation coopérative (vérifiée avant chaque appel de modèle).
"""

from __future__ import annotations

import asyncio
import threading

import structlog
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic.alias_generators import to_camel
from starlette.concurrency import run_in_threadpool

from dreamlens.api.schemas import PersonaInfo
from dreamlens.core.constants import HTTP_STATUS_BAD_REQUEST, HTTP_STATUS_NOT_FOUND
from dreamlens.core.container import container
from dreamlens.domain.entities import DreamRequest
from dreamlens.domain.errors import UnknownPersonaError
from dreamlens.domain.personas.registry import get_persona, list_personas

# Règles de la garde d'entrée renvoyées en 400
GUARD_ERRORS = {"dream_too_long", "prompt_injection"}
HTTP_STATUS_SERVICE_UNAVAILABLE = 503
# Intervalle de vérification de la déconnexion du client (secondes)
DISCONNECT_POLL_S = 0.5

logger = structlog.get_logger(__name__)
router = APIRouter(tags=["interpretation"])


async def watch_disconnect(
    request: Request, cancel_event: threading.Event, interval: float = DISCONNECT_POLL_S
) -> None:
    """Arme `cancel_event` dès que le client se déconnecte."""
    while not cancel_event.is_set():
        if await request.is_disconnected():
            logger.info("client_disconnected", path=request.url.path)
            cancel_event.set()
            return
        await asyncio.sleep(interval)


@router.post("/interpret")
async def interpret(payload: DreamRequest, request: Request):
    """Interprète un rêve avec la persona demandée.

    Returns:
        JSONResponse: Enveloppe `{success, interpretation, generationMetadata}` ou
        `{success: false, error, attemptHistory}`.
    """
    try:
        get_persona(payload.persona_id)
    except UnknownPersonaError as exc:
        raise HTTPException(status_code=HTTP_STATUS_NOT_FOUND, detail="unknown_persona") from exc
    cancel_event = threading.Event()
    watcher = asyncio.create_task(watch_disconnect(request, cancel_event))
    try:
        result = await run_in_threadpool(container.pipeline.interpret, payload, cancel_event)
    finally:
        watcher.cancel()
    body = result.model_dump(by_alias=True, mode="json", exclude_none=True)
    if result.success:
        return body
    status = (
        HTTP_STATUS_BAD_REQUEST if result.error in GUARD_ERRORS else HTTP_STATUS_SERVICE_UNAVAILABLE
    )
    return JSONResponse(status_code=status, content=body)


@router.get("/personas")
def personas() -> list[PersonaInfo]:
    """Liste les personas disponibles et leur chaîne de modèles effective."""
    orchestrator = container.pipeline.orchestrator
    return [
        PersonaInfo(
            id=p.persona_id,
            name=p.display_name,
            insight_key=p.insight_key,
            insight_fields=[to_camel(f) for f in p.insight_schema.model_fields],
            temperature=p.sampling.temperature,
            max_tokens=p.sampling.max_tokens,
            models=orchestrator.models_for(p),
        )
        for p in list_personas()
    ]
