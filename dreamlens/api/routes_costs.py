"""Routes d'observation du registre de coûts LLM.

Expose le résumé des coûts (totaux, agrégats par modèle et par persona, dernières entrées) et sa
remise à zéro.
"""

from fastapi import APIRouter

from dreamlens.api.schemas import CostResetResponse
from dreamlens.core.container import container

router = APIRouter(prefix="/costs", tags=["costs"])


@router.get("")
def costs() -> dict:
    """Résumé courant du registre de coûts."""
    return container.ledger.snapshot()


@router.post("/reset")
def reset_costs() -> CostResetResponse:
    """Vide le registre de coûts."""
    cleared = len(container.ledger)
    container.ledger.reset()
    return CostResetResponse(status="reset", cleared=cleared)
