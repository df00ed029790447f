"""
Endpoint de santé pour vérifier la disponibilité de l'API et de ses dépendances.

Expose `/health` pour signaler l'état général de l'application, du magasin de connaissances et de la
configuration du fournisseur de complétion.
"""


from fastapi import APIRouter

from dreamlens.core.container import container

router = APIRouter(tags=["health"])


@router.get("/health")
def health():
    """Vérifie la disponibilité de l'API et le backend de connaissances."""
    return {
        "status": "ok",
        "knowledge_backend": getattr(container, "storage_backend", "unknown"),
        "completion_configured": bool(getattr(container.settings, "OPENROUTER_API_KEY", None)),
        "embeddings": container.embedder is not None,
    }
