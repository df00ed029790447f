"""
Conteneur d'injection de dépendances et configuration application.

Instancie les composants centraux (settings, magasin de connaissances, client de complétion,
registre de coûts, pipeline) et expose un singleton `container` utilisé par le reste de
l'application.
"""

import json

import structlog

from dreamlens.app.cost_ledger import CostLedger
from dreamlens.core.settings import Settings, get_settings
from dreamlens.domain.completion import CompletionOrchestrator
from dreamlens.domain.extractor import ThemeExtractor
from dreamlens.domain.pipeline import InterpretationPipeline
from dreamlens.domain.prompt_assembler import PromptAssembler
from dreamlens.domain.quality import QualityControlFilter
from dreamlens.domain.response_parser import ResponseParser
from dreamlens.domain.retriever import KnowledgeRetriever
from dreamlens.infra.embeddings.base import Embeddings
from dreamlens.infra.embeddings.openai_embedder import OpenAIEmbedder
from dreamlens.infra.knowledge.base import KnowledgeStore
from dreamlens.infra.knowledge.memory_store import InMemoryKnowledgeStore
from dreamlens.infra.knowledge.postgrest_store import PostgrestKnowledgeStore
from dreamlens.infra.llm.base import CompletionClient
from dreamlens.infra.llm.openai_client import OpenRouterClient

logger = structlog.get_logger(__name__)


def build_embedder(settings: Settings) -> Embeddings | None:
    """Construit le client d'embeddings configuré (None si aucun n'est utilisable)."""
    if settings.EMBEDDINGS_PROVIDER == "local":
        # extra `local` : sentence-transformers n'est importé que s'il est sélectionné
        from dreamlens.infra.embeddings.local_embedder import LocalEmbedder

        return LocalEmbedder(settings.LOCAL_EMBEDDINGS_MODEL)
    if settings.OPENAI_API_KEY:
        return OpenAIEmbedder(settings.OPENAI_API_KEY, model=settings.EMBEDDINGS_MODEL)
    return None


def build_store(settings: Settings) -> KnowledgeStore:
    """Construit le magasin de connaissances selon KNOWLEDGE_BACKEND."""
    if settings.KNOWLEDGE_BACKEND == "postgrest":
        if not settings.KNOWLEDGE_STORE_URL:
            raise RuntimeError("KNOWLEDGE_BACKEND=postgrest but KNOWLEDGE_STORE_URL not set")
        return PostgrestKnowledgeStore(
            settings.KNOWLEDGE_STORE_URL,
            api_key=settings.KNOWLEDGE_STORE_API_KEY,
            timeout=settings.KNOWLEDGE_STORE_TIMEOUT_S,
        )
    return InMemoryKnowledgeStore.from_json(settings.KNOWLEDGE_SEED_PATH)


def persona_chains(settings: Settings) -> dict[str, list[str]]:
    """Chaînes de modèles par persona depuis PERSONA_MODEL_CHAINS_JSON."""
    try:
        raw = json.loads(settings.PERSONA_MODEL_CHAINS_JSON or "{}")
    except ValueError as exc:
        logger.warning("invalid_persona_model_chains_json", msg="fallback to {}", error=str(exc))
        return {}
    if not isinstance(raw, dict):
        logger.warning("invalid_persona_model_chains_json", msg="fallback to {}", error="not_an_object")
        return {}
    return {str(k): [str(m) for m in v] for k, v in raw.items() if isinstance(v, list)}


def build_pipeline(
    settings: Settings,
    *,
    store: KnowledgeStore,
    client: CompletionClient,
    ledger: CostLedger,
    embedder: Embeddings | None = None,
) -> InterpretationPipeline:
    """Assemble le pipeline d'interprétation à partir de la configuration."""
    retriever = KnowledgeRetriever(
        store,
        embedder,
        similarity_floor=settings.RETRIEVAL_SIMILARITY_FLOOR,
        candidate_limit=settings.RETRIEVAL_CANDIDATE_LIMIT,
        top_n=settings.RETRIEVAL_TOP_N,
        retry_backoff_s=settings.RETRIEVAL_RETRY_BACKOFF_S,
        timeout=settings.KNOWLEDGE_STORE_TIMEOUT_S,
    )
    orchestrator = CompletionOrchestrator(
        client,
        ledger,
        model_chain=settings.model_chain(),
        persona_chains=persona_chains(settings),
        attempt_timeout_s=settings.LLM_ATTEMPT_TIMEOUT_S,
        fallback_delay_s=settings.LLM_FALLBACK_DELAY_S,
        deadline_s=settings.PIPELINE_DEADLINE_S,
        metrics_allowlist=settings.METRICS_MODEL_ALLOWLIST,
    )
    return InterpretationPipeline(
        ThemeExtractor(),
        retriever,
        QualityControlFilter(settings.QC_MAX_FRAGMENTS, settings.QC_MAX_THEME_SHARE),
        PromptAssembler(settings.PROMPT_REFERENCE_TOKEN_BUDGET),
        orchestrator,
        ResponseParser(),
        max_dream_length=settings.DREAM_MAX_LENGTH,
        guard_enabled=settings.LLM_GUARD_ENABLE,
        guard_enforce=settings.LLM_GUARD_ENFORCE,
    )


class Container:
    def __init__(self):
        self.settings = get_settings()
        self.ledger = CostLedger.from_settings(self.settings)
        self.store = build_store(self.settings)
        self.storage_backend = self.store.backend_name
        self.embedder = build_embedder(self.settings)
        self.completion_client = OpenRouterClient(
            self.settings.OPENROUTER_API_KEY,
            base_url=self.settings.LLM_BASE_URL,
            app_name=self.settings.APP_NAME,
        )
        self.pipeline = build_pipeline(
            self.settings,
            store=self.store,
            client=self.completion_client,
            ledger=self.ledger,
            embedder=self.embedder,
        )


container = Container()
