"""Définition et chargement des paramètres de configuration applicative.

Objectif du module
------------------
- Centraliser les paramètres (env/.env) via Pydantic Settings
- Résoudre le fichier `.env` à utiliser selon la stratégie: ENV_FILE > .env.{APP_ENV} > .env
- Exposer les réglages du pipeline d'interprétation (seuil de similarité, chaîne de modèles,
  timeouts, plafonds de fragments) comme paramètres ajustables
"""

import json
import os
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Détermination du fichier .env à utiliser avec priorité:
# 1) ENV_FILE (chemin explicite)
# 2) .env.{APP_ENV} si présent
# 3) .env (défaut)
_cwd = Path.cwd()
_env_file_from_env = os.getenv("ENV_FILE")
if _env_file_from_env:
    _ENV_FILE_PATH = _env_file_from_env
else:
    _app_env = os.getenv("APP_ENV", "dev")
    _candidate_specific = _cwd / f".env.{_app_env}"
    _candidate_default = _cwd / ".env"
    if _candidate_specific.exists():
        _ENV_FILE_PATH = _candidate_specific
    else:
        _ENV_FILE_PATH = _candidate_default

_DEFAULT_SEED_PATH = str(
    Path(__file__).resolve().parent.parent / "infra" / "knowledge" / "seed.json"
)

DEFAULT_MODEL_CHAIN = [
    "meta-llama/llama-4-scout:free",
    "meta-llama/llama-3.1-8b-instruct:free",
    "google/gemma-2-9b-it:free",
]


class Settings(BaseSettings):
    """Modèle de configuration chargé depuis l'environnement et .env."""

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE_PATH,
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        case_sensitive=False,
    )
    APP_NAME: str = "dreamlens"
    APP_ENV: str = "dev"
    APP_DEBUG: bool = True
    APP_HOST: str = "0.0.0.0"
    APP_PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    # Fournisseur de complétion (API compatible OpenAI)
    OPENROUTER_API_KEY: str | None = None
    LLM_BASE_URL: str = "https://openrouter.ai/api/v1"
    # CSV ou liste JSON, dans l'ordre de tentative
    LLM_MODEL_CHAIN: str = ",".join(DEFAULT_MODEL_CHAIN)
    # ex: '{"freud": ["openai/gpt-4o-mini", "google/gemma-2-9b-it:free"]}'
    PERSONA_MODEL_CHAINS_JSON: str = "{}"
    LLM_ATTEMPT_TIMEOUT_S: float = 30.0
    LLM_FALLBACK_DELAY_S: float = 0.5
    PIPELINE_DEADLINE_S: float = 90.0

    # Retrieval
    RETRIEVAL_SIMILARITY_FLOOR: float = 0.3
    RETRIEVAL_CANDIDATE_LIMIT: int = 200
    RETRIEVAL_TOP_N: int = 20
    RETRIEVAL_RETRY_BACKOFF_S: float = 0.2

    # Contrôle qualité et budget de prompt
    QC_MAX_FRAGMENTS: int = 10
    QC_MAX_THEME_SHARE: float = 0.6
    PROMPT_REFERENCE_TOKEN_BUDGET: int = 2000

    # Garde d'entrée
    DREAM_MAX_LENGTH: int = 5000
    LLM_GUARD_ENABLE: bool = True
    LLM_GUARD_ENFORCE: bool = False

    # Coûts
    # ex: '{"openai/gpt-4o-mini": 0.15}' (USD pour 1K tokens)
    MODEL_PRICING_JSON: str = "{}"
    COST_ALERT_THRESHOLD_USD: float = 10.0

    # Embeddings et stockage des connaissances
    OPENAI_API_KEY: str | None = None
    EMBEDDINGS_PROVIDER: str = "openai"  # "openai" | "local"
    EMBEDDINGS_MODEL: str = "text-embedding-3-small"
    LOCAL_EMBEDDINGS_MODEL: str = "all-MiniLM-L6-v2"
    KNOWLEDGE_BACKEND: str = "memory"  # "memory" | "postgrest"
    KNOWLEDGE_SEED_PATH: str = _DEFAULT_SEED_PATH
    KNOWLEDGE_STORE_URL: str | None = None
    KNOWLEDGE_STORE_API_KEY: str | None = None
    KNOWLEDGE_STORE_TIMEOUT_S: float = 5.0

    # Observabilité
    OTEL_ENABLED: bool = False
    OTLP_ENDPOINT: str | None = None
    # Limitation de cardinalité des labels métriques (CSV via .env, peut être vide)
    METRICS_MODEL_ALLOWLIST: str = ""

    def model_chain(self) -> list[str]:
        """Retourne la chaîne de modèles configurée (CSV ou liste JSON), sans doublons."""
        raw = (self.LLM_MODEL_CHAIN or "").strip()
        if raw.startswith("["):
            items = [str(x).strip() for x in json.loads(raw)]
        else:
            items = [x.strip() for x in raw.split(",")]
        return list(dict.fromkeys(x for x in items if x))


def get_settings() -> Settings:
    """Construit et retourne la configuration de l'application."""
    return Settings()
