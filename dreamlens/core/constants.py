"""Constantes partagées pour éviter les valeurs magiques dans le code.

Regroupe les seuils de l'analyse de rêve, les bornes de similarité et les codes HTTP utilisés pour
classer les erreurs des fournisseurs.
"""

# Analyse du texte de rêve
MAX_THEMES = 8
MAX_SYMBOLS = 10
BIG_DREAM_MIN_THEMES = 3
BIG_DREAM_MIN_RELEVANCE = 0.7
MIN_DREAM_WORDS = 3

# Similarité cosinus
SIMILARITY_MIN = -1.0
SIMILARITY_MAX = 1.0

# Sujet du rêve (nombre de mots)
DREAM_TOPIC_MIN_WORDS = 5
DREAM_TOPIC_MAX_WORDS = 9

# Historique des coûts
RECENT_COST_ENTRIES = 10
TOKENS_PER_PRICE_UNIT = 1000
DEFAULT_PRICE_PER_1K = 0.0
COST_WARNING_THRESHOLD = 0.8
COST_BLOCK_THRESHOLD = 1.0

# Budget de tokens des références
MIN_PARTIAL_REFERENCE_TOKENS = 100
PARTIAL_REFERENCE_MARGIN = 50
MIN_PARTIAL_REFERENCE_CHARS = 50

# Codes HTTP utilisés pour classer les erreurs des fournisseurs
HTTP_STATUS_BAD_REQUEST = 400
HTTP_STATUS_UNAUTHORIZED = 401
HTTP_STATUS_FORBIDDEN = 403
HTTP_STATUS_NOT_FOUND = 404
HTTP_STATUS_TOO_MANY_REQUESTS = 429
HTTP_STATUS_SERVER_ERROR_MIN = 500
HTTP_STATUS_SERVER_ERROR_MAX = 600
