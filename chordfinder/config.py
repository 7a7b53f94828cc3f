from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


# ---------------------------
# Paths
# ---------------------------

PROJECT_ROOT = Path(__file__).resolve().parents[1]

LOG_DIR = PROJECT_ROOT / "logs"
MODELS_DIR = PROJECT_ROOT / "models"  # HF cache for the optional local reranker


# ---------------------------
# External services (env driven; empty means "not configured")
# ---------------------------

SUPABASE_URL = os.getenv("SUPABASE_URL", "").rstrip("/")
SUPABASE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")

SONG_IMAGES_TABLE = "song_images"
SONG_ALIASES_TABLE = "song_aliases"
BM25_FUNCTION = "search_bm25"
VECTOR_FUNCTION = "search_songs_by_embedding"

SONG_COLUMNS = (
    "id,song_title,song_title_korean,song_title_english,song_key,"
    "image_url,ocr_text,original_filename,song_group_id,page_number"
)

VOYAGE_API_KEY = os.getenv("VOYAGE_API_KEY", "")
VOYAGE_API_URL = "https://api.voyageai.com/v1/embeddings"
VOYAGE_MODEL = os.getenv("VOYAGE_MODEL", "voyage-3-large")  # multilingual, 1024d

COHERE_API_KEY = os.getenv("COHERE_API_KEY", "")
COHERE_RERANK_URL = "https://api.cohere.ai/v1/rerank"
COHERE_RERANK_MODEL = "rerank-multilingual-v3.0"

HF_TOKEN = os.getenv("HF_TOKEN", "")
HF_RERANK_MODEL = "BAAI/bge-reranker-v2-m3"
HF_RERANK_URL = f"https://api-inference.huggingface.co/models/{HF_RERANK_MODEL}"

# Local cross-encoder stage, off unless a model id is given
RERANK_LOCAL_MODEL = os.getenv("RERANK_LOCAL_MODEL", "")

ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "")
ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
LLM_MODEL = os.getenv("LLM_MODEL", "claude-sonnet-4-20250514")
LLM_MAX_TOKENS = 256
LLM_HISTORY_TURNS = 6

HF_ENV_VARS = {
    "HF_HOME": str(MODELS_DIR),
}


# ---------------------------
# Retrieval adapters
# ---------------------------

EXACT_LIMIT = 10
BM25_LIMIT = 20
NORMALIZED_LIMIT = 10
ALIAS_LIMIT = 10
FUZZY_LIMIT = 10
VECTOR_LIMIT = 20
OCR_LIMIT = 10

NORMALIZED_POOL = 200     # rows pulled for client-side normalized matching
FUZZY_POOL = 500          # rows pulled for edit-distance matching

FUZZY_THRESHOLD = 0.6
VECTOR_THRESHOLD = 0.5

MIN_SEARCH_TERM_CHARS = 2


# ---------------------------
# Fusion & rerank
# ---------------------------

RRF_K = 60

ENABLE_RERANK = os.getenv("ENABLE_RERANK", "1") == "1"
DEFAULT_RERANK_CUTOFF = 20
RERANK_CUTOFF = int(os.getenv("RERANK_CUTOFF", str(DEFAULT_RERANK_CUTOFF)))
RERANK_TOP_N = 10
RERANK_OCR_CHARS = 500


# ---------------------------
# Result size policy
# ---------------------------

MAX_SUGGESTIONS = 2          # songs shown for a specific-song query
KEY_LIST_DEFAULT_COUNT = 5   # songs shown for "<key> 찬양" without a count
KEY_LIST_FETCH_FLOOR = 20
KEY_LIST_FETCH_FACTOR = 3    # over-fetch to survive grouping/dedup
REQUESTED_COUNT_MIN = 1
REQUESTED_COUNT_MAX = 20

RELATED_PAGES_LIMIT = 10
DEDUP_TITLE_TOKENS = 4


# ---------------------------
# Timeouts (seconds)
# ---------------------------

ADAPTER_TIMEOUT = 4.0
EMBEDDING_TIMEOUT = 5.0
RERANK_TIMEOUT = 6.0
LLM_TIMEOUT = 10.0
HTTP_CONNECT_TIMEOUT = 3.0


# ---------------------------
# Response cache
# ---------------------------

CACHE_TTL_SECONDS = float(os.getenv("CACHE_TTL_SECONDS", "300"))
CACHE_MAX_ENTRIES = 256


# ---------------------------
# Text processing
# ---------------------------

MAX_INPUT_CHARS = 500
KOREAN_RATIO_THRESHOLD = 0.3


# ---------------------------
# Logging / observability
# ---------------------------

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_ROTATION = "10 MB"


# ---------------------------
# Pydantic models shared around the app
# ---------------------------

class ChatTurn(BaseModel):
    role: str
    content: str


class ChatRequest(BaseModel):
    """
    Request body for POST /chat.
    `key` / `count` override what the classifier reads from the message.
    """

    message: str = Field(..., min_length=1)
    language: Optional[str] = None
    history: List[ChatTurn] = Field(default_factory=list)
    key: Optional[str] = None
    count: Optional[int] = Field(default=None, ge=REQUESTED_COUNT_MIN, le=REQUESTED_COUNT_MAX)


class PageItem(BaseModel):
    id: str
    url: str
    filename: str
    ocr_text: str = ""
    song_key: Optional[str] = None


class SongItem(BaseModel):
    """
    One logical song in the API contract: the first page plus related pages.
    """

    id: str
    title: str
    url: str
    filename: str
    ocr_text: str = ""
    song_key: Optional[str] = None
    available_keys: List[str]
    score: float
    match_type: str
    matched_on: Optional[str] = None
    related_pages: List[PageItem]
    total_pages: int = Field(ge=1)


class ChatResponse(BaseModel):
    """
    Response body for POST /chat.
    """

    message: str
    status: str
    needs_key_selection: bool
    available_keys: List[str]
    songs: List[SongItem]
    debug: Dict[str, object] = Field(default_factory=dict)


class SearchRequest(BaseModel):
    query: str = Field(..., min_length=1)


class SearchResponse(BaseModel):
    """
    Response body for POST /search (raw OCR substring hits).
    """

    results: List[Dict[str, object]]


class HealthResponse(BaseModel):
    """
    Response body for GET /health.
    """

    status: str
