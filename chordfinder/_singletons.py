# chordfinder/_singletons.py
from functools import lru_cache

import httpx

from . import config
from .cache import ResponseCache
from .embeddings import VoyageEmbedder
from .rerank import default_stages
from .responder import LLMResponder
from .store import SongStore


@lru_cache(maxsize=1)
def get_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(config.RERANK_TIMEOUT, connect=config.HTTP_CONNECT_TIMEOUT),
    )

@lru_cache(maxsize=1)
def get_store() -> SongStore:
    return SongStore()

@lru_cache(maxsize=1)
def get_embedder() -> VoyageEmbedder:
    return VoyageEmbedder()

@lru_cache(maxsize=1)
def get_rerank_stages():
    # cohere -> huggingface -> local cross-encoder
    return tuple(default_stages(get_http_client()))

@lru_cache(maxsize=1)
def get_llm() -> LLMResponder:
    return LLMResponder(get_http_client())

@lru_cache(maxsize=1)
def get_response_cache() -> ResponseCache:
    return ResponseCache()
