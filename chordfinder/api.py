from __future__ import annotations

"""
FastAPI application for the chord-sheet finder.

- POST /chat    : one chat message -> reply text + grouped songs
- POST /search  : raw substring search over recognised sheet text
- GET  /health  : liveness

Search outcomes are cached per (message, language/key, count) for
CACHE_TTL_SECONDS; replies are rebuilt on every call because they depend
on the conversation history.
"""

import dataclasses
import time
from typing import Any, Dict, List

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from . import config
from ._singletons import (
    get_embedder,
    get_http_client,
    get_llm,
    get_rerank_stages,
    get_response_cache,
    get_store,
)
from .cache import CacheKey
from .config import (
    ChatRequest,
    ChatResponse,
    HealthResponse,
    SearchRequest,
    SearchResponse,
)
from .mapping import map_outcome_to_response
from .normalize import normalize_korean
from .pipeline import search_songs
from .pipeline_types import OutcomeStatus, SearchValidationError
from .responder import compose_reply
from .store import StoreError


# -----------------------
# Pipeline glue
# -----------------------

def _cache_key(req: ChatRequest) -> CacheKey:
    scope = f"{req.language or ''}|{(req.key or '').strip().lower()}"
    return CacheKey(query=normalize_korean(req.message), scope=scope, limit=req.count or 0)


async def run_chat(req: ChatRequest) -> ChatResponse:
    t0 = time.perf_counter()
    cache = get_response_cache()
    key = _cache_key(req)

    outcome = cache.get(key)
    cached = outcome is not None
    if outcome is None:
        outcome = await search_songs(
            req.message,
            get_store(),
            embedder=get_embedder(),
            stages=get_rerank_stages(),
            language=req.language,
            key=req.key,
            count=req.count,
        )
        # NOT_FOUND may just be a store outage; never cached
        if outcome.status is not OutcomeStatus.NOT_FOUND:
            cache.set(key, outcome)

    text, used_llm = await compose_reply(req.message, outcome, req.history, get_llm())
    response = map_outcome_to_response(outcome, text, used_llm=used_llm)
    response.debug["cached"] = cached
    response.debug["elapsed_ms"] = round((time.perf_counter() - t0) * 1000, 1)
    return response


async def run_ocr_search(query: str) -> List[Dict[str, Any]]:
    try:
        hits = await get_store().fetch_by_ocr_substring(query, config.OCR_LIMIT)
    except StoreError as e:
        logger.warning("OCR search failed for '{}': {}", query, e)
        return []
    return [dataclasses.asdict(h) for h in hits]


# -----------------------
# FastAPI app + startup
# -----------------------

app = FastAPI()
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def startup_event() -> None:
    config.LOG_DIR.mkdir(parents=True, exist_ok=True)
    logger.add(
        config.LOG_DIR / "chordfinder.log",
        rotation=config.LOG_ROTATION,
        level=config.LOG_LEVEL,
        enqueue=True,
    )
    logger.info("Starting chord-sheet finder...")
    logger.info(
        "Collaborators: store={} embeddings={} rerank={} llm={}",
        get_store().configured,
        get_embedder().available,
        [s.name for s in get_rerank_stages() if s.available],
        get_llm().available,
    )


@app.on_event("shutdown")
async def shutdown_event() -> None:
    await get_store().aclose()
    await get_embedder().aclose()
    await get_http_client().aclose()


@app.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    return HealthResponse(status="healthy")


@app.post("/chat", response_model=ChatResponse)
async def chat(req: ChatRequest) -> ChatResponse:
    if not req.message.strip():
        raise HTTPException(status_code=422, detail="Message must be non-empty")
    try:
        return await run_chat(req)
    except SearchValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))


@app.post("/search", response_model=SearchResponse)
async def search(req: SearchRequest) -> SearchResponse:
    query = req.query.strip()
    if not query:
        raise HTTPException(status_code=422, detail="Query must be non-empty")
    return SearchResponse(results=await run_ocr_search(query))
