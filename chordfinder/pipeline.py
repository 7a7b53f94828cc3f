from __future__ import annotations

"""
Caller-facing search core.

    search_songs(query, store, ...) -> SearchOutcome

Key-list requests ("G키 찬양 5개") read the store by key directly.
Everything else goes through hybrid retrieval, RRF fusion, the rerank
cascade and grouping. Collaborator failures degrade to fewer results;
only malformed grouping input raises (SearchValidationError).
"""

import time
from typing import List, Optional, Sequence

from loguru import logger

from . import config
from .embeddings import VoyageEmbedder
from .grouping import complete_pages, group_candidates
from .intent import classify_query
from .normalize import basic_clean
from .pipeline_types import (
    IntentKind,
    MatchKind,
    OutcomeStatus,
    QueryIntent,
    RankedCandidate,
    SearchOutcome,
    SongGroup,
)
from .rerank import rerank_candidates
from .retrieval import retrieve_candidates
from .store import SongStore, StoreError
from .text_utils import resolve_language


def _not_found(intent: QueryIntent, language: str, raw_count: int = 0) -> SearchOutcome:
    return SearchOutcome(
        intent=intent,
        status=OutcomeStatus.NOT_FOUND,
        groups=[],
        language=language,
        raw_count=raw_count,
    )


def _outcome(intent: QueryIntent, groups: List[SongGroup], language: str, raw_count: int) -> SearchOutcome:
    if not groups:
        return _not_found(intent, language, raw_count)

    top = groups[0]
    # A specific song listed under several keys: ask which one before showing pages
    if intent.is_specific_song and not intent.requested_key and len(top.available_keys) > 1:
        return SearchOutcome(
            intent=intent,
            status=OutcomeStatus.NEEDS_KEY_SELECTION,
            groups=[top],
            available_keys=list(top.available_keys),
            language=language,
            raw_count=raw_count,
            grouped_count=len(groups),
        )
    return SearchOutcome(
        intent=intent,
        status=OutcomeStatus.RESULTS,
        groups=groups,
        available_keys=list(top.available_keys),
        language=language,
        raw_count=raw_count,
        grouped_count=len(groups),
    )


async def _search_by_key(store: SongStore, intent: QueryIntent, language: str) -> SearchOutcome:
    limit = intent.requested_count or config.KEY_LIST_DEFAULT_COUNT
    fetch = max(config.KEY_LIST_FETCH_FLOOR, limit * config.KEY_LIST_FETCH_FACTOR)
    try:
        rows = await store.fetch_by_key(intent.requested_key, fetch)
    except StoreError as e:
        logger.warning("key-list search for {} failed: {}", intent.requested_key, e)
        rows = []

    ranked = [
        RankedCandidate(candidate=c, fused_score=1.0 / (config.RRF_K + rank), matched=(MatchKind.KEY,))
        for rank, c in enumerate(rows, start=1)
    ]
    groups = group_candidates(ranked, requested_key=intent.requested_key, limit=limit)
    groups = await complete_pages(store, groups)
    return _outcome(intent, groups, language, len(rows))


async def _search_by_terms(
    store: SongStore,
    intent: QueryIntent,
    language: str,
    embedder: Optional[VoyageEmbedder],
    stages: Sequence,
) -> SearchOutcome:
    fused = await retrieve_candidates(store, intent.search_terms, embedder)
    if not fused:
        return _not_found(intent, language)

    ranked = await rerank_candidates(intent.search_terms, fused, stages)
    limit = intent.requested_count or config.MAX_SUGGESTIONS
    groups = group_candidates(ranked, requested_key=intent.requested_key, limit=limit)
    groups = await complete_pages(store, groups)
    return _outcome(intent, groups, language, len(fused))


async def search_songs(
    query: str,
    store: SongStore,
    embedder: Optional[VoyageEmbedder] = None,
    stages: Sequence = (),
    language: Optional[str] = None,
    key: Optional[str] = None,
    count: Optional[int] = None,
) -> SearchOutcome:
    """
    Turn one chat message into an ordered list of distinct songs.

    `language` is a 'ko' / 'en' hint; `key` and `count` override what the
    classifier reads from the message.
    """
    t0 = time.perf_counter()
    text = basic_clean(query)
    lang = resolve_language(text, language)
    if not text:
        return _not_found(QueryIntent(kind=IntentKind.AMBIGUOUS, search_terms=""), lang)

    intent = classify_query(text, requested_key=key, requested_count=count)
    if intent.is_key_list:
        outcome = await _search_by_key(store, intent, lang)
    elif intent.is_too_vague:
        logger.info("search_songs: '{}' too vague (terms='{}')", text, intent.search_terms)
        outcome = _not_found(intent, lang)
    else:
        outcome = await _search_by_terms(store, intent, lang, embedder, stages)

    logger.info(
        "search_songs: q='{}' kind={} status={} raw={} groups={} in {:.0f} ms",
        text,
        intent.kind.value,
        outcome.status.value,
        outcome.raw_count,
        len(outcome.groups),
        (time.perf_counter() - t0) * 1000,
    )
    return outcome
