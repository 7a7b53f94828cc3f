from __future__ import annotations
"""
Hybrid retrieval for song sheets.

Seven independent adapters each return a ranked list of sheet rows:

- exact      : title substring match in the store
- bm25       : stored full-text rank function
- normalized : whitespace/case-insensitive containment over a title pool
- alias      : alias table -> canonical titles -> rows
- fuzzy      : edit-distance similarity over a larger title pool
- vector     : nearest neighbours of the query embedding
- ocr        : substring match on recognised sheet text

All adapters run concurrently. A failing or slow adapter contributes an
empty list. The lists are merged with Reciprocal Rank Fusion, so only the
rank positions matter, never the adapters' raw scores.
"""

import asyncio
import time
from collections import OrderedDict
from typing import Awaitable, Dict, List, Mapping, Optional, Tuple

from loguru import logger

from . import config
from .embeddings import VoyageEmbedder
from .normalize import normalize_korean, similarity
from .pipeline_types import FUSED_KINDS, MatchKind, RankedCandidate, SearchCandidate
from .store import SongStore, unique_by_id

AdapterLists = Dict[MatchKind, List[SearchCandidate]]


# =============================================================================
# Adapters
# =============================================================================

async def exact_match(store: SongStore, terms: str) -> List[SearchCandidate]:
    return await store.fetch_by_title_substring(terms, config.EXACT_LIMIT)


async def full_text_match(store: SongStore, terms: str) -> List[SearchCandidate]:
    return await store.full_text_rank(terms, config.BM25_LIMIT)


async def normalized_match(store: SongStore, terms: str) -> List[SearchCandidate]:
    """'위대하신주' finds '위대하신 주' and vice versa."""
    needle = normalize_korean(terms)
    if not needle:
        return []
    pool = await store.fetch_titled(config.NORMALIZED_POOL)
    out: List[SearchCandidate] = []
    for cand in pool:
        for title in cand.titles:
            norm = normalize_korean(title)
            if norm and (needle in norm or norm in needle):
                out.append(cand)
                break
        if len(out) >= config.NORMALIZED_LIMIT:
            break
    return out


async def alias_match(store: SongStore, terms: str) -> List[SearchCandidate]:
    titles = await store.lookup_aliases(terms, config.ALIAS_LIMIT)
    if not titles:
        return []
    return await store.fetch_by_titles(titles, config.ALIAS_LIMIT)


async def fuzzy_match(store: SongStore, terms: str) -> List[SearchCandidate]:
    """Best title similarity per row, kept above FUZZY_THRESHOLD, best first."""
    pool = await store.fetch_titled(config.FUZZY_POOL)
    scored: List[Tuple[float, int, SearchCandidate]] = []
    for pos, cand in enumerate(pool):
        best = max((similarity(terms, t) for t in cand.titles), default=0.0)
        if best >= config.FUZZY_THRESHOLD:
            scored.append((best, pos, cand))
    scored.sort(key=lambda x: (-x[0], x[1]))
    return [c for _, _, c in scored[: config.FUZZY_LIMIT]]


async def vector_match(store: SongStore, embedder: VoyageEmbedder, terms: str) -> List[SearchCandidate]:
    embedding = await asyncio.wait_for(embedder.embed(terms), timeout=config.EMBEDDING_TIMEOUT)
    return await store.nearest_neighbors(embedding, config.VECTOR_THRESHOLD, config.VECTOR_LIMIT)


async def ocr_match(store: SongStore, terms: str) -> List[SearchCandidate]:
    return await store.fetch_by_ocr_substring(terms, config.OCR_LIMIT)


# =============================================================================
# Fan-out / fan-in
# =============================================================================

async def _run_adapter(
    kind: MatchKind,
    call: Awaitable[List[SearchCandidate]],
    timeout: float,
) -> Tuple[MatchKind, List[SearchCandidate]]:
    t0 = time.perf_counter()
    try:
        hits = await asyncio.wait_for(call, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("adapter {} timed out after {:.1f}s", kind.value, timeout)
        return kind, []
    except Exception as e:
        logger.warning("adapter {} failed: {}", kind.value, e)
        return kind, []
    logger.debug("adapter {}: {} hits in {:.0f} ms", kind.value, len(hits), (time.perf_counter() - t0) * 1000)
    return kind, list(hits)


async def hybrid_search(
    store: SongStore,
    terms: str,
    embedder: Optional[VoyageEmbedder] = None,
) -> AdapterLists:
    """
    Run every applicable adapter concurrently and wait for all of them.
    The vector adapter joins only when an embedder is configured; its
    embedding call starts at the same time as the text adapters.
    """
    calls: List[Awaitable[Tuple[MatchKind, List[SearchCandidate]]]] = [
        _run_adapter(MatchKind.EXACT, exact_match(store, terms), config.ADAPTER_TIMEOUT),
        _run_adapter(MatchKind.BM25, full_text_match(store, terms), config.ADAPTER_TIMEOUT),
        _run_adapter(MatchKind.NORMALIZED, normalized_match(store, terms), config.ADAPTER_TIMEOUT),
        _run_adapter(MatchKind.ALIAS, alias_match(store, terms), config.ADAPTER_TIMEOUT),
        _run_adapter(MatchKind.FUZZY, fuzzy_match(store, terms), config.ADAPTER_TIMEOUT),
        _run_adapter(MatchKind.OCR, ocr_match(store, terms), config.ADAPTER_TIMEOUT),
    ]
    if embedder is not None and embedder.available:
        calls.append(
            _run_adapter(
                MatchKind.VECTOR,
                vector_match(store, embedder, terms),
                config.EMBEDDING_TIMEOUT + config.ADAPTER_TIMEOUT,
            )
        )

    results = await asyncio.gather(*calls)
    lists: AdapterLists = {kind: hits for kind, hits in results}
    logger.info(
        "hybrid_search: terms='{}' {}",
        terms,
        " ".join(f"{k.value}={len(lists.get(k, []))}" for k in FUSED_KINDS),
    )
    return lists


# =============================================================================
# Fusion
# =============================================================================

def fuse_scores(
    lists: Mapping[MatchKind, List[SearchCandidate]],
    k: int = config.RRF_K,
) -> List[RankedCandidate]:
    """
    Reciprocal Rank Fusion: score(id) = sum over lists of 1 / (k + rank),
    rank being the 1-indexed position in that list.

    Lists are visited in MatchKind declaration order whatever order the
    mapping was built in, so ties fall to the earliest discovery in that
    fixed order. A repeated id inside one list counts only at its first
    position.
    """
    scores: "OrderedDict[str, float]" = OrderedDict()
    first_seen: Dict[str, SearchCandidate] = {}
    matched: Dict[str, List[MatchKind]] = {}

    for kind in FUSED_KINDS:
        hits = lists.get(kind) or []
        for rank, cand in enumerate(unique_by_id(hits), start=1):
            if cand.id not in scores:
                scores[cand.id] = 0.0
                first_seen[cand.id] = cand
                matched[cand.id] = []
            scores[cand.id] += 1.0 / (k + rank)
            matched[cand.id].append(kind)

    order = {cid: i for i, cid in enumerate(scores)}
    ranked = [
        RankedCandidate(candidate=first_seen[cid], fused_score=score, matched=tuple(matched[cid]))
        for cid, score in scores.items()
    ]
    ranked.sort(key=lambda r: (-r.fused_score, order[r.id]))
    return ranked


async def retrieve_candidates(
    store: SongStore,
    terms: str,
    embedder: Optional[VoyageEmbedder] = None,
) -> List[RankedCandidate]:
    """Fan out, fuse, and return the fused list (best first)."""
    t0 = time.perf_counter()
    lists = await hybrid_search(store, terms, embedder)
    fused = fuse_scores(lists)
    logger.info(
        "retrieve_candidates: terms='{}' -> {} fused in {:.0f} ms",
        terms, len(fused), (time.perf_counter() - t0) * 1000,
    )
    return fused
