# chordfinder/rerank.py
from __future__ import annotations

import asyncio
import math
import os
from functools import lru_cache
from typing import List, Optional, Sequence, Tuple

import httpx
import numpy as np
from loguru import logger
from sentence_transformers import CrossEncoder

from . import config
from .pipeline_types import RankedCandidate, SearchCandidate

# (index into the documents given, relevance score), best first
StageRanking = List[Tuple[int, float]]


class RerankError(RuntimeError):
    """A rerank stage could not produce a usable ordering."""


# ---------------------------------------------------------------------------
# Candidate text
# ---------------------------------------------------------------------------

def build_titles_text(cand: SearchCandidate) -> str:
    return " ".join(cand.titles)


def build_candidate_text(cand: SearchCandidate) -> str:
    """
    Text scored against the query: every title variant plus the head of the
    OCR text (lyrics help when the user typed a line instead of a title).
    """
    bits = list(cand.titles)
    ocr = (cand.ocr_text or "").strip()
    if ocr:
        bits.append(ocr[: config.RERANK_OCR_CHARS])
    return " ".join(b for b in bits if b).strip()


def _order_from_scores(scores: Sequence[float], top_n: int) -> StageRanking:
    ranked = sorted(
        [(i, float(s)) for i, s in enumerate(scores)],
        key=lambda x: (-x[1], x[0]),
    )
    return ranked[:top_n]


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------

class CohereRerankStage:
    """Hosted multilingual reranker (handles Korean natively)."""

    name = "cohere"

    def __init__(self, client: httpx.AsyncClient, api_key: str = config.COHERE_API_KEY):
        self._client = client
        self.api_key = api_key

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    async def rank(self, query: str, candidates: Sequence[SearchCandidate], top_n: int) -> StageRanking:
        documents = [build_candidate_text(c) for c in candidates]
        try:
            r = await self._client.post(
                config.COHERE_RERANK_URL,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={
                    "model": config.COHERE_RERANK_MODEL,
                    "query": query,
                    "documents": documents,
                    "top_n": top_n,
                    "return_documents": False,
                },
            )
        except httpx.HTTPError as e:
            raise RerankError(f"cohere request failed: {e}") from e
        if r.status_code >= 400:
            raise RerankError(f"cohere HTTP {r.status_code}")
        try:
            results = r.json()["results"]
            return [(int(x["index"]), float(x["relevance_score"])) for x in results]
        except (KeyError, TypeError, ValueError) as e:
            raise RerankError("cohere response malformed") from e


class HuggingFaceRerankStage:
    """bge-reranker-v2-m3 behind the HF inference API; scores query/title pairs."""

    name = "huggingface"

    def __init__(self, client: httpx.AsyncClient, token: str = config.HF_TOKEN, url: str = config.HF_RERANK_URL):
        self._client = client
        self.token = token
        self.url = url

    @property
    def available(self) -> bool:
        return bool(self.token)

    async def rank(self, query: str, candidates: Sequence[SearchCandidate], top_n: int) -> StageRanking:
        pairs = [[query, build_titles_text(c)] for c in candidates]
        try:
            r = await self._client.post(
                self.url,
                headers={"Authorization": f"Bearer {self.token}"},
                json={"inputs": pairs},
            )
        except httpx.HTTPError as e:
            raise RerankError(f"hf request failed: {e}") from e
        if r.status_code >= 400:
            raise RerankError(f"hf HTTP {r.status_code}")

        try:
            payload = r.json()
        except ValueError as e:
            raise RerankError("hf response is not JSON") from e
        if not isinstance(payload, list) or len(payload) != len(candidates):
            raise RerankError("hf response does not line up with the inputs")
        scores: List[float] = []
        for item in payload:
            # the endpoint answers either [0.9, ...] or [{"score": 0.9}, ...]
            value = item.get("score") if isinstance(item, dict) else item
            try:
                scores.append(float(value))
            except (TypeError, ValueError) as e:
                raise RerankError("hf score is not a number") from e
        return _order_from_scores(scores, top_n)


def _ensure_hf_env() -> None:
    # only fill in what the user has not set
    for key, val in config.HF_ENV_VARS.items():
        os.environ.setdefault(key, val)


@lru_cache(maxsize=2)
def load_cross_encoder(model_id: str) -> CrossEncoder:
    """Load and cache a CrossEncoder. Respects the HF cache under models/."""
    _ensure_hf_env()
    logger.info("Loading cross-encoder reranker: {}", model_id)
    model = CrossEncoder(model_id, device="cpu")
    logger.info("Loaded cross-encoder reranker: {}", model_id)
    return model


class LocalCrossEncoderStage:
    """In-process cross-encoder, for deployments without a hosted reranker."""

    name = "local"

    def __init__(self, model_id: str = config.RERANK_LOCAL_MODEL, model: Optional[CrossEncoder] = None):
        self.model_id = model_id
        self._model = model

    @property
    def available(self) -> bool:
        return self._model is not None or bool(self.model_id)

    def _predict(self, pairs: List[Tuple[str, str]]) -> np.ndarray:
        model = self._model or load_cross_encoder(self.model_id)
        return np.asarray(model.predict(pairs), dtype="float32")

    async def rank(self, query: str, candidates: Sequence[SearchCandidate], top_n: int) -> StageRanking:
        pairs = [(query, build_candidate_text(c)) for c in candidates]
        try:
            scores = await asyncio.to_thread(self._predict, pairs)
        except (OSError, RuntimeError, ValueError) as e:
            raise RerankError(f"cross-encoder failed: {e}") from e
        if scores.shape[0] != len(candidates):
            raise RerankError("cross-encoder returned the wrong number of scores")
        return _order_from_scores(scores.tolist(), top_n)


def default_stages(client: httpx.AsyncClient) -> list:
    """Cascade order: hosted reranker, open-model endpoint, local model."""
    return [
        CohereRerankStage(client),
        HuggingFaceRerankStage(client),
        LocalCrossEncoderStage(),
    ]


# ---------------------------------------------------------------------------
# Cascade
# ---------------------------------------------------------------------------

def _clean_ranking(ranking: StageRanking, n_docs: int) -> StageRanking:
    """Drop out-of-range, duplicate and non-finite entries."""
    seen = set()
    out: StageRanking = []
    for idx, score in ranking:
        if idx < 0 or idx >= n_docs or idx in seen or not math.isfinite(score):
            continue
        seen.add(idx)
        out.append((idx, score))
    return out


async def rerank_candidates(
    query_text: str,
    ranked: List[RankedCandidate],
    stages: Sequence = (),
    cutoff: Optional[int] = None,
    top_n: int = config.RERANK_TOP_N,
) -> List[RankedCandidate]:
    """
    Re-score the top `cutoff` fused candidates with the first stage that
    is available and succeeds:

      1) skip stages without credentials / model
      2) a stage that errors or times out falls through to the next
      3) the winning stage's order replaces the fused order, restricted to
         the documents it returned
      4) with no usable stage the fused slice is returned as is
    """
    if not ranked:
        return []
    cutoff = min(cutoff or config.RERANK_CUTOFF, len(ranked))
    head = ranked[:cutoff]
    if not config.ENABLE_RERANK:
        return head

    docs = [r.candidate for r in head]
    for stage in stages:
        if not stage.available:
            logger.debug("rerank: stage {} not configured, skipping", stage.name)
            continue
        try:
            raw = await asyncio.wait_for(
                stage.rank(query_text, docs, min(top_n, len(docs))),
                timeout=config.RERANK_TIMEOUT,
            )
        except asyncio.TimeoutError:
            logger.warning("rerank: stage {} timed out", stage.name)
            continue
        except RerankError as e:
            logger.warning("rerank: stage {} failed: {}", stage.name, e)
            continue
        except Exception as e:
            logger.warning("rerank: stage {} raised {}: {}", stage.name, type(e).__name__, e)
            continue

        ranking = _clean_ranking(raw, len(docs))
        if not ranking:
            logger.warning("rerank: stage {} returned no usable scores", stage.name)
            continue

        out = [
            RankedCandidate(
                candidate=head[idx].candidate,
                fused_score=head[idx].fused_score,
                matched=head[idx].matched,
                rerank_score=score,
            )
            for idx, score in ranking
        ]
        logger.info("rerank: stage {} ordered {} of {} candidates", stage.name, len(out), len(docs))
        return out

    logger.info("rerank: no stage used; keeping fused order for {} candidates", len(head))
    return head
