from __future__ import annotations
"""
Mapping utilities to convert song groups into API responses.

Centralises the mapping from the pipeline's SongGroup / SearchOutcome into
the Pydantic schemas (SongItem / ChatResponse).
"""

from typing import Dict, List, Optional

from loguru import logger

from .config import ChatResponse, PageItem, SongItem
from .pipeline_types import MatchKind, OutcomeStatus, RankedCandidate, SearchOutcome, SongGroup

# Every MatchKind needs an entry; checked at import
MATCH_KIND_LABELS: Dict[MatchKind, str] = {
    MatchKind.EXACT: "title",
    MatchKind.BM25: "full-text rank",
    MatchKind.NORMALIZED: "title (spacing ignored)",
    MatchKind.ALIAS: "alternate title",
    MatchKind.FUZZY: "similar title",
    MatchKind.VECTOR: "meaning",
    MatchKind.OCR: "sheet text",
    MatchKind.KEY: "key",
}

_missing = set(MatchKind) - set(MATCH_KIND_LABELS)
if _missing:
    raise RuntimeError(f"MATCH_KIND_LABELS lacks {sorted(k.value for k in _missing)}")


def _page_item(page: RankedCandidate) -> PageItem:
    c = page.candidate
    return PageItem(
        id=c.id,
        url=c.image_url,
        filename=c.original_filename,
        ocr_text=c.ocr_text,
        song_key=c.song_key,
    )


def _best_page(group: SongGroup) -> RankedCandidate:
    """Highest-scoring page; ties go to page order."""
    best = group.pages[0]
    for p in group.pages[1:]:
        if p.score > best.score:
            best = p
    return best


def map_group_to_song(group: SongGroup) -> SongItem:
    """The first page is the main result; the remaining pages ride along."""
    if not group.pages:
        raise ValueError(f"song group '{group.title}' has no pages")
    main = group.pages[0]
    kind: Optional[MatchKind] = _best_page(group).match_kind
    c = main.candidate
    return SongItem(
        id=c.id,
        title=group.title,
        url=c.image_url,
        filename=c.original_filename,
        ocr_text=c.ocr_text,
        song_key=group.selected_key or c.song_key,
        available_keys=list(group.available_keys),
        score=float(group.best_score),
        match_type=kind.value if kind else "",
        matched_on=MATCH_KIND_LABELS[kind] if kind else None,
        related_pages=[_page_item(p) for p in group.pages[1:]],
        total_pages=group.total_pages,
    )


def map_outcome_to_response(
    outcome: SearchOutcome,
    message: str,
    used_llm: bool = False,
) -> ChatResponse:
    songs: List[SongItem] = [map_group_to_song(g) for g in outcome.groups if g.pages]
    logger.info("Mapped {} songs into API schema (status={})", len(songs), outcome.status.value)
    return ChatResponse(
        message=message,
        status=outcome.status.value,
        needs_key_selection=outcome.status is OutcomeStatus.NEEDS_KEY_SELECTION,
        available_keys=list(outcome.available_keys),
        songs=songs,
        debug={
            "used_llm": used_llm,
            "intent": outcome.intent.kind.value,
            "raw_count": outcome.raw_count,
            "grouped_count": outcome.grouped_count,
            "shown_count": len(songs),
            "needs_help": outcome.intent.needs_assist,
        },
    )
