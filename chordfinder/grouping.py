from __future__ import annotations

"""
Collapse per-image hits into logical songs.

A sheet upload is identified by `title::base`, where `base` is the upload
identifier derived from the filename (or the explicit group id when the
ingestion step recorded one). Groups are then filtered by the requested
key, ranked, de-duplicated by an aggressive title form, and their pages
put in filename order.
"""

from collections import OrderedDict
from typing import Iterable, List, Optional, Set

from loguru import logger

from . import config
from .normalize import base_filename, key_matches, normalize_title_for_dedup, split_keys
from .pipeline_types import RankedCandidate, SearchCandidate, SearchValidationError, SongGroup
from .store import SongStore, StoreError
from .text_utils import extract_song_title


def display_title(cand: SearchCandidate) -> str:
    """Clean title, else the first meaningful OCR line, else the upload name."""
    return (
        (cand.title or "").strip()
        or extract_song_title(cand.ocr_text)
        or base_filename(cand.original_filename)
    )


def group_key(cand: SearchCandidate) -> str:
    upload = cand.song_group_id or base_filename(cand.original_filename)
    return f"{display_title(cand).lower()}::{upload}"


def _page_sort_key(page: RankedCandidate):
    c = page.candidate
    return ((c.original_filename or "").lower(), c.page_number or 0, c.id)


def _keys_of(pages: Iterable[RankedCandidate]) -> List[str]:
    for p in pages:
        if p.candidate.song_key:
            return split_keys(p.candidate.song_key)
    return []


def _has_key_metadata(pages: Iterable[RankedCandidate]) -> bool:
    return any(p.candidate.song_key for p in pages)


def _apply_key_filter(groups: List[SongGroup], requested_key: str) -> List[SongGroup]:
    """
    Keep only pages in the requested key. Groups without any key metadata
    pass untouched; keyed groups with no matching page are dropped unless
    that would drop every group, in which case nothing is filtered.
    """
    kept: List[SongGroup] = []
    for g in groups:
        if not _has_key_metadata(g.pages):
            kept.append(g)
            continue
        matching = [p for p in g.pages if key_matches(p.candidate.song_key, requested_key)]
        if matching:
            kept.append(SongGroup(
                title=g.title,
                pages=matching,
                available_keys=g.available_keys,
                selected_key=requested_key,
            ))
    if not kept:
        logger.info("grouping: key {} matched no group; keeping all {} unfiltered", requested_key, len(groups))
        return groups
    return kept


def group_candidates(
    ranked: List[RankedCandidate],
    requested_key: Optional[str] = None,
    limit: Optional[int] = None,
) -> List[SongGroup]:
    """
    Group ranked candidates into songs (best first).

    Raises SearchValidationError when a candidate has no identifier.
    A repeated identifier keeps its first (best-ranked) occurrence.
    """
    by_key: "OrderedDict[str, List[RankedCandidate]]" = OrderedDict()
    seen_ids: Set[str] = set()
    for r in ranked:
        if not r.candidate.id:
            raise SearchValidationError("candidate without an id cannot be grouped")
        if r.id in seen_ids:
            continue
        seen_ids.add(r.id)
        by_key.setdefault(group_key(r.candidate), []).append(r)

    groups = [
        SongGroup(
            title=display_title(pages[0].candidate),
            pages=pages,
            available_keys=_keys_of(pages),
        )
        for pages in by_key.values()
    ]

    if requested_key:
        groups = _apply_key_filter(groups, requested_key)

    # stable: equal groups keep retrieval order
    groups.sort(key=lambda g: (-g.total_pages, 0 if g.available_keys else 1, -g.best_score))

    deduped: "OrderedDict[str, SongGroup]" = OrderedDict()
    for g in groups:
        norm = normalize_title_for_dedup(g.title) or g.title.lower()
        if norm not in deduped:
            deduped[norm] = g

    out = list(deduped.values())
    for g in out:
        g.pages.sort(key=_page_sort_key)
    if limit is not None:
        out = out[:limit]

    logger.debug(
        "grouping: {} candidates -> {} groups -> {} after dedup (key={})",
        len(ranked), len(groups), len(out), requested_key,
    )
    return out


# ---------------------------------------------------------------------------
# Related-page completion
# ---------------------------------------------------------------------------

def _filename_pattern(base: str) -> str:
    # "talkmedia_i_54d97c7950f2" -> "54d97c7950f2"
    parts = base.split("_")
    return parts[-1] if len(parts) > 2 else base


async def _related_pages(store: SongStore, group: SongGroup) -> List[SearchCandidate]:
    first = group.pages[0].candidate
    found: List[SearchCandidate] = []

    if first.song_group_id:
        found.extend(await store.fetch_by_group_id(first.song_group_id, config.RELATED_PAGES_LIMIT))

    base = base_filename(first.original_filename)
    title = (first.title or "").lower().strip()
    if len(base) > 3 and title:
        rows = await store.fetch_by_filename_pattern(_filename_pattern(base), config.RELATED_PAGES_LIMIT)
        # same upload and same song; untitled rows cannot be verified
        found.extend(
            r for r in rows
            if base_filename(r.original_filename) == base and (r.title or "").lower().strip() == title
        )
    return found


async def complete_pages(store: SongStore, groups: List[SongGroup]) -> List[SongGroup]:
    """
    Add the missing pages of each displayed sheet. A page id already shown
    in any group is never added again.
    """
    shown: Set[str] = {pid for g in groups for pid in g.page_ids}
    for g in groups:
        if not g.pages:
            continue
        try:
            extra = await _related_pages(store, g)
        except StoreError as e:
            logger.warning("related pages for '{}' failed: {}", g.title, e)
            continue

        added = 0
        for cand in extra:
            if cand.id in shown:
                continue
            if g.selected_key and cand.song_key and not key_matches(cand.song_key, g.selected_key):
                continue
            shown.add(cand.id)
            g.pages.append(RankedCandidate(candidate=cand, fused_score=0.0, matched=()))
            added += 1
        if added:
            g.pages.sort(key=_page_sort_key)
            logger.debug("related pages: '{}' +{} -> {} pages", g.title, added, g.total_pages)
    return groups

