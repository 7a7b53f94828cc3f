import asyncio
from typing import Dict, List, Optional

import pytest

from chordfinder.normalize import key_matches
from chordfinder.pipeline_types import MatchKind, RankedCandidate, SearchCandidate
from chordfinder.store import StoreError


def make_cand(
    id: str,
    title: Optional[str] = None,
    filename: str = "",
    key: Optional[str] = None,
    ocr: str = "",
    group_id: Optional[str] = None,
    title_korean: Optional[str] = None,
    title_english: Optional[str] = None,
) -> SearchCandidate:
    return SearchCandidate(
        id=id,
        title=title,
        title_korean=title_korean,
        title_english=title_english,
        song_key=key,
        image_url=f"https://img.example/{id}.jpg",
        ocr_text=ocr,
        original_filename=filename,
        song_group_id=group_id,
    )


def make_ranked(cands: List[SearchCandidate], kind: MatchKind = MatchKind.EXACT) -> List[RankedCandidate]:
    # strictly descending scores in list order
    return [
        RankedCandidate(candidate=c, fused_score=1.0 / (60 + i), matched=(kind,))
        for i, c in enumerate(cands, start=1)
    ]


class FakeSongStore:
    """
    In-memory stand-in for SongStore. `fail` names methods that raise
    StoreError; `delay` adds latency to every call.
    """

    configured = True

    def __init__(
        self,
        rows: Optional[List[SearchCandidate]] = None,
        aliases: Optional[Dict[str, str]] = None,
        bm25_hits: Optional[List[SearchCandidate]] = None,
        vector_hits: Optional[List[SearchCandidate]] = None,
        fail: tuple = (),
        delay: float = 0.0,
    ):
        self.rows = list(rows or [])
        self.aliases = dict(aliases or {})
        self.bm25_hits = list(bm25_hits or [])
        self.vector_hits = list(vector_hits or [])
        self.fail = set(fail)
        self.delay = delay
        self.calls: List[str] = []

    async def _enter(self, name: str) -> None:
        self.calls.append(name)
        if self.delay:
            await asyncio.sleep(self.delay)
        if name in self.fail:
            raise StoreError(f"{name} unavailable")

    async def fetch_by_title_substring(self, term, limit):
        await self._enter("fetch_by_title_substring")
        t = term.lower()
        return [c for c in self.rows if any(t in x.lower() for x in c.titles)][:limit]

    async def fetch_titled(self, limit):
        await self._enter("fetch_titled")
        return [c for c in self.rows if c.title][:limit]

    async def full_text_rank(self, query, limit):
        await self._enter("full_text_rank")
        return self.bm25_hits[:limit]

    async def lookup_aliases(self, term, limit):
        await self._enter("lookup_aliases")
        t = term.lower()
        return [title for alias, title in self.aliases.items() if t in alias.lower()][:limit]

    async def fetch_by_titles(self, titles, limit):
        await self._enter("fetch_by_titles")
        return [c for c in self.rows if c.title in titles][:limit]

    async def nearest_neighbors(self, embedding, threshold, limit):
        await self._enter("nearest_neighbors")
        return self.vector_hits[:limit]

    async def fetch_by_ocr_substring(self, term, limit):
        await self._enter("fetch_by_ocr_substring")
        t = term.lower()
        return [c for c in self.rows if t in (c.ocr_text or "").lower()][:limit]

    async def fetch_by_key(self, key, limit):
        await self._enter("fetch_by_key")
        return [c for c in self.rows if key_matches(c.song_key, key)][:limit]

    async def fetch_by_group_id(self, group_id, limit=10):
        await self._enter("fetch_by_group_id")
        return [c for c in self.rows if c.song_group_id == group_id][:limit]

    async def fetch_by_filename_pattern(self, pattern, limit=10):
        await self._enter("fetch_by_filename_pattern")
        p = pattern.lower()
        return [c for c in self.rows if p in (c.original_filename or "").lower()][:limit]


class DummyEmbedder:
    def __init__(self, available: bool = True, error: Optional[Exception] = None):
        self.available = available
        self.error = error
        self.calls = 0

    async def embed(self, text):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return [0.1, 0.2, 0.3]


@pytest.fixture
def song_rows() -> List[SearchCandidate]:
    return [
        make_cand("hf1", "Holy Forever", "Holy_Forever_1.jpg", "D, B", ocr="Holy Forever\nA thousand generations",
                  title_korean="거룩 영원히"),
        make_cand("hf2", "Holy Forever", "Holy_Forever_2.jpg", "D, B", ocr="Holy holy holy"),
        make_cand("wm1", "Way Maker", "waymaker.jpg", "E", ocr="Way maker miracle worker"),
        make_cand("gr1", "위대하신 주", "grace_1.jpg", "G", ocr="위대하신 주 찬양하리"),
        make_cand("gr2", "위대하신 주", "grace_2.jpg", "G", ocr="영원히 찬양"),
    ]
