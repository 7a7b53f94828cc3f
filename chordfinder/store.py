from __future__ import annotations

"""
Read-only access to the song-sheet store (Supabase / PostgREST).

Every method returns SearchCandidate rows in the order the store ranked
them. Transport or HTTP failures raise StoreError; the retrieval layer
decides whether that is fatal.
"""

import re
from typing import Any, Dict, Iterable, List, Optional, Sequence

import httpx
from loguru import logger

from . import config
from .normalize import key_matches
from .pipeline_types import SearchCandidate

# Characters with meaning inside PostgREST filter values
_FILTER_UNSAFE_RE = re.compile(r'[,()*%"\\]')


class StoreError(RuntimeError):
    """The song store could not answer a query."""


def _filter_value(term: str) -> str:
    return _FILTER_UNSAFE_RE.sub(" ", term).strip()


def _opt_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def candidate_from_row(row: Dict[str, Any]) -> SearchCandidate:
    page = row.get("page_number")
    try:
        page_number = int(page) if page is not None else None
    except (TypeError, ValueError):
        page_number = None
    return SearchCandidate(
        id=str(row["id"]),
        title=_opt_str(row.get("song_title")),
        title_korean=_opt_str(row.get("song_title_korean")),
        title_english=_opt_str(row.get("song_title_english")),
        song_key=_opt_str(row.get("song_key")),
        image_url=row.get("image_url") or "",
        ocr_text=row.get("ocr_text") or "",
        original_filename=row.get("original_filename") or "",
        song_group_id=_opt_str(row.get("song_group_id")),
        page_number=page_number,
    )


class SongStore:
    """Thin async PostgREST client for the `song_images` / `song_aliases` tables."""

    def __init__(
        self,
        base_url: str = config.SUPABASE_URL,
        api_key: str = config.SUPABASE_KEY,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(config.ADAPTER_TIMEOUT, connect=config.HTTP_CONNECT_TIMEOUT),
        )

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self.api_key)

    @property
    def _headers(self) -> Dict[str, str]:
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(self, method: str, path: str, **kwargs) -> List[Dict[str, Any]]:
        if not self.configured:
            raise StoreError("song store is not configured")
        url = f"{self.base_url}/rest/v1/{path}"
        try:
            r = await self._client.request(method, url, headers=self._headers, **kwargs)
        except httpx.HTTPError as e:
            raise StoreError(f"{path}: {e}") from e
        if r.status_code >= 400:
            raise StoreError(f"{path}: HTTP {r.status_code} {r.text[:200]}")
        try:
            data = r.json()
        except ValueError as e:
            raise StoreError(f"{path}: response is not JSON") from e
        if not isinstance(data, list):
            raise StoreError(f"{path}: expected a list, got {type(data).__name__}")
        return data

    async def _select(self, params: Dict[str, Any], table: str = config.SONG_IMAGES_TABLE) -> List[SearchCandidate]:
        params = {"select": config.SONG_COLUMNS, **params}
        rows = await self._request("GET", table, params=params)
        return [candidate_from_row(row) for row in rows if row.get("id") is not None]

    async def _rpc(self, fn: str, payload: Dict[str, Any]) -> List[SearchCandidate]:
        rows = await self._request("POST", f"rpc/{fn}", json=payload)
        return [candidate_from_row(row) for row in rows if row.get("id") is not None]

    # ------------------------------------------------------------------
    # Queries used by the retrieval adapters
    # ------------------------------------------------------------------

    async def fetch_by_title_substring(self, term: str, limit: int) -> List[SearchCandidate]:
        """Case-insensitive substring match on any of the three title columns."""
        t = _filter_value(term)
        if not t:
            return []
        pattern = f'"*{t}*"'
        return await self._select({
            "or": f"(song_title.ilike.{pattern},song_title_korean.ilike.{pattern},song_title_english.ilike.{pattern})",
            "limit": limit,
        })

    async def fetch_titled(self, limit: int) -> List[SearchCandidate]:
        """Pool of rows that carry a title, for client-side matching."""
        return await self._select({"song_title": "not.is.null", "limit": limit})

    async def full_text_rank(self, query: str, limit: int) -> List[SearchCandidate]:
        return await self._rpc(config.BM25_FUNCTION, {"query_text": query, "match_count": limit})

    async def lookup_aliases(self, term: str, limit: int) -> List[str]:
        """Canonical song titles whose alias contains `term`."""
        t = _filter_value(term)
        if not t:
            return []
        rows = await self._request(
            "GET",
            config.SONG_ALIASES_TABLE,
            params={"select": "song_title,alias", "alias": f"ilike.*{t}*", "limit": limit},
        )
        titles: List[str] = []
        for row in rows:
            title = _opt_str(row.get("song_title"))
            if title and title not in titles:
                titles.append(title)
        return titles

    async def fetch_by_titles(self, titles: Sequence[str], limit: int) -> List[SearchCandidate]:
        quoted = ",".join(f'"{_filter_value(t)}"' for t in titles if _filter_value(t))
        if not quoted:
            return []
        return await self._select({"song_title": f"in.({quoted})", "limit": limit})

    async def nearest_neighbors(self, embedding: Sequence[float], threshold: float, limit: int) -> List[SearchCandidate]:
        return await self._rpc(
            config.VECTOR_FUNCTION,
            {
                "query_embedding": list(embedding),
                "match_threshold": threshold,
                "match_count": limit,
            },
        )

    async def fetch_by_ocr_substring(self, term: str, limit: int) -> List[SearchCandidate]:
        t = _filter_value(term)
        if not t:
            return []
        return await self._select({"ocr_text": f"ilike.*{t}*", "limit": limit})

    # ------------------------------------------------------------------
    # Key-list path and page completion
    # ------------------------------------------------------------------

    async def fetch_by_key(self, key: str, limit: int) -> List[SearchCandidate]:
        """
        Sheets whose key field lists `key`. The store filter is a loose
        substring; exact token matching ("D" is not "Dm") happens here.
        """
        t = _filter_value(key)
        if not t:
            return []
        rows = await self._select({
            "song_key": f"ilike.*{t}*",
            "order": "song_title.asc",
            "limit": limit,
        })
        matched = [c for c in rows if key_matches(c.song_key, key)]
        logger.debug("store: key={} loose={} exact={}", key, len(rows), len(matched))
        return matched

    async def fetch_by_group_id(self, group_id: str, limit: int = config.RELATED_PAGES_LIMIT) -> List[SearchCandidate]:
        return await self._select({
            "song_group_id": f"eq.{group_id}",
            "order": "page_number.asc",
            "limit": limit,
        })

    async def fetch_by_filename_pattern(self, pattern: str, limit: int = config.RELATED_PAGES_LIMIT) -> List[SearchCandidate]:
        t = _filter_value(pattern)
        if not t:
            return []
        return await self._select({
            "original_filename": f"ilike.*{t}*",
            "order": "original_filename.asc",
            "limit": limit,
        })


def unique_by_id(candidates: Iterable[SearchCandidate]) -> List[SearchCandidate]:
    seen = set()
    out: List[SearchCandidate] = []
    for c in candidates:
        if c.id in seen:
            continue
        seen.add(c.id)
        out.append(c)
    return out
