import asyncio
import json

import httpx
import pytest

from chordfinder import config
from chordfinder.store import SongStore, StoreError, candidate_from_row


def _row(id, title, key=None, filename="", group=None, page=None):
    return {
        "id": id,
        "song_title": title,
        "song_title_korean": None,
        "song_title_english": None,
        "song_key": key,
        "image_url": f"https://img.example/{id}.jpg",
        "ocr_text": None,
        "original_filename": filename,
        "song_group_id": group,
        "page_number": page,
    }


def _store(handler, base_url="https://db.example"):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SongStore(base_url=base_url, api_key="secret", client=client)


def test_candidate_from_row_coerces_types():
    cand = candidate_from_row({"id": 42, "song_title": "  ", "song_key": " G ", "page_number": "2", "ocr_text": None})
    assert cand.id == "42"
    assert cand.title is None
    assert cand.song_key == "G"
    assert cand.page_number == 2
    assert cand.ocr_text == ""
    assert candidate_from_row({"id": "x", "page_number": "two"}).page_number is None


def test_title_substring_query_shape():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        seen["apikey"] = request.headers["apikey"]
        return httpx.Response(200, json=[_row("1", "Holy Forever", "D")])

    hits = asyncio.run(_store(handler).fetch_by_title_substring("holy (forever)", 10))
    assert [h.id for h in hits] == ["1"]
    assert seen["path"] == f"/rest/v1/{config.SONG_IMAGES_TABLE}"
    assert seen["apikey"] == "secret"
    assert seen["params"]["limit"] == "10"
    # filter-syntax characters never reach the query
    assert "song_title.ilike.\"*holy  forever*\"" in seen["params"]["or"]


def test_full_text_rank_calls_rpc():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=[_row("2", "Way Maker"), {"id": None}])

    hits = asyncio.run(_store(handler).full_text_rank("way maker", 20))
    assert [h.id for h in hits] == ["2"]
    assert seen["method"] == "POST"
    assert seen["path"] == f"/rest/v1/rpc/{config.BM25_FUNCTION}"
    assert seen["body"] == {"query_text": "way maker", "match_count": 20}


def test_fetch_by_key_keeps_exact_tokens_only():
    rows = [
        _row("d", "Holy Forever", "D, B"),
        _row("dm", "Lament", "Dm"),
        _row("ds", "Sharp Song", "D#"),
        _row("slash", "Slash Song", "B/D"),
    ]
    hits = asyncio.run(_store(lambda r: httpx.Response(200, json=rows)).fetch_by_key("D", 20))
    assert [h.id for h in hits] == ["d", "slash"]


def test_lookup_aliases_returns_unique_titles():
    rows = [
        {"song_title": "Holy Forever", "alias": "거룩 영원히"},
        {"song_title": "Holy Forever", "alias": "거룩 영원"},
    ]
    titles = asyncio.run(_store(lambda r: httpx.Response(200, json=rows)).lookup_aliases("거룩", 10))
    assert titles == ["Holy Forever"]


def test_http_errors_raise_store_error():
    store = _store(lambda r: httpx.Response(500, text="boom"))
    with pytest.raises(StoreError):
        asyncio.run(store.fetch_titled(10))


def test_non_list_payload_raises_store_error():
    store = _store(lambda r: httpx.Response(200, json={"message": "bad"}))
    with pytest.raises(StoreError):
        asyncio.run(store.fetch_by_group_id("g1"))


def test_unconfigured_store_raises_store_error():
    store = _store(lambda r: httpx.Response(200, json=[]), base_url="")
    assert not store.configured
    with pytest.raises(StoreError):
        asyncio.run(store.fetch_titled(10))


def test_blank_terms_skip_the_request():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json=[])

    store = _store(handler)
    assert asyncio.run(store.fetch_by_ocr_substring("***", 10)) == []
    assert calls == []
