import asyncio

from fastapi.testclient import TestClient

from chordfinder import api
from chordfinder.api import app
from chordfinder.cache import ResponseCache
from chordfinder.config import ChatRequest, ChatResponse, SongItem
from chordfinder.pipeline_types import (
    IntentKind,
    OutcomeStatus,
    QueryIntent,
    SearchOutcome,
    SearchValidationError,
    SongGroup,
)

from conftest import make_cand, make_ranked


client = TestClient(app)


async def dummy_chat(req: ChatRequest) -> ChatResponse:
    # Minimal deterministic fake response: 2 songs
    songs = [
        SongItem(
            id=f"p{i}",
            title=f"Song {i}",
            url=f"https://img.example/p{i}.jpg",
            filename=f"song_{i}.jpg",
            song_key="G",
            available_keys=["G"],
            score=1.0 / (60 + i),
            match_type="exact",
            related_pages=[],
            total_pages=1,
        )
        for i in range(2)
    ]
    return ChatResponse(
        message=f"echo: {req.message}",
        status="results",
        needs_key_selection=False,
        available_keys=["G"],
        songs=songs,
    )


async def failing_chat(req: ChatRequest) -> ChatResponse:
    raise SearchValidationError("candidate without an id cannot be grouped")


async def dummy_ocr(query: str):
    return [{"id": "p1", "ocr_text": f"... {query} ..."}]


def test_health_endpoint():
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "healthy"}


def test_chat_requires_non_empty_message(monkeypatch):
    # Monkeypatch pipeline so we don't hit real services
    monkeypatch.setattr("chordfinder.api.run_chat", dummy_chat)

    assert client.post("/chat", json={"message": " "}).status_code == 422
    assert client.post("/chat", json={"message": ""}).status_code == 422
    assert client.post("/chat", json={}).status_code == 422


def test_chat_rejects_out_of_range_count(monkeypatch):
    monkeypatch.setattr("chordfinder.api.run_chat", dummy_chat)
    resp = client.post("/chat", json={"message": "G키 찬양", "count": 99})
    assert resp.status_code == 422


def test_chat_returns_songs(monkeypatch):
    monkeypatch.setattr("chordfinder.api.run_chat", dummy_chat)

    resp = client.post("/chat", json={"message": "G키 찬양 2개", "history": [{"role": "user", "content": "hi"}]})
    assert resp.status_code == 200
    data = resp.json()
    assert data["message"] == "echo: G키 찬양 2개"
    assert data["status"] == "results"
    assert len(data["songs"]) == 2
    assert data["songs"][0]["related_pages"] == []


def test_chat_validation_error_is_422(monkeypatch):
    monkeypatch.setattr("chordfinder.api.run_chat", failing_chat)
    resp = client.post("/chat", json={"message": "holy forever"})
    assert resp.status_code == 422
    assert "without an id" in resp.json()["detail"]


def test_search_endpoint(monkeypatch):
    monkeypatch.setattr("chordfinder.api.run_ocr_search", dummy_ocr)

    assert client.post("/search", json={"query": "  "}).status_code == 422
    resp = client.post("/search", json={"query": "holy"})
    assert resp.status_code == 200
    assert resp.json()["results"][0]["id"] == "p1"


def test_run_chat_caches_results_but_not_misses(monkeypatch):
    calls = []
    status = {"value": OutcomeStatus.NOT_FOUND}

    async def fake_search(query, store, **kwargs):
        calls.append(query)
        intent = QueryIntent(kind=IntentKind.SPECIFIC_SONG, search_terms=query)
        if status["value"] is OutcomeStatus.NOT_FOUND:
            return SearchOutcome(intent=intent, status=OutcomeStatus.NOT_FOUND, groups=[])
        group = SongGroup(title="Way Maker", pages=make_ranked([make_cand("w", "Way Maker", "wm.jpg", key="E")]),
                          available_keys=["E"])
        return SearchOutcome(intent=intent, status=OutcomeStatus.RESULTS, groups=[group], available_keys=["E"])

    cache = ResponseCache(ttl_seconds=60, max_entries=8)
    monkeypatch.setattr(api, "search_songs", fake_search)
    monkeypatch.setattr(api, "get_response_cache", lambda: cache)
    monkeypatch.setattr(api, "get_store", lambda: None)
    monkeypatch.setattr(api, "get_embedder", lambda: None)
    monkeypatch.setattr(api, "get_rerank_stages", lambda: ())
    monkeypatch.setattr(api, "get_llm", lambda: None)

    req = ChatRequest(message="way maker")
    first = asyncio.run(api.run_chat(req))
    second = asyncio.run(api.run_chat(req))
    assert first.status == second.status == "not_found"
    assert len(calls) == 2
    assert second.debug["cached"] is False

    status["value"] = OutcomeStatus.RESULTS
    asyncio.run(api.run_chat(req))
    again = asyncio.run(api.run_chat(req))
    assert len(calls) == 3
    assert again.debug["cached"] is True
    assert again.songs[0].title == "Way Maker"
