from __future__ import annotations

"""
Response assembly: turn a SearchOutcome into the chat reply.

Templated replies cover every normal outcome at no cost. The LLM is asked
only when nothing was found or the user seems to need help; if it fails
the user gets a canned reply in their language.
"""

from typing import List, Optional, Sequence, Tuple

import httpx
from loguru import logger

from . import config
from .config import ChatTurn
from .pipeline_types import OutcomeStatus, SearchOutcome, SongGroup

MAX_LISTED_TITLES = 10


def _keys_in(groups: Sequence[SongGroup]) -> List[str]:
    keys: List[str] = []
    for g in groups:
        for p in g.pages:
            k = (p.candidate.song_key or "").strip()
            if k and k not in keys:
                keys.append(k)
    return keys


def not_found_reply(language: str, requested_key: Optional[str] = None, key_list: bool = False) -> str:
    ko = language == "ko"
    if key_list and requested_key:
        return (
            f"{requested_key} 키의 악보가 없습니다. 다른 키로 검색해 보세요."
            if ko else f"No sheets found in key {requested_key}. Try a different key."
        )
    return "검색 결과가 없습니다. 다른 키워드로 검색해 보세요." if ko else "No results found. Try different keywords."


def template_reply(outcome: SearchOutcome, query: str = "") -> str:
    """Cost-free reply for a search outcome."""
    ko = outcome.language == "ko"
    intent = outcome.intent
    groups = outcome.groups

    if outcome.status is OutcomeStatus.NOT_FOUND:
        return not_found_reply(outcome.language, intent.requested_key, intent.is_key_list)

    if intent.is_key_list:
        titles = [g.title for g in groups][:MAX_LISTED_TITLES]
        listing = "\n".join(f"{i}. {t}" for i, t in enumerate(titles, start=1))
        if ko:
            return f"🎵 {intent.requested_key} 키 악보 {len(groups)}곡:\n{listing}"
        return f"🎵 {len(groups)} songs in key {intent.requested_key}:\n{listing}"

    title = groups[0].title or query
    if outcome.status is OutcomeStatus.NEEDS_KEY_SELECTION:
        key_list = ", ".join(outcome.available_keys)
        if ko:
            return (
                f"'{title}' 악보를 찾았습니다!\n🎹 사용 가능한 키: {key_list}\n\n"
                "어떤 키로 보시겠어요? 원하시는 키를 선택하거나 입력해주세요."
            )
        return (
            f"Found '{title}'!\n🎹 Available keys: {key_list}\n\n"
            "Which key would you like? Please select or type your preferred key."
        )

    keys = _keys_in(groups)
    if len(groups) == 1:
        key_info = f" ({keys[0]})" if keys else ""
        if ko:
            return f"'{title}'{key_info} 악보입니다. 이미지를 탭하여 크게 보거나 다운로드하세요."
        return f"Found '{title}'{key_info}. Tap to view or download."
    if len(keys) > 1:
        key_list = ", ".join(keys)
        if ko:
            return f"'{title}' 악보 {len(groups)}개를 찾았습니다.\n🎵 키: {key_list}\n원하시는 키를 선택하세요."
        return f"Found {len(groups)} sheets for '{title}'.\n🎵 Keys: {key_list}\nSelect your preferred key."
    if keys:
        return f"'{title}' ({keys[0]}) 악보입니다." if ko else f"Found '{title}' ({keys[0]})."
    return f"'{title}' 악보를 찾았습니다." if ko else f"Found sheets for '{title}'."


def canned_reply(language: str) -> str:
    if language == "ko":
        return "검색 결과가 없습니다. 다른 키워드로 시도해 주세요."
    return "No results found. Please try different keywords."


def build_prompt(message: str, outcome: SearchOutcome, history: Sequence[ChatTurn] = ()) -> str:
    recent = list(history)[-config.LLM_HISTORY_TURNS:]
    history_block = ""
    if recent:
        lines = [f"{'User' if t.role == 'user' else 'Assistant'}: {t.content}" for t in recent]
        history_block = "\nRecent conversation:\n" + "\n".join(lines) + "\n"
    language = "Korean" if outcome.language == "ko" else "English"

    head = (
        "You are a helpful assistant for a praise worship team. "
        "A user is looking for song chord sheets.\n"
        f"{history_block}\nCurrent message: \"{message}\"\n\n"
    )
    if outcome.groups:
        titles = ", ".join(g.title for g in outcome.groups[: config.MAX_SUGGESTIONS])
        body = (
            f"I found {len(outcome.groups)} matching song(s): {titles}\n\n"
            "The user seems to need help (maybe wrong results or a question). "
            "Use the conversation history for context if relevant. Generate a brief, helpful response."
        )
    else:
        body = (
            "No matching songs were found in the database. Use the conversation history for "
            "context if relevant. Generate a brief, friendly response suggesting alternative "
            "search terms or asking for clarification."
        )
    return f"{head}{body} Respond in {language}."


class LLMResponder:
    """Anthropic Messages API over httpx."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str = config.ANTHROPIC_API_KEY,
        model: str = config.LLM_MODEL,
    ):
        self._client = client
        self.api_key = api_key
        self.model = model

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    async def generate(self, prompt: str) -> str:
        r = await self._client.post(
            config.ANTHROPIC_API_URL,
            headers={
                "x-api-key": self.api_key,
                "anthropic-version": config.ANTHROPIC_VERSION,
                "content-type": "application/json",
            },
            json={
                "model": self.model,
                "max_tokens": config.LLM_MAX_TOKENS,
                "messages": [{"role": "user", "content": prompt}],
            },
            timeout=config.LLM_TIMEOUT,
        )
        r.raise_for_status()
        for block in r.json()["content"]:
            if not isinstance(block, dict) or block.get("type") != "text":
                continue
            text = block.get("text")
            if isinstance(text, str) and text.strip():
                return text.strip()
        raise ValueError("LLM reply has no text block")


async def compose_reply(
    message: str,
    outcome: SearchOutcome,
    history: Sequence[ChatTurn] = (),
    llm: Optional[LLMResponder] = None,
) -> Tuple[str, bool]:
    """Return (reply text, whether the LLM wrote it)."""
    if outcome.groups and not outcome.intent.needs_assist:
        return template_reply(outcome, message), False

    if llm is None or not llm.available:
        if outcome.groups:
            return template_reply(outcome, message), False
        return not_found_reply(outcome.language, outcome.intent.requested_key, outcome.intent.is_key_list), False

    try:
        text = await llm.generate(build_prompt(message, outcome, history))
    except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
        logger.warning("LLM reply failed, using canned reply: {}", e)
        if outcome.groups:
            return template_reply(outcome, message), False
        return canned_reply(outcome.language), False
    return text, True
