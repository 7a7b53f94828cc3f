"""Query classifier: one chat message -> QueryIntent."""

from __future__ import annotations

import re
from typing import List, Optional, Tuple

from loguru import logger

from .constants import (
    ENGLISH_FILLERS,
    HELP_MARKERS_EN,
    HELP_MARKERS_KO,
    KEY_LIST_NOUNS_KO,
    KEY_LIST_PARTICLES_KO,
    KEY_LIST_WORDS_EN,
    KOREAN_REQUEST_SUFFIXES,
    KOREAN_SHEET_NOUNS,
    KOREAN_STANDALONE_FILLERS,
    SPECIFIC_SONG_MARKERS,
)
from .normalize import basic_clean, canonical_key, normalize_korean
from .pipeline_types import IntentKind, QueryIntent
from .text_utils import extract_requested_count, strip_count_phrases

# Python's \b treats Hangul as a word char; a key glued to Korean ("G키") must
# still match, so boundaries only look at ASCII.
_LB = r"(?<![A-Za-z0-9#])"
_RB = r"(?![A-Za-z0-9#])"
_KEY = r"([A-Ga-g][#b]?m?)"

# Key collocations, most explicit first
_KEY_PATTERNS: List[re.Pattern] = [
    re.compile(_LB + _KEY + r"\s*(?:코드|키)", re.IGNORECASE),
    re.compile(r"(?<![A-Za-z])key\s+of\s+" + _KEY + _RB, re.IGNORECASE),
    re.compile(r"(?<![A-Za-z])in\s+key\s+" + _KEY + _RB, re.IGNORECASE),
    # "A key songs": bare English letter must be upper-case and the phrase must
    # end the message or lead into a list word ("A key to heaven" is a title)
    re.compile(
        _LB + r"([A-G][#b]?m?)\s+(?i:key)"
        r"(?=\s*$|\s+(?:\d+\s*)?(?i:songs?|sheets?|list|찬양|악보|곡|노래))"
    ),
    re.compile(r"(?:키|코드)\s*" + _KEY + _RB, re.IGNORECASE),
    re.compile(r"(?<![A-Za-z])key\s+" + _KEY + _RB, re.IGNORECASE),
    re.compile(r"^" + _KEY + r"\s+(?=찬양|악보|곡)", re.IGNORECASE),
]

_KEY_LIST_SHAPE_RE = re.compile(
    r"[A-Ga-g][#b]?m?\s*(?:코드|키)\s*(?:찬양|악보)?\s*(?:리스트|목록)", re.IGNORECASE
)
_SPECIFIC_RES = [re.compile(p, re.IGNORECASE) for p in SPECIFIC_SONG_MARKERS]
_ENGLISH_FILLER_RE = re.compile(
    r"(?<![A-Za-z])(?:" + "|".join(ENGLISH_FILLERS) + r")(?![A-Za-z])", re.IGNORECASE
)
_KEY_LIST_EN_RE = re.compile(
    r"(?<![A-Za-z])(?:" + "|".join(KEY_LIST_WORDS_EN) + r")(?![A-Za-z])", re.IGNORECASE
)
_HELP_EN_RE = re.compile(r"(?<![A-Za-z])(?:" + "|".join(HELP_MARKERS_EN) + r")(?![A-Za-z])", re.IGNORECASE)
# "G키로 된 ...": particles hanging off a removed key span
_LEADING_PARTICLE_RE = re.compile(
    r"^\s*(?:" + "|".join(sorted(KEY_LIST_PARTICLES_KO, key=len, reverse=True)) + r")(?=\s|$)"
)
_PUNCT_RE = re.compile(r"[^\w\s#]")
_WS_RE = re.compile(r"\s+")

_SUFFIXES = sorted(KOREAN_REQUEST_SUFFIXES + KOREAN_SHEET_NOUNS, key=len, reverse=True)
_KEY_LIST_SUFFIXES = sorted(KEY_LIST_NOUNS_KO, key=len, reverse=True)


def _strip_suffixes(token: str, suffixes: List[str]) -> str:
    changed = True
    while token and changed:
        changed = False
        for suf in suffixes:
            if token.endswith(suf):
                token = token[: -len(suf)]
                changed = True
                break
    return token


def _find_key(text: str) -> Optional[Tuple[str, Tuple[int, int]]]:
    """First key collocation in `text`: (canonical key, match span)."""
    for pat in _KEY_PATTERNS:
        m = pat.search(text)
        if not m:
            continue
        key = canonical_key(m.group(1))
        if key:
            return key, m.span()
    return None


def extract_requested_key(text: str) -> Optional[str]:
    """'Holy Forever G키' -> 'G', 'key of bb' -> 'Bb'; None without a key marker."""
    found = _find_key(basic_clean(text))
    return found[0] if found else None


def extract_search_terms(text: str) -> str:
    """
    Drop request verbs, sheet nouns, count phrases and punctuation, keeping
    the title words in their original order:

      '위대하신 주 악보 찾아줘'  -> '위대하신 주'
      'find holy forever chords' -> 'holy forever'
    """
    out = strip_count_phrases(basic_clean(text))
    out = _ENGLISH_FILLER_RE.sub(" ", out)
    out = _PUNCT_RE.sub(" ", out)
    tokens: List[str] = []
    for tok in out.split():
        if tok in KOREAN_STANDALONE_FILLERS:
            continue
        tok = _strip_suffixes(tok, _SUFFIXES)
        if tok:
            tokens.append(tok)
    return _WS_RE.sub(" ", " ".join(tokens)).strip().lower()


def _drop_leading_particles(text: str) -> str:
    while True:
        m = _LEADING_PARTICLE_RE.match(text)
        if not m:
            return text
        text = text[m.end():]


def _is_key_list_residual(residual: str) -> bool:
    """True when nothing but list words surround the key collocation."""
    rest = _KEY_LIST_EN_RE.sub(" ", extract_search_terms(residual))
    for tok in rest.split():
        if tok in KEY_LIST_PARTICLES_KO:
            continue
        if _strip_suffixes(tok, _KEY_LIST_SUFFIXES + KEY_LIST_PARTICLES_KO):
            return False
    return True


def is_specific_song_query(text: str) -> bool:
    if _KEY_LIST_SHAPE_RE.search(text):
        return False
    if any(p.search(text) for p in _SPECIFIC_RES):
        return True
    return 2 <= len(text) <= 40 and "?" not in text


def needs_assist(text: str) -> bool:
    """The user is asking for help or correcting us rather than naming a song."""
    lowered = (text or "").lower()
    if "?" in lowered:
        return True
    if any(m in lowered for m in HELP_MARKERS_KO):
        return True
    return bool(_HELP_EN_RE.search(lowered))


def classify_query(
    text: str,
    requested_key: Optional[str] = None,
    requested_count: Optional[int] = None,
) -> QueryIntent:
    """
    Classify a chat message.

    A key collocation ("G키", "key of A") whose remainder holds only list
    words and a count is a key-list request. Otherwise the key filters a
    specific-song search and is removed from the search terms.
    Explicit `requested_key` / `requested_count` override what the message says.
    """
    message = basic_clean(text)
    count = requested_count if requested_count is not None else extract_requested_count(message)

    key: Optional[str] = None
    remainder = message
    found = _find_key(message)
    if found:
        key, (start, end) = found
        remainder = f"{message[:start]} {_drop_leading_particles(message[end:])}"
        if _is_key_list_residual(remainder):
            override = canonical_key(requested_key) if requested_key else None
            intent = QueryIntent(
                kind=IntentKind.KEY_LIST,
                search_terms="",
                requested_key=override or key,
                requested_count=count,
            )
            logger.debug("classify: key-list key={} count={}", intent.requested_key, count)
            return intent

    if requested_key:
        key = canonical_key(requested_key) or key

    kind = IntentKind.SPECIFIC_SONG if is_specific_song_query(message) else IntentKind.AMBIGUOUS
    intent = QueryIntent(
        kind=kind,
        search_terms=extract_search_terms(remainder),
        requested_key=key,
        requested_count=count,
        needs_assist=needs_assist(message),
    )
    logger.debug(
        "classify: kind={} terms='{}' key={} count={}",
        kind.value, intent.search_terms, key, count,
    )
    return intent
