from __future__ import annotations

"""
Text normalisation helpers shared across the classifier, the retrieval
adapters and the grouping engine.

Korean titles are stored with inconsistent spacing ("위대하신 주" vs
"위대하신주"), so every comparison goes through the same canonical view:
NFC-normalised, all whitespace removed, lower-cased.

Public helpers:

* basic_clean(text) -> str
    Light clean for user input (unicode, whitespace, length cap).

* normalize_korean(text) -> str
    Canonical comparison form used by normalized / fuzzy matching.

* similarity(a, b) -> float
    Symmetric 0..1 similarity on the canonical form.

* base_filename(filename) -> str
    Upload identifier shared by all pages of one sheet.

* normalize_title_for_dedup(title) -> str
    Aggressive title form used to drop re-uploads of the same song.

* split_keys / canonical_key / key_matches
    Musical key parsing for key-list queries and key filters.
"""

import re
import unicodedata
from typing import List, Optional

from rapidfuzz.distance import Levenshtein

from . import config

MAX_INPUT_CHARS: int = int(getattr(config, "MAX_INPUT_CHARS", 500))

_WS_RE = re.compile(r"\s+")
_IMAGE_EXT_RE = re.compile(r"(\.(jpg|jpeg|png|gif|webp|heic))+$", re.IGNORECASE)
_PAGE_SUFFIX_RE = re.compile(r"[\s_]+\(?\d+\)?$")
_PAGE_WORD_RE = re.compile(r"[\s_]+(page|p)[\s_]*\d+$", re.IGNORECASE)

_BRACKETED_RE = re.compile(r"\s*[\(\[\{][^\)\]\}]*[\)\]\}]\s*")
_STANDALONE_KEY_RE = re.compile(r"(?:^|\s)[a-g][#b]?m?(?=\s|$)")
_TRAILING_DASH_NUM_RE = re.compile(r"\s*-\s*\d+\s*$")
_TRAILING_NUM_RE = re.compile(r"\s*\d+\s*$")

_KEY_RE = re.compile(r"^([A-G])([#b♯♭]?)(m?)$", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Low-level helpers
# ---------------------------------------------------------------------------


def _normalise_unicode(text: str) -> str:
    text = unicodedata.normalize("NFC", text)
    text = text.replace("‘", "'").replace("’", "'")
    text = text.replace("“", '"').replace("”", '"')
    text = text.replace("–", "-").replace("—", "-")
    return text


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def basic_clean(text: str | None) -> str:
    """Light-weight clean for raw user messages.

    * normalises unicode (NFC keeps Hangul syllables composed)
    * collapses whitespace
    * truncates excessively long inputs
    """
    if text is None:
        return ""
    if not isinstance(text, str):
        text = str(text)
    if len(text) > MAX_INPUT_CHARS:
        text = text[:MAX_INPUT_CHARS]
    text = _normalise_unicode(text)
    return _WS_RE.sub(" ", text).strip()


def normalize_korean(text: str | None) -> str:
    if not text:
        return ""
    return _WS_RE.sub("", unicodedata.normalize("NFC", text)).lower()


def similarity(a: str | None, b: str | None) -> float:
    """Similarity between two titles on their canonical form.

    1.0 when identical, 0.9 when one contains the other, otherwise the
    normalised Levenshtein similarity (0.0 when nothing lines up).
    """
    s1 = normalize_korean(a)
    s2 = normalize_korean(b)
    if s1 == s2:
        return 1.0
    if not s1 or not s2:
        return 0.0
    if s1 in s2 or s2 in s1:
        return 0.9
    return float(Levenshtein.normalized_similarity(s1, s2))


def base_filename(filename: str | None) -> str:
    """
    Strip extensions and page markers so every page of one upload maps to
    the same identifier:

      "Holy_Forever_1.jpg"                     -> "holy_forever"
      "Holy Forever (2).jpg"                   -> "holy forever"
      "TalkMedia_i_54d97c7950f2 2.jpeg.jpeg"   -> "talkmedia_i_54d97c7950f2"
      "grace_page2.png"                        -> "grace"

    A number glued to the stem ("song2.jpg") is part of the name, not a page.
    """
    base = (filename or "").strip().lower()
    base = _IMAGE_EXT_RE.sub("", base)
    base = _PAGE_WORD_RE.sub("", base)
    base = _PAGE_SUFFIX_RE.sub("", base)
    return base.strip()


def normalize_title_for_dedup(title: str | None) -> str:
    """Core title used to spot re-uploads ("거룩하신 어린양 E" == "거룩하신 어린양")."""
    if not title:
        return ""
    norm = unicodedata.normalize("NFC", title).lower().strip()
    norm = _BRACKETED_RE.sub(" ", norm)
    norm = _STANDALONE_KEY_RE.sub(" ", norm)
    norm = _TRAILING_DASH_NUM_RE.sub("", norm)
    norm = _TRAILING_NUM_RE.sub("", norm)
    norm = _WS_RE.sub(" ", norm).strip()

    # OCR often repeats a word ("holy holy forever")
    words: List[str] = []
    for word in norm.split(" "):
        if not words or words[-1] != word:
            words.append(word)

    significant = [w for w in words if len(w) >= 2][: config.DEDUP_TITLE_TOKENS]
    return " ".join(significant)


def canonical_key(raw: str | None) -> Optional[str]:
    """'bb' -> 'Bb', 'f#M' -> 'F#m', 'AM' -> 'Am'; None when not a key."""
    if not raw:
        return None
    m = _KEY_RE.match(raw.strip())
    if not m:
        return None
    root, accidental, minor = m.groups()
    accidental = {"♯": "#", "♭": "b"}.get(accidental, accidental.lower())
    return f"{root.upper()}{accidental}{'m' if minor else ''}"


def split_keys(key_field: str | None) -> List[str]:
    """'D, B' -> ['D', 'B']; empty tokens dropped, order kept, duplicates removed."""
    if not key_field:
        return []
    out: List[str] = []
    for token in key_field.split(","):
        token = token.strip()
        if token and token not in out:
            out.append(token)
    return out


def key_matches(key_field: str | None, requested: str | None) -> bool:
    """
    True when any comma-separated token of `key_field` is the requested key.
    Slash chords ("B/D#") match on either side. Case-insensitive, so "D"
    never matches "Dm" or "D#".
    """
    if not key_field or not requested:
        return False
    want = requested.strip().upper()
    for token in split_keys(key_field):
        tok = token.upper()
        if tok == want or want in tok.split("/"):
            return True
    return False
