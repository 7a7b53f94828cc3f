from __future__ import annotations

"""Shared vocabularies used by the query classifier and the responder.

Korean fillers are split by how safely they can be removed: request verbs
and sheet nouns are stripped even when glued to the end of a title token
("위대하신주악보"), short words only when they stand alone ("지키" keeps
its 키).
"""

# ---------------------------------------------------------------------------
# Clean search terms
# ---------------------------------------------------------------------------

# Stripped as whole tokens or token suffixes
KOREAN_REQUEST_SUFFIXES = [
    "찾아주세요",
    "보여주세요",
    "알려주세요",
    "찾아줘요",
    "찾아줘",
    "보여줘",
    "알려줘",
    "찾아",
    "주세요",
    "해줘",
    "줘",
]

KOREAN_SHEET_NOUNS = [
    "악보",
    "코드",
    "가사",
]

# Stripped only as whole tokens
KOREAN_STANDALONE_FILLERS = [
    "키",
    "좀",
]

ENGLISH_FILLERS = [
    "find",
    "search",
    "show",
    "give",
    "me",
    "please",
    "sheet",
    "sheets",
    "chord",
    "chords",
    "lyrics",
    "key",
]

# ---------------------------------------------------------------------------
# Key-list requests: what may surround "<key>코드" and still mean "list songs"
# ---------------------------------------------------------------------------

KEY_LIST_NOUNS_KO = [
    "찬양리스트",
    "리스트",
    "찬양",
    "목록",
    "노래",
    "추천",
    "곡",
    "장",
]

KEY_LIST_PARTICLES_KO = [
    "으로",
    "로",
    "된",
    "인",
    "의",
    "에",
    "있는",
    "모든",
    "전부",
    "다",
]

KEY_LIST_WORDS_EN = [
    "songs",
    "song",
    "list",
    "in",
    "of",
    "the",
    "all",
    "some",
    "for",
    "a",
    "with",
    "any",
    "top",
]

# ---------------------------------------------------------------------------
# Responder / classifier markers
# ---------------------------------------------------------------------------

# The user wants help rather than another search
HELP_MARKERS_KO = ["다시", "아니", "틀렸", "다른", "도움", "뭐가", "왜", "어떻게", "설명"]
HELP_MARKERS_EN = ["wrong", "not", "help", "different", "why", "how", "explain", "again"]

# A request for one particular sheet
SPECIFIC_SONG_MARKERS = [
    r"악보\s*찾",
    r"찾아\s*줘",
    r"악보",
    r"find\s*sheet",
    r"chord\s*sheet",
]

OCR_TITLE_SKIP_PATTERNS = [
    r"^key",
    r"^키",
    r"^capo",
    r"^\d+$",
    r"^[A-G][#b]?m?$",
]
