"""Typed containers shared across pipeline modules."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from .config import MIN_SEARCH_TERM_CHARS


class SearchValidationError(ValueError):
    """Malformed input rejected before any search work is done."""


class MatchKind(str, Enum):
    """Retrieval adapter that produced a hit. Declaration order is the fusion order."""

    EXACT = "exact"
    BM25 = "bm25"
    NORMALIZED = "normalized"
    ALIAS = "alias"
    FUZZY = "fuzzy"
    VECTOR = "vector"
    OCR = "ocr"
    KEY = "key"  # key-list path, not fused


FUSED_KINDS: Tuple[MatchKind, ...] = (
    MatchKind.EXACT,
    MatchKind.BM25,
    MatchKind.NORMALIZED,
    MatchKind.ALIAS,
    MatchKind.FUZZY,
    MatchKind.VECTOR,
    MatchKind.OCR,
)


class IntentKind(str, Enum):
    KEY_LIST = "key_list"
    SPECIFIC_SONG = "specific_song"
    AMBIGUOUS = "ambiguous"


class OutcomeStatus(str, Enum):
    NOT_FOUND = "not_found"
    NEEDS_KEY_SELECTION = "needs_key_selection"
    RESULTS = "results"


@dataclass(frozen=True)
class SearchCandidate:
    """One raw hit (one sheet image) returned by a retrieval adapter."""

    id: str
    title: Optional[str] = None
    title_korean: Optional[str] = None
    title_english: Optional[str] = None
    song_key: Optional[str] = None
    image_url: str = ""
    ocr_text: str = ""
    original_filename: str = ""
    song_group_id: Optional[str] = None
    page_number: Optional[int] = None

    @property
    def titles(self) -> List[str]:
        return [t for t in (self.title, self.title_korean, self.title_english) if t]


@dataclass
class RankedCandidate:
    """A candidate after fusion; `rerank_score` is set once a rerank stage accepts it."""

    candidate: SearchCandidate
    fused_score: float
    matched: Tuple[MatchKind, ...]
    rerank_score: Optional[float] = None

    @property
    def id(self) -> str:
        return self.candidate.id

    @property
    def score(self) -> float:
        return self.rerank_score if self.rerank_score is not None else self.fused_score

    @property
    def match_kind(self) -> Optional[MatchKind]:
        return self.matched[0] if self.matched else None


@dataclass(frozen=True)
class QueryIntent:
    kind: IntentKind
    search_terms: str
    requested_key: Optional[str] = None
    requested_count: Optional[int] = None
    needs_assist: bool = False

    @property
    def is_key_list(self) -> bool:
        return self.kind is IntentKind.KEY_LIST

    @property
    def is_specific_song(self) -> bool:
        return self.kind is IntentKind.SPECIFIC_SONG

    @property
    def is_too_vague(self) -> bool:
        return not self.is_key_list and len(self.search_terms) < MIN_SEARCH_TERM_CHARS


@dataclass
class SongGroup:
    """A logical song: the pages of one uploaded sheet."""

    title: str
    pages: List[RankedCandidate] = field(default_factory=list)
    available_keys: List[str] = field(default_factory=list)
    selected_key: Optional[str] = None

    @property
    def id(self) -> str:
        return self.pages[0].id if self.pages else ""

    @property
    def total_pages(self) -> int:
        return len(self.pages)

    @property
    def best_score(self) -> float:
        return max((p.score for p in self.pages), default=0.0)

    @property
    def page_ids(self) -> List[str]:
        return [p.id for p in self.pages]


@dataclass
class SearchOutcome:
    """What the core hands to the response assembler."""

    intent: QueryIntent
    status: OutcomeStatus
    groups: List[SongGroup]
    available_keys: List[str] = field(default_factory=list)
    language: str = "en"
    raw_count: int = 0
    grouped_count: int = 0
