import re
from typing import Optional

from . import config
from .constants import OCR_TITLE_SKIP_PATTERNS

COUNT_PATTERNS = [
    r"(\d+)\s*개",
    r"(\d+)\s*곡",
    r"(\d+)\s*장",
    r"(\d+)\s*(?:songs?|sheets?|results?)\b",
    r"\btop\s*(\d+)",
]

_HANGUL_RE = re.compile(r"[ㄱ-ㅎㅏ-ㅣ가-힣]")
_OCR_SKIP = [re.compile(p, re.IGNORECASE) for p in OCR_TITLE_SKIP_PATTERNS]


def extract_requested_count(text: str) -> Optional[int]:
    """
    Parse how many songs the user asked for, clamped to the allowed range.
    Examples:
      'G키 찬양 5개' -> 5, 'top 3 songs in key of A' -> 3, '30곡' -> 20
    """
    if not text:
        return None
    t = text.lower()
    for pat in COUNT_PATTERNS:
        m = re.search(pat, t)
        if m:
            n = int(m.group(1))
            return min(max(n, config.REQUESTED_COUNT_MIN), config.REQUESTED_COUNT_MAX)
    return None


def strip_count_phrases(text: str) -> str:
    out = text
    for pat in COUNT_PATTERNS:
        out = re.sub(pat, " ", out, flags=re.IGNORECASE)
    return re.sub(r"\s+", " ", out).strip()


def is_korean_message(text: str) -> bool:
    if not text:
        return False
    hangul = len(_HANGUL_RE.findall(text))
    return hangul > len(text) * config.KOREAN_RATIO_THRESHOLD


def resolve_language(text: str, hint: Optional[str] = None) -> str:
    """Explicit 'ko' / 'en' hint wins; otherwise detect from the message."""
    if hint in ("ko", "en"):
        return hint
    return "ko" if is_korean_message(text) else "en"


def extract_song_title(ocr_text: Optional[str]) -> str:
    """First meaningful OCR line, used when a sheet has no clean title."""
    if not ocr_text:
        return ""
    lines = [ln.strip() for ln in ocr_text.split("\n") if ln.strip()]
    for line in lines:
        if len(line) < 2 or len(line) > 50:
            continue
        if any(p.search(line) for p in _OCR_SKIP):
            continue
        return re.sub(r"[^\w\s가-힣]", "", line.lower()).strip()
    return lines[0].lower()[:30] if lines else ""
