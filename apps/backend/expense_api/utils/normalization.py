"""
정규화 유틸리티 함수

메모/메시지 텍스트를 정규화하여 반복 규칙 매칭 정확도를 높입니다.
"""

import re
import unicodedata


# 업데이트 의도를 나타내는 표현 (베트남어 성조 제거 후 / 영어)
RECURRING_UPDATE_MARKERS = (
    "cap nhat",
    "update",
    "thay doi",
    "change",
    "dieu chinh",
    "chinh sua",
    "chinh lai",
    "adjust",
    "doi lich",
    "doi ngay",
)

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")
_WHITESPACE_RE = re.compile(r"\s+")


def strip_diacritics(value: str) -> str:
    """
    성조/발음 부호 제거

    Example:
        >>> strip_diacritics("Cập nhật tiền điện")
        "Cap nhat tien dien"
    """
    decomposed = unicodedata.normalize("NFD", value)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.replace("đ", "d").replace("Đ", "D")


def normalize_text(value: str | None) -> str:
    """
    매칭용 텍스트 정규화

    - 성조 제거 (đ → d)
    - 소문자 변환
    - 영숫자 외 문자는 공백으로
    - 연속 공백 축소

    Example:
        >>> normalize_text("  Grab   Taxi -> Sân bay! ")
        "grab taxi san bay"
    """
    if not value:
        return ""
    normalized = strip_diacritics(value).lower()
    normalized = _NON_ALNUM_RE.sub(" ", normalized)
    return _WHITESPACE_RE.sub(" ", normalized).strip()


def detect_update_intent(message: str | None) -> bool:
    """Return True when the message carries a lexical "update my rule" cue."""
    normalized = normalize_text(message)
    if not normalized:
        return False
    return any(marker in normalized for marker in RECURRING_UPDATE_MARKERS)


def extract_note_tokens(note: str | None) -> list[str]:
    """
    메모 토큰 추출

    정규화 후 업데이트 키워드를 제거하고, 순서를 유지한 채 중복을 제거합니다.

    Example:
        >>> extract_note_tokens("Cập nhật grab taxi grab")
        ["grab", "taxi"]
    """
    normalized = normalize_text(note)
    if not normalized:
        return []

    for marker in RECURRING_UPDATE_MARKERS:
        normalized = normalized.replace(marker, " ")

    tokens = [token for token in _WHITESPACE_RE.split(normalized) if token]
    return list(dict.fromkeys(tokens))
