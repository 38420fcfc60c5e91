"""
Utils 패키지
"""

from .normalization import detect_update_intent, extract_note_tokens, normalize_text

__all__ = [
    "detect_update_intent",
    "extract_note_tokens",
    "normalize_text",
]
