"""Language catalogue and identifier canonicalisation."""
from __future__ import annotations

from typing import Dict, List

LANGUAGE_OPTIONS: List[Dict[str, str]] = [
    {"code": "en", "name": "English"},
    {"code": "es", "name": "Spanish"},
    {"code": "fr", "name": "French"},
    {"code": "de", "name": "German"},
    {"code": "it", "name": "Italian"},
    {"code": "pt", "name": "Portuguese"},
    {"code": "ru", "name": "Russian"},
    {"code": "zh", "name": "Chinese"},
    {"code": "ja", "name": "Japanese"},
    {"code": "ko", "name": "Korean"},
    {"code": "ar", "name": "Arabic"},
    {"code": "vi", "name": "Vietnamese"},
]

_BY_CODE = {option["code"]: option["name"] for option in LANGUAGE_OPTIONS}
_BY_NAME = {option["name"].casefold(): option["name"] for option in LANGUAGE_OPTIONS}


def language_name(language: str) -> str:
    """Return the display name for a code or name.

    Region suffixes are ignored (``es-ES`` -> ``Spanish``). Unknown identifiers
    are returned stripped so callers may still use custom languages.
    """

    cleaned = language.strip()
    lowered = cleaned.casefold()
    if lowered in _BY_NAME:
        return _BY_NAME[lowered]
    base = lowered.replace("_", "-").split("-")[0]
    return _BY_CODE.get(base, cleaned)


def language_key(language: str) -> str:
    """Key used to compare languages for equality."""
    return language_name(language).casefold()
