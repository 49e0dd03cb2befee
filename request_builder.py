"""Query construction and language direction helpers."""

from __future__ import annotations

import re
import urllib.parse
from dataclasses import dataclass


PROTOCOL_VERSION = "1.0"
LATIN_THRESHOLD = 40  # Percent of A-Z/a-z characters above which text counts as roman.

_LATIN_CHARACTER = re.compile(r"[A-Za-z]")


@dataclass(frozen=True)
class LanguagePair:
    """Ordered (source, target) language codes."""

    source: str
    target: str

    def __post_init__(self) -> None:
        for name in ("source", "target"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"Language pair {name} must be a non-empty string")

    @property
    def langpair(self) -> str:
        return f"{self.source}|{self.target}"

    def reversed(self) -> "LanguagePair":
        return LanguagePair(self.target, self.source)

    def __str__(self) -> str:
        return f"{self.source}->{self.target}"


@dataclass(frozen=True)
class TranslationRequest:
    text: str
    pair: LanguagePair
    version: str = PROTOCOL_VERSION

    def query(self) -> str:
        return build_query(self.text, self.pair.source, self.pair.target, version=self.version)


def build_query(text: str, source: str, target: str, *, version: str = PROTOCOL_VERSION) -> str:
    """Return ``v=<version>&q=<text>&langpair=<source>|<target>``.

    The text is percent-encoded as UTF-8 with no safe characters, so spaces
    become ``%20`` and ``&``, ``=``, ``|`` and ``/`` cannot leak into the query
    structure. The language codes are written as given.
    """

    encoded = urllib.parse.quote(text, safe="", encoding="utf-8")
    return f"v={version}&q={encoded}&langpair={source}|{target}"


def latin_percentage(text: str) -> int:
    if not text:
        return 0
    return len(_LATIN_CHARACTER.findall(text)) * 100 // len(text)


def choose_direction(text: str, roman_language: str, non_roman_language: str) -> LanguagePair:
    """Guess the translation direction from how much of ``text`` is basic Latin.

    Text with more than 40% ``A-Za-z`` characters is translated from
    ``roman_language`` to ``non_roman_language``; anything else goes the other
    way. Empty text has no signal and defaults to the roman direction.
    """

    pair = LanguagePair(roman_language, non_roman_language)
    if not text:
        return pair
    if latin_percentage(text) > LATIN_THRESHOLD:
        return pair
    return pair.reversed()
