"""Decode the escape markers the translation service leaves in its JSON payload."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence


@dataclass(frozen=True)
class EscapeRule:
    pattern: str
    replacement: str

    def apply(self, text: str) -> str:
        return text.replace(self.pattern, self.replacement)


# Applied in order. The backslash rule must stay last: the earlier patterns all
# start with a backslash and would no longer match once it is stripped.
ESCAPE_RULES: tuple[EscapeRule, ...] = (
    EscapeRule("\\u003c", "<"),
    EscapeRule("\\u003e", ">"),
    EscapeRule("\\u0026#39;", "'"),
    EscapeRule("\\u003d", "="),
    EscapeRule("\\u0026quot;", '"'),
    EscapeRule("\\u0026amp;", "&"),
    EscapeRule("\\", ""),
)


def decode_escapes(raw: str, rules: Sequence[EscapeRule] = ESCAPE_RULES) -> str:
    """Return ``raw`` with every escape marker replaced by its literal character."""

    text = raw
    for rule in rules:
        text = rule.apply(text)
    return text
