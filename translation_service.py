"""Translation utilities for the gtranslate application."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional

from request_builder import LanguagePair, choose_direction
from translation_session import (
    DEFAULT_HOST,
    DEFAULT_PATH,
    DEFAULT_PORT,
    DEFAULT_TIMEOUT,
    DEFAULT_USER_AGENT,
    BufferSink,
    ConnectionFactory,
    ConnectionFailure,
    OutputSink,
    RequestTooLarge,
    TranslationError,
    TranslationSession,
    TranslationTimeout,
    UnparseableResponse,
)

__all__ = [
    "ConnectionFailure",
    "GTranslateClient",
    "RequestTooLarge",
    "TranslationError",
    "TranslationResult",
    "TranslationTimeout",
    "UnparseableResponse",
]


@dataclass
class TranslationResult:
    text: str
    pair: LanguagePair


class GTranslateClient:
    """Blocking client that runs one :class:`TranslationSession` per call."""

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        path: str = DEFAULT_PATH,
        *,
        use_tls: bool = False,
        timeout: Optional[float] = DEFAULT_TIMEOUT,
        user_agent: str = DEFAULT_USER_AGENT,
        connection_factory: Optional[ConnectionFactory] = None,
    ) -> None:
        self.host = host
        self.port = port
        self.path = path
        self.use_tls = use_tls
        self.timeout = timeout
        self.user_agent = user_agent
        self._connection_factory = connection_factory

    def create_session(self, sink: OutputSink) -> TranslationSession:
        return TranslationSession(
            sink,
            host=self.host,
            port=self.port,
            path=self.path,
            use_tls=self.use_tls,
            timeout=self.timeout,
            user_agent=self.user_agent,
            connection_factory=self._connection_factory,
        )

    def translate(
        self, text: str, src: str, dest: str, sink: Optional[OutputSink] = None
    ) -> TranslationResult:
        """Translate ``text``, writing and presenting the result through ``sink``.

        Without a sink the result is only returned.
        """

        try:
            pair = LanguagePair(src, dest)
        except ValueError as exc:
            raise TranslationError(str(exc)) from exc

        session = self.create_session(sink if sink is not None else BufferSink())
        translated = asyncio.run(session.run(text, pair))
        return TranslationResult(text=translated, pair=pair)

    def translate_auto(
        self,
        text: str,
        roman_language: str,
        non_roman_language: str,
        sink: Optional[OutputSink] = None,
    ) -> TranslationResult:
        """Translate ``text`` in the direction suggested by its share of Latin letters."""

        try:
            pair = choose_direction(text, roman_language, non_roman_language)
        except ValueError as exc:
            raise TranslationError(str(exc)) from exc
        return self.translate(text, pair.source, pair.target, sink=sink)
