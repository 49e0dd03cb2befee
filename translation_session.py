"""Single request/response exchange with the translation web API."""

from __future__ import annotations

import asyncio
import contextlib
import enum
import json
import logging
import re
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, Tuple

from escape_decoder import decode_escapes
from request_builder import LanguagePair, TranslationRequest


DEFAULT_HOST = "ajax.googleapis.com"
DEFAULT_PORT = 80
DEFAULT_PATH = "/ajax/services/language/translate"
DEFAULT_TIMEOUT = 10.0
DEFAULT_USER_AGENT = "gtranslate/0.1"
DEFAULT_BUFFER_NAME = "*translated*"
READ_CHUNK_SIZE = 4096

TOO_LARGE_MARKERS = (b"Request-URI Too Large", b"Request-URI Too Long", b"URI Too Long")

_STATUS_414 = re.compile(rb"^HTTP/\d(?:\.\d)? 414\b")
_STATUS_LINE = re.compile(rb"^HTTP/\d(?:\.\d)? (\d{3})\b")
_TRANSLATED_TEXT = re.compile(r'"translatedText"\s*:\s*"((?:[^"\\]|\\.)*)"', re.DOTALL)

_logger = logging.getLogger("gtranslate.session")


class TranslationError(RuntimeError):
    """Raised when the translation service cannot complete a request."""


class RequestTooLarge(TranslationError):
    """The request exceeded the service's URI length limit."""


class UnparseableResponse(TranslationError):
    """The connection closed without a recognizable translation."""


class ConnectionFailure(TranslationError):
    """The service could not be reached or dropped the connection."""


class TranslationTimeout(TranslationError):
    """The exchange did not finish within the configured timeout."""


class SessionState(enum.Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    SENDING = "sending"
    AWAITING_RESPONSE = "awaiting_response"
    FILTERING = "filtering"
    COMPLETE = "complete"
    FAILED = "failed"


class OutputSink(Protocol):  # pragma: no cover - protocol is for type checking only
    def write(self, text: str) -> None:
        """Replace the sink content with ``text``."""

    def discard(self) -> None:
        """Drop any content written so far."""

    def present(self) -> None:
        """Expose the content to the user."""


class BufferSink:
    """In-memory output target."""

    def __init__(self, name: str = DEFAULT_BUFFER_NAME) -> None:
        self.name = name
        self.text: Optional[str] = None
        self.presented = 0

    def write(self, text: str) -> None:
        self.text = text

    def discard(self) -> None:
        self.text = None

    def present(self) -> None:
        self.presented += 1


ConnectionFactory = Callable[..., Awaitable[Tuple[asyncio.StreamReader, asyncio.StreamWriter]]]


def split_response(raw: bytes) -> Tuple[str, Dict[str, str], bytes]:
    """Split a raw HTTP response into status line, lower-cased headers and body.

    Data without a header block is returned as the body. Chunked transfer
    encoding is removed from the body.
    """

    head, separator, body = raw.partition(b"\r\n\r\n")
    if not separator:
        return "", {}, raw

    lines = head.decode("iso-8859-1").split("\r\n")
    headers: Dict[str, str] = {}
    for line in lines[1:]:
        name, _, value = line.partition(":")
        headers[name.strip().lower()] = value.strip()

    if "chunked" in headers.get("transfer-encoding", "").lower():
        body = _dechunk(body)
    return lines[0], headers, body


def _dechunk(body: bytes) -> bytes:
    decoded = bytearray()
    position = 0
    while True:
        line_end = body.find(b"\r\n", position)
        if line_end == -1:
            break
        size_field = body[position:line_end].split(b";", 1)[0].strip()
        try:
            size = int(size_field, 16)
        except ValueError:
            break
        if size == 0:
            break
        start = line_end + 2
        decoded.extend(body[start:start + size])
        position = start + size + 2
    return bytes(decoded)


def extract_translated_text(body: str) -> str:
    """Return the decoded ``translatedText`` value found in ``body``."""

    match = _TRANSLATED_TEXT.search(body)
    if match is None:
        raise UnparseableResponse(_describe_missing_translation(body))
    return decode_escapes(match.group(1))


def _describe_missing_translation(body: str) -> str:
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        return "Response did not contain a translatedText field"
    if not isinstance(data, dict):
        return "Response did not contain a translatedText field"
    details = data.get("responseDetails") or "no details given"
    status = data.get("responseStatus")
    if status is None:
        return f"Service returned no translation: {details}"
    return f"Service returned no translation (status {status}): {details}"


class TranslationSession:
    """Drive one translation exchange from connect to presentation.

    The session connects, sends a GET request, accumulates the response until
    the server closes the connection and then writes the decoded translation to
    ``sink``. ``sink.present()`` runs once, after the connection is closed. On
    failure the sink is discarded and a :class:`TranslationError` is raised.
    A session runs a single exchange.
    """

    def __init__(
        self,
        sink: OutputSink,
        *,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        path: str = DEFAULT_PATH,
        use_tls: bool = False,
        timeout: Optional[float] = DEFAULT_TIMEOUT,
        user_agent: str = DEFAULT_USER_AGENT,
        connection_factory: Optional[ConnectionFactory] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.sink = sink
        self.host = host
        self.port = port
        self.path = path
        self.use_tls = use_tls
        self.timeout = timeout
        self.user_agent = user_agent
        self._connection_factory = connection_factory or asyncio.open_connection
        self._logger = logger or _logger
        self.state = SessionState.IDLE
        self.history: List[SessionState] = [SessionState.IDLE]
        self._buffer = bytearray()
        self._writer: Optional[asyncio.StreamWriter] = None
        self._task: Optional["asyncio.Task[str]"] = None

    @property
    def response(self) -> bytes:
        return bytes(self._buffer)

    def start(self, text: str, pair: LanguagePair) -> "asyncio.Task[str]":
        """Schedule the exchange and return the task that completes with the translation."""

        if self._task is not None:
            raise RuntimeError("A translation session can only run once")
        self._task = asyncio.ensure_future(self.run(text, pair))
        return self._task

    async def run(self, text: str, pair: LanguagePair) -> str:
        if self.state is not SessionState.IDLE:
            raise RuntimeError("A translation session can only run once")

        request = TranslationRequest(text, pair)
        self._transition(SessionState.CONNECTING)
        try:
            if self.timeout is None:
                return await self._exchange(request)
            return await asyncio.wait_for(self._exchange(request), self.timeout)
        except asyncio.TimeoutError as exc:
            error = TranslationTimeout(f"Translation request timed out after {self.timeout} seconds")
            self._fail(error)
            raise error from exc
        except TranslationError as exc:
            self._fail(exc)
            raise
        except asyncio.CancelledError:
            self._fail("cancelled")
            raise
        finally:
            await self._close()

    def build_request(self, request: TranslationRequest) -> bytes:
        host = self.host
        if self.port != (443 if self.use_tls else 80):
            host = f"{self.host}:{self.port}"
        lines = [
            f"GET {self.path}?{request.query()} HTTP/1.1",
            f"User-Agent: {self.user_agent}",
            f"Host: {host}",
            "Connection: close",
            "Accept-Encoding: identity",
        ]
        return ("\r\n".join(lines) + "\r\n\r\n").encode("utf-8")

    async def _exchange(self, request: TranslationRequest) -> str:
        try:
            reader, self._writer = await self._connection_factory(
                self.host, self.port, ssl=True if self.use_tls else None
            )
        except OSError as exc:
            raise ConnectionFailure(f"Could not connect to {self.host}:{self.port}: {exc}") from exc

        self._transition(SessionState.SENDING)
        try:
            self._writer.write(self.build_request(request))
            await self._writer.drain()
            self._transition(SessionState.AWAITING_RESPONSE)
            while True:
                chunk = await reader.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                self._buffer.extend(chunk)
                if self._is_too_large():
                    raise RequestTooLarge("Text too long to translate")
        except OSError as exc:
            raise ConnectionFailure(f"Connection to {self.host}:{self.port} failed: {exc}") from exc

        await self._close()
        self._transition(SessionState.FILTERING)
        _, _, body = split_response(self.response)
        translated = extract_translated_text(body.decode("utf-8", errors="replace"))
        self.sink.write(translated)
        self._transition(SessionState.COMPLETE)
        self.sink.present()
        return translated

    def _is_too_large(self) -> bool:
        if _STATUS_414.match(self._buffer):
            return True
        # Successful responses may quote the marker texts inside the translation.
        status = _STATUS_LINE.match(self._buffer)
        if status is not None and status.group(1).startswith(b"2"):
            return False
        if b'"translatedText"' in self._buffer:
            return False
        return any(marker in self._buffer for marker in TOO_LARGE_MARKERS)

    def _transition(self, state: SessionState) -> None:
        self._logger.debug("Session %s -> %s", self.state.value, state.value)
        self.state = state
        self.history.append(state)

    def _fail(self, reason: object) -> None:
        if self.state is SessionState.FAILED:
            return
        self._transition(SessionState.FAILED)
        self.sink.discard()
        self._logger.warning("Translation failed: %s", reason)

    async def _close(self) -> None:
        writer = self._writer
        if writer is None:
            return
        self._writer = None
        writer.close()
        with contextlib.suppress(OSError):
            await writer.wait_closed()
