"""Command line utility to translate text via the Google AJAX language API."""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Protocol, Sequence

try:  # pragma: no cover - executed during module import
    import pyperclip  # type: ignore
except ImportError:  # pragma: no cover - handled when reading the clipboard
    pyperclip = None  # type: ignore

try:  # pragma: no cover - executed during module import
    import tkinter as tk
    from tkinter import scrolledtext, font as tkfont
except ImportError:  # pragma: no cover - handled when opening the window
    tk = None  # type: ignore
    scrolledtext = None  # type: ignore
    tkfont = None  # type: ignore

from logging.handlers import RotatingFileHandler

from request_builder import LanguagePair, choose_direction
from translation_service import GTranslateClient, RequestTooLarge, TranslationError, TranslationResult
from translation_session import (
    DEFAULT_BUFFER_NAME,
    DEFAULT_HOST,
    DEFAULT_PATH,
    DEFAULT_PORT,
    DEFAULT_TIMEOUT,
    DEFAULT_USER_AGENT,
    BufferSink,
    OutputSink,
)


LOG_FILE_NAME = "gtranslate.log"
LOG_MAX_BYTES = 2_097_152
LOG_BACKUP_COUNT = 3

PREFERENCES_FILE = Path.home() / ".gtranslate_preferences.json"

_CLIPBOARD_ERRORS = (pyperclip.PyperclipException,) if pyperclip is not None else ()


def _get_logger() -> logging.Logger:
    logger = logging.getLogger("gtranslate")
    if logger.handlers:
        return logger

    logger.setLevel(logging.INFO)
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")
    log_dir = PREFERENCES_FILE.parent
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            log_dir / LOG_FILE_NAME,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
    except OSError:
        pass
    else:
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    return logger


@dataclass(frozen=True)
class Settings:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    path: str = DEFAULT_PATH
    use_tls: bool = False
    timeout: Optional[float] = DEFAULT_TIMEOUT
    user_agent: str = DEFAULT_USER_AGENT
    buffer_name: str = DEFAULT_BUFFER_NAME
    roman_language: str = "en"
    non_roman_language: str = "ja"

    def to_preferences(self) -> dict:
        return dataclasses.asdict(self)


_STRING_SETTINGS = ("host", "path", "user_agent", "buffer_name", "roman_language", "non_roman_language")


def _load_preferences() -> dict:
    try:
        data = json.loads(PREFERENCES_FILE.read_text(encoding="utf-8"))
    except (FileNotFoundError, json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


def _save_preferences(preferences: dict) -> None:
    try:
        PREFERENCES_FILE.parent.mkdir(parents=True, exist_ok=True)
        PREFERENCES_FILE.write_text(json.dumps(preferences, indent=2, ensure_ascii=False), encoding="utf-8")
    except OSError:
        pass


def settings_from_preferences(data: dict) -> Settings:
    """Merge stored preferences over the defaults, ignoring invalid values."""

    values = {}
    for key in _STRING_SETTINGS:
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            values[key] = value.strip()

    port = data.get("port")
    if isinstance(port, int) and not isinstance(port, bool) and 0 < port < 65536:
        values["port"] = port

    use_tls = data.get("use_tls")
    if isinstance(use_tls, bool):
        values["use_tls"] = use_tls

    if "timeout" in data:
        timeout = data["timeout"]
        if timeout is None:
            values["timeout"] = None
        elif isinstance(timeout, (int, float)) and not isinstance(timeout, bool) and timeout > 0:
            values["timeout"] = float(timeout)

    return Settings(**values)


def _load_settings() -> Settings:
    return settings_from_preferences(_load_preferences())


def _save_settings(settings: Settings) -> None:
    data = _load_preferences()
    data.update(settings.to_preferences())
    _save_preferences(data)


class TranslatorProtocol(Protocol):  # pragma: no cover - protocol is for type checking only
    def translate(
        self, text: str, src: str, dest: str, sink: Optional[OutputSink] = None
    ) -> TranslationResult:
        """Translate text, present it through ``sink`` and return a result object."""


class TranslationWindow:
    """Tk window named after the display target that shows one translation."""

    def __init__(self, title: str) -> None:
        self.title = title

    def show(self, original: str, translated: str) -> None:
        if tk is None:
            raise RuntimeError("tkinter is required to display the translation window")

        window = tk.Tk()
        window.title(self.title)
        window.geometry("500x400")

        default_font = tkfont.nametofont("TkDefaultFont")
        preferred_families = (
            "Noto Sans",
            "Noto Sans CJK JP",
            "Arial",
            default_font.actual("family"),
        )
        available_families = {name.lower(): name for name in tkfont.families()}
        base_family = next(
            (available_families[f.lower()] for f in preferred_families if f.lower() in available_families),
            default_font.actual("family"),
        )
        label_font = tkfont.Font(family=base_family, size=10, weight="bold")
        text_font = tkfont.Font(family=base_family, size=12)

        content_pane = tk.PanedWindow(window, orient=tk.VERTICAL, sashwidth=6)
        content_pane.pack(fill=tk.BOTH, expand=True, padx=10, pady=10)

        for label, content in (("Original", original), ("Translated", translated)):
            frame = tk.Frame(content_pane)
            content_pane.add(frame, minsize=80)
            tk.Label(frame, text=label, font=label_font).pack(anchor="w", pady=(0, 4))
            box = scrolledtext.ScrolledText(frame, wrap=tk.WORD, height=8, font=text_font)
            box.insert(tk.END, content)
            box.configure(state=tk.DISABLED)
            box.pack(fill=tk.BOTH, expand=True)

        def handle_escape(event: "tk.Event") -> str:
            """Close the window when the Escape key is pressed."""

            window.destroy()
            return "break"

        window.bind("<Escape>", handle_escape)
        window.lift()
        window.focus_force()
        window.mainloop()


class ConsoleSink(BufferSink):
    """Prints the translation to stdout when the session presents it."""

    def __init__(self, name: str = DEFAULT_BUFFER_NAME, original: str = "") -> None:
        super().__init__(name)
        self.original = original

    def present(self) -> None:
        super().present()
        if self.text is not None:
            print(self.text)


class WindowSink(BufferSink):
    """Opens a :class:`TranslationWindow` titled with the sink name on presentation."""

    def __init__(self, name: str = DEFAULT_BUFFER_NAME, original: str = "") -> None:
        super().__init__(name)
        self.original = original

    def present(self) -> None:
        super().present()
        if self.text is not None:
            TranslationWindow(self.name).show(self.original, self.text)


class GTranslateApp:
    """Translates text given on the command line or found on the clipboard."""

    def __init__(
        self,
        settings: Settings,
        *,
        translator_factory: Optional[Callable[[Settings], TranslatorProtocol]] = None,
        clipboard_module=pyperclip,
        sink_factory: Optional[Callable[[str, str], OutputSink]] = None,
        error_callback: Optional[Callable[[str], None]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.settings = settings
        self._translator: Optional[TranslatorProtocol] = None
        self._translator_factory = translator_factory or self._default_translator_factory
        self._clipboard = clipboard_module
        self._sink_factory = sink_factory or ConsoleSink
        self._error_callback = error_callback
        self._logger = logger or _get_logger()

    @staticmethod
    def _default_translator_factory(settings: Settings) -> TranslatorProtocol:
        return GTranslateClient(
            settings.host,
            settings.port,
            settings.path,
            use_tls=settings.use_tls,
            timeout=settings.timeout,
            user_agent=settings.user_agent,
        )

    @property
    def translator(self) -> TranslatorProtocol:
        if self._translator is None:
            self._translator = self._translator_factory(self.settings)
        return self._translator

    def read_clipboard(self) -> Optional[str]:
        """Return the stripped clipboard text, or ``None`` after reporting a read failure."""

        if self._clipboard is None:
            raise RuntimeError(
                "The 'pyperclip' package is required. Install it with 'pip install pyperclip'."
            )
        try:
            text = self._clipboard.paste()
        except Exception as exc:
            if isinstance(exc, _CLIPBOARD_ERRORS):
                message = f"Failed to read clipboard: {exc}"
            else:
                message = f"Unexpected error while accessing clipboard: {exc}"
            self._report_error(message)
            return None
        return (text or "").strip()

    def resolve_pair(
        self,
        text: str,
        src: Optional[str] = None,
        dest: Optional[str] = None,
        *,
        auto: bool = False,
    ) -> LanguagePair:
        if auto:
            return choose_direction(text, self.settings.roman_language, self.settings.non_roman_language)
        return LanguagePair(
            src or self.settings.roman_language,
            dest or self.settings.non_roman_language,
        )

    def translate(self, text: str, pair: LanguagePair) -> Optional[str]:
        """Translate ``text`` into a sink named after the display target.

        The sink shows the result once the connection closes and is discarded
        on failure. Errors are reported, not raised.
        """

        self._logger.info("Translating %d characters %s", len(text), pair)
        sink = self._sink_factory(self.settings.buffer_name, text)
        try:
            result = self.translator.translate(text, src=pair.source, dest=pair.target, sink=sink)
        except RequestTooLarge:
            self._report_error("Text too long to translate")
            return None
        except TranslationError as exc:
            self._report_error(f"Error during translation: {exc}")
            return None

        return result.text

    def _report_error(self, message: str) -> None:
        self._logger.error(message)
        if self._error_callback is not None:
            self._error_callback(message)
        else:
            print(message, file=sys.stderr)


def _positive_float(value: str) -> float:
    try:
        number = float(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid number: {value!r}") from exc
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be greater than zero: {value!r}")
    return number


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Translate text with the Google AJAX language API.")
    parser.add_argument("text", nargs="*", help="Text to translate. Reads the clipboard when omitted.")
    parser.add_argument("--from", dest="src", default=None, help="Source language code.")
    parser.add_argument("--to", dest="dest", default=None, help="Destination language code.")
    parser.add_argument(
        "--auto",
        action="store_true",
        help="Pick the direction between the roman and non-roman languages from the text.",
    )
    parser.add_argument("--roman", default=None, help="Language used for mostly Latin text in --auto mode.")
    parser.add_argument("--non-roman", default=None, help="Language used for other text in --auto mode.")
    parser.add_argument("--window", action="store_true", help="Show the result in a window.")
    parser.add_argument("--buffer", default=None, help="Name of the display target.")
    parser.add_argument("--host", default=None, help="Translation service host.")
    parser.add_argument("--port", type=int, default=None, help="Translation service port.")
    parser.add_argument("--tls", action="store_true", default=None, help="Connect with TLS.")
    parser.add_argument("--timeout", type=_positive_float, default=None, help="Seconds to wait for the service.")
    parser.add_argument("--save", action="store_true", help="Store the given options as defaults.")
    parser.add_argument("--verbose", action="store_true", help="Log every session state change.")
    return parser.parse_args(argv)


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    overrides = {
        "host": args.host,
        "port": args.port,
        "use_tls": args.tls,
        "timeout": args.timeout,
        "buffer_name": args.buffer,
        "roman_language": args.roman,
        "non_roman_language": args.non_roman,
    }
    return dataclasses.replace(settings, **{k: v for k, v in overrides.items() if v is not None})


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    settings = apply_overrides(_load_settings(), args)
    if args.save:
        _save_settings(settings)

    logger = _get_logger()
    if args.verbose:
        console = logging.StreamHandler()
        console.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        logger.addHandler(console)
        logger.setLevel(logging.DEBUG)

    app = GTranslateApp(
        settings,
        clipboard_module=pyperclip,
        sink_factory=WindowSink if args.window else ConsoleSink,
        logger=logger,
    )
    text = " ".join(args.text) if args.text else app.read_clipboard()
    if text is None:
        return 1
    if not text:
        print("Nothing to translate.", file=sys.stderr)
        return 1

    try:
        pair = app.resolve_pair(text, args.src, args.dest, auto=args.auto)
    except ValueError as exc:
        print(f"Invalid language pair: {exc}", file=sys.stderr)
        return 1

    return 0 if app.translate(text, pair) is not None else 1


if __name__ == "__main__":
    sys.exit(main())
