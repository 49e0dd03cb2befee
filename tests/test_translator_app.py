import asyncio
import io
import logging
import unittest
import unittest.mock as mock
from contextlib import redirect_stderr, redirect_stdout

import translator_app
from request_builder import LanguagePair
from translation_service import ConnectionFailure, GTranslateClient, RequestTooLarge, TranslationResult
from translator_app import (
    ConsoleSink,
    GTranslateApp,
    Settings,
    WindowSink,
    apply_overrides,
    parse_args,
    settings_from_preferences,
)


OK_RESPONSE = (
    b"HTTP/1.1 200 OK\r\n\r\n"
    b'{"responseData": {"translatedText":"Tom \\u0026amp; Jerry"}, "responseStatus": 200}'
)


class FakeClipboard:
    def __init__(self, text: str = "") -> None:
        self.text = text

    def paste(self) -> str:
        return self.text


class FakeTranslator:
    def __init__(self, translated: str = "こんにちは") -> None:
        self.calls = []
        self.translated = translated

    def translate(self, text: str, src=None, dest=None, sink=None):
        self.calls.append((text, src, dest))
        if sink is not None:
            sink.write(self.translated)
            sink.present()
        return TranslationResult(text=self.translated, pair=LanguagePair(src, dest))


class ErroringTranslator:
    def __init__(self, error: Exception) -> None:
        self.error = error

    def translate(self, text: str, src=None, dest=None, sink=None):
        if sink is not None:
            sink.discard()
        raise self.error


class CannedConnection:
    def __init__(self, response: bytes) -> None:
        self.response = response

    async def __call__(self, host, port, ssl=None):
        reader = asyncio.StreamReader()
        reader.feed_data(self.response)
        reader.feed_eof()

        class Writer:
            def write(self, data):
                pass

            async def drain(self):
                pass

            def close(self):
                pass

            async def wait_closed(self):
                pass

        return reader, Writer()


def _test_logger() -> logging.Logger:
    logger = logging.getLogger("gtranslate.tests")
    logger.addHandler(logging.NullHandler())
    logger.propagate = False
    return logger


class GTranslateAppTestMixin:
    def _create_app(self, **overrides) -> GTranslateApp:
        self.sinks = []
        self.errors = []

        def sink_factory(name, original):
            sink = ConsoleSink(name, original)
            self.sinks.append(sink)
            return sink

        defaults = dict(
            translator_factory=lambda settings: FakeTranslator(),
            clipboard_module=FakeClipboard("hello"),
            sink_factory=sink_factory,
            error_callback=self.errors.append,
            logger=_test_logger(),
        )
        settings = overrides.pop("settings", Settings())
        defaults.update(overrides)
        return GTranslateApp(settings, **defaults)


class GTranslateAppTests(GTranslateAppTestMixin, unittest.TestCase):
    def test_translate_presents_through_named_sink(self) -> None:
        translator = FakeTranslator(translated="bonjour")
        app = self._create_app(
            translator_factory=lambda settings: translator,
            settings=Settings(buffer_name="*gt-output*"),
        )

        buffer = io.StringIO()
        with redirect_stdout(buffer):
            result = app.translate("hello", LanguagePair("en", "fr"))

        self.assertEqual(result, "bonjour")
        self.assertEqual(translator.calls, [("hello", "en", "fr")])
        self.assertEqual(buffer.getvalue(), "bonjour\n")
        self.assertEqual(len(self.sinks), 1)
        self.assertEqual(self.sinks[0].name, "*gt-output*")
        self.assertEqual(self.sinks[0].original, "hello")
        self.assertEqual(self.sinks[0].presented, 1)
        self.assertEqual(self.errors, [])

    def test_session_drives_sink_end_to_end(self) -> None:
        app = self._create_app(
            translator_factory=lambda settings: GTranslateClient(connection_factory=CannedConnection(OK_RESPONSE))
        )

        buffer = io.StringIO()
        with redirect_stdout(buffer):
            result = app.translate("Tom and Jerry", LanguagePair("en", "fr"))

        self.assertEqual(result, "Tom & Jerry")
        self.assertEqual(buffer.getvalue(), "Tom & Jerry\n")
        self.assertEqual(self.sinks[0].presented, 1)

    def test_too_large_response_discards_sink_without_output(self) -> None:
        response = b"HTTP/1.1 414 Request-URI Too Large\r\n\r\n"
        app = self._create_app(
            translator_factory=lambda settings: GTranslateClient(connection_factory=CannedConnection(response))
        )

        buffer = io.StringIO()
        with redirect_stdout(buffer):
            result = app.translate("x" * 5000, LanguagePair("en", "fr"))

        self.assertIsNone(result)
        self.assertEqual(buffer.getvalue(), "")
        self.assertIsNone(self.sinks[0].text)
        self.assertEqual(self.sinks[0].presented, 0)
        self.assertEqual(self.errors, ["Text too long to translate"])

    def test_translator_is_created_once_from_settings(self) -> None:
        created = []

        def factory(settings):
            created.append(settings)
            return FakeTranslator()

        settings = Settings(port=8080)
        app = self._create_app(translator_factory=factory, settings=settings)
        with redirect_stdout(io.StringIO()):
            app.translate("a", LanguagePair("en", "fr"))
            app.translate("b", LanguagePair("en", "fr"))

        self.assertEqual(created, [settings])

    def test_request_too_large_is_reported_as_text_too_long(self) -> None:
        app = self._create_app(translator_factory=lambda settings: ErroringTranslator(RequestTooLarge("boom")))

        self.assertIsNone(app.translate("hello", LanguagePair("en", "fr")))

        self.assertEqual(self.errors, ["Text too long to translate"])
        self.assertEqual(self.sinks[0].presented, 0)

    def test_other_errors_are_reported(self) -> None:
        app = self._create_app(
            translator_factory=lambda settings: ErroringTranslator(ConnectionFailure("refused"))
        )

        self.assertIsNone(app.translate("hello", LanguagePair("en", "fr")))

        self.assertEqual(self.errors, ["Error during translation: refused"])

    def test_resolve_pair_auto_uses_direction_heuristic(self) -> None:
        app = self._create_app(settings=Settings(roman_language="fr", non_roman_language="ja"))

        self.assertEqual(app.resolve_pair("Bonjour tout le monde", auto=True), LanguagePair("fr", "ja"))
        self.assertEqual(app.resolve_pair("こんにちは", auto=True), LanguagePair("ja", "fr"))

    def test_resolve_pair_fills_missing_codes_from_settings(self) -> None:
        app = self._create_app()

        self.assertEqual(app.resolve_pair("x"), LanguagePair("en", "ja"))
        self.assertEqual(app.resolve_pair("x", "de", None), LanguagePair("de", "ja"))
        self.assertEqual(app.resolve_pair("x", None, "fr"), LanguagePair("en", "fr"))

    def test_read_clipboard_strips_text(self) -> None:
        app = self._create_app(clipboard_module=FakeClipboard("  copied text \n"))
        self.assertEqual(app.read_clipboard(), "copied text")

    def test_read_clipboard_failure_is_reported(self) -> None:
        clipboard = mock.Mock()
        clipboard.paste.side_effect = RuntimeError("no clipboard")
        app = self._create_app(clipboard_module=clipboard)

        self.assertIsNone(app.read_clipboard())
        self.assertEqual(self.errors, ["Unexpected error while accessing clipboard: no clipboard"])

    def test_missing_clipboard_module_raises(self) -> None:
        app = self._create_app(clipboard_module=None)
        with self.assertRaises(RuntimeError):
            app.read_clipboard()


class SinkTests(unittest.TestCase):
    def test_console_sink_prints_only_when_presented(self) -> None:
        sink = ConsoleSink("*translated*", "hello")
        buffer = io.StringIO()
        with redirect_stdout(buffer):
            sink.write("bonjour")
            self.assertEqual(buffer.getvalue(), "")
            sink.present()
        self.assertEqual(buffer.getvalue(), "bonjour\n")

    def test_console_sink_prints_nothing_after_discard(self) -> None:
        sink = ConsoleSink()
        buffer = io.StringIO()
        with redirect_stdout(buffer):
            sink.write("bonjour")
            sink.discard()
            sink.present()
        self.assertEqual(buffer.getvalue(), "")

    def test_window_sink_opens_window_titled_with_name(self) -> None:
        sink = WindowSink("*gt*", "hello")
        sink.write("bonjour")
        with mock.patch("translator_app.TranslationWindow") as window_cls:
            sink.present()

        window_cls.assert_called_once_with("*gt*")
        window_cls.return_value.show.assert_called_once_with("hello", "bonjour")


class SettingsTests(unittest.TestCase):
    def test_invalid_preferences_fall_back_to_defaults(self) -> None:
        settings = settings_from_preferences(
            {"port": "80", "use_tls": "yes", "timeout": -1, "buffer_name": "   ", "host": 3}
        )
        self.assertEqual(settings, Settings())

    def test_valid_preferences_are_used(self) -> None:
        settings = settings_from_preferences(
            {
                "port": 8080,
                "use_tls": True,
                "timeout": None,
                "buffer_name": "*gt*",
                "roman_language": "fr",
            }
        )
        self.assertEqual(settings.port, 8080)
        self.assertTrue(settings.use_tls)
        self.assertIsNone(settings.timeout)
        self.assertEqual(settings.buffer_name, "*gt*")
        self.assertEqual(settings.roman_language, "fr")

    def test_boolean_port_is_rejected(self) -> None:
        self.assertEqual(settings_from_preferences({"port": True}).port, 80)

    def test_command_line_overrides_settings(self) -> None:
        args = parse_args(["hello", "--port", "8000", "--buffer", "*out*", "--tls"])
        settings = apply_overrides(Settings(timeout=3.0), args)

        self.assertEqual(settings.port, 8000)
        self.assertEqual(settings.buffer_name, "*out*")
        self.assertTrue(settings.use_tls)
        self.assertEqual(settings.timeout, 3.0)

    def test_command_line_timeout_must_be_positive(self) -> None:
        for value in ("0", "-2", "soon"):
            with self.subTest(value=value):
                with redirect_stderr(io.StringIO()):
                    with self.assertRaises(SystemExit):
                        parse_args(["hello", "--timeout", value])
        self.assertEqual(parse_args(["hello", "--timeout", "2.5"]).timeout, 2.5)


class MainTests(unittest.TestCase):
    def setUp(self) -> None:
        self.translator = FakeTranslator(translated="bonjour")
        patches = [
            mock.patch("translator_app._load_settings", return_value=Settings()),
            mock.patch("translator_app._get_logger", return_value=_test_logger()),
            mock.patch("translator_app.GTranslateClient", return_value=self.translator),
        ]
        for patcher in patches:
            patcher.start()
            self.addCleanup(patcher.stop)

    def test_main_translates_command_line_text(self) -> None:
        buffer = io.StringIO()
        with redirect_stdout(buffer):
            status = translator_app.main(["hello", "world", "--from", "en", "--to", "fr"])

        self.assertEqual(status, 0)
        self.assertEqual(buffer.getvalue(), "bonjour\n")
        self.assertEqual(self.translator.calls, [("hello world", "en", "fr")])

    def test_main_auto_direction(self) -> None:
        with redirect_stdout(io.StringIO()):
            translator_app.main(["こんにちは", "--auto", "--roman", "fr"])

        self.assertEqual(self.translator.calls, [("こんにちは", "ja", "fr")])

    def test_main_window_mode_presents_in_window(self) -> None:
        with mock.patch("translator_app.TranslationWindow") as window_cls:
            status = translator_app.main(["hello", "--window", "--buffer", "*gt*"])

        self.assertEqual(status, 0)
        window_cls.assert_called_once_with("*gt*")
        window_cls.return_value.show.assert_called_once_with("hello", "bonjour")

    def test_main_reports_failures_with_exit_status(self) -> None:
        with mock.patch("translator_app.GTranslateClient", return_value=ErroringTranslator(RequestTooLarge("x"))):
            stderr = io.StringIO()
            with mock.patch("sys.stderr", stderr):
                status = translator_app.main(["hello"])

        self.assertEqual(status, 1)
        self.assertIn("Text too long to translate", stderr.getvalue())

    def test_main_with_empty_clipboard(self) -> None:
        stderr = io.StringIO()
        with mock.patch("translator_app.pyperclip", FakeClipboard("")):
            with mock.patch("sys.stderr", stderr):
                status = translator_app.main([])

        self.assertEqual(status, 1)
        self.assertIn("Nothing to translate.", stderr.getvalue())
        self.assertEqual(self.translator.calls, [])

    def test_main_reports_clipboard_failure(self) -> None:
        clipboard = mock.Mock()
        clipboard.paste.side_effect = RuntimeError("display unavailable")
        stderr = io.StringIO()
        with mock.patch("translator_app.pyperclip", clipboard):
            with mock.patch("sys.stderr", stderr):
                status = translator_app.main([])

        self.assertEqual(status, 1)
        self.assertIn("Unexpected error while accessing clipboard: display unavailable", stderr.getvalue())
        self.assertNotIn("Nothing to translate.", stderr.getvalue())
        self.assertEqual(self.translator.calls, [])


if __name__ == "__main__":  # pragma: no cover - allows direct execution
    unittest.main()
