"""
Tests for phiwallet_core.logging_config — formatters and phrase redaction.
"""

from __future__ import annotations

import json
import logging
import sys
import unittest

from conftest import MNEMONIC_12, MNEMONIC_24
from phiwallet_core.logging_config import (
    REDACTED,
    PhraseRedactingFilter,
    _HumanFormatter,
    _JSONFormatter,
    redact_phrases,
    setup_logging,
)


def _record(msg: str, *args) -> logging.LogRecord:
    return logging.LogRecord("phiwallet_test", logging.INFO, __file__, 1, msg, args, None)


class TestRedaction(unittest.TestCase):

    def test_phrases_masked(self):
        self.assertEqual(redact_phrases(f"phrase: {MNEMONIC_12}"), f"phrase: {REDACTED}")
        self.assertNotIn("abandon", redact_phrases(MNEMONIC_24))

    def test_ordinary_text_untouched(self):
        text = "Broadcast accepted: ABC123 for cosmos1xyz"
        self.assertEqual(redact_phrases(text), text)

    def test_exception_text_masked(self):
        try:
            raise ValueError(f"bad phrase {MNEMONIC_12}")
        except ValueError:
            record = logging.LogRecord(
                "phiwallet_test", logging.ERROR, __file__, 1, "import failed", None, sys.exc_info()
            )
        for formatter in (_JSONFormatter(), _HumanFormatter()):
            output = formatter.format(record)
            self.assertNotIn("abandon", output)
            self.assertIn(REDACTED, output)

    def test_filter_rewrites_args(self):
        record = _record("imported: %s", MNEMONIC_12)
        self.assertTrue(PhraseRedactingFilter().filter(record))
        self.assertEqual(record.getMessage(), f"imported: {REDACTED}")


class TestSetupLogging(unittest.TestCase):

    def tearDown(self):
        logging.getLogger().handlers.clear()

    def test_handlers_carry_filter(self):
        setup_logging(level="DEBUG", fmt="json")
        root = logging.getLogger()
        self.assertEqual(root.level, logging.DEBUG)
        self.assertEqual(len(root.handlers), 1)
        self.assertTrue(any(isinstance(f, PhraseRedactingFilter) for f in root.handlers[0].filters))
        self.assertIsInstance(root.handlers[0].formatter, _JSONFormatter)

    def test_file_handler(self):
        import tempfile
        with tempfile.TemporaryDirectory() as tmp:
            path = f"{tmp}/logs/phiwallet.log"
            setup_logging(level="INFO", log_file=path)
            logging.getLogger("phiwallet_test").info(f"secret: {MNEMONIC_12}")
            for handler in logging.getLogger().handlers:
                handler.flush()
            with open(path, encoding="utf-8") as f:
                line = json.loads(f.readline())
            for handler in logging.getLogger().handlers:
                handler.close()
        self.assertEqual(line["msg"], f"secret: {REDACTED}")
        self.assertEqual(line["logger"], "phiwallet_test")

    def test_unknown_level_defaults_to_info(self):
        setup_logging(level="chatty")
        self.assertEqual(logging.getLogger().level, logging.INFO)


if __name__ == "__main__":
    unittest.main()
