#!/usr/bin/env python3
"""Tests for the structured-text parser and data store."""

import sys
import tempfile
import unittest
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from odbpanel.errors import InvalidKeyError, ParseFailure, StructuredTextError
from odbpanel.structured_text import (
    StructuredTextParser, parse_structured_text,
)
from odbpanel.utils import fmt, parse_float, parse_int


STEPHDR = (
    "UNITS=INCH\n"
    "X_DATUM=0.5\n"
    "Y_DATUM=0.25\n"
    "\n"
    "# panel layout\n"
    "STEP-REPEAT {\n"
    "   NAME=PCB\n"
    "   X=1.0\n"
    "   NX=2\n"
    "   MIRROR=NO\n"
    "}\n"
    "STEP-REPEAT {\n"
    "   NAME=COUPON\n"
    "   X=7.5\n"
    "   NX=1\n"
    "   MIRROR=YES\n"
    "}\n"
)


class TestUtils(unittest.TestCase):
    """Test utility functions."""

    def test_fmt(self):
        self.assertEqual(fmt(1.0), "1")
        self.assertEqual(fmt(1.5), "1.5")
        self.assertEqual(fmt(1.123456), "1.123456")
        self.assertEqual(fmt(-0.0000001), "0")

    def test_lenient_numbers(self):
        self.assertEqual(parse_float("2.5"), 2.5)
        self.assertEqual(parse_float("abc"), 0.0)
        self.assertEqual(parse_int("3"), 3)
        self.assertEqual(parse_int("3.0"), 3)
        self.assertEqual(parse_int(""), 0)


class TestStructuredText(unittest.TestCase):

    def setUp(self):
        self.parser = StructuredTextParser()

    def test_root_keys(self):
        store = self.parser.parse_text(STEPHDR)
        self.assertEqual(store.get("UNITS"), "INCH")
        self.assertAlmostEqual(store.get_float("x_datum"), 0.5)
        self.assertIn("Y_DATUM", store)

    def test_blocks_keep_order(self):
        store = self.parser.parse_text(STEPHDR)
        blocks = store.get_blocks_by_key("step-repeat")
        self.assertEqual([b.get("NAME") for b in blocks], ["PCB", "COUPON"])
        self.assertEqual(blocks[0].get_int("NX"), 2)
        self.assertFalse(blocks[0].get_bool("MIRROR"))
        self.assertTrue(blocks[1].get_bool("MIRROR"))
        self.assertEqual(blocks[0].line_no, 6)

    def test_absent_block_name_is_empty(self):
        store = self.parser.parse_text(STEPHDR)
        self.assertEqual(store.get_blocks_by_key("LAYER"), [])

    def test_block_key_order(self):
        store = self.parser.parse_text(STEPHDR)
        block = store.get_blocks_by_key("STEP-REPEAT")[0]
        self.assertEqual(block.keys(), ["NAME", "X", "NX", "MIRROR"])

    def test_repeated_key_last_value_wins(self):
        store = self.parser.parse_text("A=1\nB=2\nA=3\n")
        self.assertEqual(store.get("A"), "3")
        self.assertEqual(store.keys(), ["A", "B"])

    def test_missing_key_raises(self):
        store = self.parser.parse_text(STEPHDR)
        with self.assertRaises(InvalidKeyError) as cm:
            store.get("TOP_ACTIVE")
        self.assertIsInstance(cm.exception, KeyError)
        block = store.get_blocks_by_key("STEP-REPEAT")[0]
        with self.assertRaises(InvalidKeyError) as cm:
            block.get_float("DY")
        self.assertIn("STEP-REPEAT", str(cm.exception))

    def test_find_returns_default(self):
        store = self.parser.parse_text(STEPHDR)
        self.assertIsNone(store.find("TOP_ACTIVE"))
        self.assertEqual(store.find("TOP_ACTIVE", "0"), "0")

    def test_bare_block_name(self):
        store = self.parser.parse_text("STEP\n{\nNAME=pcb\n}\n")
        self.assertEqual(store.get_blocks_by_key("STEP")[0].get("NAME"), "pcb")

    def test_value_keeps_equals_sign(self):
        store = self.parser.parse_text("ATTR=a=b\n")
        self.assertEqual(store.get("ATTR"), "a=b")

    def test_nested_block_fails(self):
        with self.assertRaises(StructuredTextError) as cm:
            self.parser.parse_text("A {\nB {\n}\n}\n")
        self.assertEqual(cm.exception.line_no, 2)

    def test_unbalanced_close_fails(self):
        with self.assertRaises(StructuredTextError):
            self.parser.parse_text("A=1\n}\n")

    def test_unclosed_block_fails(self):
        with self.assertRaises(StructuredTextError):
            self.parser.parse_text("STEP {\nNAME=pcb\n")

    def test_garbage_line_fails(self):
        with self.assertRaises(ParseFailure):
            self.parser.parse_text("STEP {\nthis is not a key\n}\n")

    def test_parse_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "stephdr"
            path.write_text(STEPHDR)
            store = parse_structured_text(path)
            self.assertEqual(store.path, path)
            self.assertEqual(store.block_names(), ["STEP-REPEAT"])

    def test_unreadable_file_fails(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            with self.assertRaises(StructuredTextError):
                parse_structured_text(Path(tmpdir) / "missing")


if __name__ == "__main__":
    unittest.main()
