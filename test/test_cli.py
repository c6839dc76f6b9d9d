#!/usr/bin/env python3
"""Tests for the odbpanel JSON report command."""

import io
import json
import sys
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from odbpanel.panel_to_json import main

from test_step_repeat import OdbFixture, step_repeat


class TestCli(OdbFixture, unittest.TestCase):

    def _run(self, *argv):
        out, err = io.StringIO(), io.StringIO()
        with redirect_stdout(out), redirect_stderr(err):
            code = main([str(a) for a in argv])
        return code, out.getvalue(), err.getvalue()

    def test_json_report(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = self._create_sample_odb(
                Path(tmpdir), panel_repeats=step_repeat("pcb", dx=2, nx=2))
            code, out, _ = self._run(root, "-s", "panel", "-l", "top")
            self.assertEqual(code, 0)
            result = json.loads(out)
            for key in ("step", "bounding_rect", "symbols", "repeats",
                        "counts", "own_counts", "report"):
                self.assertIn(key, result, f"Missing key: {key}")
            self.assertEqual(result["step"], "panel")
            self.assertEqual(result["repeats"], 2)
            self.assertEqual(result["symbols"], 1)
            self.assertEqual(result["total_symbols"], 7)
            self.assertEqual(result["counts"]["pos_pad"], {"r10": 4})
            self.assertEqual(result["own_counts"]["pos_pad"], {})
            self.assertEqual(len(result["bounding_rect"]), 4)

    def test_defaults_to_first_step_and_board_layer(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = self._create_sample_odb(Path(tmpdir))
            code, out, _ = self._run(root, "--no-step-repeat")
            self.assertEqual(code, 0)
            result = json.loads(out)
            self.assertEqual(result["step"], "panel")
            self.assertEqual(result["path"], "steps/panel/layers/top/features")
            self.assertFalse(result["step_repeat"])

    def test_list_steps(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = self._create_sample_odb(Path(tmpdir))
            code, out, _ = self._run(root, "--list-steps")
            self.assertEqual(code, 0)
            self.assertIn("  panel", out)
            self.assertIn("  pcb", out)

    def test_list_layers(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = self._create_sample_odb(Path(tmpdir))
            code, out, _ = self._run(root, "--list-layers")
            self.assertEqual(code, 0)
            self.assertIn("top (signal, board)", out)

    def test_missing_input(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            code, out, err = self._run(Path(tmpdir) / "nope.tgz")
            self.assertEqual(code, 1)
            self.assertEqual(out, "")
            self.assertIn("not found", err)

    def test_missing_layer(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = self._create_sample_odb(Path(tmpdir))
            code, _, err = self._run(root, "-s", "pcb", "-l", "bottom")
            self.assertEqual(code, 1)
            self.assertIn("no features", err)


if __name__ == "__main__":
    unittest.main()
