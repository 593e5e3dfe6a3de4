import json
import os
import tempfile
import unittest
from io import StringIO
from unittest.mock import patch

import cli

TREE = {
    "name": "A",
    "kind": "max",
    "children": [
        {
            "name": "B",
            "kind": "chance",
            "children": [
                {"name": "C", "kind": "min", "value": 4, "probability": 60},
                {"name": "D", "kind": "min", "value": 10, "probability": 40},
            ],
        }
    ],
}


class TestCLI(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)

    def _write(self, payload, name="tree.json"):
        path = os.path.join(self._tmp.name, name)
        with open(path, "w", encoding="utf-8") as handle:
            if isinstance(payload, str):
                handle.write(payload)
            else:
                json.dump(payload, handle)
        return path

    def _run(self, argv):
        out = StringIO()
        err = StringIO()
        with patch("sys.stdout", new=out), patch("sys.stderr", new=err):
            rc = cli.main(argv)
        return rc, out.getvalue(), err.getvalue()

    def test_prints_table_and_value(self):
        rc, out, _err = self._run([self._write(TREE)])
        self.assertEqual(rc, 0)
        lines = out.splitlines()
        self.assertEqual(lines[0], "ExpectiMinimax")
        self.assertTrue(lines[1].startswith("call"))
        self.assertIn("[6.4]", out)
        self.assertIn("Value: 6.4", out)

    def test_json_output(self):
        rc, out, _err = self._run([self._write(TREE), "--json", "--dl", "--id", "--depth", "2"])
        self.assertEqual(rc, 0)
        payload = json.loads(out)
        self.assertEqual(payload["name"], "IDDLEM")
        self.assertEqual(payload["columns"], ["call", "open", "value", "best action,value"])
        # Two passes of three rows each, separated by a blank row.
        self.assertEqual(len(payload["rows"]), 7)
        self.assertEqual(payload["rows"][3], ["", "", "", ""])
        self.assertEqual(payload["rows"][4][0], "DLM(A,2)")
        self.assertAlmostEqual(payload["value"], 6.4)
        self.assertIsNone(payload["error"])

    def test_bounds_columns_with_star1(self):
        argv = [self._write(TREE), "--ab", "--cp", "--lower", "-10", "--upper", "10", "--json"]
        rc, out, _err = self._run(argv)
        self.assertEqual(rc, 0)
        payload = json.loads(out)
        self.assertEqual(payload["name"], "*1CExpectiMinimax")
        self.assertIn("LB,UB", payload["columns"])
        self.assertEqual(payload["rows"][0][0], "Minimax(A,-10,10)")

    def test_events_flag_prints_telemetry(self):
        rc, out, _err = self._run([self._write(TREE), "--events"])
        self.assertEqual(rc, 0)
        self.assertIn("trace_start {", out)
        self.assertIn("trace_end {", out)

    def test_cp_requires_ab(self):
        rc, out, _err = self._run([self._write(TREE), "--cp"])
        self.assertEqual(rc, 2)
        self.assertIn("--cp requires --ab", out)

    def test_rejects_negative_depth(self):
        rc, _out, _err = self._run([self._write(TREE), "--depth", "-1"])
        self.assertEqual(rc, 2)

    def test_rejects_inverted_bounds(self):
        rc, _out, _err = self._run([self._write(TREE), "--ab", "--lower", "5", "--upper", "1"])
        self.assertEqual(rc, 2)

    def test_invalid_tree_file(self):
        bad_kind = dict(TREE, kind="maybe")
        rc, out, _err = self._run([self._write(bad_kind)])
        self.assertEqual(rc, 2)
        self.assertIn("invalid tree", out)

        rc, out, _err = self._run([self._write("{not json", name="broken.json")])
        self.assertEqual(rc, 2)
        self.assertIn("invalid JSON", out)

        rc, out, _err = self._run([os.path.join(self._tmp.name, "missing.json")])
        self.assertEqual(rc, 2)
        self.assertIn("cannot read tree", out)

    def test_structural_mismatch_exit_code(self):
        chance_root = dict(TREE["children"][0])
        rc, out, err = self._run([self._write(chance_root)])
        self.assertEqual(rc, 1)
        self.assertNotIn("Value:", out)
        self.assertIn("Trace failed", err)

    def test_reads_stdin(self):
        with patch("sys.stdin", new=StringIO(json.dumps(TREE))):
            rc, out, _err = self._run(["-"])
        self.assertEqual(rc, 0)
        self.assertIn("Value: 6.4", out)


if __name__ == "__main__":
    unittest.main()
