import json
import os
import tempfile
import unittest
from pathlib import Path

from agentviz.parsers.jsonl import JsonlTailer, filter_by_type, parse_line, read_records


def _line(record: dict) -> str:
    return json.dumps(record) + "\n"


class ParseLineTests(unittest.TestCase):
    def test_object_line(self) -> None:
        result = parse_line(b'{"type": "session.start"}\n')
        self.assertTrue(result.ok)
        self.assertEqual(result.record, {"type": "session.start"})

    def test_skips_carry_a_reason(self) -> None:
        cases = {
            b"not json": "malformed json",
            b"42": "not a json object",
            b"[1, 2]": "not a json object",
            b"   ": "blank",
            b"\xff\xfe{}": "invalid utf-8",
        }
        for line, reason in cases.items():
            with self.subTest(line=line):
                result = parse_line(line)
                self.assertFalse(result.ok)
                self.assertTrue(result.skip_reason.startswith(reason))


class JsonlTailerTests(unittest.TestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.path = Path(tmpdir.name) / "session.jsonl"

    def _append(self, text: str) -> None:
        with open(self.path, "a", encoding="utf-8") as fh:
            fh.write(text)

    def test_reads_only_appended_records(self) -> None:
        self._append("".join(_line({"id": str(i)}) for i in range(3)))
        tailer = JsonlTailer(self.path)
        self.assertEqual([r["id"] for r in tailer.read_new()], ["0", "1", "2"])

        self._append("".join(_line({"id": str(i)}) for i in range(3, 5)))
        self.assertEqual([r["id"] for r in tailer.read_new()], ["3", "4"])
        self.assertEqual(tailer.read_new(), [])
        self.assertEqual(tailer.position, self.path.stat().st_size)

    def test_partial_line_is_withheld_until_terminated(self) -> None:
        self._append(_line({"id": "a"}) + '{"id": "b"')
        tailer = JsonlTailer(self.path)
        self.assertEqual([r["id"] for r in tailer.read_new()], ["a"])
        self.assertEqual(tailer.read_new(), [])

        self._append("}\n")
        self.assertEqual([r["id"] for r in tailer.read_new()], ["b"])
        self.assertEqual(tailer.read_new(), [])

    def test_truncation_resets_to_start(self) -> None:
        self._append("".join(_line({"id": str(i)}) for i in range(5)))
        tailer = JsonlTailer(self.path)
        self.assertEqual(len(tailer.read_new()), 5)

        self.path.write_text(_line({"id": "fresh"}), encoding="utf-8")
        self.assertEqual([r["id"] for r in tailer.read_new()], ["fresh"])

    def test_replaced_file_is_read_from_start(self) -> None:
        self._append(_line({"id": "old-1"}) + _line({"id": "old-2"}))
        tailer = JsonlTailer(self.path)
        tailer.read_new()

        replacement = self.path.with_name("replacement.jsonl")
        replacement.write_text(
            "".join(_line({"id": f"new-{i}"}) for i in range(4)), encoding="utf-8"
        )
        os.replace(replacement, self.path)
        self.assertEqual([r["id"] for r in tailer.read_new()], [f"new-{i}" for i in range(4)])

    def test_malformed_lines_do_not_block_later_lines(self) -> None:
        self._append(_line({"id": "1"}) + "{broken\n" + "7\n" + "\n" + _line({"id": "2"}))
        tailer = JsonlTailer(self.path)
        with self.assertLogs("agentviz.tailer", level="WARNING") as logs:
            records = tailer.read_new()
        self.assertEqual([r["id"] for r in records], ["1", "2"])
        self.assertEqual(len(logs.records), 2)

    def test_missing_file_yields_nothing(self) -> None:
        tailer = JsonlTailer(self.path)
        self.assertEqual(tailer.read_new(), [])
        self._append(_line({"id": "late"}))
        self.assertEqual([r["id"] for r in tailer.read_new()], ["late"])

    def test_read_all_rereads_from_start(self) -> None:
        self._append(_line({"id": "1"}) + _line({"id": "2"}))
        tailer = JsonlTailer(self.path)
        tailer.read_new()
        self.assertEqual(len(tailer.read_all()), 2)
        tailer.reset()
        self.assertEqual(tailer.position, 0)


class ReadRecordsTests(unittest.TestCase):
    def test_whole_file_includes_unterminated_tail(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        path = Path(tmpdir.name) / "s.jsonl"
        path.write_text(
            '{"type": "session.start"}\n{"type": "tool.execution_start"}', encoding="utf-8"
        )
        records = read_records(path)
        self.assertEqual(len(records), 2)
        self.assertEqual(filter_by_type(records, "tool.execution_start"), [records[1]])
        self.assertEqual(read_records(Path(tmpdir.name) / "missing.jsonl"), [])


if __name__ == "__main__":
    unittest.main()
