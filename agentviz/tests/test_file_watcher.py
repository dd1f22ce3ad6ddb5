import asyncio
import tempfile
import unittest
from pathlib import Path

from watchfiles import Change

from agentviz.db.file_watcher import FileWatcher


async def _noop(changes) -> None:
    return None


class ClassifyChangesTests(unittest.TestCase):
    def setUp(self) -> None:
        self.watcher = FileWatcher("test", Path("/tmp"), _noop, path_filter=lambda p: p.suffix == ".jsonl")

    def test_filters_and_classifies(self) -> None:
        changes = {
            (Change.added, "/logs/a.jsonl"),
            (Change.modified, "/logs/b.jsonl"),
            (Change.deleted, "/logs/c.jsonl"),
            (Change.modified, "/logs/notes.md"),
        }
        self.assertEqual(
            self.watcher._classify_changes(changes),
            [
                ("modified", Path("/logs/a.jsonl")),
                ("modified", Path("/logs/b.jsonl")),
                ("deleted", Path("/logs/c.jsonl")),
            ],
        )

    def test_recreated_file_counts_as_modified(self) -> None:
        changes = {(Change.deleted, "/logs/a.jsonl"), (Change.added, "/logs/a.jsonl")}
        self.assertEqual(self.watcher._classify_changes(changes), [("modified", Path("/logs/a.jsonl"))])


class FileWatcherLifecycleTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.root = Path(tmpdir.name)

    async def test_missing_directory_raises(self) -> None:
        watcher = FileWatcher("test", self.root / "absent", _noop)
        with self.assertRaises(FileNotFoundError):
            await watcher.start()
        self.assertFalse(watcher.is_running)

    async def test_delivers_changes_until_stopped(self) -> None:
        received: list = []
        seen = asyncio.Event()

        async def on_change(changes) -> None:
            received.extend(changes)
            seen.set()

        watcher = FileWatcher("test", self.root, on_change, path_filter=lambda p: p.suffix == ".jsonl", debounce_ms=50)
        await watcher.start()
        self.assertTrue(watcher.is_running)
        try:
            target = self.root / "session.jsonl"
            for i in range(25):
                (self.root / "ignored.txt").write_text(str(i), encoding="utf-8")
                with open(target, "a", encoding="utf-8") as fh:
                    fh.write("{}\n")
                try:
                    await asyncio.wait_for(seen.wait(), timeout=0.2)
                    break
                except asyncio.TimeoutError:
                    continue
        finally:
            await watcher.stop()

        self.assertTrue(seen.is_set())
        self.assertTrue(all(path.suffix == ".jsonl" for _, path in received))
        self.assertFalse(watcher.is_running)

    async def _trigger(self, entered: asyncio.Event) -> None:
        target = self.root / "session.jsonl"
        for _ in range(25):
            with open(target, "a", encoding="utf-8") as fh:
                fh.write("{}\n")
            try:
                await asyncio.wait_for(entered.wait(), timeout=0.2)
                return
            except asyncio.TimeoutError:
                continue
        self.fail("watcher never delivered a change")

    async def test_stop_lets_running_callback_finish(self) -> None:
        entered = asyncio.Event()
        release = asyncio.Event()
        finished: list = []

        async def slow(changes) -> None:
            entered.set()
            await release.wait()
            finished.append(changes)

        watcher = FileWatcher("test", self.root, slow, debounce_ms=50)
        await watcher.start()
        try:
            await self._trigger(entered)
            stopping = asyncio.create_task(watcher.stop())
            await asyncio.sleep(0.1)
            self.assertFalse(stopping.done())
            release.set()
            await stopping
        finally:
            release.set()
            await watcher.stop()

        self.assertEqual(len(finished), 1)
        self.assertFalse(watcher.is_running)

    async def test_stop_cancels_callback_after_timeout(self) -> None:
        entered = asyncio.Event()

        async def stuck(changes) -> None:
            entered.set()
            await asyncio.Event().wait()

        watcher = FileWatcher("test", self.root, stuck, debounce_ms=50, stop_timeout=0.1)
        await watcher.start()
        try:
            await self._trigger(entered)
        finally:
            with self.assertLogs("agentviz.watcher", level="WARNING"):
                await watcher.stop()
        self.assertFalse(watcher.is_running)


if __name__ == "__main__":
    unittest.main()
