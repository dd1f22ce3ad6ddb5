import asyncio
import unittest

import aiosqlite

from agentviz.db.connection import apply_pragmas
from agentviz.db.errors import IntegrityViolation
from agentviz.db.event_store import EventStore
from agentviz.db.sqlite_migrations import run_migrations
from agentviz.models import ActivityEvent, LauncherMetadata


def _event(session_id: str, source_id: str | None, **fields) -> ActivityEvent:
    base = {
        "session_id": session_id,
        "copilot_event_id": source_id,
        "timestamp": "2024-01-01T10:00:00.000Z",
        "event_type": "tool_start",
        "status": "running",
    }
    base.update(fields)
    return ActivityEvent(**base)


class EventStoreTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await aiosqlite.connect(":memory:")
        await apply_pragmas(self.db)
        await run_migrations(self.db)
        self.store = EventStore(self.db)
        await self.store.create_session(
            {"id": "S-1", "project_dir": "/home/user/project", "spawned_at": "2024-01-01T09:59:00Z"}
        )

    async def asyncTearDown(self) -> None:
        await self.store.close()

    async def test_migrations_are_idempotent(self) -> None:
        await run_migrations(self.db)
        self.assertTrue(await self.store.health_check())

    async def test_create_session_twice_returns_original(self) -> None:
        again = await self.store.create_session(
            {"id": "S-1", "project_dir": "/changed", "spawned_at": "2030-01-01T00:00:00Z"}
        )
        self.assertEqual(again["project_dir"], "/home/user/project")
        self.assertEqual(again["spawned_at"], "2024-01-01T09:59:00Z")
        self.assertEqual(len(await self.store.list_sessions()), 1)

    async def test_create_session_from_launcher_metadata(self) -> None:
        metadata = LauncherMetadata(
            session_id="S-2", project_dir="/p", spawned_at="2024-01-02T00:00:00Z", importance="high"
        )
        row = await self.store.create_session(metadata)
        self.assertEqual(row["id"], "S-2")
        self.assertEqual(row["importance"], "high")
        self.assertEqual(row["status"], "running")
        self.assertEqual(row["correlation_attempts"], 0)

    async def test_update_session_coalesces_and_keeps_spawned_at(self) -> None:
        row = await self.store.update_session(
            "S-1", status="correlation_failed", pid=None, spawned_at="2030-01-01T00:00:00Z"
        )
        self.assertEqual(row["status"], "correlation_failed")
        self.assertEqual(row["spawned_at"], "2024-01-01T09:59:00Z")
        self.assertEqual(row["project_dir"], "/home/user/project")

        row = await self.store.update_session("S-1", status="running", copilot_session_id="cp-1")
        self.assertEqual(row["status"], "running")
        self.assertEqual(row["copilot_session_id"], "cp-1")
        self.assertIsNone(await self.store.update_session("missing", status="running"))

    async def test_list_sessions_filters_and_orders(self) -> None:
        await self.store.create_session({"id": "S-2", "spawned_at": "2024-01-03T00:00:00Z", "importance": "high"})
        await self.store.create_session({"id": "S-3", "spawned_at": "2024-01-02T00:00:00Z", "status": "completed"})
        self.assertEqual([s["id"] for s in await self.store.list_sessions()], ["S-2", "S-3", "S-1"])
        self.assertEqual([s["id"] for s in await self.store.list_sessions(status="completed")], ["S-3"])
        self.assertEqual([s["id"] for s in await self.store.list_sessions(importance="high")], ["S-2"])
        self.assertEqual(
            [s["id"] for s in await self.store.list_sessions(project_dir="/home/user/project")], ["S-1"]
        )

    async def test_batch_of_thousand_events(self) -> None:
        events = [
            _event("S-1", f"evt-{i}", timestamp=f"2024-01-01T10:{i // 60 % 60:02d}:{i % 60:02d}.000Z")
            for i in range(1000)
        ]
        self.assertEqual(await self.store.insert_events(events), 1000)
        self.assertEqual(await self.store.count_events("S-1"), 1000)

    async def test_duplicate_source_id_stored_once(self) -> None:
        self.assertTrue(await self.store.insert_event(_event("S-1", "evt-1")))

    async def test_cancelled_batch_is_not_committed_by_a_later_write(self) -> None:
        await self.store.create_session({"id": "S-2", "spawned_at": "2024-01-02T00:00:00Z"})
        batch = [_event("S-1", f"evt-{i}") for i in range(20000)] + [_event("nope", "evt-last")]
        task = asyncio.create_task(self.store.insert_events(batch))
        await asyncio.sleep(0)
        task.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await task

        self.assertTrue(await self.store.insert_event(_event("S-2", "evt-b")))
        self.assertEqual(await self.store.count_events("S-1"), 0)
        self.assertEqual(await self.store.count_events("S-2"), 1)
        self.assertFalse(await self.store.insert_event(_event("S-1", "evt-1")))
        self.assertEqual(await self.store.insert_events([_event("S-1", "evt-1"), _event("S-1", "evt-2")]), 1)
        self.assertEqual(await self.store.count_events("S-1"), 2)

    async def test_events_without_source_id_are_not_deduplicated(self) -> None:
        await self.store.insert_event(_event("S-1", None))
        await self.store.insert_event(_event("S-1", None))
        self.assertEqual(await self.store.count_events("S-1"), 2)

    async def test_unknown_session_insert_fails(self) -> None:
        with self.assertRaises(IntegrityViolation):
            await self.store.insert_event(_event("nope", "evt-1"))

    async def test_failed_batch_rolls_back(self) -> None:
        with self.assertRaises(IntegrityViolation):
            await self.store.insert_events([_event("S-1", "evt-1"), _event("nope", "evt-2")])
        self.assertEqual(await self.store.count_events(), 0)
        self.assertTrue(await self.store.insert_event(_event("S-1", "evt-1")))

    async def test_get_events_filters_and_orders(self) -> None:
        await self.store.insert_events(
            [
                _event("S-1", "b", timestamp="2024-01-01T10:00:02Z", tool_name="bash", command="ls",
                       command_category="filesystem", tool_arguments={"command": "ls"}),
                _event("S-1", "a", timestamp="2024-01-01T10:00:01Z", tool_name="view", file_path="a.py",
                       operation="read"),
            ]
        )
        events = await self.store.get_events("S-1")
        self.assertEqual([e["copilot_event_id"] for e in events], ["a", "b"])
        self.assertEqual(events[1]["tool_arguments"], {"command": "ls"})

        self.assertEqual(len(await self.store.get_events("S-1", tool_name="view")), 1)
        self.assertEqual(len(await self.store.get_events("S-1", file_path="a.py")), 1)
        self.assertEqual(len(await self.store.get_events("S-1", command_category="filesystem")), 1)
        self.assertEqual(len(await self.store.get_events("S-1", event_type="tool_complete")), 0)

        found = await self.store.get_event_by_source_id("S-1", "b")
        self.assertEqual(found["command"], "ls")
        self.assertIsNone(await self.store.get_event_by_source_id("S-1", "zzz"))

    async def test_complete_events_resolve_tool_name_and_duration(self) -> None:
        await self.store.insert_events(
            [
                _event("S-1", "start", timestamp="2024-01-01T10:00:00.000Z", tool_name="bash",
                       tool_call_id="c1", command="npm test", command_category="npm"),
                _event("S-1", "done", timestamp="2024-01-01T10:00:02.500Z", event_type="tool_complete",
                       tool_call_id="c1", status="success"),
            ]
        )
        done = await self.store.get_event_by_source_id("S-1", "done")
        self.assertEqual(done["tool_name"], "bash")
        self.assertEqual(done["duration_ms"], 2500)
        start = await self.store.get_event_by_source_id("S-1", "start")
        self.assertEqual(start["duration_ms"], 2500)
        self.assertEqual(len(await self.store.get_events("S-1", tool_name="bash")), 2)

    async def test_file_activity(self) -> None:
        await self.store.insert_events(
            [
                _event("S-1", "1", timestamp="2024-01-01T10:00:01Z", file_path="src/a.py", operation="read"),
                _event("S-1", "2", timestamp="2024-01-01T10:00:02Z", file_path="src/a.py", operation="edit"),
                _event("S-1", "3", timestamp="2024-01-01T10:00:03Z", file_path="src/a.py", operation="write"),
                _event("S-1", "4", timestamp="2024-01-01T10:00:04Z", file_path="README.md", operation="read"),
            ]
        )
        activity = await self.store.get_file_activity("S-1")
        self.assertEqual([a["file_path"] for a in activity], ["src/a.py", "README.md"])
        top = activity[0]
        self.assertEqual(top["total_operations"], 3)
        self.assertEqual((top["reads"], top["writes"], top["edits"], top["deletes"]), (1, 1, 1, 0))
        self.assertEqual(top["first_accessed"], "2024-01-01T10:00:01Z")
        self.assertEqual(top["last_accessed"], "2024-01-01T10:00:03Z")

    async def test_command_stats_average_duration(self) -> None:
        await self.store.insert_events(
            [
                _event("S-1", "1", command="npm install", command_category="npm", duration_ms=5000),
                _event("S-1", "2", command="npm test", command_category="npm", duration_ms=3000),
                _event("S-1", "3", command="git status", command_category="git", duration_ms=100),
            ]
        )
        stats = await self.store.get_command_stats("S-1")
        self.assertEqual([s["command_category"] for s in stats], ["npm", "git"])
        self.assertEqual(stats[0]["count"], 2)
        self.assertEqual(stats[0]["avg_duration"], 4000)
        self.assertEqual(stats[0]["total_duration"], 8000)

    async def test_health_check_after_close(self) -> None:
        await self.store.close()
        self.assertFalse(await self.store.health_check())


if __name__ == "__main__":
    unittest.main()
