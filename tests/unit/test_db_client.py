"""Unit tests for the SQLite client: filter parsing, versioned updates and transactions."""

import asyncio

import pytest

from wastewise.core import db_client
from wastewise.core.db_client import DuplicateRecordError, StaleRecordError


def _log(task_id: str = "1", action: str = "created", **overrides) -> dict:
    return {
        "task_id": task_id,
        "actor_id": "m1",
        "action": action,
        "timestamp": "2030-01-01T00:00:00+00:00",
        **overrides,
    }


def _award(task_id: str, points: int = 10, resident_id: str = "r1") -> dict:
    return {"task_id": task_id, "resident_id": resident_id, "points": points, "awarded_at": "2030-01-01"}


@pytest.mark.unit
class TestParseFilter:
    """Filter syntax to SQL."""

    def test_empty(self):
        assert db_client.parse_filter("") == ("", [])

    def test_and_conditions(self):
        clause, params = db_client.parse_filter('status = "assigned" && reward_points >= "10"')

        assert clause == "status = ? AND reward_points >= ?"
        assert params == ["assigned", "10"]

    def test_or_group(self):
        clause, params = db_client.parse_filter('is_active = "1" && (title ~ "bin" || tags ~ "bin")')

        assert clause == "is_active = ? AND (title LIKE ? ESCAPE '\\' OR tags LIKE ? ESCAPE '\\')"
        assert params == ["1", "%bin%", "%bin%"]

    def test_like_escapes_wildcards(self):
        _, params = db_client.parse_filter('title ~ "50%_off"')

        assert params == ["%50\\%\\_off%"]

    def test_dates_stay_strings(self):
        _, params = db_client.parse_filter('due_date < "2030-01-01"')

        assert params == ["2030-01-01"]

    @pytest.mark.parametrize("resident_id", ["007", "true", "1.5"])
    def test_numeric_looking_values_stay_strings(self, resident_id):
        _, params = db_client.parse_filter(f'resident_id = "{resident_id}"')

        assert params == [resident_id]

    @pytest.mark.parametrize("query", ["status assigned", 'status == "x"', "title ~ bin"])
    def test_invalid_syntax(self, query):
        with pytest.raises(ValueError):
            db_client.parse_filter(query)

    def test_sanitize_param_escapes_quotes(self):
        assert db_client.sanitize_param('say "hi"') == 'say \\"hi\\"'


@pytest.mark.unit
class TestParseSort:
    """Sort strings to ORDER BY clauses."""

    @pytest.mark.parametrize(
        ("sort", "expected"),
        [
            ("", "id ASC"),
            ("due_date", "due_date, id ASC"),
            ("+due_date", "due_date ASC, id ASC"),
            ("-created_at", "created_at DESC, id DESC"),
            ("id DESC", "id DESC"),
            ("title; DROP TABLE tasks", "id ASC"),
        ],
    )
    def test_parse_sort(self, sort, expected):
        assert db_client.parse_sort(sort) == expected


@pytest.mark.unit
class TestRecords:
    """CRUD against a real database file."""

    async def test_create_and_get(self, sqlite_db):
        created = await db_client.create_record(collection="task_logs", data=_log(notes="first"))

        fetched = await db_client.get_record(collection="task_logs", record_id=created["id"])

        assert fetched == created
        assert isinstance(created["id"], str)
        assert fetched["notes"] == "first"

    async def test_get_missing(self, sqlite_db):
        with pytest.raises(KeyError):
            await db_client.get_record(collection="task_logs", record_id="42")

    async def test_invalid_collection_name(self, sqlite_db):
        with pytest.raises(ValueError):
            await db_client.get_record(collection="task_logs; --", record_id="1")

    async def test_duplicate_unique_column(self, sqlite_db):
        await db_client.create_record(collection="point_awards", data=_award("7"))

        with pytest.raises(DuplicateRecordError):
            await db_client.create_record(collection="point_awards", data=_award("7"))

        assert await db_client.count_records(collection="point_awards") == 1

    async def test_list_with_filter_sort_and_page(self, sqlite_db):
        for action in ("created", "updated", "completed", "updated"):
            await db_client.create_record(collection="task_logs", data=_log(action=action))

        updated = await db_client.list_records(collection="task_logs", filter_query='action = "updated"')
        newest = await db_client.list_records(collection="task_logs", sort="-id", per_page=2)
        second_page = await db_client.list_records(collection="task_logs", sort="id", page=2, per_page=3)

        assert len(updated) == 2
        assert [record["action"] for record in newest] == ["updated", "completed"]
        assert [record["action"] for record in second_page] == ["updated"]

    async def test_delete(self, sqlite_db):
        created = await db_client.create_record(collection="task_logs", data=_log())

        await db_client.delete_record(collection="task_logs", record_id=created["id"])

        with pytest.raises(KeyError):
            await db_client.delete_record(collection="task_logs", record_id=created["id"])

    async def test_count_by_and_sum_field(self, sqlite_db):
        await db_client.create_record(collection="point_awards", data=_award("1", points=10))
        await db_client.create_record(collection="point_awards", data=_award("2", points=25))
        await db_client.create_record(collection="point_awards", data=_award("3", points=5, resident_id="r2"))

        assert await db_client.count_by(collection="point_awards", field="resident_id") == {"r1": 2, "r2": 1}
        assert (
            await db_client.sum_field(collection="point_awards", field="points", filter_query='resident_id = "r1"')
            == 35
        )
        assert (
            await db_client.sum_field(collection="point_awards", field="points", filter_query='resident_id = "r9"')
            == 0
        )


@pytest.mark.unit
class TestVersionedUpdate:
    """Optimistic concurrency on update_record."""

    async def _task_row(self) -> dict:
        return await db_client.create_record(
            collection="tasks",
            data={
                "title": "Compost",
                "description": "Start a compost bin",
                "category": "composting",
                "assigned_to": "r1",
                "assigned_by": "m1",
                "due_date": "2030-01-01",
                "created_at": "2030-01-01T00:00:00+00:00",
                "updated_at": "2030-01-01T00:00:00+00:00",
            },
        )

    async def test_matching_version_increments(self, sqlite_db):
        row = await self._task_row()

        updated = await db_client.update_record(
            collection="tasks", record_id=row["id"], data={"status": "in_progress"}, expected_version=1
        )

        assert updated["status"] == "in_progress"
        assert updated["version"] == 2

    async def test_stale_version(self, sqlite_db):
        row = await self._task_row()
        await db_client.update_record(collection="tasks", record_id=row["id"], data={"title": "A"}, expected_version=1)

        with pytest.raises(StaleRecordError):
            await db_client.update_record(
                collection="tasks", record_id=row["id"], data={"title": "B"}, expected_version=1
            )

        assert (await db_client.get_record(collection="tasks", record_id=row["id"]))["title"] == "A"

    async def test_missing_row_is_not_stale(self, sqlite_db):
        with pytest.raises(KeyError):
            await db_client.update_record(collection="tasks", record_id="99", data={"title": "A"}, expected_version=1)

    async def test_empty_payload(self, sqlite_db):
        with pytest.raises(ValueError):
            await db_client.update_record(collection="tasks", record_id="1", data={})


@pytest.mark.unit
class TestTransaction:
    """Grouped writes commit or roll back together."""

    async def test_commit(self, sqlite_db):
        async with db_client.transaction():
            await db_client.create_record(collection="task_logs", data=_log(task_id="1"))
            await db_client.create_record(collection="task_logs", data=_log(task_id="2"))

        assert await db_client.count_records(collection="task_logs") == 2

    async def test_rollback_on_error(self, sqlite_db):
        with pytest.raises(DuplicateRecordError):
            async with db_client.transaction():
                await db_client.create_record(collection="task_logs", data=_log())
                await db_client.create_record(collection="point_awards", data=_award("1"))
                await db_client.create_record(collection="point_awards", data=_award("1"))

        assert await db_client.count_records(collection="task_logs") == 0
        assert await db_client.count_records(collection="point_awards") == 0

    async def test_reads_inside_see_uncommitted_writes(self, sqlite_db):
        async with db_client.transaction():
            created = await db_client.create_record(collection="task_logs", data=_log())
            assert await db_client.count_records(collection="task_logs") == 1
            assert (await db_client.get_record(collection="task_logs", record_id=created["id"]))["id"] == created["id"]

    async def test_concurrent_reader_sees_only_committed_rows(self, sqlite_db):
        await db_client.create_record(collection="task_logs", data=_log(action="created"))
        written = asyncio.Event()
        release = asyncio.Event()

        async def write_then_roll_back() -> None:
            with pytest.raises(RuntimeError, match="abort"):
                async with db_client.transaction():
                    await db_client.create_record(collection="task_logs", data=_log(action="updated"))
                    written.set()
                    await release.wait()
                    raise RuntimeError("abort")

        writer = asyncio.create_task(write_then_roll_back())
        await written.wait()

        seen_during = await db_client.count_records(collection="task_logs")
        updated_during = await db_client.get_first_record(collection="task_logs", filter_query='action = "updated"')

        release.set()
        await writer

        assert seen_during == 1
        assert updated_during is None
        assert await db_client.count_records(collection="task_logs") == 1
