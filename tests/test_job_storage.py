"""
test_job_storage.py — Tests for the job store backends.

Covers:
    • JSON file store: round trip through a fresh instance, camelCase on disk
    • Missing file → empty store; malformed file → StorageError
    • Write failure rolls the in-memory state back; writes are fsynced
    • SQL store (throwaway SQLite file) CRUD, enabled filtering, and
      database errors surfacing as StorageError
    • create_job_store backend selection

Run with:
    pytest tests/test_job_storage.py -v
"""

from __future__ import annotations

import asyncio
import json

import pytest

from skycast.app.core.database import close_db, init_db, make_engine, make_session_factory
from skycast.app.core import jsonfile as jsonfile_module
from skycast.app.core.errors import StorageError
from skycast.app.scheduler import storage as storage_module
from skycast.app.scheduler.jobs import ForecastJob, NotifyConfig
from skycast.app.scheduler.storage import (
    JsonFileJobStore,
    SqlJobStore,
    create_job_store,
)


def _make_job(**overrides) -> ForecastJob:
    defaults = dict(
        id="evening-tokyo",
        name="Evening Tokyo",
        city="Tokyo",
        units="metric",
        cron="0 0 18 * * *",
        timezone="Asia/Tokyo",
        notify=NotifyConfig(on_run=False, heat_threshold=35.0),
    )
    defaults.update(overrides)
    return ForecastJob(**defaults)


# ═══════════════════════════════════════════════════════════════════════════
# JSON file backend
# ═══════════════════════════════════════════════════════════════════════════

class TestJsonFileJobStore:

    def test_round_trip(self, tmp_path):
        path = tmp_path / "jobs.json"

        async def run():
            store = JsonFileJobStore(str(path))
            await store.load()
            await store.upsert(_make_job())

            reloaded = JsonFileJobStore(str(path))
            await reloaded.load()
            return await reloaded.get("evening-tokyo")

        job = asyncio.run(run())
        assert job == _make_job()

    def test_camel_case_on_disk(self, tmp_path):
        path = tmp_path / "jobs.json"
        asyncio.run(JsonFileJobStore(str(path)).upsert(_make_job()))

        raw = json.loads(path.read_text(encoding="utf-8"))
        record = raw["evening-tokyo"]
        assert record["includeDaily"] is True
        assert record["notify"]["heatThreshold"] == 35.0
        assert "include_daily" not in record

    def test_missing_file_is_empty(self, tmp_path):
        async def run():
            store = JsonFileJobStore(str(tmp_path / "absent" / "jobs.json"))
            await store.load()
            return await store.count()

        assert asyncio.run(run()) == 0

    def test_malformed_file(self, tmp_path):
        path = tmp_path / "jobs.json"
        path.write_text("[1, 2", encoding="utf-8")
        with pytest.raises(StorageError):
            asyncio.run(JsonFileJobStore(str(path)).load())

    def test_records_missing_defaults_load_with_defaults(self, tmp_path):
        path = tmp_path / "jobs.json"
        path.write_text(json.dumps({
            "j": {"id": "j", "name": "J", "city": "Rome", "cron": "0 0 6 * * *"},
        }), encoding="utf-8")

        async def run():
            store = JsonFileJobStore(str(path))
            await store.load()
            return await store.get("j")

        job = asyncio.run(run())
        assert job.timezone == "UTC"
        assert job.units == "metric"
        assert job.notify.on_run is True

    def test_returned_jobs_are_copies(self, tmp_path):
        async def run():
            store = JsonFileJobStore(str(tmp_path / "jobs.json"))
            await store.upsert(_make_job())
            fetched = await store.get("evening-tokyo")
            fetched.city = "Osaka"
            return await store.get("evening-tokyo")

        assert asyncio.run(run()).city == "Tokyo"

    def test_remove(self, tmp_path):
        async def run():
            store = JsonFileJobStore(str(tmp_path / "jobs.json"))
            await store.upsert(_make_job())
            first = await store.remove("evening-tokyo")
            second = await store.remove("evening-tokyo")
            return first, second, await store.exists("evening-tokyo")

        assert asyncio.run(run()) == (True, False, False)

    def test_write_failure_rolls_back(self, tmp_path, monkeypatch):
        def failing_write(path, payload, store):
            raise StorageError(store, "disk full")

        async def run():
            store = JsonFileJobStore(str(tmp_path / "jobs.json"))
            await store.upsert(_make_job())
            monkeypatch.setattr(storage_module, "write_json_atomic", failing_write)
            with pytest.raises(StorageError):
                await store.upsert(_make_job(city="Kyoto"))
            with pytest.raises(StorageError):
                await store.upsert(_make_job(id="new"))
            return await store.get("evening-tokyo"), await store.get("new")

        current, new = asyncio.run(run())
        assert current.city == "Tokyo"
        assert new is None

    def test_writes_are_fsynced_before_rename(self, tmp_path, monkeypatch):
        calls = []
        real_fsync = jsonfile_module.os.fsync
        real_replace = jsonfile_module.os.replace

        def recording_fsync(fd):
            calls.append("fsync")
            real_fsync(fd)

        def recording_replace(src, dst):
            calls.append("replace")
            real_replace(src, dst)

        monkeypatch.setattr(jsonfile_module.os, "fsync", recording_fsync)
        monkeypatch.setattr(jsonfile_module.os, "replace", recording_replace)
        asyncio.run(JsonFileJobStore(str(tmp_path / "jobs.json")).upsert(_make_job()))
        assert calls == ["fsync", "replace"]


# ═══════════════════════════════════════════════════════════════════════════
# SQL backend
# ═══════════════════════════════════════════════════════════════════════════

class TestSqlJobStore:
    """Each test runs entirely inside one event loop against its own file."""

    @staticmethod
    def _run(tmp_path, scenario, create_tables: bool = True):
        async def run():
            engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}", echo=False)
            if create_tables:
                await init_db(engine)
            try:
                return await scenario(SqlJobStore(make_session_factory(engine)))
            finally:
                await close_db(engine)

        return asyncio.run(run())

    def test_upsert_and_get(self, tmp_path):
        async def scenario(store):
            await store.upsert(_make_job())
            return await store.get("evening-tokyo")

        assert self._run(tmp_path, scenario) == _make_job()

    def test_upsert_overwrites(self, tmp_path):
        async def scenario(store):
            await store.upsert(_make_job())
            await store.upsert(_make_job(city="Osaka", enabled=False))
            return await store.get("evening-tokyo"), await store.count()

        job, count = self._run(tmp_path, scenario)
        assert job.city == "Osaka"
        assert job.enabled is False
        assert count == 1

    def test_get_enabled(self, tmp_path):
        async def scenario(store):
            await store.upsert(_make_job(id="on"))
            await store.upsert(_make_job(id="off", enabled=False))
            return [j.id for j in await store.get_enabled()]

        assert self._run(tmp_path, scenario) == ["on"]

    def test_remove(self, tmp_path):
        async def scenario(store):
            await store.upsert(_make_job())
            return (
                await store.remove("evening-tokyo"),
                await store.remove("evening-tokyo"),
                await store.get("evening-tokyo"),
            )

        assert self._run(tmp_path, scenario) == (True, False, None)

    def test_database_errors_become_storage_errors(self, tmp_path):
        async def scenario(store):
            with pytest.raises(StorageError) as upsert_error:
                await store.upsert(_make_job())
            with pytest.raises(StorageError) as remove_error:
                await store.remove("evening-tokyo")
            return upsert_error.value, remove_error.value

        upsert_error, remove_error = self._run(tmp_path, scenario, create_tables=False)
        assert upsert_error.status_code == 500
        assert upsert_error.error_code == "STORAGE_ERROR"
        assert "evening-tokyo" in remove_error.message


class TestCreateJobStore:

    def test_file_backend(self, tmp_path):
        store = create_job_store("file", file_path=str(tmp_path / "jobs.json"))
        assert isinstance(store, JsonFileJobStore)

    def test_database_backend_needs_sessions(self):
        with pytest.raises(StorageError):
            create_job_store("database")

    def test_unknown_backend(self):
        with pytest.raises(StorageError):
            create_job_store("redis")
