"""
Unit tests for scheduled publishing.

Tests cover:
- Entry validation
- Scheduling and unscheduling (entry plus back-pointer)
- Publishing due entries
- Failure handling in the scan
- Background loop lifecycle
"""

import asyncio
import json

import pytest

from cms.folio_server.compose.addressing import PAGES
from cms.folio_server.errors import ClientError, NotFoundError
from cms.folio_server.publish import Site, SiteRegistry
from cms.folio_server.schedule import ScheduleEntry, Scheduler
from cms.folio_server.storage import BatchOp, InMemoryStorage

PAGE = "domain.com/path/_pages/index"
ENTRY = {"at": 1000, "publish": "http://domain.com/path/_pages/index"}


class TestScheduleEntry:
    """Tests for ScheduleEntry validation."""

    def test_target_address(self):
        """The publish url maps to the record address."""
        entry = ScheduleEntry.parse(ENTRY)

        assert entry.target == PAGE

    def test_missing_at(self):
        """at is required and numeric."""
        with pytest.raises(ClientError, match='Missing "at" property as number.'):
            ScheduleEntry.parse({"publish": ENTRY["publish"]})
        with pytest.raises(ClientError, match='Missing "at" property as number.'):
            ScheduleEntry.parse({"at": "soon", "publish": ENTRY["publish"]})

    def test_missing_publish(self):
        """publish must be an absolute url."""
        with pytest.raises(ClientError, match='Missing "publish" property as valid url.'):
            ScheduleEntry.parse({"at": 1})
        with pytest.raises(ClientError, match='Missing "publish" property as valid url.'):
            ScheduleEntry.parse({"at": 1, "publish": PAGE})

    def test_extra_fields_allowed(self):
        """Additional fields are kept."""
        entry = ScheduleEntry.parse({**ENTRY, "note": "launch"})

        assert entry.model_dump()["note"] == "launch"


class TestScheduler:
    """Tests for Scheduler."""

    @pytest.fixture
    def storage(self):
        """Create in-memory storage."""
        return InMemoryStorage(record_batches=True)

    @pytest.fixture
    def published(self):
        """Addresses passed to the page publisher."""
        return []

    @pytest.fixture
    def scheduler(self, storage, published):
        """Create scheduler with a recording page publisher."""

        async def publish(address):
            published.append(address)
            return {}

        sites = SiteRegistry([Site(slug="example", host="domain.com", path="/path")])
        return Scheduler(storage, sites, {PAGES: publish}, interval_seconds=0.01, jitter_seconds=0)

    @pytest.mark.asyncio
    async def test_schedule_stores_entry_and_back_pointer(self, scheduler, storage):
        """Both records land in one batch."""
        result = await scheduler.schedule("domain.com/path/_schedule", ENTRY)

        assert result["_ref"].startswith("domain.com/path/_schedule/")
        assert len(storage.batch_log) == 1
        assert json.loads(await storage.get(result["_ref"])) == ENTRY
        assert json.loads(await storage.get(f"{PAGE}@scheduled")) == result

    @pytest.mark.asyncio
    async def test_unschedule(self, scheduler, storage):
        """unschedule removes both records and returns the entry."""
        result = await scheduler.schedule("domain.com/path/_schedule", ENTRY)

        entry = await scheduler.unschedule(result["_ref"])

        assert entry == ENTRY
        assert len(storage) == 0

    @pytest.mark.asyncio
    async def test_run_once_publishes_due_entries(self, scheduler, storage, published):
        """Due entries are published and removed; future ones stay."""
        await scheduler.schedule("domain.com/path/_schedule", ENTRY)
        later = await scheduler.schedule(
            "domain.com/path/_schedule",
            {"at": 5000, "publish": "http://domain.com/path/_pages/later"},
        )

        count = await scheduler.run_once(now_ms=2000)

        assert count == 1
        assert published == [PAGE]
        with pytest.raises(NotFoundError):
            await storage.get(f"{PAGE}@scheduled")
        assert await storage.get(later["_ref"])
        assert scheduler.stats()["published"] == 1

    @pytest.mark.asyncio
    async def test_failed_publish_keeps_entry(self, storage):
        """A failing publish is logged and the entry is retried later."""

        async def publish(address):
            raise RuntimeError("boom")

        sites = SiteRegistry([Site(slug="example", host="domain.com", path="/path")])
        scheduler = Scheduler(storage, sites, {PAGES: publish}, jitter_seconds=0)
        result = await scheduler.schedule("domain.com/path/_schedule", ENTRY)

        count = await scheduler.run_once(now_ms=2000)

        assert count == 0
        assert scheduler.stats()["failed"] == 1
        assert await storage.get(result["_ref"])

    @pytest.mark.asyncio
    async def test_unknown_type_fails_entry(self, scheduler, storage):
        """Entries whose target type has no publisher are not removed."""
        result = await scheduler.schedule(
            "domain.com/path/_schedule",
            {"at": 1, "publish": "http://domain.com/path/_uris/abc"},
        )

        assert await scheduler.run_once(now_ms=2000) == 0
        assert await storage.get(result["_ref"])

    @pytest.mark.asyncio
    async def test_unparsable_entries_skipped(self, scheduler, storage, published):
        """Bad JSON in the schedule does not stop the scan."""
        await storage.batch([BatchOp.put("domain.com/path/_schedule/bad", "{not json")])
        await scheduler.schedule("domain.com/path/_schedule", ENTRY)

        assert await scheduler.run_once(now_ms=2000) == 1
        assert published == [PAGE]

    @pytest.mark.asyncio
    async def test_background_loop(self, scheduler, published):
        """The loop publishes due entries until stopped."""
        await scheduler.schedule("domain.com/path/_schedule", {**ENTRY, "at": 1})

        await scheduler.start()
        assert scheduler.running
        for _ in range(50):
            if published:
                break
            await asyncio.sleep(0.02)
        await scheduler.stop()

        assert published == [PAGE]
        assert not scheduler.running
