"""Tests for the sync service layer."""

import asyncio
import json

import httpx
import pytest

from psp_sync.connectors import IncreasePageSource
from psp_sync.database import SyncStateRepository, SyncedPaymentRepository
from psp_sync.services import SyncService, get_lineage_lock
from psp_sync.timeline import PageSourceError, TimelineStateError


def sim_refs(start, end):
    return [f"sim_{i}" for i in range(start, end + 1)]


class TestSyncServiceRun:
    """Tests for SyncService.run."""

    async def test_run_to_completion(self, db_session, history_25):
        """Test that a run walks scan, replay and tail in one go."""
        service = SyncService(db_session, history_25, account_id="acct_1")

        summary = await service.run(page_size=10)

        assert summary.steps == 5
        assert summary.emitted == 25
        assert summary.stored == 25
        assert summary.has_more is False
        assert summary.phase == "tailing"
        assert summary.latest_id == "sim_25"
        assert summary.references == sim_refs(1, 25)

        payments = await SyncedPaymentRepository(db_session).list_for_lineage(
            "simulator", "acct_1", limit=100
        )
        assert [p.reference for p in payments] == sim_refs(1, 25)
        assert [p.sequence for p in payments] == list(range(1, 26))

    async def test_state_is_persisted(self, db_session, history_25):
        """Test that the stored timeline matches the last step."""
        await SyncService(db_session, history_25, account_id="acct_1").run(page_size=10)

        state = await SyncStateRepository(db_session).get("simulator", "acct_1")
        assert json.loads(state.state_json) == {"latestID": "sim_25"}
        assert state.steps_count == 5
        assert state.records_count == 25

    async def test_max_steps_pauses_run(self, db_session, history_25):
        """Test that a capped run stops and resumes where it left off."""
        service = SyncService(db_session, history_25, account_id="acct_1")

        first = await service.run(page_size=10, max_steps=2)
        assert first.steps == 2
        assert first.emitted == 0
        assert first.has_more is True
        assert first.phase == "scanning"
        assert first.depth == 2

        second = await service.run(page_size=10)
        assert second.references == sim_refs(1, 25)

    async def test_incremental_runs(self, db_session, history_25):
        """Test that later runs only deliver new records."""
        service = SyncService(db_session, history_25, account_id="acct_1")
        await service.run(page_size=10)

        history_25.add_payments(3)
        summary = await service.run(page_size=10)

        assert summary.references == ["sim_26", "sim_27", "sim_28"]
        assert summary.steps == 1

        idle = await service.run(page_size=10)
        assert idle.emitted == 0
        assert idle.has_more is False

    async def test_empty_upstream(self, db_session, simulator):
        summary = await SyncService(db_session, simulator).run(page_size=10)

        assert summary.steps == 1
        assert summary.emitted == 0
        assert summary.phase == "scanning"

    async def test_source_error_keeps_state(self, db_session, history_25):
        """Test that a failed step records the error and leaves the timeline alone."""
        service = SyncService(db_session, history_25, account_id="acct_1")
        await service.run(page_size=10, max_steps=1)
        repo = SyncStateRepository(db_session)
        blob = (await repo.get("simulator", "acct_1")).state_json

        history_25.fail_next()
        with pytest.raises(PageSourceError):
            await service.run(page_size=10)

        state = await repo.get("simulator", "acct_1")
        assert state.state_json == blob
        assert "PageSourceError" in state.last_error

        # Retrying resumes with the identical request
        summary = await service.run(page_size=10)
        assert history_25.calls[-4] == history_25.calls[-5] == ("older", "sim_16", 10)
        assert summary.references == sim_refs(1, 25)

        state = await repo.get("simulator", "acct_1")
        assert state.last_error is None

    async def test_corrupt_state_is_reported(self, db_session, simulator):
        """Test that an undecodable blob fails without calling the source."""
        repo = SyncStateRepository(db_session)
        state = await repo.get_or_create("simulator", "default")
        state.state_json = "{not json"
        await db_session.commit()

        with pytest.raises(TimelineStateError):
            await SyncService(db_session, simulator).run(page_size=10)

        assert simulator.calls == []
        assert "TimelineStateError" in (await repo.get("simulator", "default")).last_error

    async def test_redelivered_records_are_not_stored_twice(self, db_session, history_25):
        """Test that records emitted again after a lost state update are deduplicated."""
        service = SyncService(db_session, history_25, account_id="acct_1")
        await service.run(page_size=10)

        # Simulate a state write that never happened: rewind to a fresh timeline
        state = await SyncStateRepository(db_session).get("simulator", "acct_1")
        state.state_json = "{}"
        await db_session.commit()

        summary = await service.run(page_size=10)

        assert summary.emitted == 25
        assert summary.stored == 0
        assert await SyncedPaymentRepository(db_session).count_for_lineage("simulator", "acct_1") == 25

    @pytest.mark.parametrize("page_size,max_steps", [(0, None), (10, 0)])
    async def test_invalid_arguments(self, db_session, simulator, page_size, max_steps):
        with pytest.raises(ValueError):
            await SyncService(db_session, simulator).run(page_size=page_size, max_steps=max_steps)


class TestSyncServiceProgress:
    """Tests for SyncService.get_progress."""

    async def test_unknown_lineage(self, db_session, simulator):
        assert await SyncService(db_session, simulator, account_id="nope").get_progress() is None

    async def test_progress(self, db_session, history_25):
        service = SyncService(db_session, history_25, account_id="acct_1")
        await service.run(page_size=10, max_steps=3)

        progress = await service.get_progress()

        assert progress["phase"] == "replaying"
        assert progress["depth"] == 1
        assert progress["latest_id"] == "sim_5"
        assert progress["payments_count"] == 5


class TestLineageLock:
    """Tests for per-lineage serialization."""

    def test_same_lineage_same_lock(self):
        assert get_lineage_lock("stripe", "acct_1") is get_lineage_lock("stripe", "acct_1")
        assert get_lineage_lock("stripe", "acct_1") is not get_lineage_lock("stripe", "acct_2")

    async def test_run_waits_for_lock(self, db_session, history_25):
        """Test that a run does not start while the lineage is locked."""
        service = SyncService(db_session, history_25, account_id="acct_1")
        lock = get_lineage_lock("simulator", "acct_1")

        await lock.acquire()
        task = asyncio.create_task(service.run(page_size=10))
        await asyncio.sleep(0.05)
        assert history_25.calls == []
        assert not task.done()

        lock.release()
        summary = await task
        assert summary.emitted == 25


def increase_listings(listings):
    """Mock transport serving Increase listings (newest first) by endpoint."""

    def handler(request: httpx.Request) -> httpx.Response:
        parts = request.url.path.strip("/").split("/")
        records = listings.get(parts[0], [])
        if len(parts) == 2:
            for record in records:
                if record["id"] == parts[1]:
                    return httpx.Response(200, json=record)
            return httpx.Response(404, json={"type": "object_not_found_error"})
        bound = request.url.params.get("created_at.on_or_after")
        data = [r for r in records if bound is None or r["created_at"] >= bound]
        return httpx.Response(200, json={"data": data[:int(request.url.params["limit"])], "next_cursor": None})

    return httpx.Client(transport=httpx.MockTransport(handler))


class TestIncreaseListingLineages:
    """Tests for syncing several Increase listings of one account."""

    async def test_listings_keep_separate_state(self, db_session):
        """Test that each listing scans its own history and stores its own payments."""

        def record(record_id, day):
            return {"id": record_id, "created_at": f"2024-01-0{day}T00:00:00Z", "amount": 100, "currency": "USD"}

        client = increase_listings({
            "transactions": [record("tx_2", 2), record("tx_1", 1)],
            "pending_transactions": [record("pend_3", 3), record("pend_1", 1)],
        })

        settled = IncreasePageSource(api_key="k", base_url="https://increase.test", http_client=client)
        pending = IncreasePageSource(
            api_key="k", base_url="https://increase.test", endpoint="pending_transactions", http_client=client
        )

        first = await SyncService(db_session, settled, account_id="acct").run(page_size=10)
        second = await SyncService(db_session, pending, account_id="acct").run(page_size=10)

        assert first.references == ["tx_1", "tx_2"]
        assert second.provider == "increase_pending"
        assert second.references == ["pend_1", "pend_3"]
        assert second.stored == 2

        repo = SyncedPaymentRepository(db_session)
        assert await repo.count_for_lineage("increase", "acct") == 2
        assert await repo.max_sequence("increase_pending", "acct") == 2
        states = await SyncStateRepository(db_session).list_all()
        assert {(s.provider, s.latest_id) for s in states} == {
            ("increase", "tx_2"),
            ("increase_pending", "pend_3"),
        }
