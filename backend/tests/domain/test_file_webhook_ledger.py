"""Tests for the JSON-file webhook ledger."""

import asyncio
import json

import pytest

from checkout_service.core.locking import KeyedMutex
from checkout_service.services.webhook_ledger import FileWebhookLedger

pytestmark = pytest.mark.unit


@pytest.fixture
def ledger_path(tmp_path):
    return tmp_path / "logs" / "webhook-events.json"


@pytest.fixture
def mutex():
    return KeyedMutex()


@pytest.fixture
def ledger(ledger_path, mutex):
    return FileWebhookLedger(ledger_path, mutex)


@pytest.mark.asyncio
async def test_reserve_writes_record_in_file_format(ledger, ledger_path):
    assert await ledger.reserve("evt_1") is True

    data = json.loads(ledger_path.read_text())
    assert set(data) == {"evt_1"}
    assert data["evt_1"]["eventId"] == "evt_1"
    assert data["evt_1"]["processed"] is False
    assert "createdAt" in data["evt_1"]
    assert "processedAt" not in data["evt_1"]


@pytest.mark.asyncio
async def test_concurrent_reservations_have_one_winner(ledger):
    results = await asyncio.gather(*(ledger.reserve("evt_race") for _ in range(10)))

    assert results.count(True) == 1
    assert results.count(False) == 9


@pytest.mark.asyncio
async def test_release_restores_retry_eligibility(ledger):
    await ledger.reserve("evt_2")
    await ledger.release("evt_2")

    assert await ledger.get("evt_2") is None
    assert await ledger.reserve("evt_2") is True


@pytest.mark.asyncio
async def test_processed_events_are_never_reserved_again(ledger, ledger_path):
    await ledger.reserve("evt_3")
    await ledger.mark_processed("evt_3")

    assert await ledger.reserve("evt_3") is False

    record = await ledger.get("evt_3")
    assert record.processed is True
    assert record.processed_at is not None
    assert json.loads(ledger_path.read_text())["evt_3"]["processed"] is True


@pytest.mark.asyncio
async def test_mark_processed_without_reservation_creates_processed_record(ledger):
    await ledger.mark_processed("evt_orphan")

    record = await ledger.get("evt_orphan")
    assert record.processed is True
    assert await ledger.reserve("evt_orphan") is False


@pytest.mark.asyncio
async def test_missing_file_is_an_empty_ledger(ledger, ledger_path):
    assert not ledger_path.exists()

    assert await ledger.get("evt_1") is None
    await ledger.release("evt_1")

    assert not ledger_path.exists()


@pytest.mark.asyncio
async def test_unreadable_file_is_treated_as_empty(ledger, ledger_path):
    ledger_path.parent.mkdir(parents=True)
    ledger_path.write_text("{not json")

    assert await ledger.reserve("evt_1") is True
    assert set(json.loads(ledger_path.read_text())) == {"evt_1"}


@pytest.mark.asyncio
async def test_empty_event_id_is_never_reserved(ledger, ledger_path):
    assert await ledger.reserve("") is False
    await ledger.mark_processed("")

    assert not ledger_path.exists()


@pytest.mark.asyncio
async def test_crash_between_temp_write_and_rename_keeps_previous_snapshot(
    ledger, ledger_path, mutex, monkeypatch
):
    await ledger.reserve("evt_before")
    snapshot = ledger_path.read_text()

    def crash(src, dst):
        raise OSError("simulated crash before rename")

    with monkeypatch.context() as patch:
        patch.setattr("checkout_service.services.webhook_ledger.os.replace", crash)
        with pytest.raises(OSError):
            await ledger.reserve("evt_during")

    assert ledger_path.read_text() == snapshot
    assert set(json.loads(snapshot)) == {"evt_before"}
    assert "evt_during" in json.loads(ledger_path.with_name(ledger_path.name + ".tmp").read_text())
    assert mutex.active_keys() == set()

    # A restarted process sees only the committed snapshot
    restarted = FileWebhookLedger(ledger_path)
    assert await restarted.get("evt_during") is None
    assert await restarted.reserve("evt_during") is True
