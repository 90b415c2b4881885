from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from app.economy.billing.errors import (
    InvalidEventPayloadError,
    PersistenceFailureError,
    ProviderUnavailableError,
)
from app.economy.billing.types import HandlerOutcome
from app.economy.billing.webhooks import processor
from tests.economy.billing_fakes import FakeGateway

NOW_UTC = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class _DummyTransaction:
    async def __aenter__(self) -> object:
        return object()

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False


class _DummySessionLocal:
    def begin(self) -> _DummyTransaction:
        return _DummyTransaction()


class _ProcessedEventsStore:
    def __init__(self) -> None:
        self.rows: dict[str, SimpleNamespace] = {}
        self.reclaimable: set[str] = set()

    def install(self, monkeypatch: pytest.MonkeyPatch) -> None:
        async def try_create_processing_slot(session, *, event_id, event_type):
            if event_id in self.rows:
                return False
            self.rows[event_id] = SimpleNamespace(status="PROCESSING", attempts=0)
            return True

        async def try_reclaim_processing_slot(session, *, event_id, processing_ttl_seconds):
            return event_id in self.reclaimable

        async def get_by_event_id(session, event_id):
            return self.rows.get(event_id)

        async def mark_processed(session, *, event_id):
            self.rows[event_id].status = "PROCESSED"
            return 1

        async def record_failure(session, *, event_id, event_type, error, payload):
            row = self.rows.setdefault(event_id, SimpleNamespace(status="FAILED", attempts=0))
            row.status = "FAILED"
            row.attempts += 1
            row.error = error
            return row.attempts

        repo = processor.ProcessedEventsRepo
        monkeypatch.setattr(repo, "try_create_processing_slot", staticmethod(try_create_processing_slot))
        monkeypatch.setattr(repo, "try_reclaim_processing_slot", staticmethod(try_reclaim_processing_slot))
        monkeypatch.setattr(repo, "get_by_event_id", staticmethod(get_by_event_id))
        monkeypatch.setattr(repo, "mark_processed", staticmethod(mark_processed))
        monkeypatch.setattr(repo, "record_failure", staticmethod(record_failure))


@pytest.fixture
def events_store(monkeypatch: pytest.MonkeyPatch) -> _ProcessedEventsStore:
    store = _ProcessedEventsStore()
    store.install(monkeypatch)
    monkeypatch.setattr(processor, "SessionLocal", _DummySessionLocal())
    monkeypatch.setattr(
        processor,
        "get_settings",
        lambda: SimpleNamespace(
            billing_unknown_status_fallback="past_due",
            webhook_processing_ttl_seconds=300,
            webhook_failure_alert_threshold=2,
        ),
    )
    return store


@pytest.fixture
def sent_alerts(monkeypatch: pytest.MonkeyPatch) -> list[tuple[str, dict[str, object]]]:
    alerts: list[tuple[str, dict[str, object]]] = []

    async def _fake_send_ops_alert(*, event: str, payload: dict[str, object]) -> bool:
        alerts.append((event, payload))
        return True

    monkeypatch.setattr(processor, "send_ops_alert", _fake_send_ops_alert)
    return alerts


def _event(event_id: str = "evt_1", event_type: str = "invoice.paid") -> dict[str, object]:
    return {"id": event_id, "type": event_type, "data": {"object": {"id": "in_1"}}}


def _install_handler(monkeypatch: pytest.MonkeyPatch, handler) -> None:
    monkeypatch.setattr(processor, "get_event_handler", lambda event_type: handler)


@pytest.mark.asyncio
async def test_event_is_applied_once_and_replays_are_duplicates(
    monkeypatch: pytest.MonkeyPatch,
    events_store: _ProcessedEventsStore,
    sent_alerts: list,
) -> None:
    calls: list[str] = []

    async def _handler(session, event_object, ctx):
        calls.append(ctx.event_id)
        return HandlerOutcome(status="applied")

    _install_handler(monkeypatch, _handler)

    first = await processor.process_provider_event(_event(), gateway=FakeGateway(), now_utc=NOW_UTC)
    second = await processor.process_provider_event(_event(), gateway=FakeGateway(), now_utc=NOW_UTC)

    assert first.status == "processed"
    assert first.outcome is not None and first.outcome.status == "applied"
    assert second.status == "duplicate"
    assert calls == ["evt_1"]
    assert events_store.rows["evt_1"].status == "PROCESSED"


@pytest.mark.asyncio
async def test_unhandled_event_type_is_ignored_without_claim(
    events_store: _ProcessedEventsStore,
) -> None:
    result = await processor.process_provider_event(
        _event(event_type="customer.created"),
        gateway=FakeGateway(),
    )

    assert result.status == "ignored"
    assert events_store.rows == {}


@pytest.mark.asyncio
async def test_malformed_event_is_rejected(events_store: _ProcessedEventsStore) -> None:
    with pytest.raises(InvalidEventPayloadError):
        await processor.process_provider_event({"type": "invoice.paid"}, gateway=FakeGateway())


@pytest.mark.asyncio
async def test_in_flight_event_raises(
    monkeypatch: pytest.MonkeyPatch,
    events_store: _ProcessedEventsStore,
) -> None:
    events_store.rows["evt_1"] = SimpleNamespace(status="PROCESSING", attempts=0)

    async def _handler(session, event_object, ctx):
        raise AssertionError("handler must not run")

    _install_handler(monkeypatch, _handler)

    with pytest.raises(processor.EventInFlightError):
        await processor.process_provider_event(_event(), gateway=FakeGateway())


@pytest.mark.asyncio
async def test_stale_processing_slot_is_reclaimed(
    monkeypatch: pytest.MonkeyPatch,
    events_store: _ProcessedEventsStore,
) -> None:
    events_store.rows["evt_1"] = SimpleNamespace(status="PROCESSING", attempts=0)
    events_store.reclaimable.add("evt_1")

    async def _handler(session, event_object, ctx):
        return HandlerOutcome(status="applied")

    _install_handler(monkeypatch, _handler)

    result = await processor.process_provider_event(_event(), gateway=FakeGateway())

    assert result.status == "processed"
    assert events_store.rows["evt_1"].status == "PROCESSED"


@pytest.mark.asyncio
async def test_handler_failure_is_recorded_and_alerted_at_threshold(
    monkeypatch: pytest.MonkeyPatch,
    events_store: _ProcessedEventsStore,
    sent_alerts: list,
) -> None:
    async def _handler(session, event_object, ctx):
        raise RuntimeError("db down")

    _install_handler(monkeypatch, _handler)

    with pytest.raises(PersistenceFailureError):
        await processor.process_provider_event(_event(), gateway=FakeGateway())
    assert sent_alerts == []

    with pytest.raises(PersistenceFailureError):
        await processor.process_provider_event(_event(), gateway=FakeGateway())

    assert events_store.rows["evt_1"].status == "FAILED"
    assert events_store.rows["evt_1"].attempts == 2
    assert "RuntimeError: db down" in events_store.rows["evt_1"].error
    assert [event for event, _ in sent_alerts] == ["billing_webhook_failures_exceeded"]
    assert sent_alerts[0][1]["attempts"] == 2


@pytest.mark.asyncio
async def test_billing_error_from_handler_keeps_its_type(
    monkeypatch: pytest.MonkeyPatch,
    events_store: _ProcessedEventsStore,
    sent_alerts: list,
) -> None:
    async def _handler(session, event_object, ctx):
        raise InvalidEventPayloadError("metadata missing")

    _install_handler(monkeypatch, _handler)

    with pytest.raises(InvalidEventPayloadError):
        await processor.process_provider_event(_event(), gateway=FakeGateway())
    assert events_store.rows["evt_1"].attempts == 1


@pytest.mark.asyncio
async def test_pending_alerts_are_sent_after_commit(
    monkeypatch: pytest.MonkeyPatch,
    events_store: _ProcessedEventsStore,
    sent_alerts: list,
) -> None:
    async def _handler(session, event_object, ctx):
        ctx.pending_alerts.append(("billing_duplicate_slot_checkout", {"event_id": ctx.event_id}))
        return HandlerOutcome(status="applied")

    _install_handler(monkeypatch, _handler)

    await processor.process_provider_event(_event(), gateway=FakeGateway())

    assert sent_alerts == [("billing_duplicate_slot_checkout", {"event_id": "evt_1"})]


@pytest.mark.asyncio
async def test_duplicate_slot_cancellation_runs_after_commit(
    monkeypatch: pytest.MonkeyPatch,
    events_store: _ProcessedEventsStore,
    sent_alerts: list,
) -> None:
    gateway = FakeGateway()
    seen_during_handler: list[list] = []

    async def _handler(session, event_object, ctx):
        ctx.pending_cancellations.append("sub_dup")
        seen_during_handler.append(list(gateway.calls))
        return HandlerOutcome(status="applied")

    _install_handler(monkeypatch, _handler)

    result = await processor.process_provider_event(_event(), gateway=gateway)

    assert result.status == "processed"
    assert seen_during_handler == [[]]
    assert gateway.calls_named("cancel_at_period_end") == [{"external_subscription_id": "sub_dup"}]
    assert sent_alerts == []


@pytest.mark.asyncio
async def test_failed_duplicate_slot_cancellation_is_alerted(
    monkeypatch: pytest.MonkeyPatch,
    events_store: _ProcessedEventsStore,
    sent_alerts: list,
) -> None:
    gateway = FakeGateway(fail_with=ProviderUnavailableError("subscription_cancel_at_period_end failed"))

    async def _handler(session, event_object, ctx):
        ctx.pending_cancellations.append("sub_dup")
        return HandlerOutcome(status="applied")

    _install_handler(monkeypatch, _handler)

    result = await processor.process_provider_event(_event(), gateway=gateway)

    assert result.status == "processed"
    assert events_store.rows["evt_1"].status == "PROCESSED"
    assert sent_alerts == [
        (
            "billing_duplicate_slot_cancel_failed",
            {"event_id": "evt_1", "external_subscription_id": "sub_dup"},
        )
    ]


@pytest.mark.asyncio
async def test_failed_event_skips_pending_cancellations(
    monkeypatch: pytest.MonkeyPatch,
    events_store: _ProcessedEventsStore,
    sent_alerts: list,
) -> None:
    gateway = FakeGateway()

    async def _handler(session, event_object, ctx):
        ctx.pending_cancellations.append("sub_dup")
        raise InvalidEventPayloadError("broken payload")

    _install_handler(monkeypatch, _handler)

    with pytest.raises(InvalidEventPayloadError):
        await processor.process_provider_event(_event(), gateway=gateway)
    assert gateway.calls_named("cancel_at_period_end") == []
