from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from app.db.repo.users_repo import UsersRepo
from app.economy.billing.errors import InvalidEventPayloadError
from app.economy.billing.webhooks.checkout_completed import handle_checkout_session_completed
from app.economy.billing.webhooks.context import WebhookContext
from app.economy.billing.webhooks.invoices import handle_invoice_paid
from app.economy.billing.webhooks.refunds import handle_charge_refunded
from app.economy.billing.webhooks.subscription_lifecycle import (
    handle_subscription_deleted,
    handle_subscription_updated,
)
from app.services.payment_gateway import SubscriptionWindow
from tests.economy.billing_fakes import BillingStore, FakeGateway, FakeSession

NOW_UTC = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _ctx(gateway: FakeGateway, *, event_id: str = "evt_1") -> WebhookContext:
    return WebhookContext(
        event_id=event_id,
        event_type="checkout.session.completed",
        now_utc=NOW_UTC,
        gateway=gateway,
    )


def _subscription_checkout(
    *,
    user_id,
    creator_id,
    tier_id: str = "",
    subscription_type: str = "content",
    external_subscription_id: str = "sub_A",
    invoice_id: str = "in_A",
    amount_total: int = 999,
) -> dict[str, object]:
    return {
        "id": "cs_A",
        "mode": "subscription",
        "payment_status": "paid",
        "amount_total": amount_total,
        "currency": "gbp",
        "subscription": external_subscription_id,
        "invoice": invoice_id,
        "metadata": {
            "user_id": str(user_id),
            "creator_id": str(creator_id),
            "tier_id": tier_id,
            "billing_period": "monthly",
            "type": "subscription",
            "subscription_type": subscription_type,
        },
    }


@pytest.fixture
def store(monkeypatch: pytest.MonkeyPatch) -> BillingStore:
    billing_store = BillingStore()
    billing_store.install(monkeypatch)
    return billing_store


@pytest.mark.asyncio
async def test_subscription_checkout_creates_row_ledger_and_notification(store: BillingStore) -> None:
    fan = store.add_user()
    creator = store.add_creator()
    tier = store.add_tier(creator.id)
    gateway = FakeGateway()

    outcome = await handle_checkout_session_completed(
        FakeSession(),
        _subscription_checkout(user_id=fan.id, creator_id=creator.id, tier_id=str(tier.id)),
        _ctx(gateway),
    )

    assert outcome.status == "applied"
    assert len(store.subscriptions) == 1
    subscription = store.subscriptions[0]
    assert subscription.status == "active"
    assert subscription.tier_id == tier.id
    assert subscription.current_period_start == NOW_UTC
    assert subscription.current_period_end == NOW_UTC + timedelta(days=30)
    assert subscription.counted_subscriber is True
    assert creator.subscriber_count == 1

    assert len(store.transactions) == 1
    transaction = store.transactions[0]
    assert transaction.gross_amount == 999
    assert transaction.platform_fee == 199
    assert transaction.net_amount == 800
    assert transaction.external_transaction_id == "in_A"
    assert transaction.subscription_id == subscription.id

    assert [row["event_type"] for row in store.outbox] == ["new_subscriber"]
    assert store.outbox[0]["payload"]["creator_id"] == str(creator.id)


@pytest.mark.asyncio
async def test_subscription_checkout_replay_is_applied_once(store: BillingStore) -> None:
    fan = store.add_user()
    creator = store.add_creator()
    gateway = FakeGateway()
    checkout = _subscription_checkout(user_id=fan.id, creator_id=creator.id)

    first = await handle_checkout_session_completed(FakeSession(), checkout, _ctx(gateway))
    replays = [
        await handle_checkout_session_completed(FakeSession(), checkout, _ctx(gateway))
        for _ in range(3)
    ]

    assert first.status == "applied"
    assert {outcome.status for outcome in replays} == {"duplicate"}
    assert len(store.subscriptions) == 1
    assert len(store.transactions) == 1
    assert len(store.outbox) == 1
    assert creator.subscriber_count == 1


@pytest.mark.asyncio
async def test_subscription_checkout_uses_provider_window_when_available(store: BillingStore) -> None:
    fan = store.add_user()
    creator = store.add_creator()
    window = SubscriptionWindow(
        current_period_start=NOW_UTC - timedelta(minutes=5),
        current_period_end=NOW_UTC + timedelta(days=31),
    )

    await handle_checkout_session_completed(
        FakeSession(),
        _subscription_checkout(user_id=fan.id, creator_id=creator.id),
        _ctx(FakeGateway(window=window)),
    )

    subscription = store.subscriptions[0]
    assert subscription.current_period_start == window.current_period_start
    assert subscription.current_period_end == window.current_period_end


@pytest.mark.asyncio
async def test_chat_subscription_does_not_touch_subscriber_count(store: BillingStore) -> None:
    fan = store.add_user()
    creator = store.add_creator()

    await handle_checkout_session_completed(
        FakeSession(),
        _subscription_checkout(user_id=fan.id, creator_id=creator.id, subscription_type="chat"),
        _ctx(FakeGateway()),
    )

    assert store.subscriptions[0].subscription_type == "chat"
    assert store.subscriptions[0].counted_subscriber is False
    assert creator.subscriber_count == 0


@pytest.mark.asyncio
async def test_duplicate_slot_checkout_is_stored_cancelled_and_alerted(store: BillingStore) -> None:
    fan = store.add_user()
    creator = store.add_creator()
    existing = store.add_subscription(
        subscriber_id=fan.id,
        creator_id=creator.id,
        subscription_type="bundle",
        period_end=NOW_UTC + timedelta(days=10),
    )
    gateway = FakeGateway()
    ctx = _ctx(gateway)

    outcome = await handle_checkout_session_completed(
        FakeSession(),
        _subscription_checkout(
            user_id=fan.id,
            creator_id=creator.id,
            subscription_type="content",
            external_subscription_id="sub_dup",
        ),
        ctx,
    )

    assert outcome.status == "applied"
    duplicate = next(row for row in store.subscriptions if row.external_subscription_id == "sub_dup")
    assert duplicate.status == "cancelled"
    assert duplicate.cancelled_at == NOW_UTC
    assert existing.status == "active"
    assert creator.subscriber_count == 0
    assert store.outbox == []
    assert gateway.calls_named("cancel_at_period_end") == []
    assert ctx.pending_cancellations == ["sub_dup"]
    assert [alert for alert, _ in ctx.pending_alerts] == ["billing_duplicate_slot_checkout"]
    assert len(store.transactions) == 1


@pytest.mark.asyncio
async def test_subscription_window_is_fetched_before_user_lock(
    store: BillingStore,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    fan = store.add_user()
    creator = store.add_creator()
    gateway = FakeGateway()
    lock_order: list[int] = []
    locked_lookup = UsersRepo.get_by_id_for_update

    async def _recording_lock(session, user_id):
        lock_order.append(len(gateway.calls_named("retrieve_subscription_window")))
        return await locked_lookup(session, user_id)

    monkeypatch.setattr(UsersRepo, "get_by_id_for_update", staticmethod(_recording_lock))

    await handle_checkout_session_completed(
        FakeSession(),
        _subscription_checkout(user_id=fan.id, creator_id=creator.id),
        _ctx(gateway),
    )

    assert lock_order == [1]


@pytest.mark.asyncio
async def test_unpaid_checkout_is_skipped(store: BillingStore) -> None:
    fan = store.add_user()
    creator = store.add_creator()
    checkout = _subscription_checkout(user_id=fan.id, creator_id=creator.id)
    checkout["payment_status"] = "unpaid"

    outcome = await handle_checkout_session_completed(FakeSession(), checkout, _ctx(FakeGateway()))

    assert outcome.status == "skipped"
    assert store.subscriptions == []


@pytest.mark.asyncio
async def test_checkout_with_unknown_type_is_ignored(store: BillingStore) -> None:
    outcome = await handle_checkout_session_completed(
        FakeSession(),
        {"id": "cs_x", "metadata": {"type": "merch"}},
        _ctx(FakeGateway()),
    )

    assert outcome.status == "ignored"


@pytest.mark.asyncio
async def test_subscription_checkout_with_bad_metadata_is_rejected(store: BillingStore) -> None:
    checkout = {
        "id": "cs_bad",
        "subscription": "sub_bad",
        "amount_total": 999,
        "metadata": {"type": "subscription", "user_id": "not-a-uuid", "creator_id": str(uuid4())},
    }

    with pytest.raises(InvalidEventPayloadError):
        await handle_checkout_session_completed(FakeSession(), checkout, _ctx(FakeGateway()))


@pytest.mark.asyncio
async def test_tip_checkout_records_transaction_and_notification_once(store: BillingStore) -> None:
    fan = store.add_user()
    creator = store.add_creator()
    checkout = {
        "id": "cs_tip",
        "mode": "payment",
        "payment_status": "paid",
        "payment_intent": "pi_tip",
        "amount_total": 500,
        "currency": "gbp",
        "metadata": {
            "type": "tip",
            "user_id": str(fan.id),
            "creator_id": str(creator.id),
            "message": "great stream",
        },
    }

    first = await handle_checkout_session_completed(FakeSession(), checkout, _ctx(FakeGateway()))
    second = await handle_checkout_session_completed(FakeSession(), checkout, _ctx(FakeGateway()))

    assert (first.status, second.status) == ("applied", "duplicate")
    assert len(store.transactions) == 1
    assert store.transactions[0].transaction_type == "tip"
    assert store.transactions[0].platform_fee == 100
    assert store.transactions[0].net_amount == 400
    assert store.transactions[0].description == "great stream"
    assert [row["event_type"] for row in store.outbox] == ["tip"]


@pytest.mark.asyncio
async def test_ppv_checkout_unlocks_post_once(store: BillingStore) -> None:
    fan = store.add_user()
    creator = store.add_creator()
    post_id = uuid4()
    checkout = {
        "id": "cs_ppv",
        "payment_status": "paid",
        "payment_intent": "pi_ppv",
        "amount_total": 300,
        "currency": "gbp",
        "metadata": {
            "type": "ppv",
            "user_id": str(fan.id),
            "creator_id": str(creator.id),
            "post_id": str(post_id),
        },
    }

    first = await handle_checkout_session_completed(FakeSession(), checkout, _ctx(FakeGateway()))
    second = await handle_checkout_session_completed(FakeSession(), checkout, _ctx(FakeGateway()))

    assert (first.status, second.status) == ("applied", "duplicate")
    assert store.post_purchases == {(post_id, fan.id)}
    assert store.transactions[0].post_id == post_id


@pytest.mark.asyncio
async def test_token_purchase_credits_wallet_once(store: BillingStore) -> None:
    fan = store.add_user(token_balance=100)
    checkout = {
        "id": "cs_tokens",
        "payment_status": "paid",
        "payment_intent": "pi_tokens",
        "amount_total": 1000,
        "currency": "gbp",
        "metadata": {
            "type": "token_purchase",
            "user_id": str(fan.id),
            "pack_code": "TOKENS_2500",
            "tokens": "2500",
        },
    }

    first = await handle_checkout_session_completed(FakeSession(), checkout, _ctx(FakeGateway()))
    second = await handle_checkout_session_completed(FakeSession(), checkout, _ctx(FakeGateway()))

    assert first.status == "applied"
    assert first.extras["balance_after"] == 2600
    assert second.status == "duplicate"
    assert second.extras["balance_after"] == 2600
    assert fan.token_balance == 2600
    assert len(store.ledger) == 1
    assert store.ledger[0].idempotency_key == "token_purchase:pi_tokens"


@pytest.mark.asyncio
async def test_token_purchase_with_mismatched_pack_is_rejected(store: BillingStore) -> None:
    fan = store.add_user()
    checkout = {
        "id": "cs_tokens_bad",
        "payment_status": "paid",
        "amount_total": 1000,
        "metadata": {
            "type": "token_purchase",
            "user_id": str(fan.id),
            "pack_code": "TOKENS_2500",
            "tokens": "9999",
        },
    }

    with pytest.raises(InvalidEventPayloadError):
        await handle_checkout_session_completed(FakeSession(), checkout, _ctx(FakeGateway()))
    assert fan.token_balance == 0


def _invoice(*, invoice_id: str, external_subscription_id: str, period_end: datetime) -> dict[str, object]:
    period_start = period_end - timedelta(days=30)
    return {
        "id": invoice_id,
        "subscription": external_subscription_id,
        "amount_paid": 999,
        "currency": "gbp",
        "lines": {
            "data": [
                {
                    "period": {
                        "start": int(period_start.timestamp()),
                        "end": int(period_end.timestamp()),
                    }
                }
            ]
        },
    }


@pytest.mark.asyncio
async def test_invoice_before_checkout_is_skipped_then_checkout_creates_row(
    store: BillingStore,
) -> None:
    fan = store.add_user()
    creator = store.add_creator()
    gateway = FakeGateway()

    early = await handle_invoice_paid(
        FakeSession(),
        _invoice(
            invoice_id="in_A",
            external_subscription_id="sub_A",
            period_end=NOW_UTC + timedelta(days=30),
        ),
        _ctx(gateway, event_id="evt_invoice"),
    )
    assert early.status == "skipped"
    assert store.subscriptions == []
    assert store.transactions == []

    created = await handle_checkout_session_completed(
        FakeSession(),
        _subscription_checkout(user_id=fan.id, creator_id=creator.id),
        _ctx(gateway, event_id="evt_checkout"),
    )
    assert created.status == "applied"
    assert len(store.subscriptions) == 1
    assert len(store.transactions) == 1


@pytest.mark.asyncio
async def test_renewal_invoice_advances_period_and_records_transaction(store: BillingStore) -> None:
    fan = store.add_user()
    creator = store.add_creator()
    subscription = store.add_subscription(
        subscriber_id=fan.id,
        creator_id=creator.id,
        status="past_due",
        external_subscription_id="sub_R",
        period_end=NOW_UTC,
    )
    next_end = (NOW_UTC + timedelta(days=30)).replace(microsecond=0)
    invoice = _invoice(invoice_id="in_R2", external_subscription_id="sub_R", period_end=next_end)

    first = await handle_invoice_paid(FakeSession(), invoice, _ctx(FakeGateway()))
    second = await handle_invoice_paid(FakeSession(), invoice, _ctx(FakeGateway()))

    assert first.status == "applied"
    assert second.status == "duplicate"
    assert subscription.status == "active"
    assert subscription.current_period_end == next_end
    assert len(store.transactions) == 1
    assert store.transactions[0].description == "Subscription renewal"


@pytest.mark.asyncio
async def test_invoice_does_not_reactivate_cancelled_subscription(store: BillingStore) -> None:
    fan = store.add_user()
    creator = store.add_creator()
    subscription = store.add_subscription(
        subscriber_id=fan.id,
        creator_id=creator.id,
        status="cancelled",
        external_subscription_id="sub_C",
        period_end=NOW_UTC,
    )

    await handle_invoice_paid(
        FakeSession(),
        _invoice(
            invoice_id="in_C2",
            external_subscription_id="sub_C",
            period_end=NOW_UTC + timedelta(days=30),
        ),
        _ctx(FakeGateway()),
    )

    assert subscription.status == "cancelled"


@pytest.mark.asyncio
async def test_invoice_without_subscription_is_ignored(store: BillingStore) -> None:
    outcome = await handle_invoice_paid(
        FakeSession(),
        {"id": "in_oneoff", "amount_paid": 500},
        _ctx(FakeGateway()),
    )

    assert outcome.status == "ignored"


@pytest.mark.asyncio
async def test_refund_marks_transaction_and_keeps_subscription_status(store: BillingStore) -> None:
    fan = store.add_user()
    creator = store.add_creator()
    await handle_checkout_session_completed(
        FakeSession(),
        _subscription_checkout(user_id=fan.id, creator_id=creator.id),
        _ctx(FakeGateway()),
    )
    charge = {"id": "ch_A", "invoice": "in_A", "payment_intent": "pi_A", "refunded": True}

    first = await handle_charge_refunded(FakeSession(), charge, _ctx(FakeGateway()))
    second = await handle_charge_refunded(FakeSession(), charge, _ctx(FakeGateway()))

    assert (first.status, second.status) == ("applied", "duplicate")
    transaction = store.transactions[0]
    assert transaction.status == "refunded"
    assert transaction.refunded_at == NOW_UTC
    assert store.subscriptions[0].status == "active"
    assert creator.subscriber_count == 1


@pytest.mark.asyncio
async def test_partial_refund_is_skipped(store: BillingStore) -> None:
    outcome = await handle_charge_refunded(
        FakeSession(),
        {"id": "ch_partial", "payment_intent": "pi_x", "refunded": False},
        _ctx(FakeGateway()),
    )

    assert outcome.status == "skipped"
    assert outcome.detail == "partial_refund"


@pytest.mark.asyncio
async def test_refund_for_unknown_payment_is_skipped(store: BillingStore) -> None:
    outcome = await handle_charge_refunded(
        FakeSession(),
        {"id": "ch_missing", "payment_intent": "pi_missing", "refunded": True},
        _ctx(FakeGateway()),
    )

    assert outcome.status == "skipped"
    assert outcome.detail == "transaction_not_found"


def _parented_invoice(*, invoice_id: str, external_subscription_id: str, payments: list) -> dict[str, object]:
    invoice = _invoice(
        invoice_id=invoice_id,
        external_subscription_id=external_subscription_id,
        period_end=NOW_UTC + timedelta(days=60),
    )
    invoice.pop("subscription")
    invoice["parent"] = {"subscription_details": {"subscription": external_subscription_id}}
    invoice["payments"] = {"data": payments}
    return invoice


@pytest.mark.asyncio
async def test_renewal_refund_matches_charge_by_payment_intent_only(store: BillingStore) -> None:
    fan = store.add_user()
    creator = store.add_creator()
    gateway = FakeGateway()
    await handle_checkout_session_completed(
        FakeSession(),
        _subscription_checkout(user_id=fan.id, creator_id=creator.id),
        _ctx(gateway, event_id="evt_checkout"),
    )
    await handle_invoice_paid(
        FakeSession(),
        _parented_invoice(
            invoice_id="in_B",
            external_subscription_id="sub_A",
            payments=[{"payment": {"type": "payment_intent", "payment_intent": "pi_B"}}],
        ),
        _ctx(gateway, event_id="evt_invoice"),
    )

    outcome = await handle_charge_refunded(
        FakeSession(),
        {"id": "ch_B", "payment_intent": "pi_B", "refunded": True},
        _ctx(gateway, event_id="evt_refund"),
    )

    renewal = next(row for row in store.transactions if row.external_transaction_id == "in_B")
    initial = next(row for row in store.transactions if row.external_transaction_id == "in_A")
    assert outcome.status == "applied"
    assert outcome.transaction_id == renewal.id
    assert renewal.payment_intent_id == "pi_B"
    assert renewal.status == "refunded"
    assert initial.status == "completed"
    assert gateway.calls_named("find_invoice_for_payment_intent") == []


@pytest.mark.asyncio
async def test_refund_resolves_invoice_through_gateway_when_intent_unknown(
    store: BillingStore,
) -> None:
    fan = store.add_user()
    creator = store.add_creator()
    store.add_subscription(
        subscriber_id=fan.id,
        creator_id=creator.id,
        external_subscription_id="sub_P",
        period_end=NOW_UTC,
    )
    gateway = FakeGateway(invoice_by_payment_intent={"pi_P2": "in_P2"})
    await handle_invoice_paid(
        FakeSession(),
        _parented_invoice(invoice_id="in_P2", external_subscription_id="sub_P", payments=[]),
        _ctx(gateway, event_id="evt_invoice"),
    )
    charge = {"id": "ch_P2", "payment_intent": "pi_P2", "refunded": True}

    first = await handle_charge_refunded(FakeSession(), charge, _ctx(gateway, event_id="evt_r1"))
    second = await handle_charge_refunded(FakeSession(), charge, _ctx(gateway, event_id="evt_r2"))

    assert (first.status, second.status) == ("applied", "duplicate")
    assert store.transactions[0].payment_intent_id is None
    assert store.transactions[0].status == "refunded"
    assert gateway.calls_named("find_invoice_for_payment_intent") == [
        {"payment_intent_id": "pi_P2"},
        {"payment_intent_id": "pi_P2"},
    ]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("provider_status", "expected"),
    [
        ("active", "active"),
        ("trialing", "active"),
        ("past_due", "past_due"),
        ("unpaid", "past_due"),
        ("canceled", "cancelled"),
        ("paused", "past_due"),
    ],
)
async def test_subscription_updated_maps_provider_status(
    store: BillingStore,
    provider_status: str,
    expected: str,
) -> None:
    fan = store.add_user()
    creator = store.add_creator()
    subscription = store.add_subscription(
        subscriber_id=fan.id,
        creator_id=creator.id,
        external_subscription_id="sub_U",
        period_end=NOW_UTC + timedelta(days=5),
    )

    await handle_subscription_updated(
        FakeSession(),
        {"id": "sub_U", "status": provider_status},
        _ctx(FakeGateway()),
    )

    assert subscription.status == expected


@pytest.mark.asyncio
async def test_subscription_updated_does_not_reactivate_into_taken_slot(store: BillingStore) -> None:
    fan = store.add_user()
    creator = store.add_creator()
    store.add_subscription(
        subscriber_id=fan.id,
        creator_id=creator.id,
        subscription_type="bundle",
        period_end=NOW_UTC + timedelta(days=20),
    )
    cancelled = store.add_subscription(
        subscriber_id=fan.id,
        creator_id=creator.id,
        subscription_type="chat",
        status="cancelled",
        external_subscription_id="sub_old_chat",
        period_end=NOW_UTC + timedelta(days=5),
    )

    await handle_subscription_updated(
        FakeSession(),
        {"id": "sub_old_chat", "status": "active"},
        _ctx(FakeGateway()),
    )

    assert cancelled.status == "cancelled"


@pytest.mark.asyncio
async def test_subscription_deleted_expires_and_decrements_once(store: BillingStore) -> None:
    fan = store.add_user()
    creator = store.add_creator()
    creator.subscriber_count = 1
    subscription = store.add_subscription(
        subscriber_id=fan.id,
        creator_id=creator.id,
        external_subscription_id="sub_D",
        period_end=NOW_UTC,
        counted_subscriber=True,
    )

    first = await handle_subscription_deleted(FakeSession(), {"id": "sub_D"}, _ctx(FakeGateway()))
    second = await handle_subscription_deleted(FakeSession(), {"id": "sub_D"}, _ctx(FakeGateway()))

    assert (first.status, second.status) == ("applied", "duplicate")
    assert subscription.status == "expired"
    assert subscription.counted_subscriber is False
    assert creator.subscriber_count == 0


@pytest.mark.asyncio
async def test_subscription_updated_after_expiry_is_skipped(store: BillingStore) -> None:
    fan = store.add_user()
    creator = store.add_creator()
    subscription = store.add_subscription(
        subscriber_id=fan.id,
        creator_id=creator.id,
        status="expired",
        external_subscription_id="sub_E",
        period_end=NOW_UTC,
    )

    outcome = await handle_subscription_updated(
        FakeSession(),
        {"id": "sub_E", "status": "active"},
        _ctx(FakeGateway()),
    )

    assert outcome.status == "skipped"
    assert subscription.status == "expired"
