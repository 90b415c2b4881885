from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from types import SimpleNamespace
from typing import Any
from uuid import UUID, uuid4

import pytest

from app.db.models.chat_sessions import ChatSession
from app.db.models.ledger_entries import LedgerEntry
from app.db.models.subscriptions import Subscription
from app.db.models.transactions import Transaction
from app.db.repo.chat_sessions_repo import ChatSessionsRepo
from app.db.repo.creators_repo import CreatorsRepo
from app.db.repo.ledger_repo import LedgerRepo
from app.db.repo.outbox_events_repo import OutboxEventsRepo
from app.db.repo.post_purchases_repo import PostPurchasesRepo
from app.db.repo.pricing_sources_repo import PricingSourcesRepo
from app.db.repo.subscriptions_repo import SubscriptionsRepo
from app.db.repo.transactions_repo import TransactionsRepo
from app.db.repo.users_repo import UsersRepo
from app.economy.billing.errors import ProviderUnavailableError
from app.services.payment_gateway import CheckoutSessionRef, SubscriptionWindow


class _NestedTransaction:
    async def __aenter__(self) -> None:
        return None

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False


class FakeSession:
    def __init__(self) -> None:
        self.flushes = 0

    async def flush(self) -> None:
        self.flushes += 1

    def begin_nested(self) -> _NestedTransaction:
        return _NestedTransaction()


@dataclass
class FakeGateway:
    window: SubscriptionWindow | None = None
    fail_with: Exception | None = None
    customer_id: str = "cus_test_1"
    invoice_by_payment_intent: dict[str, str] = field(default_factory=dict)
    calls: list[tuple[str, dict[str, Any]]] = field(default_factory=list)

    def _record(self, name: str, kwargs: dict[str, Any]) -> None:
        self.calls.append((name, kwargs))
        if self.fail_with is not None:
            raise self.fail_with

    def calls_named(self, name: str) -> list[dict[str, Any]]:
        return [kwargs for call_name, kwargs in self.calls if call_name == name]

    async def create_customer(self, **kwargs: Any) -> str:
        self._record("create_customer", kwargs)
        return self.customer_id

    async def create_subscription_checkout(self, **kwargs: Any) -> CheckoutSessionRef:
        self._record("create_subscription_checkout", kwargs)
        return CheckoutSessionRef(session_id="cs_test_sub", url="https://checkout.test/cs_test_sub")

    async def create_payment_checkout(self, **kwargs: Any) -> CheckoutSessionRef:
        self._record("create_payment_checkout", kwargs)
        return CheckoutSessionRef(session_id="cs_test_pay", url="https://checkout.test/cs_test_pay")

    async def cancel_at_period_end(self, **kwargs: Any) -> None:
        self._record("cancel_at_period_end", kwargs)

    async def retrieve_subscription_window(self, **kwargs: Any) -> SubscriptionWindow | None:
        self.calls.append(("retrieve_subscription_window", kwargs))
        if self.fail_with is not None:
            raise ProviderUnavailableError("window lookup failed")
        return self.window

    async def find_invoice_for_payment_intent(self, *, payment_intent_id: str) -> str | None:
        self._record("find_invoice_for_payment_intent", {"payment_intent_id": payment_intent_id})
        return self.invoice_by_payment_intent.get(payment_intent_id)

    def construct_event(self, *, payload: bytes, sig_header: str | None) -> dict[str, Any]:
        raise NotImplementedError


class BillingStore:
    """In-memory stand-in for the billing tables, wired in through the repo classes."""

    def __init__(self) -> None:
        self.users: dict[UUID, SimpleNamespace] = {}
        self.creators: dict[UUID, SimpleNamespace] = {}
        self.tiers: dict[UUID, SimpleNamespace] = {}
        self.models: dict[UUID, SimpleNamespace] = {}
        self.subscriptions: list[Subscription] = []
        self.transactions: list[Transaction] = []
        self.post_purchases: set[tuple[UUID, UUID]] = set()
        self.outbox: list[dict[str, Any]] = []
        self.ledger: list[LedgerEntry] = []
        self.chat_sessions: list[ChatSession] = []

    def add_user(self, *, country_code: str | None = "GB", token_balance: int = 0, **extra: Any) -> SimpleNamespace:
        user = SimpleNamespace(
            id=uuid4(),
            email=f"{uuid4().hex[:8]}@example.test",
            country_code=country_code,
            token_balance=token_balance,
            billing_customer_id=None,
            is_admin=False,
        )
        for key, value in extra.items():
            setattr(user, key, value)
        self.users[user.id] = user
        return user

    def add_creator(self, *, display_name: str = "Mia") -> SimpleNamespace:
        owner = self.add_user()
        creator = SimpleNamespace(
            id=uuid4(),
            user_id=owner.id,
            display_name=display_name,
            subscriber_count=0,
        )
        self.creators[creator.id] = creator
        return creator

    def add_tier(self, creator_id: UUID, *, price_monthly: int = 999, **extra: Any) -> SimpleNamespace:
        tier = SimpleNamespace(
            id=uuid4(),
            creator_id=creator_id,
            name=extra.pop("name", "Fan tier"),
            price_monthly=price_monthly,
            price_3_month=extra.pop("price_3_month", None),
            price_yearly=extra.pop("price_yearly", None),
            is_active=extra.pop("is_active", True),
        )
        self.tiers[tier.id] = tier
        return tier

    def add_subscription(
        self,
        *,
        subscriber_id: UUID,
        creator_id: UUID,
        subscription_type: str = "content",
        status: str = "active",
        external_subscription_id: str | None = None,
        period_end: datetime,
        counted_subscriber: bool = False,
    ) -> Subscription:
        subscription = Subscription(
            id=uuid4(),
            subscriber_id=subscriber_id,
            creator_id=creator_id,
            subscription_type=subscription_type,
            tier_id=None,
            model_id=None,
            billing_period="monthly",
            status=status,
            started_at=period_end,
            current_period_start=period_end,
            current_period_end=period_end,
            cancelled_at=None,
            price_paid=0,
            currency="gbp",
            external_subscription_id=external_subscription_id or f"sub_{uuid4().hex[:12]}",
            counted_subscriber=counted_subscriber,
            created_at=period_end,
            updated_at=period_end,
        )
        self.subscriptions.append(subscription)
        return subscription

    def install(self, monkeypatch: pytest.MonkeyPatch) -> None:
        async def get_user(session, user_id):
            return self.users.get(user_id)

        async def set_billing_customer_id(session, *, user_id, billing_customer_id):
            user = self.users[user_id]
            if user.billing_customer_id is None:
                user.billing_customer_id = billing_customer_id
                return 1
            return 0

        async def get_creator(session, creator_id):
            return self.creators.get(creator_id)

        async def list_creators(session, creator_ids):
            return [self.creators[creator_id] for creator_id in creator_ids if creator_id in self.creators]

        async def increment_subscriber_count(session, *, creator_id):
            self.creators[creator_id].subscriber_count += 1
            return self.creators[creator_id].subscriber_count

        async def decrement_subscriber_count(session, *, creator_id):
            creator = self.creators[creator_id]
            creator.subscriber_count = max(0, creator.subscriber_count - 1)
            return creator.subscriber_count

        async def get_tier(session, tier_id):
            return self.tiers.get(tier_id)

        async def get_model(session, model_id):
            return self.models.get(model_id)

        async def get_cheapest_active_tier(session, *, creator_id):
            tiers = [
                tier
                for tier in self.tiers.values()
                if tier.creator_id == creator_id and tier.is_active
            ]
            return min(tiers, key=lambda tier: tier.price_monthly, default=None)

        async def get_cheapest_priced_model(session, *, creator_id):
            models = [
                model
                for model in self.models.values()
                if model.creator_id == creator_id and model.is_active and model.subscription_price
            ]
            return min(models, key=lambda model: model.subscription_price, default=None)

        async def list_tiers_by_ids(session, tier_ids):
            return [self.tiers[tier_id] for tier_id in tier_ids if tier_id in self.tiers]

        async def get_subscription_by_external_id(session, external_subscription_id):
            for subscription in self.subscriptions:
                if subscription.external_subscription_id == external_subscription_id:
                    return subscription
            return None

        async def get_subscription_by_id(session, subscription_id):
            for subscription in self.subscriptions:
                if subscription.id == subscription_id:
                    return subscription
            return None

        async def list_live_for_pair(
            session,
            *,
            subscriber_id,
            creator_id,
            statuses=("active", "past_due"),
            for_update=False,
        ):
            return [
                subscription
                for subscription in self.subscriptions
                if subscription.subscriber_id == subscriber_id
                and subscription.creator_id == creator_id
                and subscription.status in statuses
            ]

        async def list_for_subscriber(session, *, subscriber_id, statuses=None):
            return [
                subscription
                for subscription in self.subscriptions
                if subscription.subscriber_id == subscriber_id
                and (statuses is None or subscription.status in statuses)
            ]

        async def create_subscription(session, *, subscription):
            self.subscriptions.append(subscription)
            return subscription

        async def get_transaction_by_external_id(session, external_transaction_id):
            for transaction in self.transactions:
                if transaction.external_transaction_id == external_transaction_id:
                    return transaction
            return None

        async def get_first_transaction(session, external_transaction_ids: Sequence[str]):
            for reference in external_transaction_ids:
                if not reference:
                    continue
                transaction = await get_transaction_by_external_id(session, reference)
                if transaction is not None:
                    return transaction
            return None

        async def get_transaction_by_payment_intent(session, payment_intent_id):
            matches = [
                transaction
                for transaction in self.transactions
                if transaction.payment_intent_id == payment_intent_id
            ]
            return max(matches, key=lambda row: row.completed_at) if matches else None

        async def create_transaction(session, *, transaction):
            self.transactions.append(transaction)
            return transaction

        async def create_post_purchase(session, *, post_id, buyer_id, creator_id, transaction_id, created_at):
            key = (post_id, buyer_id)
            if key in self.post_purchases:
                return False
            self.post_purchases.add(key)
            return True

        async def create_outbox_event(session, *, event_type, payload, status, dedupe_key=None):
            if dedupe_key is not None and any(row["dedupe_key"] == dedupe_key for row in self.outbox):
                return False
            self.outbox.append(
                {"event_type": event_type, "payload": payload, "status": status, "dedupe_key": dedupe_key}
            )
            return True

        async def get_ledger_entry(session, idempotency_key):
            for entry in self.ledger:
                if entry.idempotency_key == idempotency_key:
                    return entry
            return None

        async def create_ledger_entry(session, *, entry):
            self.ledger.append(entry)
            return entry

        def _chat_sessions_for(user_id, creator_id):
            return [
                chat_session
                for chat_session in self.chat_sessions
                if chat_session.user_id == user_id and chat_session.creator_id == creator_id
            ]

        async def get_active_chat_session(session, *, user_id, creator_id):
            for chat_session in _chat_sessions_for(user_id, creator_id):
                if chat_session.status == "active":
                    return chat_session
            return None

        async def get_latest_chat_session(session, *, user_id, creator_id):
            rows = _chat_sessions_for(user_id, creator_id)
            return rows[-1] if rows else None

        async def create_chat_session(session, *, chat_session):
            self.chat_sessions.append(chat_session)
            return chat_session

        patches: list[tuple[type, str, Any]] = [
            (UsersRepo, "get_by_id", get_user),
            (UsersRepo, "get_by_id_for_update", get_user),
            (UsersRepo, "set_billing_customer_id", set_billing_customer_id),
            (CreatorsRepo, "get_by_id", get_creator),
            (CreatorsRepo, "list_by_ids", list_creators),
            (CreatorsRepo, "increment_subscriber_count", increment_subscriber_count),
            (CreatorsRepo, "decrement_subscriber_count", decrement_subscriber_count),
            (PricingSourcesRepo, "get_tier", get_tier),
            (PricingSourcesRepo, "get_model", get_model),
            (PricingSourcesRepo, "get_cheapest_active_tier", get_cheapest_active_tier),
            (PricingSourcesRepo, "get_cheapest_priced_model", get_cheapest_priced_model),
            (PricingSourcesRepo, "list_tiers_by_ids", list_tiers_by_ids),
            (SubscriptionsRepo, "get_by_external_id_for_update", get_subscription_by_external_id),
            (SubscriptionsRepo, "get_by_id_for_update", get_subscription_by_id),
            (SubscriptionsRepo, "list_live_for_pair", list_live_for_pair),
            (SubscriptionsRepo, "list_for_subscriber", list_for_subscriber),
            (SubscriptionsRepo, "create", create_subscription),
            (TransactionsRepo, "get_by_external_id", get_transaction_by_external_id),
            (TransactionsRepo, "get_first_by_external_ids_for_update", get_first_transaction),
            (TransactionsRepo, "get_by_payment_intent_for_update", get_transaction_by_payment_intent),
            (TransactionsRepo, "create", create_transaction),
            (PostPurchasesRepo, "create_if_absent", create_post_purchase),
            (OutboxEventsRepo, "create", create_outbox_event),
            (LedgerRepo, "get_by_idempotency_key", get_ledger_entry),
            (LedgerRepo, "create", create_ledger_entry),
            (ChatSessionsRepo, "get_active", get_active_chat_session),
            (ChatSessionsRepo, "get_active_for_update", get_active_chat_session),
            (ChatSessionsRepo, "get_latest", get_latest_chat_session),
            (ChatSessionsRepo, "create", create_chat_session),
        ]
        for repo, name, fn in patches:
            monkeypatch.setattr(repo, name, staticmethod(fn))
