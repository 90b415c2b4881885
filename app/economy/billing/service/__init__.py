from __future__ import annotations

from .cancel import cancel_subscription
from .checkout import (
    create_subscription_checkout,
    create_tip_checkout,
    create_token_pack_checkout,
    ensure_billing_customer,
)
from .ledger import credit_tokens, debit_tokens, record_transaction, refund_transaction
from .listing import SubscriptionSummary, list_subscriptions
from .notifications import enqueue_creator_notification


class BillingService:
    create_subscription_checkout = staticmethod(create_subscription_checkout)
    create_tip_checkout = staticmethod(create_tip_checkout)
    create_token_pack_checkout = staticmethod(create_token_pack_checkout)
    ensure_billing_customer = staticmethod(ensure_billing_customer)
    cancel_subscription = staticmethod(cancel_subscription)
    list_subscriptions = staticmethod(list_subscriptions)
    record_transaction = staticmethod(record_transaction)
    refund_transaction = staticmethod(refund_transaction)
    credit_tokens = staticmethod(credit_tokens)
    debit_tokens = staticmethod(debit_tokens)
    enqueue_creator_notification = staticmethod(enqueue_creator_notification)


__all__ = [
    "BillingService",
    "SubscriptionSummary",
]
