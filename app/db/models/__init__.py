from app.db.models.chat_sessions import ChatSession
from app.db.models.creator_models import CreatorModel
from app.db.models.creators import Creator
from app.db.models.ledger_entries import LedgerEntry
from app.db.models.outbox_events import OutboxEvent
from app.db.models.post_purchases import PostPurchase
from app.db.models.processed_events import ProcessedEvent
from app.db.models.reconciliation_runs import ReconciliationRun
from app.db.models.subscription_tiers import SubscriptionTier
from app.db.models.subscriptions import Subscription
from app.db.models.transactions import Transaction
from app.db.models.users import User

__all__ = [
    "ChatSession",
    "Creator",
    "CreatorModel",
    "LedgerEntry",
    "OutboxEvent",
    "PostPurchase",
    "ProcessedEvent",
    "ReconciliationRun",
    "Subscription",
    "SubscriptionTier",
    "Transaction",
    "User",
]
