from app.db.repo.chat_sessions_repo import ChatSessionsRepo
from app.db.repo.creators_repo import CreatorsRepo
from app.db.repo.ledger_repo import LedgerRepo
from app.db.repo.outbox_events_repo import OutboxEventsRepo
from app.db.repo.post_purchases_repo import PostPurchasesRepo
from app.db.repo.pricing_sources_repo import PricingSourcesRepo
from app.db.repo.processed_events_repo import ProcessedEventsRepo
from app.db.repo.reconciliation_runs_repo import ReconciliationRunsRepo
from app.db.repo.subscriptions_repo import SubscriptionsRepo
from app.db.repo.transactions_repo import TransactionsRepo
from app.db.repo.users_repo import UsersRepo

__all__ = [
    "ChatSessionsRepo",
    "CreatorsRepo",
    "LedgerRepo",
    "OutboxEventsRepo",
    "PostPurchasesRepo",
    "PricingSourcesRepo",
    "ProcessedEventsRepo",
    "ReconciliationRunsRepo",
    "SubscriptionsRepo",
    "TransactionsRepo",
    "UsersRepo",
]
