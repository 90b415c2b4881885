from app.workers.tasks.billing_notifications import dispatch_creator_notifications
from app.workers.tasks.billing_reconciliation import (
    expire_message_sessions_task,
    purge_processed_events,
    run_billing_reconciliation,
)

__all__ = [
    "dispatch_creator_notifications",
    "expire_message_sessions_task",
    "purge_processed_events",
    "run_billing_reconciliation",
]
