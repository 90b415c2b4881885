from __future__ import annotations

from celery.schedules import crontab


def configure_billing_schedule(celery_app) -> None:
    celery_app.conf.beat_schedule = celery_app.conf.beat_schedule or {}
    celery_app.conf.beat_schedule.update(
        {
            "dispatch-creator-notifications-every-30-seconds": {
                "task": "app.workers.tasks.billing_notifications.dispatch_creator_notifications",
                "schedule": 30.0,
                "options": {"queue": "q_high"},
            },
            "billing-reconciliation-every-15-minutes": {
                "task": "app.workers.tasks.billing_reconciliation.run_billing_reconciliation",
                "schedule": 900.0,
                "options": {"queue": "q_normal"},
            },
            "expire-message-sessions-every-10-minutes": {
                "task": "app.workers.tasks.billing_reconciliation.expire_message_sessions",
                "schedule": 600.0,
                "options": {"queue": "q_normal"},
            },
            "purge-processed-events-daily-0415-utc": {
                "task": "app.workers.tasks.billing_reconciliation.purge_processed_events",
                "schedule": crontab(hour=4, minute=15),
                "options": {"queue": "q_low"},
            },
        }
    )
