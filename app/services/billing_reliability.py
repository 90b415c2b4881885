from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ReconciliationSnapshot:
    wallet_mismatch_count: int
    failed_event_count: int
    overdue_active_count: int
    unbalanced_transaction_count: int
    refunded_missing_timestamp_count: int


def compute_reconciliation_diff(snapshot: ReconciliationSnapshot) -> int:
    return (
        max(0, snapshot.wallet_mismatch_count)
        + max(0, snapshot.failed_event_count)
        + max(0, snapshot.overdue_active_count)
        + max(0, snapshot.unbalanced_transaction_count)
        + max(0, snapshot.refunded_missing_timestamp_count)
    )


def reconciliation_status(diff_count: int) -> str:
    return "OK" if diff_count == 0 else "DIFF"


def build_notification_body(
    *,
    event_id: int,
    event_type: str,
    payload: dict[str, object],
    created_at_iso: str | None,
) -> dict[str, object]:
    creator_id = payload.get("creator_id")
    return {
        "id": event_id,
        "type": event_type,
        "creator_id": creator_id,
        "data": {key: value for key, value in payload.items() if key != "creator_id"},
        "created_at": created_at_iso,
    }
