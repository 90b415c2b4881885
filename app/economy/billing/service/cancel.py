from __future__ import annotations

from datetime import datetime
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.repo.subscriptions_repo import SubscriptionsRepo
from app.economy.billing.errors import SubscriptionNotFoundError
from app.economy.billing.types import CancelResult
from app.services.payment_gateway import PaymentGateway

logger = structlog.get_logger(__name__)

RETIRED_STATUSES = frozenset({"cancelled", "expired"})


async def cancel_subscription(
    session: AsyncSession,
    gateway: PaymentGateway,
    *,
    subscriber_id: UUID,
    subscription_id: UUID,
    now_utc: datetime,
) -> CancelResult:
    subscription = await SubscriptionsRepo.get_by_id_for_update(session, subscription_id)
    if subscription is None or subscription.subscriber_id != subscriber_id:
        raise SubscriptionNotFoundError

    if subscription.status in RETIRED_STATUSES:
        return CancelResult(
            subscription_id=subscription.id,
            status=subscription.status,
            idempotent_replay=True,
        )

    # Provider first: a failure leaves the local row untouched.
    await gateway.cancel_at_period_end(
        external_subscription_id=subscription.external_subscription_id
    )

    subscription.status = "cancelled"
    subscription.cancelled_at = now_utc
    subscription.updated_at = now_utc
    await session.flush()

    logger.info(
        "subscription_cancelled_by_user",
        subscription_id=str(subscription.id),
        external_subscription_id=subscription.external_subscription_id,
        current_period_end=subscription.current_period_end.isoformat(),
    )
    return CancelResult(
        subscription_id=subscription.id,
        status=subscription.status,
        idempotent_replay=False,
    )
