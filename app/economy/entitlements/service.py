from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.db.repo.chat_sessions_repo import ChatSessionsRepo
from app.db.repo.creators_repo import CreatorsRepo
from app.db.repo.subscriptions_repo import SubscriptionsRepo
from app.db.repo.users_repo import UsersRepo
from app.economy.billing.constants import LIVE_SUBSCRIPTION_STATUSES
from app.economy.billing.errors import BillingValidationError
from app.economy.entitlements.constants import RESOURCES
from app.economy.entitlements.gate import evaluate_entitlement
from app.economy.entitlements.types import (
    Entitlement,
    EntitlementInput,
    MessageSessionView,
    SubscriptionView,
)


def parse_admin_user_ids(raw: str) -> frozenset[UUID]:
    admin_ids: set[UUID] = set()
    for chunk in raw.split(","):
        value = chunk.strip()
        if not value:
            continue
        try:
            admin_ids.add(UUID(value))
        except ValueError:
            continue
    return frozenset(admin_ids)


class EntitlementService:
    @staticmethod
    async def check_access(
        session: AsyncSession,
        *,
        creator_id: UUID,
        caller_id: UUID | None,
        resource: str,
        now_utc: datetime,
    ) -> Entitlement:
        if resource not in RESOURCES:
            raise BillingValidationError(f"unknown resource: {resource}", code="E_RESOURCE_INVALID")

        creator = await CreatorsRepo.get_by_id(session, creator_id)
        if creator is None:
            raise BillingValidationError("creator not found", code="E_CREATOR_NOT_FOUND")

        if caller_id is None:
            return evaluate_entitlement(
                EntitlementInput(
                    resource=resource,
                    caller_id=None,
                    creator_owner_id=creator.user_id,
                    now_utc=now_utc,
                )
            )

        user = await UsersRepo.get_by_id(session, caller_id)
        is_admin = caller_id in parse_admin_user_ids(get_settings().admin_user_ids)
        if user is not None and user.is_admin:
            is_admin = True

        subscriptions = await SubscriptionsRepo.list_live_for_pair(
            session,
            subscriber_id=caller_id,
            creator_id=creator_id,
            statuses=LIVE_SUBSCRIPTION_STATUSES,
        )
        message_session = None
        if resource == "chat":
            chat_session = await ChatSessionsRepo.get_latest(
                session,
                user_id=caller_id,
                creator_id=creator_id,
            )
            if chat_session is not None:
                message_session = MessageSessionView(
                    id=chat_session.id,
                    messages_remaining=chat_session.messages_remaining,
                    status=chat_session.status,
                    expires_at=chat_session.expires_at,
                )

        return evaluate_entitlement(
            EntitlementInput(
                resource=resource,
                caller_id=caller_id,
                creator_owner_id=creator.user_id,
                now_utc=now_utc,
                is_admin=is_admin,
                token_balance=user.token_balance if user is not None else 0,
                subscriptions=tuple(
                    SubscriptionView(
                        id=row.id,
                        subscription_type=row.subscription_type,
                        status=row.status,
                    )
                    for row in subscriptions
                ),
                message_session=message_session,
            )
        )
