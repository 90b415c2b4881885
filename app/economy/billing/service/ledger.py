from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from uuid import UUID, uuid4

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.ledger_entries import LedgerEntry
from app.db.models.transactions import Transaction
from app.db.repo.creators_repo import CreatorsRepo
from app.db.repo.ledger_repo import LedgerRepo
from app.db.repo.transactions_repo import TransactionsRepo
from app.db.repo.users_repo import UsersRepo
from app.economy.billing.errors import InsufficientTokensError, LedgerReferenceError
from app.economy.billing.fees import split_gross

logger = structlog.get_logger(__name__)


async def record_transaction(
    session: AsyncSession,
    *,
    user_id: UUID,
    creator_id: UUID,
    transaction_type: str,
    gross_amount: int,
    currency: str,
    external_transaction_id: str,
    completed_at: datetime,
    subscription_id: UUID | None = None,
    post_id: UUID | None = None,
    description: str | None = None,
    payment_intent_id: str | None = None,
) -> tuple[Transaction, bool]:
    """Append one completed ledger row keyed by the provider payment reference.

    Returns the row and whether it was created by this call.
    """
    existing = await TransactionsRepo.get_by_external_id(session, external_transaction_id)
    if existing is not None:
        return existing, False

    if await UsersRepo.get_by_id(session, user_id) is None:
        raise LedgerReferenceError(f"unknown payer {user_id}")
    if await CreatorsRepo.get_by_id(session, creator_id) is None:
        raise LedgerReferenceError(f"unknown creator {creator_id}")

    split = split_gross(transaction_type, gross_amount)
    transaction = Transaction(
        id=uuid4(),
        user_id=user_id,
        creator_id=creator_id,
        transaction_type=transaction_type,
        status="completed",
        gross_amount=split.gross_amount,
        platform_fee=split.platform_fee,
        net_amount=split.net_amount,
        currency=currency.lower(),
        external_transaction_id=external_transaction_id,
        payment_intent_id=payment_intent_id,
        subscription_id=subscription_id,
        post_id=post_id,
        description=description,
        completed_at=completed_at,
    )
    try:
        async with session.begin_nested():
            await TransactionsRepo.create(session, transaction=transaction)
    except IntegrityError:
        existing = await TransactionsRepo.get_by_external_id(session, external_transaction_id)
        if existing is None:
            raise
        return existing, False

    logger.info(
        "ledger_transaction_recorded",
        transaction_id=str(transaction.id),
        transaction_type=transaction_type,
        external_transaction_id=external_transaction_id,
        gross_amount=split.gross_amount,
        platform_fee=split.platform_fee,
    )
    return transaction, True


async def refund_transaction(
    session: AsyncSession,
    *,
    payment_references: Sequence[str],
    now_utc: datetime,
    payment_intent_id: str | None = None,
) -> tuple[Transaction | None, bool]:
    transaction = await TransactionsRepo.get_first_by_external_ids_for_update(
        session,
        payment_references,
    )
    if transaction is None and payment_intent_id:
        transaction = await TransactionsRepo.get_by_payment_intent_for_update(
            session,
            payment_intent_id,
        )
    if transaction is None:
        return None, False
    if transaction.status == "refunded":
        return transaction, False

    transaction.status = "refunded"
    transaction.refunded_at = now_utc
    await session.flush()
    return transaction, True


async def credit_tokens(
    session: AsyncSession,
    *,
    user_id: UUID,
    amount: int,
    entry_type: str,
    idempotency_key: str,
    now_utc: datetime,
    metadata: dict[str, object] | None = None,
) -> tuple[int, bool]:
    existing = await LedgerRepo.get_by_idempotency_key(session, idempotency_key)
    if existing is not None:
        return existing.balance_after, False

    user = await UsersRepo.get_by_id_for_update(session, user_id)
    if user is None:
        raise LedgerReferenceError(f"unknown wallet owner {user_id}")

    user.token_balance += amount
    await LedgerRepo.create(
        session,
        entry=LedgerEntry(
            user_id=user_id,
            entry_type=entry_type,
            direction="CREDIT",
            amount=amount,
            balance_after=user.token_balance,
            idempotency_key=idempotency_key,
            metadata_=metadata or {},
            created_at=now_utc,
        ),
    )
    return user.token_balance, True


async def debit_tokens(
    session: AsyncSession,
    *,
    user_id: UUID,
    amount: int,
    entry_type: str,
    idempotency_key: str,
    now_utc: datetime,
    metadata: dict[str, object] | None = None,
) -> tuple[int, bool]:
    existing = await LedgerRepo.get_by_idempotency_key(session, idempotency_key)
    if existing is not None:
        return existing.balance_after, False

    user = await UsersRepo.get_by_id_for_update(session, user_id)
    if user is None:
        raise LedgerReferenceError(f"unknown wallet owner {user_id}")
    if user.token_balance < amount:
        raise InsufficientTokensError

    user.token_balance -= amount
    await LedgerRepo.create(
        session,
        entry=LedgerEntry(
            user_id=user_id,
            entry_type=entry_type,
            direction="DEBIT",
            amount=amount,
            balance_after=user.token_balance,
            idempotency_key=idempotency_key,
            metadata_=metadata or {},
            created_at=now_utc,
        ),
    )
    return user.token_balance, True
