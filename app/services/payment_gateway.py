from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Protocol

import stripe
import structlog

from app.core.config import get_settings
from app.economy.billing.errors import (
    InvalidEventPayloadError,
    ProviderUnavailableError,
    SignatureInvalidError,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class CheckoutSessionRef:
    session_id: str
    url: str


@dataclass(frozen=True, slots=True)
class SubscriptionWindow:
    current_period_start: datetime
    current_period_end: datetime


class PaymentGateway(Protocol):
    async def create_customer(
        self,
        *,
        user_id: str,
        email: str | None,
        idempotency_key: str,
    ) -> str: ...

    async def create_subscription_checkout(
        self,
        *,
        customer_id: str,
        amount_minor: int,
        currency: str,
        interval: str,
        interval_count: int,
        product_name: str,
        metadata: dict[str, str],
    ) -> CheckoutSessionRef: ...

    async def create_payment_checkout(
        self,
        *,
        customer_id: str | None,
        amount_minor: int,
        currency: str,
        product_name: str,
        metadata: dict[str, str],
    ) -> CheckoutSessionRef: ...

    async def cancel_at_period_end(self, *, external_subscription_id: str) -> None: ...

    async def retrieve_subscription_window(
        self,
        *,
        external_subscription_id: str,
    ) -> SubscriptionWindow | None: ...

    async def find_invoice_for_payment_intent(self, *, payment_intent_id: str) -> str | None: ...

    def construct_event(self, *, payload: bytes, sig_header: str | None) -> dict[str, Any]: ...


def _from_timestamp(value: object) -> datetime | None:
    if not isinstance(value, int) or value <= 0:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _subscription_window(subscription: Any) -> SubscriptionWindow | None:
    # Newer API versions report the billing window per subscription item.
    sources = [subscription]
    try:
        item_data = subscription["items"]["data"]
    except (KeyError, TypeError):
        item_data = None
    if item_data:
        sources.append(item_data[0])
    for source in sources:
        start = _from_timestamp(getattr(source, "current_period_start", None))
        end = _from_timestamp(getattr(source, "current_period_end", None))
        if start is not None and end is not None:
            return SubscriptionWindow(current_period_start=start, current_period_end=end)
    return None


class StripeGateway:
    def __init__(
        self,
        *,
        api_key: str,
        webhook_secret: str,
        success_url: str,
        cancel_url: str,
        timeout_seconds: float,
    ) -> None:
        self._api_key = api_key
        self._webhook_secret = webhook_secret
        self._success_url = success_url
        self._cancel_url = cancel_url
        stripe.max_network_retries = 0
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout_seconds)

    async def _call(self, operation: str, fn: Any, /, **kwargs: Any) -> Any:
        if not self._api_key:
            raise ProviderUnavailableError("payment provider is not configured")
        try:
            return await asyncio.to_thread(fn, api_key=self._api_key, **kwargs)
        except stripe.StripeError as exc:
            logger.warning(
                "payment_provider_call_failed",
                operation=operation,
                error_type=type(exc).__name__,
                request_id=getattr(exc, "request_id", None),
            )
            raise ProviderUnavailableError(f"{operation} failed") from exc

    async def create_customer(
        self,
        *,
        user_id: str,
        email: str | None,
        idempotency_key: str,
    ) -> str:
        params: dict[str, Any] = {"metadata": {"app_user_id": user_id}}
        if email:
            params["email"] = email
        customer = await self._call(
            "customer_create",
            stripe.Customer.create,
            idempotency_key=idempotency_key,
            **params,
        )
        return str(customer.id)

    async def create_subscription_checkout(
        self,
        *,
        customer_id: str,
        amount_minor: int,
        currency: str,
        interval: str,
        interval_count: int,
        product_name: str,
        metadata: dict[str, str],
    ) -> CheckoutSessionRef:
        session = await self._call(
            "subscription_checkout_create",
            stripe.checkout.Session.create,
            mode="subscription",
            customer=customer_id,
            success_url=self._success_url,
            cancel_url=self._cancel_url,
            line_items=[
                {
                    "quantity": 1,
                    "price_data": {
                        "currency": currency,
                        "unit_amount": amount_minor,
                        "recurring": {"interval": interval, "interval_count": interval_count},
                        "product_data": {"name": product_name},
                    },
                }
            ],
            metadata=metadata,
            subscription_data={"metadata": metadata},
        )
        return CheckoutSessionRef(session_id=str(session.id), url=str(session.url))

    async def create_payment_checkout(
        self,
        *,
        customer_id: str | None,
        amount_minor: int,
        currency: str,
        product_name: str,
        metadata: dict[str, str],
    ) -> CheckoutSessionRef:
        params: dict[str, Any] = {}
        if customer_id:
            params["customer"] = customer_id
        session = await self._call(
            "payment_checkout_create",
            stripe.checkout.Session.create,
            mode="payment",
            success_url=self._success_url,
            cancel_url=self._cancel_url,
            line_items=[
                {
                    "quantity": 1,
                    "price_data": {
                        "currency": currency,
                        "unit_amount": amount_minor,
                        "product_data": {"name": product_name},
                    },
                }
            ],
            metadata=metadata,
            payment_intent_data={"metadata": metadata},
            **params,
        )
        return CheckoutSessionRef(session_id=str(session.id), url=str(session.url))

    async def cancel_at_period_end(self, *, external_subscription_id: str) -> None:
        await self._call(
            "subscription_cancel_at_period_end",
            stripe.Subscription.modify,
            id=external_subscription_id,
            cancel_at_period_end=True,
        )

    async def retrieve_subscription_window(
        self,
        *,
        external_subscription_id: str,
    ) -> SubscriptionWindow | None:
        subscription = await self._call(
            "subscription_retrieve",
            stripe.Subscription.retrieve,
            id=external_subscription_id,
        )
        return _subscription_window(subscription)

    async def find_invoice_for_payment_intent(self, *, payment_intent_id: str) -> str | None:
        payments = await self._call(
            "invoice_payment_list",
            stripe.InvoicePayment.list,
            payment={"type": "payment_intent", "payment_intent": payment_intent_id},
            limit=1,
        )
        for payment in payments.data:
            invoice = payment.invoice
            if isinstance(invoice, str) and invoice:
                return invoice
            invoice_id = getattr(invoice, "id", None)
            if isinstance(invoice_id, str) and invoice_id:
                return invoice_id
        return None

    def construct_event(self, *, payload: bytes, sig_header: str | None) -> dict[str, Any]:
        if not self._webhook_secret:
            raise SignatureInvalidError("webhook secret is not configured")
        if not sig_header:
            raise SignatureInvalidError("missing signature header")
        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"),
                sig_header,
                self._webhook_secret,
            )
        except (stripe.SignatureVerificationError, UnicodeDecodeError) as exc:
            raise SignatureInvalidError("signature verification failed") from exc
        try:
            event = json.loads(payload)
        except ValueError as exc:
            raise InvalidEventPayloadError("event body is not valid JSON") from exc
        if not isinstance(event, dict):
            raise InvalidEventPayloadError("event body must be an object")
        return event


@lru_cache(maxsize=1)
def get_payment_gateway() -> PaymentGateway:
    settings = get_settings()
    return StripeGateway(
        api_key=settings.stripe_secret_key,
        webhook_secret=settings.stripe_webhook_secret,
        success_url=settings.checkout_success_url,
        cancel_url=settings.checkout_cancel_url,
        timeout_seconds=settings.stripe_api_timeout_seconds,
    )
