"""
Stripe webhook handler - the Stripe gateway adapter.

Normalises Stripe notifications into ``PaymentEventCreateModel`` and hands
them to the payment ingester:
- checkout.session.completed (mode=payment) -> one-time payment
- invoice.paid -> recurring payment of a Stripe subscription
- customer.subscription.deleted -> cancellation at period end
- invoice.payment_failed -> logged only, Stripe keeps retrying the charge

Business failures surface through the app's exception handler with their
status code, so transient ones (503, 409) make Stripe redeliver.
"""

from typing import Optional

import stripe
from fastapi import Request, HTTPException, status
from pydantic import ValidationError

from common.core.config import settings
from common.core.exceptions import AppException
from common.core.otel_axiom_exporter import get_logger
from packages.billing.exceptions import ExternalGatewayError
from packages.billing.models.domain.enums import (
    BillingCycle,
    PaymentProvider,
    PaymentType,
)
from packages.billing.models.domain.payment_event import PaymentEventCreateModel
from packages.billing.models.domain.stripe_webhooks import (
    StripeCheckoutSessionData,
    StripeInvoiceData,
    StripeMetadata,
    StripeSubscriptionData,
    StripeWebhookPayload,
    StripeWebhookType,
    cents_to_amount,
)
from packages.billing.services.payment_ingestion_service import PaymentIngestionService
from packages.billing.services.subscription_service import SubscriptionService

logger = get_logger(__name__)


async def handle_stripe_webhook(request: Request) -> dict[str, str]:
    """
    Handle incoming webhook from Stripe.

    Validates webhook signature and routes to appropriate handler.
    """
    try:
        payload_bytes = await request.body()
        sig_header = request.headers.get("stripe-signature")

        if not sig_header:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Missing stripe-signature header",
            )

        try:
            stripe.Webhook.construct_event(
                payload_bytes, sig_header, settings.stripe_webhook_secret
            )
        except (stripe.SignatureVerificationError, ValueError) as e:
            logger.error(f"Stripe webhook signature verification failed: {str(e)}")
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid signature"
            )

        payload = StripeWebhookPayload.model_validate_json(payload_bytes)

        logger.info(
            f"Received Stripe webhook: {payload.type}",
            extra={
                "event_id": payload.id,
                "event_type": payload.type,
                "livemode": payload.livemode,
            },
        )

        if payload.type == StripeWebhookType.CHECKOUT_SESSION_COMPLETED.value:
            await _handle_checkout_completed(payload.data.object)
        elif payload.type == StripeWebhookType.INVOICE_PAID.value:
            await _handle_invoice_paid(payload.data.object)
        elif payload.type == StripeWebhookType.INVOICE_PAYMENT_FAILED.value:
            _handle_invoice_payment_failed(payload.data.object)
        elif payload.type == StripeWebhookType.SUBSCRIPTION_DELETED.value:
            await _handle_subscription_deleted(payload.data.object)
        else:
            logger.info(f"Unhandled Stripe webhook type: {payload.type}")

        return {"status": "success"}

    except ValidationError as e:
        logger.error(
            "Invalid Stripe webhook payload", extra={"validation_errors": e.errors()}
        )
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook payload"
        )
    except (HTTPException, AppException):
        raise
    except Exception as e:
        logger.error(
            f"Failed to process Stripe webhook: {str(e)}", extra={"error": str(e)}
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed",
        )


def _build_event(
    external_event_id: str,
    metadata: StripeMetadata,
    payment_type: PaymentType,
    amount_cents: Optional[int],
    currency: Optional[str],
    external_subscription_id: Optional[str] = None,
) -> Optional[PaymentEventCreateModel]:
    """Normalised payment event, or None when our metadata is missing or malformed."""
    if not metadata.is_complete():
        logger.error(
            f"Missing billing metadata on Stripe object {external_event_id}",
            extra={"external_event_id": external_event_id},
        )
        return None
    try:
        return PaymentEventCreateModel(
            external_event_id=external_event_id,
            provider=PaymentProvider.STRIPE,
            user_id=int(metadata.user_id),
            tier_id=int(metadata.tier_id),
            billing_cycle=BillingCycle(metadata.billing_cycle),
            payment_type=payment_type,
            amount=cents_to_amount(amount_cents),
            currency=(currency or "usd").upper(),
            coupon_code=metadata.coupon_code,
            external_subscription_id=external_subscription_id,
        )
    except ValueError as e:
        logger.error(
            f"Malformed billing metadata on Stripe object {external_event_id}: {e}",
            extra={"external_event_id": external_event_id},
        )
        return None


async def _handle_checkout_completed(data: dict) -> None:
    """
    Handle checkout.session.completed event.

    Only one-time payments are ingested here. Subscription-mode checkouts are
    ingested from their first invoice.paid, which carries the Stripe
    subscription id.
    """
    session = StripeCheckoutSessionData(**data)

    if session.mode != "payment":
        logger.info(
            f"Checkout {session.id} in {session.mode} mode, waiting for invoice.paid",
            extra={"session_id": session.id},
        )
        return
    if session.payment_status != "paid":
        logger.info(
            f"Checkout {session.id} not paid yet ({session.payment_status})",
            extra={"session_id": session.id},
        )
        return

    event = _build_event(
        external_event_id=f"stripe:checkout:{session.id}",
        metadata=session.metadata,
        payment_type=PaymentType.ONE_TIME,
        amount_cents=session.amount_total,
        currency=session.currency,
    )
    if event is None:
        return

    result = await PaymentIngestionService().ingest(event)
    logger.info(
        f"Checkout {session.id} ingested: applied={result.applied}",
        extra={
            "session_id": session.id,
            "user_id": event.user_id,
            "status": result.status.value,
            "reason": result.reason,
        },
    )


def _retrieve_subscription_metadata(stripe_subscription_id: str) -> StripeMetadata:
    """Fetch metadata from the Stripe subscription itself."""
    stripe.api_key = settings.stripe_secret_key
    try:
        stripe_sub = stripe.Subscription.retrieve(stripe_subscription_id)
    except stripe.StripeError as e:
        logger.warning(
            f"Failed to retrieve Stripe subscription {stripe_subscription_id}: {e}",
            extra={"stripe_subscription_id": stripe_subscription_id},
        )
        raise ExternalGatewayError(
            f"Stripe unavailable while retrieving {stripe_subscription_id}",
            reason="gateway_unavailable",
        ) from e

    metadata = stripe_sub.metadata or {}
    return StripeMetadata(
        user_id=metadata.get("user_id"),
        tier_id=metadata.get("tier_id"),
        billing_cycle=metadata.get("billing_cycle"),
        coupon_code=metadata.get("coupon_code"),
    )


async def _handle_invoice_paid(data: dict) -> None:
    """Handle invoice.paid event - first payment and every renewal of a Stripe subscription."""
    invoice = StripeInvoiceData(**data)

    if not invoice.subscription:
        logger.info(
            f"Invoice {invoice.id} is not for a subscription, ignoring",
            extra={"invoice_id": invoice.id},
        )
        return

    metadata = (
        invoice.subscription_details.metadata
        if invoice.subscription_details is not None
        else StripeMetadata()
    )
    if not metadata.is_complete():
        metadata = _retrieve_subscription_metadata(invoice.subscription)

    event = _build_event(
        external_event_id=f"stripe:invoice:{invoice.id}",
        metadata=metadata,
        payment_type=PaymentType.RECURRING,
        amount_cents=invoice.amount_paid,
        currency=invoice.currency,
        external_subscription_id=invoice.subscription,
    )
    if event is None:
        return

    result = await PaymentIngestionService().ingest(event)
    logger.info(
        f"Invoice {invoice.id} ingested: applied={result.applied}",
        extra={
            "invoice_id": invoice.id,
            "user_id": event.user_id,
            "billing_reason": invoice.billing_reason,
            "status": result.status.value,
            "reason": result.reason,
        },
    )


def _handle_invoice_payment_failed(data: dict) -> None:
    """Handle invoice.payment_failed event. The grant runs out on its own if Stripe gives up."""
    invoice = StripeInvoiceData(**data)
    logger.warning(
        f"Stripe invoice payment failed: {invoice.id}",
        extra={
            "invoice_id": invoice.id,
            "customer_id": invoice.customer,
            "stripe_subscription_id": invoice.subscription,
        },
    )


async def _handle_subscription_deleted(data: dict) -> None:
    """Handle customer.subscription.deleted event."""
    stripe_subscription = StripeSubscriptionData(**data)

    subscription = await SubscriptionService().cancel_external(
        stripe_subscription.id, reason="gateway_cancelled"
    )
    if subscription is None:
        logger.info(
            f"No active subscription for Stripe subscription {stripe_subscription.id}",
            extra={"stripe_subscription_id": stripe_subscription.id},
        )
        return

    logger.info(
        f"Stripe subscription {stripe_subscription.id} deleted, cancelling at period end",
        extra={
            "stripe_subscription_id": stripe_subscription.id,
            "subscription_id": subscription.id,
            "user_id": subscription.user_id,
        },
    )
