"""
Stripe webhook handling.

The route verifies the signature with construct_event(); handle_event()
applies the event to the user's plan. Events that can't be matched to a
user or plan are logged and acknowledged so Stripe stops retrying.
"""

import logging
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

import stripe
from sqlalchemy.orm import Session

from rerank.config import get_settings
from rerank.database import repository
from rerank.integrations.stripe_client import get_field, get_stripe, subscription_period

logger = logging.getLogger(__name__)


class WebhookError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def construct_event(payload: bytes, signature: Optional[str]):
    """Verify the Stripe-Signature header and parse the event."""
    secret = get_settings().STRIPE_WEBHOOK_SECRET
    if not secret:
        raise WebhookError("Webhook secret not configured", 500)
    if not signature:
        raise WebhookError("No signature", 400)

    try:
        return stripe.Webhook.construct_event(payload, signature, secret)
    except (ValueError, stripe.SignatureVerificationError) as e:
        raise WebhookError(f"Webhook signature verification failed: {e}", 400)


def _metadata(obj: Any) -> dict:
    metadata = get_field(obj, "metadata") or {}
    values = {key: get_field(metadata, key) for key in ("user_id", "plan_name", "currency")}
    return {key: value for key, value in values.items() if value}


def _find_user(db: Session, user_id: Optional[str]):
    if not user_id:
        return None
    try:
        return repository.get_user(db, UUID(str(user_id)))
    except ValueError:
        logger.warning(f"Webhook metadata has invalid user id {user_id}")
        return None


# =============================================================================
# HANDLERS
# =============================================================================

def handle_checkout_completed(db: Session, session: Any) -> None:
    metadata = _metadata(session)
    user = _find_user(db, metadata.get("user_id"))
    if user is None or not metadata.get("plan_name"):
        logger.warning(f"Checkout session {get_field(session, 'id')} without usable metadata")
        return

    subscription_id = get_field(session, "subscription")
    if subscription_id:
        repository.update_stripe_subscription_id(db, user, subscription_id)


def handle_subscription_changed(db: Session, subscription: Any) -> None:
    """customer.subscription.created / updated"""
    metadata = _metadata(subscription)
    user = _find_user(db, metadata.get("user_id"))
    plan_name = metadata.get("plan_name")
    if user is None or not plan_name:
        logger.warning(f"Subscription {get_field(subscription, 'id')} without usable metadata")
        return

    plan = repository.get_plan_by_name(db, plan_name)
    if plan is None:
        logger.warning(f"Subscription {get_field(subscription, 'id')} references unknown plan {plan_name}")
        return

    if user.stripe_subscription_id != get_field(subscription, "id"):
        repository.update_stripe_subscription_id(db, user, get_field(subscription, "id"))

    started_at, ends_at = subscription_period(subscription)
    repository.update_user_plan(db, user, plan, started_at=started_at, ends_at=ends_at)


def handle_subscription_deleted(db: Session, subscription: Any) -> None:
    metadata = _metadata(subscription)
    user = _find_user(db, metadata.get("user_id"))
    if user is None:
        logger.warning(f"Deleted subscription {get_field(subscription, 'id')} has no known user")
        return

    free_plan = repository.get_plan_by_name(db, "free")
    if free_plan is None:
        logger.error("Free plan missing; cannot downgrade user")
        return

    _, ends_at = subscription_period(subscription)
    repository.update_stripe_subscription_id(db, user, None)
    repository.update_user_plan(db, user, free_plan, started_at=datetime.utcnow(), ends_at=ends_at)


def handle_payment_succeeded(db: Session, invoice: Any) -> None:
    subscription_id = get_field(invoice, "subscription")
    if not subscription_id:
        return

    subscription = get_stripe().Subscription.retrieve(subscription_id)
    user = _find_user(db, _metadata(subscription).get("user_id"))
    if user is None or user.plan is None:
        logger.warning(f"Paid invoice {get_field(invoice, 'id')} has no known user")
        return

    _, ends_at = subscription_period(subscription)
    repository.update_user_plan(db, user, user.plan, started_at=user.plan_started_at, ends_at=ends_at)


def handle_payment_failed(db: Session, invoice: Any) -> None:
    logger.warning(
        f"Payment failed for invoice {get_field(invoice, 'id')} "
        f"(customer {get_field(invoice, 'customer')})"
    )


HANDLERS = {
    "checkout.session.completed": handle_checkout_completed,
    "customer.subscription.created": handle_subscription_changed,
    "customer.subscription.updated": handle_subscription_changed,
    "customer.subscription.deleted": handle_subscription_deleted,
    "invoice.payment_succeeded": handle_payment_succeeded,
    "invoice.payment_failed": handle_payment_failed,
}


def handle_event(db: Session, event: Any) -> bool:
    """Apply an event. Returns False for event types we ignore."""
    event_type = get_field(event, "type")
    handler = HANDLERS.get(event_type)
    if handler is None:
        logger.debug(f"Ignoring Stripe event {event_type}")
        return False

    obj = get_field(get_field(event, "data"), "object")
    logger.info(f"Stripe event {event_type} ({get_field(event, 'id')})")
    handler(db, obj)
    return True
