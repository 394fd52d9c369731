"""
Stripe checkout, customer portal, invoices and subscription changes.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import stripe
from sqlalchemy.orm import Session

from rerank.config import get_settings
from rerank.database import repository
from rerank.integrations.stripe_client import from_timestamp, get_field, get_stripe, subscription_period
from .currency import detect_currency, get_stripe_price_id

logger = logging.getLogger(__name__)

TRIAL_DAYS = 7
TRIAL_PLAN = "starter"
INVOICE_LIMIT = 12


class BillingError(Exception):
    """Billing request that cannot be fulfilled; status_code maps to HTTP."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _locale(locale: Optional[str], user) -> str:
    return locale or user.locale or "ja"


def ensure_stripe_customer(db: Session, user) -> str:
    """Existing Stripe customer id, or a newly created customer."""
    if user.stripe_customer_id:
        return user.stripe_customer_id

    stripe = get_stripe()
    customer = stripe.Customer.create(
        email=user.email,
        name=user.full_name or None,
        metadata={"user_id": str(user.id)},
    )
    repository.update_stripe_customer_id(db, user, customer.id)
    logger.info(f"Created Stripe customer {customer.id} for user {user.id}")
    return customer.id


def create_checkout_session(
    db: Session,
    user,
    plan_name: str,
    currency: Optional[str] = None,
    locale: Optional[str] = None,
    accept_language: Optional[str] = None,
) -> Dict[str, Any]:
    """Subscription checkout for a plan. Returns {url, session_id}."""
    plan = repository.get_plan_by_name(db, plan_name)
    if plan is None:
        raise BillingError("Plan not found", 404)

    locale = _locale(locale, user)
    selected = detect_currency(currency, locale, accept_language)
    price_id = get_stripe_price_id(plan, selected)
    if not price_id:
        raise BillingError(f"Stripe price not configured for {plan_name} in {selected}")

    stripe = get_stripe()
    customer_id = ensure_stripe_customer(db, user)
    base_url = get_settings().APP_URL.rstrip("/")
    metadata = {"user_id": str(user.id), "plan_name": plan_name, "currency": selected}

    session = stripe.checkout.Session.create(
        customer=customer_id,
        mode="subscription",
        line_items=[{"price": price_id, "quantity": 1}],
        success_url=f"{base_url}/{locale}/dashboard/billing?success=true&session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{base_url}/{locale}/?canceled=true#pricing",
        metadata=metadata,
        subscription_data={"metadata": metadata},
        locale="ja" if locale == "ja" else "auto",
    )
    logger.info(f"Checkout session {session.id} for user {user.id}: {plan_name} ({selected})")
    return {"url": session.url, "session_id": session.id}


def create_portal_session(user, locale: Optional[str] = None) -> Dict[str, Any]:
    if not user.stripe_customer_id:
        raise BillingError("Stripe customer not found")

    locale = _locale(locale, user)
    stripe = get_stripe()
    portal = stripe.billing_portal.Session.create(
        customer=user.stripe_customer_id,
        return_url=f"{get_settings().APP_URL.rstrip('/')}/{locale}/dashboard/billing",
        locale="ja" if locale == "ja" else "en",
    )
    return {"url": portal.url}


def list_invoices(user) -> List[Dict[str, Any]]:
    if not user.stripe_customer_id:
        return []

    stripe = get_stripe()
    invoices = stripe.Invoice.list(customer=user.stripe_customer_id, limit=INVOICE_LIMIT)

    result = []
    for invoice in invoices.data:
        lines = invoice.lines.data if invoice.lines else []
        result.append({
            "id": invoice.id,
            "amount": invoice.amount_paid,
            "currency": invoice.currency,
            "status": invoice.status,
            "created": invoice.created,
            "period_start": invoice.period_start,
            "period_end": invoice.period_end,
            "hosted_invoice_url": invoice.hosted_invoice_url,
            "invoice_pdf": invoice.invoice_pdf,
            "description": invoice.description or (lines[0].description if lines else "") or "",
        })
    return result


def start_trial(db: Session, user, plan_name: str = TRIAL_PLAN, now: Optional[datetime] = None) -> datetime:
    """Card-less 7-day trial of the starter plan. Returns trial_ends_at."""
    if plan_name != TRIAL_PLAN:
        raise BillingError("Trial is only available for the starter plan")

    plan = repository.get_plan_by_name(db, plan_name)
    if plan is None:
        raise BillingError("Plan not found", 404)

    now = now or datetime.utcnow()
    if user.trial_ends_at and user.trial_ends_at > now and user.plan_id == plan.id:
        raise BillingError("Trial is already active")
    if user.stripe_subscription_id:
        raise BillingError("You already have an active subscription")

    trial_ends_at = now + timedelta(days=TRIAL_DAYS)
    user.trial_ends_at = trial_ends_at
    repository.update_user_plan(db, user, plan, started_at=now, ends_at=trial_ends_at)
    logger.info(f"Started {plan_name} trial for user {user.id} until {trial_ends_at.isoformat()}")
    return trial_ends_at


# =============================================================================
# SUBSCRIPTION CHANGES
# =============================================================================

PRORATION_BEHAVIORS = {"always": "always_invoice", "none": "none"}
FALLBACK_PERIOD = timedelta(days=30)


def change_subscription(
    db: Session,
    user,
    plan_name: str,
    currency: Optional[str] = None,
    proration_behavior: str = "always",
) -> Dict[str, Any]:
    """
    Move an active subscription to another plan's price.

    "always" invoices the difference now; "none" switches without proration.
    The user's plan itself is updated by the customer.subscription.updated webhook.
    """
    if proration_behavior not in PRORATION_BEHAVIORS:
        raise BillingError("proration_behavior must be 'always' or 'none'")
    if not user.stripe_subscription_id:
        raise BillingError("No active subscription found")

    plan = repository.get_plan_by_name(db, plan_name)
    if plan is None:
        raise BillingError("Plan not found", 404)
    if user.plan_id == plan.id:
        raise BillingError("You are already on this plan")

    selected = detect_currency(currency, _locale(None, user))
    price_id = get_stripe_price_id(plan, selected)
    if not price_id:
        raise BillingError(f"Stripe price not configured for {plan_name} in {selected}")

    stripe_api = get_stripe()
    subscription = stripe_api.Subscription.retrieve(user.stripe_subscription_id)
    items = get_field(get_field(subscription, "items"), "data") or []
    if not items:
        raise BillingError("Subscription item not found")

    updated = stripe_api.Subscription.modify(
        user.stripe_subscription_id,
        items=[{"id": get_field(items[0], "id"), "price": price_id}],
        proration_behavior=PRORATION_BEHAVIORS[proration_behavior],
        metadata={"user_id": str(user.id), "plan_name": plan_name, "currency": selected},
    )
    logger.info(f"Subscription {user.stripe_subscription_id} of user {user.id} changed to {plan_name}")

    _, ends_at = subscription_period(updated)
    return {
        "id": get_field(updated, "id"),
        "status": get_field(updated, "status"),
        "current_period_end": ends_at.isoformat() if ends_at else None,
    }


def cancel_subscription(user) -> None:
    """Cancel immediately; the customer.subscription.deleted webhook moves the user to free."""
    if not user.stripe_subscription_id:
        raise BillingError("No active subscription found")

    get_stripe().Subscription.cancel(user.stripe_subscription_id)
    logger.info(f"Cancelled subscription {user.stripe_subscription_id} of user {user.id}")


def verify_checkout_session(db: Session, user, session_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Apply a finished checkout right away instead of waiting for the webhook.

    Without a retrievable subscription the plan runs for 30 days from now
    until the webhooks catch up.
    """
    stripe_api = get_stripe()
    session = stripe_api.checkout.Session.retrieve(session_id)

    metadata = get_field(session, "metadata") or {}
    if get_field(metadata, "user_id") != str(user.id):
        raise BillingError("Session does not belong to current user", 403)

    plan_name = get_field(metadata, "plan_name")
    if not plan_name:
        raise BillingError("Plan name not found in session metadata")

    plan = repository.get_plan_by_name(db, plan_name)
    if plan is None:
        raise BillingError("Plan not found", 404)

    now = now or datetime.utcnow()
    started_at, ends_at = now, now + FALLBACK_PERIOD

    subscription_id = get_field(session, "subscription")
    if subscription_id and not isinstance(subscription_id, str):
        subscription_id = get_field(subscription_id, "id")

    if subscription_id:
        repository.update_stripe_subscription_id(db, user, subscription_id)
        try:
            subscription = stripe_api.Subscription.retrieve(subscription_id)
        except stripe.StripeError as e:
            logger.error(f"Could not retrieve subscription {subscription_id}: {e}")
        else:
            period_start, period_end = subscription_period(subscription)
            started_at = period_start or started_at
            ends_at = period_end or ends_at
            trial_end = from_timestamp(get_field(subscription, "trial_end"))
            if trial_end:
                user.trial_ends_at = trial_end

    repository.update_user_plan(db, user, plan, started_at=started_at, ends_at=ends_at)
    logger.info(f"Verified checkout {session_id} for user {user.id}: {plan_name}")
    return {"plan_name": plan_name, "plan_id": str(plan.id)}
