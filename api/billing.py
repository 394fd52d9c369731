"""
Plans & Billing API

Endpoints:
- GET /api/plans - Public plan list with prices in the visitor's currency
- POST /api/billing/checkout - Stripe checkout session for a plan
- POST /api/billing/portal - Stripe customer portal
- GET /api/billing/usage - Usage against plan limits
- GET /api/billing/invoices - Recent invoices
- POST /api/billing/trial - Start the starter trial
- POST /api/billing/subscription/change - Switch the subscription to another plan
- POST /api/billing/subscription/cancel - Cancel the subscription (webhook downgrades)
- POST /api/billing/verify-session - Apply a finished checkout without waiting for the webhook
- POST /api/billing/webhook - Stripe webhook (signature-verified, no user auth)
"""

import logging
from typing import Optional

import stripe
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from rerank.auth.dependencies import get_current_user, get_current_user_optional
from rerank.auth.models import User
from rerank.billing import (
    BillingError,
    WebhookError,
    cancel_subscription,
    change_subscription,
    construct_event,
    create_checkout_session,
    create_portal_session,
    detect_currency,
    handle_event,
    list_invoices,
    start_trial,
    usage_summary,
    verify_checkout_session,
)
from rerank.billing.currency import plan_price
from rerank.database import repository
from rerank.database.session import get_db
from rerank.integrations.stripe_client import StripeNotConfiguredError

logger = logging.getLogger(__name__)

plans_router = APIRouter(prefix="/api/plans", tags=["Billing"])
router = APIRouter(prefix="/api/billing", tags=["Billing"])


class CheckoutRequest(BaseModel):
    plan_name: str = Field(..., pattern="^(starter|standard|business)$")
    currency: Optional[str] = None
    locale: Optional[str] = None


class PortalRequest(BaseModel):
    locale: Optional[str] = None


class TrialRequest(BaseModel):
    plan_name: str = "starter"


class ChangePlanRequest(BaseModel):
    plan_name: str = Field(..., pattern="^(starter|standard|business)$")
    currency: Optional[str] = None
    proration_behavior: str = Field("always", pattern="^(always|none)$")


class VerifySessionRequest(BaseModel):
    session_id: str = Field(..., min_length=1)


def _billing_http_error(e: Exception) -> HTTPException:
    if isinstance(e, StripeNotConfiguredError):
        return HTTPException(status_code=503, detail="Billing is not configured")
    if isinstance(e, BillingError):
        return HTTPException(status_code=e.status_code, detail=e.message)
    logger.error(f"Stripe error: {e}")
    return HTTPException(status_code=502, detail="Payment provider error")


# =============================================================================
# PLANS
# =============================================================================

@plans_router.get("")
async def list_plans(
    currency: Optional[str] = None,
    accept_language: Optional[str] = Header(default=None),
    current_user: Optional[User] = Depends(get_current_user_optional),
    db: Session = Depends(get_db),
):
    selected = detect_currency(currency, current_user.locale if current_user else None, accept_language)
    plans = repository.get_active_plans(db)
    return {
        "currency": selected,
        "plans": [
            {
                "id": str(plan.id),
                "name": plan.name,
                "display_name": plan.display_name,
                "price": plan_price(plan, selected),
                "max_articles": plan.max_articles,
                "max_analyses_per_month": plan.max_analyses_per_month,
                "max_sites": plan.max_sites,
                "max_concurrent_analyses": plan.max_concurrent_analyses,
                "max_article_suggestions_per_month": plan.max_article_suggestions_per_month,
                "analysis_history_days": plan.analysis_history_days,
                "features": plan.features or {},
                "is_current": bool(current_user and current_user.plan_id == plan.id),
            }
            for plan in plans
        ],
    }


# =============================================================================
# BILLING
# =============================================================================

@router.post("/checkout")
def checkout(
    request: CheckoutRequest,
    accept_language: Optional[str] = Header(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        return create_checkout_session(
            db,
            current_user,
            request.plan_name,
            currency=request.currency,
            locale=request.locale,
            accept_language=accept_language,
        )
    except (BillingError, StripeNotConfiguredError, stripe.StripeError) as e:
        raise _billing_http_error(e)


@router.post("/portal")
def portal(
    request: PortalRequest,
    current_user: User = Depends(get_current_user),
):
    try:
        return create_portal_session(current_user, request.locale)
    except (BillingError, StripeNotConfiguredError, stripe.StripeError) as e:
        raise _billing_http_error(e)


@router.get("/usage")
def usage(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return usage_summary(db, current_user)


@router.get("/invoices")
def invoices(current_user: User = Depends(get_current_user)):
    try:
        return {"invoices": list_invoices(current_user)}
    except (StripeNotConfiguredError, stripe.StripeError) as e:
        raise _billing_http_error(e)


@router.post("/trial")
def trial(
    request: TrialRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        trial_ends_at = start_trial(db, current_user, request.plan_name)
    except BillingError as e:
        raise _billing_http_error(e)
    return {"plan_name": request.plan_name, "trial_ends_at": trial_ends_at.isoformat()}



@router.post("/subscription/change")
def change_plan(
    request: ChangePlanRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        subscription = change_subscription(
            db,
            current_user,
            request.plan_name,
            currency=request.currency,
            proration_behavior=request.proration_behavior,
        )
    except (BillingError, StripeNotConfiguredError, stripe.StripeError) as e:
        raise _billing_http_error(e)
    return {"success": True, "subscription": subscription}


@router.post("/subscription/cancel")
def cancel_plan(current_user: User = Depends(get_current_user)):
    try:
        cancel_subscription(current_user)
    except (BillingError, StripeNotConfiguredError, stripe.StripeError) as e:
        raise _billing_http_error(e)
    return {"success": True}


@router.post("/verify-session")
def verify_session(
    request: VerifySessionRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        result = verify_checkout_session(db, current_user, request.session_id)
    except (BillingError, StripeNotConfiguredError, stripe.StripeError) as e:
        raise _billing_http_error(e)
    return {"success": True, **result}


@router.post("/webhook")
async def webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="Stripe-Signature"),
    db: Session = Depends(get_db),
):
    payload = await request.body()
    try:
        event = construct_event(payload, stripe_signature)
    except WebhookError as e:
        logger.warning(f"Rejected Stripe webhook: {e.message}")
        raise HTTPException(status_code=e.status_code, detail=e.message)

    handled = handle_event(db, event)
    return {"received": True, "handled": handled}
