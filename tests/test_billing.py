"""
Billing Tests

Currency detection, price conversion and plan limit checks.
"""

import hashlib
import hmac
import time
import pytest
from datetime import datetime, timedelta
from types import SimpleNamespace
from unittest.mock import MagicMock

import stripe

from rerank.billing import checkout, webhooks
from rerank.billing.checkout import (
    BillingError,
    cancel_subscription,
    change_subscription,
    create_checkout_session,
    create_portal_session,
    list_invoices,
    start_trial,
    verify_checkout_session,
)
from rerank.billing.currency import (
    convert_price,
    currency_from_locale,
    detect_currency,
    format_price,
    get_stripe_price_id,
    is_valid_currency,
    plan_price,
)
from rerank.billing.plans import (
    PlanLimitError,
    check_user_plan_limit,
    enforce_plan_limit,
    has_active_subscription,
    is_trial_active,
    usage_summary,
)
from rerank.database import repository
from rerank.billing.webhooks import WebhookError, construct_event, handle_event
from rerank.database.models import AnalysisStatus


# =============================================================================
# CURRENCY
# =============================================================================

class TestCurrency:

    def test_is_valid_currency(self):
        assert is_valid_currency("jpy") is True
        assert is_valid_currency("XYZ") is False
        assert is_valid_currency(None) is False

    def test_convert_price(self):
        assert convert_price(2900, "USD") == 2900
        assert convert_price(2900, "jpy") == 435000
        assert convert_price(2900, "EUR") == 2465

    def test_convert_price_with_plan_rates(self):
        assert convert_price(2900, "JPY", {"jpy": 100}) == 290000

    def test_unknown_currency_raises(self):
        with pytest.raises(ValueError):
            convert_price(100, "XYZ")

    def test_format_price(self):
        assert format_price(435000, "JPY") == "¥435,000"
        assert format_price(2900, "usd") == "$29.00"
        assert format_price(2465, "EUR") == "€24.65"
        assert format_price(2320, "GBP") == "£23.20"

    def test_currency_from_locale(self):
        assert currency_from_locale("en-GB") == "GBP"
        assert currency_from_locale("en_gb") == "GBP"
        assert currency_from_locale("ja-JP") == "JPY"
        assert currency_from_locale("fr") == "EUR"
        assert currency_from_locale("en-US") == "USD"
        assert currency_from_locale(None) == "USD"

    def test_detect_currency_precedence(self):
        assert detect_currency("eur", user_locale="ja") == "EUR"
        assert detect_currency("XYZ", user_locale="ja") == "JPY"
        assert detect_currency(user_locale="de", accept_language="ja-JP") == "EUR"
        assert detect_currency(accept_language="ja-JP,ja;q=0.9,en;q=0.8") == "JPY"
        assert detect_currency() == "USD"

    def test_stripe_price_id(self):
        plan = SimpleNamespace(stripe_price_ids={"jpy": "price_jpy"})
        assert get_stripe_price_id(plan, "JPY") == "price_jpy"
        assert get_stripe_price_id(plan, "USD") is None
        assert get_stripe_price_id(SimpleNamespace(stripe_price_ids=None), "USD") is None

    def test_plan_price(self):
        plan = SimpleNamespace(base_price_usd=7900, exchange_rates={})
        assert plan_price(plan, "JPY") == {"currency": "JPY", "amount": 1185000, "formatted": "¥1,185,000"}


# =============================================================================
# PLAN LIMITS
# =============================================================================

class TestPlanLimits:

    def test_limits_disabled_allow_everything(self, db, configure, user):
        configure(ENABLE_PLAN_LIMITS="false")
        check = check_user_plan_limit(db, user, "articles")

        assert check.allowed is True
        assert check.limit is None

    def test_unknown_limit_type(self, db, user):
        with pytest.raises(ValueError):
            check_user_plan_limit(db, user, "widgets")

    def test_article_limit(self, db, configure, user, site, make_article):
        configure(ENABLE_PLAN_LIMITS="true")
        for i in range(2):
            make_article(user, site, url=f"https://example.com/{i}")
        assert check_user_plan_limit(db, user, "articles").allowed is True

        make_article(user, site, url="https://example.com/2")
        check = check_user_plan_limit(db, user, "articles")

        assert check.allowed is False
        assert check.current_usage == 3
        assert check.limit == 3
        assert check.message_key == "errors.limitExceeded"

    def test_unmonitored_articles_do_not_count(self, db, configure, user, site, make_article):
        configure(ENABLE_PLAN_LIMITS="true")
        for i in range(3):
            make_article(user, site, url=f"https://example.com/{i}", is_monitoring=False)

        assert check_user_plan_limit(db, user, "articles").current_usage == 0

    def test_business_plan_is_unlimited(self, db, configure, make_user, make_site):
        configure(ENABLE_PLAN_LIMITS="true")
        user = make_user(plan_name="business")
        for i in range(5):
            make_site(user, site_url=f"https://site{i}.example/")

        check = check_user_plan_limit(db, user, "sites")
        assert check.allowed is True
        assert check.current_usage == 5
        assert check.limit is None

    def test_concurrent_analyses(self, db, configure, user, article):
        configure(ENABLE_PLAN_LIMITS="true")
        repository.create_analysis_run(db, article.id)

        with pytest.raises(PlanLimitError) as exc:
            enforce_plan_limit(db, user, "concurrent_analyses")
        assert exc.value.limit_type == "concurrent_analyses"
        assert exc.value.limit == 1

    def test_user_without_plan(self, db, configure, make_user):
        configure(ENABLE_PLAN_LIMITS="true")
        user = make_user(plan_name="missing")

        check = check_user_plan_limit(db, user, "analyses")
        assert check.allowed is False
        assert check.message_key == "errors.planNotSet"


class TestSubscriptionState:

    def test_trial_only_on_paid_plans(self, db, make_user):
        later = datetime.utcnow() + timedelta(days=7)
        free_user = make_user(plan_name="free", trial_ends_at=later)
        starter_user = make_user(plan_name="starter", trial_ends_at=later)
        expired = make_user(plan_name="starter", trial_ends_at=datetime.utcnow() - timedelta(days=1))

        assert is_trial_active(db, free_user) is False
        assert is_trial_active(db, starter_user) is True
        assert is_trial_active(db, expired) is False

    def test_active_subscription(self, db, make_user):
        assert has_active_subscription(db, make_user(plan_name="free")) is False
        assert has_active_subscription(db, make_user(plan_name="standard")) is True

    def test_usage_summary(self, db, user, article):
        run = repository.create_analysis_run(db, article.id)
        repository.complete_analysis_run(db, run)

        summary = usage_summary(db, user)

        assert summary["plan"] == "free"
        assert summary["usage"]["articles"] == {"current": 1, "limit": 3}
        assert summary["usage"]["analyses"] == {"current": 1, "limit": 5}
        assert summary["usage"]["concurrent_analyses"]["current"] == 0
        assert run.status == AnalysisStatus.COMPLETED
        assert summary["has_active_subscription"] is False


# =============================================================================
# CHECKOUT
# =============================================================================

def fake_stripe():
    return SimpleNamespace(
        Customer=SimpleNamespace(create=MagicMock(return_value=SimpleNamespace(id="cus_new"))),
        checkout=SimpleNamespace(Session=SimpleNamespace(
            create=MagicMock(return_value=SimpleNamespace(id="cs_1", url="https://checkout.stripe.test/cs_1"))
        )),
        billing_portal=SimpleNamespace(Session=SimpleNamespace(
            create=MagicMock(return_value=SimpleNamespace(url="https://billing.stripe.test/p"))
        )),
        Subscription=SimpleNamespace(retrieve=MagicMock()),
    )


class TestCheckout:

    @pytest.fixture
    def stripe_api(self, monkeypatch, configure):
        configure(APP_URL="https://app.example")
        api = fake_stripe()
        monkeypatch.setattr(checkout, "get_stripe", lambda: api)
        return api

    def _price(self, db, plan_name="starter", **price_ids):
        plan = repository.get_plan_by_name(db, plan_name)
        plan.stripe_price_ids = price_ids
        db.commit()
        return plan

    def test_creates_customer_and_session(self, db, user, stripe_api):
        self._price(db, jpy="price_starter_jpy")

        result = create_checkout_session(db, user, "starter")

        assert result == {"url": "https://checkout.stripe.test/cs_1", "session_id": "cs_1"}
        assert user.stripe_customer_id == "cus_new"
        kwargs = stripe_api.checkout.Session.create.call_args.kwargs
        assert kwargs["customer"] == "cus_new"
        assert kwargs["line_items"] == [{"price": "price_starter_jpy", "quantity": 1}]
        assert kwargs["metadata"] == {"user_id": str(user.id), "plan_name": "starter", "currency": "JPY"}
        assert kwargs["subscription_data"] == {"metadata": kwargs["metadata"]}
        assert kwargs["success_url"].startswith("https://app.example/ja/dashboard/billing?success=true")

    def test_reuses_existing_customer(self, db, make_user, stripe_api):
        user = make_user(stripe_customer_id="cus_existing", locale="en")
        self._price(db, usd="price_starter_usd")

        create_checkout_session(db, user, "starter")

        stripe_api.Customer.create.assert_not_called()
        assert stripe_api.checkout.Session.create.call_args.kwargs["locale"] == "auto"

    def test_missing_price(self, db, user, stripe_api):
        self._price(db, usd="price_starter_usd")
        with pytest.raises(BillingError) as exc:
            create_checkout_session(db, user, "starter", currency="EUR")
        assert exc.value.status_code == 400

    def test_unknown_plan(self, db, user, stripe_api):
        with pytest.raises(BillingError) as exc:
            create_checkout_session(db, user, "enterprise")
        assert exc.value.status_code == 404

    def test_portal_requires_customer(self, user, stripe_api):
        with pytest.raises(BillingError):
            create_portal_session(user)

    def test_portal(self, make_user, stripe_api):
        user = make_user(stripe_customer_id="cus_1")
        assert create_portal_session(user) == {"url": "https://billing.stripe.test/p"}
        assert stripe_api.billing_portal.Session.create.call_args.kwargs["return_url"] == (
            "https://app.example/ja/dashboard/billing"
        )

    def test_invoices(self, make_user, stripe_api):
        line = SimpleNamespace(description="Starter plan")
        stripe_api.Invoice = SimpleNamespace(list=MagicMock(return_value=SimpleNamespace(data=[
            SimpleNamespace(
                id="in_1", amount_paid=435000, currency="jpy", status="paid", created=1740787200,
                period_start=1740787200, period_end=1743465600, hosted_invoice_url="https://pay.test/in_1",
                invoice_pdf=None, description=None, lines=SimpleNamespace(data=[line]),
            ),
        ])))
        user = make_user(stripe_customer_id="cus_1")

        invoices = list_invoices(user)

        assert invoices[0]["id"] == "in_1"
        assert invoices[0]["amount"] == 435000
        assert invoices[0]["description"] == "Starter plan"
        assert stripe_api.Invoice.list.call_args.kwargs["customer"] == "cus_1"

    def test_no_invoices_without_customer(self, user, stripe_api):
        assert list_invoices(user) == []


class TestTrial:

    NOW = datetime(2025, 3, 1, 12, 0)

    def test_start_trial(self, db, user):
        ends_at = start_trial(db, user, now=self.NOW)
        db.refresh(user)

        assert ends_at == self.NOW + timedelta(days=7)
        assert user.plan.name == "starter"
        assert user.trial_ends_at == ends_at
        assert user.plan_ends_at == ends_at

    def test_only_starter(self, db, user):
        with pytest.raises(BillingError):
            start_trial(db, user, plan_name="business", now=self.NOW)

    def test_not_twice(self, db, user):
        start_trial(db, user, now=self.NOW)
        with pytest.raises(BillingError, match="already active"):
            start_trial(db, user, now=self.NOW + timedelta(days=1))

    def test_not_with_subscription(self, db, make_user):
        user = make_user(stripe_subscription_id="sub_1")
        with pytest.raises(BillingError, match="subscription"):
            start_trial(db, user, now=self.NOW)


class TestSubscriptionChanges:

    PERIOD_START = 1740787200  # 2025-03-01
    PERIOD_END = 1743465600  # 2025-04-01

    @pytest.fixture
    def stripe_api(self, monkeypatch):
        api = fake_stripe()
        api.Subscription.retrieve.return_value = {
            "id": "sub_1",
            "items": {"data": [{"id": "si_1", "price": {"id": "price_old"}}]},
        }
        api.Subscription.modify = MagicMock(return_value={
            "id": "sub_1", "status": "active", "current_period_end": self.PERIOD_END,
        })
        api.Subscription.cancel = MagicMock()
        api.checkout.Session.retrieve = MagicMock()
        monkeypatch.setattr(checkout, "get_stripe", lambda: api)
        return api

    def _subscriber(self, db, make_user, plan_name="starter"):
        plan = repository.get_plan_by_name(db, "standard")
        plan.stripe_price_ids = {"jpy": "price_standard_jpy"}
        db.commit()
        return make_user(plan_name=plan_name, stripe_subscription_id="sub_1")

    def test_change_plan_with_proration(self, db, make_user, stripe_api):
        user = self._subscriber(db, make_user)

        result = change_subscription(db, user, "standard")

        assert result == {"id": "sub_1", "status": "active", "current_period_end": "2025-04-01T00:00:00"}
        args, kwargs = stripe_api.Subscription.modify.call_args
        assert args == ("sub_1",)
        assert kwargs["items"] == [{"id": "si_1", "price": "price_standard_jpy"}]
        assert kwargs["proration_behavior"] == "always_invoice"
        assert kwargs["metadata"] == {"user_id": str(user.id), "plan_name": "standard", "currency": "JPY"}

    def test_change_plan_at_period_end(self, db, make_user, stripe_api):
        user = self._subscriber(db, make_user)

        change_subscription(db, user, "standard", proration_behavior="none")

        assert stripe_api.Subscription.modify.call_args.kwargs["proration_behavior"] == "none"

    def test_change_requires_subscription(self, db, user, stripe_api):
        with pytest.raises(BillingError, match="No active subscription"):
            change_subscription(db, user, "standard")

    def test_change_to_current_plan(self, db, make_user, stripe_api):
        user = self._subscriber(db, make_user, plan_name="standard")
        with pytest.raises(BillingError, match="already on this plan"):
            change_subscription(db, user, "standard")

    def test_change_rejects_unknown_proration(self, db, make_user, stripe_api):
        user = self._subscriber(db, make_user)
        with pytest.raises(BillingError):
            change_subscription(db, user, "standard", proration_behavior="later")
        stripe_api.Subscription.modify.assert_not_called()

    def test_change_without_price(self, db, make_user, stripe_api):
        user = self._subscriber(db, make_user)
        with pytest.raises(BillingError, match="price not configured"):
            change_subscription(db, user, "business")

    def test_cancel(self, make_user, stripe_api):
        user = make_user(stripe_subscription_id="sub_1")

        cancel_subscription(user)

        stripe_api.Subscription.cancel.assert_called_once_with("sub_1")

    def test_cancel_requires_subscription(self, user, stripe_api):
        with pytest.raises(BillingError):
            cancel_subscription(user)

    def test_verify_session_applies_plan(self, db, user, stripe_api):
        stripe_api.checkout.Session.retrieve.return_value = {
            "id": "cs_1",
            "subscription": "sub_9",
            "metadata": {"user_id": str(user.id), "plan_name": "standard"},
        }
        stripe_api.Subscription.retrieve.return_value = {
            "id": "sub_9",
            "current_period_start": self.PERIOD_START,
            "current_period_end": self.PERIOD_END,
            "trial_end": None,
        }

        result = verify_checkout_session(db, user, "cs_1")

        db.refresh(user)
        assert result["plan_name"] == "standard"
        assert user.plan.name == "standard"
        assert user.stripe_subscription_id == "sub_9"
        assert user.plan_started_at == datetime(2025, 3, 1)
        assert user.plan_ends_at == datetime(2025, 4, 1)

    def test_verify_session_of_other_user(self, db, user, stripe_api):
        stripe_api.checkout.Session.retrieve.return_value = {
            "id": "cs_1", "metadata": {"user_id": "someone-else", "plan_name": "standard"},
        }
        with pytest.raises(BillingError) as exc:
            verify_checkout_session(db, user, "cs_1")
        assert exc.value.status_code == 403

    def test_verify_session_without_subscription_yet(self, db, user, stripe_api):
        now = datetime(2025, 3, 1, 12, 0)
        stripe_api.checkout.Session.retrieve.return_value = {
            "id": "cs_1", "subscription": None,
            "metadata": {"user_id": str(user.id), "plan_name": "starter"},
        }

        verify_checkout_session(db, user, "cs_1", now=now)

        db.refresh(user)
        assert user.plan.name == "starter"
        assert user.plan_ends_at == now + timedelta(days=30)

    def test_verify_session_subscription_lookup_fails(self, db, user, stripe_api):
        now = datetime(2025, 3, 1, 12, 0)
        stripe_api.checkout.Session.retrieve.return_value = {
            "id": "cs_1", "subscription": "sub_9",
            "metadata": {"user_id": str(user.id), "plan_name": "starter"},
        }
        stripe_api.Subscription.retrieve.side_effect = stripe.StripeError("not found")

        verify_checkout_session(db, user, "cs_1", now=now)

        db.refresh(user)
        assert user.stripe_subscription_id == "sub_9"
        assert user.plan_ends_at == now + timedelta(days=30)


# =============================================================================
# WEBHOOKS
# =============================================================================

def event(event_type, obj):
    return {"id": "evt_1", "type": event_type, "data": {"object": obj}}


class TestWebhooks:

    PERIOD_START = 1740787200  # 2025-03-01
    PERIOD_END = 1743465600  # 2025-04-01

    def _subscription(self, user, plan_name="standard", **values):
        data = {
            "id": "sub_1",
            "metadata": {"user_id": str(user.id), "plan_name": plan_name},
            "current_period_start": self.PERIOD_START,
            "current_period_end": self.PERIOD_END,
        }
        data.update(values)
        return data

    def test_subscription_updated_changes_plan(self, db, user):
        handled = handle_event(db, event("customer.subscription.updated", self._subscription(user)))

        assert handled is True
        db.refresh(user)
        assert user.plan.name == "standard"
        assert user.stripe_subscription_id == "sub_1"
        assert user.plan_started_at == datetime(2025, 3, 1)
        assert user.plan_ends_at == datetime(2025, 4, 1)

    def test_subscription_deleted_downgrades(self, db, make_user):
        user = make_user(plan_name="business", stripe_subscription_id="sub_1")

        handle_event(db, event("customer.subscription.deleted", self._subscription(user)))

        db.refresh(user)
        assert user.plan.name == "free"
        assert user.stripe_subscription_id is None

    def test_checkout_completed_stores_subscription(self, db, user):
        session = {
            "id": "cs_1",
            "subscription": "sub_9",
            "metadata": {"user_id": str(user.id), "plan_name": "starter"},
        }
        handle_event(db, event("checkout.session.completed", session))

        db.refresh(user)
        assert user.stripe_subscription_id == "sub_9"
        assert user.plan.name == "free"

    def test_payment_succeeded_extends_period(self, db, make_user, monkeypatch):
        user = make_user(plan_name="starter")
        api = fake_stripe()
        api.Subscription.retrieve.return_value = self._subscription(user, plan_name="starter")
        monkeypatch.setattr(webhooks, "get_stripe", lambda: api)

        handle_event(db, event("invoice.payment_succeeded", {"id": "in_1", "subscription": "sub_1"}))

        api.Subscription.retrieve.assert_called_once_with("sub_1")
        db.refresh(user)
        assert user.plan_ends_at == datetime(2025, 4, 1)

    def test_unusable_metadata_is_acknowledged(self, db, user):
        subscription = self._subscription(user)
        subscription["metadata"] = {"user_id": "not-a-uuid", "plan_name": "standard"}

        assert handle_event(db, event("customer.subscription.created", subscription)) is True
        db.refresh(user)
        assert user.plan.name == "free"

    def test_unknown_plan_is_ignored(self, db, user):
        handle_event(db, event("customer.subscription.updated", self._subscription(user, plan_name="gold")))
        db.refresh(user)
        assert user.plan.name == "free"

    def test_ignored_event_type(self, db):
        assert handle_event(db, event("customer.created", {"id": "cus_1"})) is False


class TestConstructEvent:

    PAYLOAD = b'{"id": "evt_1", "object": "event", "type": "invoice.payment_failed", "data": {"object": {"id": "in_1"}}}'

    def _signature(self, secret: str, payload: bytes) -> str:
        timestamp = int(time.time())
        signed = f"{timestamp}.{payload.decode()}".encode()
        digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
        return f"t={timestamp},v1={digest}"

    def test_secret_required(self, configure):
        configure(STRIPE_WEBHOOK_SECRET=None)
        with pytest.raises(WebhookError) as exc:
            construct_event(self.PAYLOAD, "t=1,v1=abc")
        assert exc.value.status_code == 500

    def test_signature_required(self, configure):
        configure(STRIPE_WEBHOOK_SECRET="whsec_test")
        with pytest.raises(WebhookError) as exc:
            construct_event(self.PAYLOAD, None)
        assert exc.value.status_code == 400

    def test_bad_signature(self, configure):
        configure(STRIPE_WEBHOOK_SECRET="whsec_test")
        with pytest.raises(WebhookError) as exc:
            construct_event(self.PAYLOAD, f"t={int(time.time())},v1=deadbeef")
        assert exc.value.status_code == 400

    def test_valid_signature(self, configure):
        configure(STRIPE_WEBHOOK_SECRET="whsec_test")
        parsed = construct_event(self.PAYLOAD, self._signature("whsec_test", self.PAYLOAD))

        assert parsed["type"] == "invoice.payment_failed"
