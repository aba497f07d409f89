"""Shared fixtures: fake Supabase, fixed settings, services and an API client."""

import pytest
from fastapi.testclient import TestClient

from app.config import Settings, get_settings
from app.main import create_app
from app.services.checkout_service import CheckoutService, get_checkout_service
from app.services.credit_service import CreditService, get_credit_service
from app.services.email_service import EmailService, get_email_service
from app.services.organization_service import OrganizationService, get_organization_service
from app.services.response_cache import ResponseCache, get_response_cache
from app.services.subscription_service import SubscriptionService, get_subscription_service
from app.utils.retry import BackoffPolicy
from tests.fakes import WEBHOOK_SECRET, FakeClock, FakeSupabase, RecordingSleep


@pytest.fixture
def settings():
    return Settings(
        stripe_secret_key="sk_test_123",
        stripe_webhook_secret=WEBHOOK_SECRET,
        sendgrid_api_key=None,
        supabase_url="https://example.supabase.co",
        supabase_service_key="service-role-key",
        environment="test",
    )


@pytest.fixture
def db():
    return FakeSupabase()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return ResponseCache(default_ttl=5.0, clock=clock)


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def credit_service(db, cache):
    return CreditService(supabase=db, cache=cache)


@pytest.fixture
def organization_service(db, sleep):
    return OrganizationService(
        supabase=db,
        lookup_policy=BackoffPolicy(max_attempts=5, base_delay=1.0, factor=2.0, max_delay=8.0),
        sleep=sleep,
    )


@pytest.fixture
def checkout_service(organization_service, settings):
    return CheckoutService(organization_service=organization_service, settings=settings)


@pytest.fixture
def subscription_service(db, credit_service):
    return SubscriptionService(supabase=db, credit_service=credit_service)


@pytest.fixture
def email_service(settings):
    return EmailService(settings=settings)


@pytest.fixture
def api_app(settings, cache, credit_service, organization_service, checkout_service,
        subscription_service, email_service):
    application = create_app()
    application.dependency_overrides[get_settings] = lambda: settings
    application.dependency_overrides[get_response_cache] = lambda: cache
    application.dependency_overrides[get_credit_service] = lambda: credit_service
    application.dependency_overrides[get_organization_service] = lambda: organization_service
    application.dependency_overrides[get_checkout_service] = lambda: checkout_service
    application.dependency_overrides[get_subscription_service] = lambda: subscription_service
    application.dependency_overrides[get_email_service] = lambda: email_service
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
def client(api_app):
    return TestClient(api_app)
