"""
Pytest configuration and fixtures.
"""
from io import StringIO

import jwt
import pytest
from django.conf import settings
import django
from django.core.cache import cache
from django.core.management import call_command


def pytest_configure(config):
    """Configure Django settings for tests."""
    settings.DATABASES['default'] = {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
        'ATOMIC_REQUESTS': False,
    }
    settings.CACHES = {
        'default': {
            'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
            'LOCATION': 'portal-access-tests',
        }
    }
    django.setup()


@pytest.fixture(scope='session')
def django_db_setup(django_db_setup, django_db_blocker):
    """Set up test database; apps without migrations are synced."""
    with django_db_blocker.unblock():
        call_command('migrate', '--run-syncdb', verbosity=0)


@pytest.fixture(autouse=True)
def clear_cache():
    """Cached rule segments must not leak between tests."""
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def api_client():
    """Return DRF API client."""
    from rest_framework.test import APIClient
    return APIClient()


@pytest.fixture
def permission_catalog(db):
    """Mirror the static permission catalog into the permissions table."""
    call_command('sync_permissions', '--skip-seed', stdout=StringIO())
    from apps.rbac.models import Permission
    return {p.key: p for p in Permission.objects.all()}


@pytest.fixture
def company(db):
    """Create a test company (tenant_admin rules are seeded on creation)."""
    from apps.companies.models import Company
    return Company.objects.create(name='Acme Imaging', slug='acme')


@pytest.fixture
def other_company(db):
    """Create another company for isolation tests."""
    from apps.companies.models import Company
    return Company.objects.create(name='Globex Radiology', slug='globex')


@pytest.fixture
def make_user(db):
    """Factory for users with a role and optional company."""
    from apps.rbac.models import User

    counter = {'n': 0}

    def _make_user(role='requester', company=None, **extra):
        counter['n'] += 1
        email = extra.pop('email', f"{role}{counter['n']}@example.com")
        return User.objects.create_user(email=email, role=role, company=company, **extra)

    return _make_user


@pytest.fixture
def requester(make_user, company):
    return make_user('requester', company)


@pytest.fixture
def manager(make_user, company):
    return make_user('manager', company)


@pytest.fixture
def tenant_admin(make_user, company):
    return make_user('tenant_admin', company)


@pytest.fixture
def super_admin(make_user):
    return make_user('super_admin', None)


@pytest.fixture
def actor_for():
    """Build an Actor for a user, optionally scoped to a company (super-role only)."""
    from apps.rbac.services import AccessControlService

    def _actor_for(user, company=None):
        return AccessControlService.actor_for_user(user, company_id=company.pk if company else None)

    return _actor_for


def make_token(user, **claims):
    """Issue a bearer token the way the identity provider does."""
    payload = {'user_id': str(user.pk), **claims}
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


@pytest.fixture
def auth_client(api_client):
    """Return a function that authenticates the API client as a user."""

    def _auth_client(user, company=None):
        headers = {'HTTP_AUTHORIZATION': f"Bearer {make_token(user)}"}
        if company is not None:
            headers['HTTP_X_COMPANY_ID'] = str(company.pk)
        api_client.credentials(**headers)
        return api_client

    return _auth_client


@pytest.fixture
def token_for():
    """Return the bearer token issuer for tests that build headers themselves."""
    return make_token
