import pytest
from django.core.cache import cache


@pytest.fixture(autouse=True)
def use_stubs_for_tests(settings):
    settings.USE_HTTP_ADAPTERS = False
    settings.ORDERS_PAYMENT_SIGNING_SECRET = "test-secret"
    # Throttle counters live in the cache and would leak between tests
    cache.clear()
