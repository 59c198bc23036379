import pytest


@pytest.fixture(autouse=True)
def use_stubs_for_tests(settings):
    # in-process collaborators, never the network
    settings.USE_HTTP_ADAPTERS = False


@pytest.fixture(autouse=True)
def reset_throttle_cache():
    from django.core.cache import cache

    cache.clear()
    yield
    cache.clear()
