import pytest

from docscan.core.config import get_settings


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    # Some tests patch env vars; don't leak a cached Settings instance across tests.
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
