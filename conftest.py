import pytest


@pytest.fixture(autouse=True)
def _test_settings(settings):
    # Keep SecurityMiddleware from redirecting the test client to https://
    settings.SECURE_SSL_REDIRECT = False
    settings.SESSION_COOKIE_SECURE = False
    settings.CSRF_COOKIE_SECURE = False
    settings.SECURE_HSTS_SECONDS = 0

    # Shop-floor access policy defaults; a local .env must not leak into tests
    settings.SHOPFLOOR_PAPERSTORE_VISIBILITY = "mapped"
    settings.SHOPFLOOR_QC_MANAGER_BYPASS = False
    settings.SHOPFLOOR_LEGACY_ACCEPT_GATING = False

    settings.CELERY_TASK_ALWAYS_EAGER = True
