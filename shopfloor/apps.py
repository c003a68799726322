# shopfloor/apps.py

import logging

from django.apps import AppConfig
from django.core.exceptions import ImproperlyConfigured

logger = logging.getLogger(__name__)


class ShopfloorConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "shopfloor"
    verbose_name = "Shop floor"

    def ready(self):
        from .access.policy import policy_from_settings

        try:
            policy = policy_from_settings()
        except ValueError as exc:
            raise ImproperlyConfigured(str(exc)) from exc

        logger.debug(
            "Shop-floor access policy: bypass=%s paperstore=%s",
            sorted(r.value for r in policy.bypass_roles),
            policy.paperstore_visibility,
        )
