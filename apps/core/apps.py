from django.apps import AppConfig
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
import logging

logger = logging.getLogger(__name__)


class CoreConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.core'
    verbose_name = 'Core'

    def ready(self):
        """
        Perform startup validation checks when Django initializes.

        Token verification is the only way requests acquire an identity,
        so the verification settings must be usable before serving.
        """
        self._validate_jwt_configuration()

    def _validate_jwt_configuration(self):
        """Validate JWT verification settings."""
        jwt_secret = getattr(settings, 'JWT_SECRET_KEY', None)
        algorithm = getattr(settings, 'JWT_ALGORITHM', 'HS256')

        if not jwt_secret:
            raise ImproperlyConfigured(
                "JWT_SECRET_KEY must be set in environment variables. "
                "Generate a strong key with: "
                "python -c \"import secrets; print(secrets.token_urlsafe(32))\""
            )

        if not algorithm.startswith('HS'):
            raise ImproperlyConfigured(
                f"JWT_ALGORITHM must be an HMAC algorithm (HS256/HS384/HS512), got {algorithm}."
            )

        if len(jwt_secret) < 32:
            logger.warning(
                f"JWT_SECRET_KEY is shorter than recommended "
                f"(current: {len(jwt_secret)}, recommended: 32+)."
            )

        if not settings.DEBUG and jwt_secret == getattr(settings, 'SECRET_KEY', None):
            logger.warning(
                "JWT_SECRET_KEY equals SECRET_KEY. Use a separate key in production."
            )
