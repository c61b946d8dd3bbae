"""
Core middleware for request processing.
"""
import uuid
import logging
import jwt
from django.conf import settings
from django.contrib.auth.models import AnonymousUser
from django.core.exceptions import ValidationError as DjangoValidationError
from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

logger = logging.getLogger(__name__)


class RequestIDMiddleware(MiddlewareMixin):
    """
    Inject a unique request_id into each request for tracing.
    The request_id is added to the request object and to the response headers.
    """

    def process_request(self, request):
        """Generate and attach request_id to the request."""
        request.request_id = request.META.get('HTTP_X_REQUEST_ID') or str(uuid.uuid4())

    def process_response(self, request, response):
        """Add request_id to response headers."""
        if hasattr(request, 'request_id'):
            response['X-Request-ID'] = request.request_id
        return response


class ActorContextMiddleware(MiddlewareMixin):
    """
    Resolve the acting identity for every request.

    This middleware:
    1. Reads the ``Authorization: Bearer <token>`` header
    2. Verifies the JWT and loads the active user from its ``user_id`` claim
    3. Builds ``request.actor`` from the user's role and company
    4. Lets platform administrators scope into a company with ``X-COMPANY-ID``
       and evaluate access as another role with ``X-IMPERSONATE-ROLE``

    A missing, expired, or invalid token never fails the request: the
    actor is anonymous and the permission layer denies what it must.
    """

    def process_request(self, request):
        from apps.rbac.engine import Actor
        from apps.rbac.services import AccessControlService

        request.user = AnonymousUser()
        request.actor = Actor.anonymous()

        token = self._extract_bearer_token(request)
        if not token:
            return None

        user = self._get_user_from_token(token, request)
        if user is None:
            return None

        company_id = user.company_id
        company_header = request.headers.get('X-Company-ID')
        if company_header:
            if user.is_super_admin:
                try:
                    company_id = uuid.UUID(company_header)
                except ValueError:
                    return self._error_response(
                        'INVALID_COMPANY_ID',
                        'X-COMPANY-ID must be a company UUID',
                        status=400,
                    )
            else:
                logger.debug(
                    "Ignoring X-COMPANY-ID header for tenant user",
                    extra={
                        'user_id': str(user.id),
                        'request_id': getattr(request, 'request_id', None),
                    }
                )

        impersonate_role = request.headers.get('X-Impersonate-Role')
        if impersonate_role and not user.is_super_admin:
            logger.debug(
                "Ignoring X-IMPERSONATE-ROLE header for tenant user",
                extra={
                    'user_id': str(user.id),
                    'request_id': getattr(request, 'request_id', None),
                }
            )
            impersonate_role = None

        try:
            actor = AccessControlService.actor_for_user(
                user, company_id=company_id, impersonate_role=impersonate_role
            )
        except ValueError as e:
            return self._error_response('INVALID_IMPERSONATION_ROLE', str(e), status=400)

        request.user = user
        request.actor = actor
        return None

    def _extract_bearer_token(self, request):
        header = request.headers.get('Authorization', '')
        scheme, _, token = header.partition(' ')
        if scheme.lower() != 'bearer' or not token.strip():
            return None
        return token.strip()

    def _get_user_from_token(self, token, request):
        from apps.rbac.models import User

        try:
            payload = jwt.decode(
                token,
                settings.JWT_SECRET_KEY,
                algorithms=[getattr(settings, 'JWT_ALGORITHM', 'HS256')]
            )
        except jwt.ExpiredSignatureError:
            logger.info(
                "Expired bearer token",
                extra={'request_id': getattr(request, 'request_id', None)}
            )
            return None
        except jwt.InvalidTokenError:
            logger.warning(
                "Invalid bearer token",
                extra={'request_id': getattr(request, 'request_id', None)}
            )
            return None

        user_id = payload.get('user_id')
        if not user_id:
            return None

        try:
            return User.objects.active().get(id=user_id)
        except User.DoesNotExist:
            return None
        except (ValueError, DjangoValidationError):
            logger.warning(
                "Bearer token carries an unusable user_id claim",
                extra={'request_id': getattr(request, 'request_id', None)}
            )
            return None

    def _error_response(self, code, message, status=400, details=None):
        """Build an error response in the API's error shape."""
        error_data = {
            'error': {
                'code': code,
                'message': message,
            }
        }
        if details:
            error_data['error']['details'] = details
        return JsonResponse(error_data, status=status)
