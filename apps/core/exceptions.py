"""
Custom exception handler and domain exceptions for DRF.
"""
import logging
from rest_framework import status
from rest_framework.exceptions import APIException, ValidationError
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class RuleStoreUnavailable(APIException):
    """
    Raised when access rules cannot be read from storage.

    Distinct from a deny: callers that must fail closed treat it as one,
    API views surface it as 503.
    """
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = 'Access rules are temporarily unavailable.'
    default_code = 'RULES_UNAVAILABLE'


class CommitInProgress(APIException):
    """Raised when a staged edit session is committed while a commit is running."""
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'A commit is already in progress for this edit session.'
    default_code = 'COMMIT_IN_PROGRESS'


def _error_code(exc):
    if isinstance(exc, ValidationError):
        return 'VALIDATION_ERROR'
    code = getattr(exc, 'default_code', None) or exc.__class__.__name__
    return str(code).upper()


def custom_exception_handler(exc, context):
    """
    Custom exception handler that logs errors and returns consistent format.

    Every error body has the shape
    ``{"error": {"code": ..., "message": ..., "details": ...}}``.
    """
    response = exception_handler(exc, context)

    request = context.get('request')
    request_id = getattr(request, 'request_id', None) if request else None
    view = context.get('view')

    log_extra = {
        'exception': str(exc),
        'request_id': request_id,
        'path': request.path if request else None,
        'method': request.method if request else None,
        'view': view.__class__.__name__ if view else None,
    }

    # If DRF didn't handle it, return a generic 500 error
    if response is None:
        logger.error(
            f"Unhandled API exception: {exc.__class__.__name__}",
            extra=log_extra,
            exc_info=True
        )
        return Response(
            {
                'error': {
                    'code': 'INTERNAL_ERROR',
                    'message': 'An unexpected error occurred',
                    'request_id': request_id,
                }
            },
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    if response.status_code >= 500:
        logger.error(f"API Exception: {exc.__class__.__name__}", extra=log_extra)
    else:
        logger.warning(f"API Exception: {exc.__class__.__name__}", extra=log_extra)

    if isinstance(exc, ValidationError):
        message = 'Invalid request data'
        details = response.data
    else:
        detail = response.data.get('detail') if isinstance(response.data, dict) else response.data
        message = str(detail)
        details = None

    error = {
        'code': _error_code(exc),
        'message': message,
    }
    if details is not None:
        error['details'] = details
    if request_id:
        error['request_id'] = request_id

    response.data = {'error': error}
    return response
