"""
Custom logging formatters for structured JSON logging, and security event
logging for access-control decisions.
"""
import json
import logging
import re
import traceback
from datetime import datetime, timezone as dt_timezone
from django.utils import timezone
import sentry_sdk


class PIIMasker:
    """
    Utility class to mask sensitive PII data in logs.
    """

    EMAIL_PATTERN = re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b')
    BEARER_PATTERN = re.compile(r'(Bearer\s+)[A-Za-z0-9\-_.=]+', re.IGNORECASE)
    SECRET_PATTERN = re.compile(r'(token|secret|password|authorization)["\']?\s*[:=]\s*["\']?([^"\'\s,}]+)', re.IGNORECASE)

    # Sensitive field names that should be masked
    SENSITIVE_FIELDS = {
        'email', 'email_address', 'user_email',
        'password', 'passwd',
        'token', 'access_token', 'refresh_token', 'authorization',
        'secret', 'secret_key', 'jwt_secret_key',
    }

    @classmethod
    def mask_email(cls, text):
        """Mask email addresses in text, keeping the first character and domain."""
        if not isinstance(text, str):
            return text

        def mask_email_match(match):
            username, _, domain = match.group(0).partition('@')
            if len(username) > 1:
                username = username[0] + '*' * (len(username) - 1)
            return f"{username}@{domain}"

        return cls.EMAIL_PATTERN.sub(mask_email_match, text)

    @classmethod
    def mask_secrets(cls, text):
        """Mask bearer tokens and key/value secrets in text."""
        if not isinstance(text, str):
            return text
        text = cls.BEARER_PATTERN.sub(r'\1********', text)
        return cls.SECRET_PATTERN.sub(r'\1: ********', text)

    @classmethod
    def mask_text(cls, text):
        """Apply all masking patterns to text."""
        if not isinstance(text, str):
            return text
        return cls.mask_secrets(cls.mask_email(text))

    @classmethod
    def mask_dict(cls, data):
        """Recursively mask sensitive data in dictionaries."""
        if not isinstance(data, dict):
            return data

        masked = {}
        for key, value in data.items():
            if key.lower() in cls.SENSITIVE_FIELDS:
                masked[key] = '********' if value and not isinstance(value, (dict, list)) else value
            elif isinstance(value, dict):
                masked[key] = cls.mask_dict(value)
            elif isinstance(value, list):
                masked[key] = [
                    cls.mask_dict(item) if isinstance(item, dict)
                    else cls.mask_text(item) if isinstance(item, str)
                    else item
                    for item in value
                ]
            elif isinstance(value, str):
                masked[key] = cls.mask_text(value)
            else:
                masked[key] = value

        return masked


# LogRecord attributes that are not user-supplied extras
_RESERVED_ATTRS = {
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs', 'message',
    'pathname', 'process', 'processName', 'relativeCreated',
    'thread', 'threadName', 'exc_info', 'exc_text', 'stack_info',
    'taskName', 'request_id', 'company_id',
}


class JSONFormatter(logging.Formatter):
    """
    Format log records as JSON for structured logging.
    Includes request_id and company_id from extra fields if available.
    Automatically masks sensitive PII data.
    """

    def format(self, record):
        log_data = {
            'timestamp': datetime.now(dt_timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': PIIMasker.mask_text(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if hasattr(record, 'request_id'):
            log_data['request_id'] = record.request_id

        if hasattr(record, 'company_id'):
            log_data['company_id'] = str(record.company_id)

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': PIIMasker.mask_text(str(record.exc_info[1])),
                'traceback': [PIIMasker.mask_text(line) for line in traceback.format_exception(*record.exc_info)],
            }

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith('_'):
                continue
            try:
                if isinstance(value, dict):
                    masked_value = PIIMasker.mask_dict(value)
                elif isinstance(value, str):
                    masked_value = PIIMasker.mask_text(value)
                else:
                    masked_value = value

                json.dumps(masked_value)  # Test if serializable
                log_data[key] = masked_value
            except (TypeError, ValueError):
                log_data[key] = PIIMasker.mask_text(str(value))

        return json.dumps(log_data)


class SecurityLogger:
    """
    Centralized security event logging for access-control events.

    Every event is written to the ``security`` logger with:
    - Event type
    - Timestamp
    - Actor information (if available)
    - Company information (if available)
    - Additional context

    Critical events are also sent to Sentry for real-time alerting.
    """

    CRITICAL_EVENTS = {
        'rule_store_unavailable',
        'cross_company_access',
    }

    @staticmethod
    def log_event(event_type: str, level: str = 'warning', **context):
        """
        Log a security event with structured data.

        Args:
            event_type: Type of security event (e.g., 'permission_denied')
            level: Log level ('info', 'warning', 'error', 'critical')
            **context: Additional context data (user_id, company_id, etc.)

        Example:
            >>> SecurityLogger.log_event(
            ...     'permission_denied',
            ...     user_id='123',
            ...     company_id='456',
            ...     permission='manage_menu'
            ... )
        """
        logger = logging.getLogger('security')

        log_data = {
            'event_type': event_type,
            'timestamp': timezone.now().isoformat(),
        }
        log_data.update(context)
        log_data = PIIMasker.mask_dict(log_data)

        log_method = getattr(logger, level, logger.warning)
        log_method(
            f"Security event: {event_type}",
            extra=log_data
        )

        if event_type in SecurityLogger.CRITICAL_EVENTS:
            sentry_sdk.capture_message(
                f"Critical security event: {event_type}",
                level='error',
                extras=log_data
            )

    @staticmethod
    def log_permission_denied(actor, required: list, view: str = None, ip_address: str = None):
        """
        Log a permission denial.

        Args:
            actor: Actor the decision was made for
            required: Permission or feature keys that were not satisfied
            view: Name of the view that denied access
            ip_address: IP address of the request
        """
        SecurityLogger.log_event(
            'permission_denied',
            level='warning',
            user_id=str(actor.user_id) if actor and actor.user_id else None,
            role=actor.role if actor else None,
            company_id=str(actor.company_id) if actor and actor.company_id else None,
            required=list(required),
            view=view,
            ip_address=ip_address
        )

    @staticmethod
    def log_cross_company_access(actor, company_id, path: str = None):
        """
        Log an attempt by a tenant actor to administer another company.

        Args:
            actor: Actor making the request
            company_id: Company the request targeted
            path: Request path
        """
        SecurityLogger.log_event(
            'cross_company_access',
            level='error',
            user_id=str(actor.user_id) if actor.user_id else None,
            actor_company_id=str(actor.company_id) if actor.company_id else None,
            target_company_id=str(company_id),
            path=path
        )

    @staticmethod
    def log_commit_failure(surface: str, scope: str, failed: dict, user_id=None):
        """
        Log cells that could not be written during a staged commit.

        Args:
            surface: Rule surface ('company_role' or 'dynamic_role')
            scope: Scope identifier (company/role pair or dynamic role id)
            failed: Mapping of cell key to error message
            user_id: Administrator who committed
        """
        SecurityLogger.log_event(
            'rule_commit_failure',
            level='error',
            surface=surface,
            scope=scope,
            failed_cells=failed,
            user_id=str(user_id) if user_id else None
        )

    @staticmethod
    def log_rule_store_unavailable(operation: str, error: str):
        """Log a rule store read that failed at the database layer."""
        SecurityLogger.log_event(
            'rule_store_unavailable',
            level='error',
            operation=operation,
            error=error
        )

    @staticmethod
    def log_role_impersonation(user_id, actual_role: str, impersonated_role: str, company_id=None):
        """Log a platform administrator evaluating access as another role."""
        SecurityLogger.log_event(
            'role_impersonation',
            level='info',
            user_id=str(user_id),
            actual_role=actual_role,
            impersonated_role=impersonated_role,
            company_id=str(company_id) if company_id else None
        )
