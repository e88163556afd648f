"""
Structured logging with PHI/PII protection.

Provides filters, formatters, and helpers for safe logging. Patient
payloads travel through the sync endpoint, so both server column names
and the client's wire names are treated as sensitive.
"""
import logging
import json
from datetime import datetime, timezone
from .correlation import get_device_id, get_request_id, get_user_id, get_user_role


# Fields that should NEVER be logged (PHI/PII)
SENSITIVE_FIELDS = {
    'password',
    'token',
    'access',
    'refresh',
    'authorization',
    'secret',
    'name',
    'email',
    'phone',
    'phonenumber',
    'contact',
    'village',
    'location',
    'dateofbirth',
    'date_of_birth',
    'symptoms',
    'notes',
    'message',
    'details',
    'data',
}

# Standard LogRecord attributes that are not "extra" fields
_RECORD_ATTRS = {
    'name', 'msg', 'args', 'created', 'filename', 'funcName', 'levelname',
    'levelno', 'lineno', 'module', 'msecs', 'pathname', 'process',
    'processName', 'relativeCreated', 'thread', 'threadName', 'exc_info',
    'exc_text', 'stack_info', 'taskName',
}


class CorrelationFilter(logging.Filter):
    """
    Logging filter that injects correlation context into log records.
    """

    def filter(self, record):
        """Add correlation fields to log record."""
        record.request_id = get_request_id() or '-'
        record.device_id = get_device_id() or '-'
        record.user_id = get_user_id() or '-'
        record.user_role = get_user_role() or '-'
        return True


class SanitizedJSONFormatter(logging.Formatter):
    """
    JSON formatter that sanitizes sensitive fields.
    """

    def format(self, record):
        """Format log record as JSON with sanitized fields."""
        log_data = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'request_id': getattr(record, 'request_id', '-'),
            'device_id': getattr(record, 'device_id', '-'),
            'user_id': getattr(record, 'user_id', '-'),
            'user_role': getattr(record, 'user_role', '-'),
        }

        # Add extra fields if present (from extra={} in logging calls)
        for key, value in record.__dict__.items():
            if key in log_data or key.startswith('_') or key in _RECORD_ATTRS:
                continue
            if key.lower() in SENSITIVE_FIELDS:
                log_data[key] = '[REDACTED]'
            else:
                log_data[key] = self._sanitize_value(value)

        # Add exception info if present
        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)

    def _sanitize_value(self, value):
        """Sanitize a value recursively."""
        if isinstance(value, dict):
            return sanitize_dict(value)
        elif isinstance(value, (list, tuple)):
            return [self._sanitize_value(v) for v in value]
        else:
            return value


def get_sanitized_logger(name):
    """
    Get a logger with correlation filter applied.

    Usage:
        logger = get_sanitized_logger(__name__)
        logger.info('Event', extra={'event': 'sync_batch_received', 'changes_count': 3})
    """
    logger = logging.getLogger(name)

    # Add correlation filter if not already present
    if not any(isinstance(f, CorrelationFilter) for f in logger.filters):
        logger.addFilter(CorrelationFilter())

    return logger


def sanitize_dict(data):
    """
    Sanitize a dictionary by removing/redacting sensitive fields.

    Args:
        data: Dictionary to sanitize

    Returns:
        Sanitized copy of dictionary
    """
    if not isinstance(data, dict):
        return data

    sanitized = {}
    for key, value in data.items():
        if str(key).lower() in SENSITIVE_FIELDS:
            sanitized[key] = '[REDACTED]'
        elif isinstance(value, dict):
            sanitized[key] = sanitize_dict(value)
        elif isinstance(value, (list, tuple)):
            sanitized[key] = [
                sanitize_dict(v) if isinstance(v, dict) else v
                for v in value
            ]
        else:
            sanitized[key] = value

    return sanitized
