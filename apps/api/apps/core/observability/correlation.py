"""
Request correlation middleware.

Generates/propagates X-Request-ID, picks up the offline client's
X-Device-ID, and injects both into logs.
"""
import uuid
import time
import logging
from django.utils.deprecation import MiddlewareMixin
from threading import local

from .metrics import metrics

# Thread-local storage for request context
_request_context = local()

logger = logging.getLogger(__name__)


def get_request_id():
    """Get current request ID from thread-local storage."""
    return getattr(_request_context, 'request_id', None)


def get_device_id():
    """Get the submitting device's ID from thread-local storage."""
    return getattr(_request_context, 'device_id', None)


def get_user_id():
    """Get current user ID from thread-local storage."""
    return getattr(_request_context, 'user_id', None)


def get_user_role():
    """Get current user role from thread-local storage."""
    return getattr(_request_context, 'user_role', None)


def bind_user(user):
    """
    Attach an authenticated user to the current request context.

    DRF authenticates inside the view (JWT), after this middleware has
    run, so views call this once the owner is known.
    """
    _request_context.user_id = str(user.pk)
    _request_context.user_role = getattr(user, 'role', None)


class RequestCorrelationMiddleware(MiddlewareMixin):
    """
    Middleware to handle request correlation.

    - Generates/propagates X-Request-ID
    - Propagates X-Device-ID sent by offline clients
    - Stores context in thread-local for logging
    - Adds correlation headers to response
    - Tracks request duration
    """

    REQUEST_ID_HEADER = 'HTTP_X_REQUEST_ID'
    DEVICE_ID_HEADER = 'HTTP_X_DEVICE_ID'

    def process_request(self, request):
        """Process incoming request and setup correlation context."""
        request_id = request.META.get(self.REQUEST_ID_HEADER)
        if not request_id:
            request_id = str(uuid.uuid4())
        device_id = request.META.get(self.DEVICE_ID_HEADER)

        request.request_id = request_id
        request.device_id = device_id
        request.start_time = time.time()

        _request_context.request_id = request_id
        _request_context.device_id = device_id

        # Session-authenticated users are known here; JWT users are bound by the view
        if hasattr(request, 'user') and request.user.is_authenticated:
            bind_user(request.user)
        else:
            _request_context.user_id = None
            _request_context.user_role = None

    def process_response(self, request, response):
        """Add correlation headers, record HTTP metrics, then drop the thread context."""
        if hasattr(request, 'request_id'):
            response['X-Request-ID'] = request.request_id

        if hasattr(request, 'start_time'):
            duration = time.time() - request.start_time
            duration_ms = duration * 1000
            route = _route_label(request)
            metrics.http_requests_total.labels(
                route=route, method=request.method, status=str(response.status_code)
            ).inc()
            metrics.http_request_duration_seconds.labels(route=route, method=request.method).observe(duration)

            logger.info(
                'Request completed',
                extra={
                    'event': 'http_request_completed',
                    'path': request.path,
                    'method': request.method,
                    'status_code': response.status_code,
                    'duration_ms': round(duration_ms, 2),
                    'request_id': getattr(request, 'request_id', None),
                    'device_id': getattr(request, 'device_id', None),
                    'user_id': get_user_id(),
                }
            )

        clear_request_context()
        return response

    def process_exception(self, request, exception):
        """Log exceptions with correlation context."""
        duration_ms = 0
        if hasattr(request, 'start_time'):
            duration_ms = (time.time() - request.start_time) * 1000

        logger.error(
            f'Request failed: {exception.__class__.__name__}',
            exc_info=True,
            extra={
                'event': 'http_request_exception',
                'path': request.path,
                'method': request.method,
                'exception_type': exception.__class__.__name__,
                'duration_ms': round(duration_ms, 2),
                'request_id': getattr(request, 'request_id', None),
                'device_id': getattr(request, 'device_id', None),
                'user_id': get_user_id(),
            }
        )


def _route_label(request):
    """URL pattern of the matched view, not the raw path."""
    match = getattr(request, 'resolver_match', None)
    return getattr(match, 'route', None) or 'unmatched'


def clear_request_context():
    """Clear thread-local request context (useful for testing)."""
    for attr in ['request_id', 'device_id', 'user_id', 'user_role']:
        if hasattr(_request_context, attr):
            delattr(_request_context, attr)
