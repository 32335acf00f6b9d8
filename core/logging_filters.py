"""
Custom logging filters for the Wozap connections project
"""
import logging
import threading
import uuid

from django.utils.deprecation import MiddlewareMixin

_request_local = threading.local()


def get_current_request():
    """Return the request being served by this thread, if any."""
    return getattr(_request_local, 'request', None)


class UserInfoFilter(logging.Filter):
    """
    Add user information and request ID to log records
    """

    def filter(self, record):
        request = getattr(record, 'request', None) or get_current_request()
        if request is not None:
            user = getattr(request, 'user', None)
            if user is not None and getattr(user, 'is_authenticated', False):
                record.user = user.username
            else:
                record.user = 'anonymous'
            record.request_id = getattr(request, 'request_id', 'no-request-id')
        else:
            # Poller threads and management commands
            record.user = 'system'
            record.request_id = 'no-request-id'

        return True


class RequestLoggingMiddleware(MiddlewareMixin):
    """
    Middleware to add request ID and user info to all requests
    """

    def process_request(self, request):
        request.request_id = str(uuid.uuid4())[:8]
        _request_local.request = request
        return None

    def process_response(self, request, response):
        if hasattr(_request_local, 'request'):
            del _request_local.request
        response['X-Request-ID'] = getattr(request, 'request_id', '')
        return response
