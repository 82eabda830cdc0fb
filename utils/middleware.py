"""
Custom middleware for API request logging.
"""
import logging
import time

from utils.mongo import log_api_request

logger = logging.getLogger(__name__)


class APILoggingMiddleware:
    """
    Middleware to log API requests to MongoDB.
    Logs the requests that change reservations: booking and cancellation.
    """

    # Endpoints to log
    LOGGED_ENDPOINTS = ['/api/v1/tickets/book/', '/api/v1/tickets/cancel/']

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        # Check if this endpoint should be logged
        should_log = any(
            request.path.startswith(endpoint)
            for endpoint in self.LOGGED_ENDPOINTS
        )

        if should_log:
            start_time = time.time()

        # Process the request
        response = self.get_response(request)

        if should_log:
            execution_time_ms = (time.time() - start_time) * 1000

            # Path parameters, e.g. the PNR being cancelled
            request_params = {}
            resolver_match = getattr(request, 'resolver_match', None)
            if resolver_match is not None:
                request_params = dict(resolver_match.kwargs)

            pnr, ticket_status = self._ticket_details(response)
            if pnr is None:
                pnr = request_params.get('pnr')

            try:
                log_api_request(
                    endpoint=request.path,
                    method=request.method,
                    request_params=request_params,
                    response_status=response.status_code,
                    execution_time_ms=round(execution_time_ms, 2),
                    pnr=pnr,
                    ticket_status=ticket_status
                )
            except Exception:
                # Don't let logging errors affect the response
                logger.exception('Error logging API request')

        return response

    @staticmethod
    def _ticket_details(response):
        """PNR and tier from a booking or cancellation response, when present."""
        data = getattr(response, 'data', None)
        if not isinstance(data, dict):
            return None, None
        ticket = data.get('ticket')
        if isinstance(ticket, dict):
            return ticket.get('pnr'), ticket.get('status')
        return data.get('pnr'), None
