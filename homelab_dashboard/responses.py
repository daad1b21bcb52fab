"""
Standard JSON envelopes shared by all API blueprints.

Every API response carries ``success``; successful ones may carry ``data`` and
``message``, failed ones carry ``error``.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict

from flask import jsonify, request, current_app

from .logging_config import log_security_event

logger = logging.getLogger(__name__)

HELP_MESSAGES = {
    400: "Check your request parameters and try again",
    403: "This resource is not in the allow-list of the dashboard configuration",
    404: "The requested resource was not found",
    409: "The operation is already running - wait for it to finish",
    500: "Internal server error - check the upstream service and try again",
}


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%fZ')


def create_error_response(message: str, status_code: int = 500, details: Dict = None,
                          error_code: str = None, **extra):
    """
    Create standardized error response.

    Args:
        message: Error message
        status_code: HTTP status code
        details: Additional error details
        error_code: Specific error code for client handling
        **extra: Additional top-level fields (e.g. captured command output)

    Returns:
        Flask response tuple (jsonify(response), status_code)
    """
    response = {
        'success': False,
        'error': message,
        'timestamp': utc_timestamp(),
        'request_id': str(uuid.uuid4())[:8]
    }

    if error_code:
        response['error_code'] = error_code

    if details:
        response['details'] = details

    response['help'] = HELP_MESSAGES.get(
        status_code, "Please try again or check the server logs if the problem persists"
    )
    response.update(extra)

    log_context = {
        'status_code': status_code,
        'error_code': error_code,
        'request_id': response['request_id'],
    }

    if status_code == 403:
        log_security_event(
            logging.getLogger('homelab_dashboard.security'),
            'ALLOW_LIST_REJECTION',
            message,
            {
                'method': request.method,
                'url': request.url,
                'remote_addr': request.remote_addr
            }
        )
    elif status_code >= 500:
        logger.error(f"API Error ({status_code}): {message}", extra=log_context)
    else:
        logger.warning(f"API Error ({status_code}): {message}", extra=log_context)

    return jsonify(response), status_code


def create_success_response(data: Any = None, message: str = None, **extra) -> Dict[str, Any]:
    """
    Create standardized success response.

    Args:
        data: Response data
        message: Success message
        **extra: Additional top-level fields

    Returns:
        Response dictionary
    """
    response = {
        'success': True,
        'timestamp': utc_timestamp()
    }

    if data is not None:
        response['data'] = data

    if message:
        response['message'] = message

    response.update(extra)
    return response


def get_service(name: str):
    """Return a client registered on the application by create_app."""
    return current_app.extensions['homelab_dashboard'][name]
