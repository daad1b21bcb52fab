"""
Logging setup for the homelab dashboard

Besides the console, each concern gets its own rotating file under LOG_DIR:

- app.log: everything under the ``homelab_dashboard`` logger tree
- errors.log: unhandled exceptions with the request that raised them
- api.log: one line per /api/ request with status and duration
- security.log: allow-list rejections (unknown Docker host, undeployable LXC)
- performance.log: deployment durations and slow requests
"""

import os
import time
import logging
import logging.handlers
from datetime import datetime, timezone
from typing import Dict, Any

ROOT_LOGGER = 'homelab_dashboard'

REQUEST_FIELDS = ('method', 'url', 'remote_addr')

MB = 1024 * 1024

# name suffix, file, level, max size, backups, format, needs request fields
LOG_FILES = (
    ('errors', 'errors.log', logging.WARNING, 10 * MB, 10,
     '%(utc_time)s [%(levelname)s] [%(filename)s:%(lineno)d] %(message)s\n'
     '    request: %(method)s %(url)s from %(remote_addr)s\n'
     '    %(extra_info)s', True),
    ('api', 'api.log', logging.INFO, 10 * MB, 5,
     '%(utc_time)s [%(levelname)s] %(message)s', False),
    ('security', 'security.log', logging.INFO, 10 * MB, 10,
     '%(utc_time)s [SECURITY] [%(levelname)s] %(message)s '
     '(%(method)s %(url)s from %(remote_addr)s)', True),
    ('performance', 'performance.log', logging.INFO, 5 * MB, 3,
     '%(utc_time)s [%(levelname)s] %(message)s', False),
)


class UTCTimeFilter(logging.Filter):
    """Stamp records with an ISO-8601 UTC time."""

    def filter(self, record):
        record.utc_time = datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%fZ')
        return True


class RequestContextFilter(logging.Filter):
    """Default the request fields for records logged outside a request."""

    def filter(self, record):
        for attribute in REQUEST_FIELDS:
            if not hasattr(record, attribute):
                setattr(record, attribute, 'N/A')
        if not hasattr(record, 'extra_info'):
            record.extra_info = ''
        return True


def _file_handler(log_dir: str, filename: str, max_bytes: int, backups: int,
                  fmt: str, with_request: bool) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        os.path.join(log_dir, filename), maxBytes=max_bytes, backupCount=backups
    )
    handler.setFormatter(logging.Formatter(fmt))
    handler.addFilter(UTCTimeFilter())
    if with_request:
        handler.addFilter(RequestContextFilter())
    return handler


def _configure(logger: logging.Logger, level: int, handler: logging.Handler):
    # create_app may run more than once per process (tests); drop old files
    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()
    logger.setLevel(level)
    logger.addHandler(handler)


def setup_logging(app, log_level=None):
    """
    Set up logging for the application.

    Args:
        app: Flask application instance
        log_level: Override log level

    Returns:
        Tuple of (app_logger, error_logger, api_logger, security_logger, perf_logger)
    """
    if log_level is None:
        if app.config.get('DEBUG'):
            log_level = logging.DEBUG
        else:
            log_level = getattr(logging, app.config.get('LOG_LEVEL', 'INFO'), logging.INFO)

    log_dir = app.config.get('LOG_DIR')
    os.makedirs(log_dir, exist_ok=True)

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    app_handler = _file_handler(
        log_dir, 'app.log', 10 * MB, 5,
        '%(utc_time)s [%(levelname)s] %(name)s [%(filename)s:%(lineno)d] %(message)s', False
    )
    app_logger = logging.getLogger(ROOT_LOGGER)
    _configure(app_logger, log_level, app_handler)

    loggers = {}
    for suffix, filename, level, max_bytes, backups, fmt, with_request in LOG_FILES:
        logger = logging.getLogger(f'{ROOT_LOGGER}.{suffix}')
        _configure(logger, level, _file_handler(log_dir, filename, max_bytes, backups, fmt, with_request))
        loggers[suffix] = logger

    app.logger.handlers.clear()
    app.logger.addHandler(app_handler)
    app.logger.setLevel(log_level)

    if log_level > logging.DEBUG:
        logging.getLogger('urllib3').setLevel(logging.WARNING)

    app_logger.info(f"Logging to {log_dir} at level {logging.getLevelName(log_level)}")

    return (app_logger, loggers['errors'], loggers['api'],
            loggers['security'], loggers['performance'])


def log_api_request(logger, method: str, endpoint: str, status_code: int,
                    duration: float, remote_addr: str = None):
    """Log one API request; 4xx as warnings, 5xx as errors."""
    if status_code >= 500:
        level = logging.ERROR
    elif status_code >= 400:
        level = logging.WARNING
    else:
        level = logging.INFO

    logger.log(level, f"{method} {endpoint} - {status_code} ({duration:.3f}s) from {remote_addr or 'unknown'}")


def log_security_event(logger, event_type: str, message: str,
                       request_info: Dict[str, Any] = None, severity: str = 'WARNING'):
    """
    Log a security-related event.

    Args:
        logger: Security logger instance
        event_type: Short event tag, e.g. ALLOW_LIST_REJECTION
        message: Event message
        request_info: method, url and remote_addr of the offending request
        severity: Logging level name
    """
    request_info = request_info or {}
    extra = {field: request_info.get(field, 'N/A') for field in REQUEST_FIELDS}
    extra['extra_info'] = f"event: {event_type}"

    logger.log(getattr(logging, severity.upper(), logging.WARNING), f"[{event_type}] {message}", extra=extra)


def log_performance_metric(logger, operation: str, duration: float,
                           context: Dict[str, Any] = None, slow_threshold: float = 5.0):
    """Log how long an operation took, as a warning above ``slow_threshold``."""
    message = f"{operation} took {duration:.3f}s"
    if context:
        message += " (" + ", ".join(f"{k}={v}" for k, v in context.items()) + ")"

    logger.log(logging.WARNING if duration > slow_threshold else logging.INFO, message)


class LoggingMiddleware:
    """WSGI middleware logging API requests and slow responses."""

    def __init__(self, app, api_logger, perf_logger, slow_threshold: float = 2.0):
        self.app = app
        self.api_logger = api_logger
        self.perf_logger = perf_logger
        self.slow_threshold = slow_threshold

    def __call__(self, environ, start_response):
        start_time = time.time()
        method = environ.get('REQUEST_METHOD', 'GET')
        path = environ.get('PATH_INFO', '')

        def logged_start_response(status, response_headers, exc_info=None):
            duration = time.time() - start_time

            if path.startswith('/api/'):
                log_api_request(
                    self.api_logger, method, path, int(status.split()[0]),
                    duration, environ.get('REMOTE_ADDR')
                )

            # Deployments are expected to be slow and are timed by their route
            if duration > self.slow_threshold and not path.endswith('/ansible-deploy'):
                self.perf_logger.warning(f"Slow request: {method} {path} took {duration:.3f}s")

            return start_response(status, response_headers, exc_info)

        return self.app(environ, logged_start_response)
