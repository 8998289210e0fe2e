#!/usr/bin/env python3
"""
Logging and monitoring for StudyFlow.
Configures the `studyflow` logger tree once and exposes small helpers the
routes and batch jobs use to record what they did.
"""

import logging
import json
import os
import sys
import time
from functools import wraps

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

_configured = False


def setup_logging(log_dir='logs', level='INFO'):
    """Set up the studyflow loggers. Safe to call more than once."""
    global _configured

    root = logging.getLogger('studyflow')
    if _configured:
        root.setLevel(level)
        return get_loggers()

    formatter = logging.Formatter(LOG_FORMAT)

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.FileHandler(os.path.join(log_dir, 'studyflow.log'))
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    root.setLevel(level)
    root.propagate = False
    _configured = True
    return get_loggers()


def get_loggers():
    return {
        'main': logging.getLogger('studyflow'),
        'api': logging.getLogger('studyflow.api'),
        'analytics': logging.getLogger('studyflow.analytics'),
        'reminders': logging.getLogger('studyflow.reminders'),
        'storage': logging.getLogger('studyflow.storage'),
    }


def timed(logger_name='studyflow'):
    """Decorator logging entry, duration and failures of a service call"""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            logger = logging.getLogger(logger_name)
            logger.debug(f"Entering {func.__name__}")
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                logger.error(f"Error in {func.__name__}: {e}", exc_info=True)
                raise
            duration = time.perf_counter() - start
            logger.debug(f"Completed {func.__name__} in {duration:.3f}s")
            return result
        return wrapper
    return decorator


class StudyFlowMonitor:
    """Centralized logging for API calls and batch jobs"""

    def __init__(self):
        loggers = get_loggers()
        self.logger = loggers['main']
        self.api_logger = loggers['api']
        self.analytics_logger = loggers['analytics']
        self.reminder_logger = loggers['reminders']

    def log_api_call(self, endpoint, method, user_id, data=None):
        self.api_logger.info(f"API Call: {method} {endpoint} (user: {user_id})")
        if data:
            self.api_logger.debug(f"Request Data: {json.dumps(data, default=str)}")

    def log_aggregation(self, user_id, counts):
        self.analytics_logger.info(
            f"Analytics for {user_id}: " + ", ".join(f"{k}={v}" for k, v in counts.items())
        )

    def log_reminder_batch(self, recipient, item_count, success, error=None):
        if success:
            self.reminder_logger.info(f"📧 Reminder sent to {recipient} ({item_count} items)")
        else:
            self.reminder_logger.error(f"❌ Reminder to {recipient} failed ({item_count} items): {error}")


monitor = StudyFlowMonitor()


def log_user_action(user_id, action, details=None):
    """Log user actions"""
    monitor.logger.info(f"User {user_id}: {action}")
    if details:
        monitor.logger.debug(f"Details: {json.dumps(details, default=str)}")
