"""
Error accounting for nesting runs

Failures inside work items and non-fatal geometry anomalies are counted per
category. When a category reaches its threshold the condition is escalated
to CRITICAL and registered alert callbacks are invoked. Counters are shared
by the controller thread and thread-backend workers, so they are guarded by
a lock; process-backend workers count in their own process.
"""

import logging
import os
import threading
import time
import traceback
from collections import deque
from datetime import datetime
from functools import wraps
from typing import Any, Callable, Deque, Dict, List, Optional

logger = logging.getLogger(__name__)

# incident categories
GEOMETRY_ANOMALY = 'geometry_anomaly'  # null NFP, failed sanity check
WORKER_FAILURE = 'worker_failure'  # exception inside a work item
BATCH_FAILURE = 'batch_failure'  # a whole executor batch rejected
PLACEMENT_OVERFLOW = 'placement_overflow'  # a bin pass placed nothing

DEFAULT_THRESHOLDS = {
    GEOMETRY_ANOMALY: 50,
    WORKER_FAILURE: 5,
    BATCH_FAILURE: 3,
    PLACEMENT_OVERFLOW: 25,
}

AlertCallback = Callable[[str, Dict[str, Any]], None]


class NestingErrorHandler:
    """Per-category incident counters with threshold alerts"""

    def __init__(self, thresholds: Optional[Dict[str, int]] = None, history: int = 100):
        self.error_counts: Dict[str, int] = {}
        self.error_thresholds = dict(DEFAULT_THRESHOLDS)
        if thresholds:
            self.error_thresholds.update(thresholds)
        self.alert_callbacks: List[AlertCallback] = []
        self._recent: Deque[Dict[str, Any]] = deque(maxlen=history)
        self._lock = threading.Lock()

    def _record(self, category: str, incident: Dict[str, Any]) -> int:
        with self._lock:
            count = self.error_counts.get(category, 0) + 1
            self.error_counts[category] = count
            incident['count'] = count
            self._recent.append(incident)
        return count

    def log_error(self, category: str, error: BaseException, context: Optional[Dict[str, Any]] = None):
        """Count an exception; the traceback goes to DEBUG."""
        incident = {
            'timestamp': datetime.now().isoformat(),
            'category': category,
            'error_class': type(error).__name__,
            'error_message': str(error),
            'context': context or {},
        }
        count = self._record(category, incident)

        logger.error(f"[{category}] {incident['error_class']}: {incident['error_message']} "
                     f"(count={count}, context={incident['context']})")
        logger.debug(''.join(traceback.format_exception(type(error), error, error.__traceback__)))

        if count >= self.error_thresholds.get(category, 10):
            self._trigger_alert(category, incident)

    def log_anomaly(self, category: str, message: str, context: Optional[Dict[str, Any]] = None):
        """Count a condition that is reported rather than raised."""
        incident = {
            'timestamp': datetime.now().isoformat(),
            'category': category,
            'error_message': message,
            'context': context or {},
        }
        count = self._record(category, incident)
        logger.warning(f"{message} (count={count})")

        # alert once when the threshold is crossed, anomalies can be frequent
        if count == self.error_thresholds.get(category, 10):
            self._trigger_alert(category, incident)

    def _trigger_alert(self, category: str, incident: Dict[str, Any]):
        logger.critical(f"Threshold reached for {category}: {incident['count']} incidents")
        for callback in list(self.alert_callbacks):
            try:
                callback(category, incident)
            except Exception as e:
                logger.error(f"Alert callback error: {e}")

    def register_alert_callback(self, callback: AlertCallback):
        self.alert_callbacks.append(callback)

    def recent_incidents(self, category: Optional[str] = None) -> List[Dict[str, Any]]:
        with self._lock:
            incidents = list(self._recent)
        if category is None:
            return incidents
        return [incident for incident in incidents if incident['category'] == category]

    def get_error_stats(self) -> Dict[str, Any]:
        with self._lock:
            counts = dict(self.error_counts)
        return {
            'error_counts': counts,
            'total_errors': sum(counts.values()),
            'error_thresholds': dict(self.error_thresholds),
        }

    def reset_error_counts(self):
        with self._lock:
            self.error_counts.clear()
            self._recent.clear()
        logger.info("Error counts reset")


# shared by every module of a process
error_handler = NestingErrorHandler()


def handle_errors(category: str, fallback_response: Any = None):
    """
    Count exceptions raised by the wrapped work function.

    With a fallback the exception is swallowed and the fallback returned;
    without one it propagates so the executor rejects the batch.
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except Exception as e:
                context = {
                    'function': func.__qualname__,
                    'pid': os.getpid(),
                    'thread': threading.current_thread().name,
                }
                error_handler.log_error(category, e, context)
                if fallback_response is not None:
                    return fallback_response
                raise
        return wrapper
    return decorator


def log_performance(func):
    """Log the wall time of each call"""
    @wraps(func)
    def wrapper(*args, **kwargs):
        start = time.perf_counter()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            logger.error(f"{func.__qualname__} failed after {time.perf_counter() - start:.3f}s: {e}")
            raise
        logger.info(f"{func.__qualname__} completed in {time.perf_counter() - start:.3f}s")
        return result
    return wrapper
