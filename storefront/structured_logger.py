"""
Structured JSON event logger.

Search, cache and reindex events are emitted as single-line JSON so they can
be grepped and aggregated offline:

    {"timestamp": "...", "level": "INFO", "logger": "storefront.search",
     "event_type": "response", "message": "...", "context": {...}}
"""

import json
import logging
from datetime import datetime
from typing import Dict, Any, Optional

from storefront.logger import get_logger


class StructuredLogger:
    """
    JSON event logger on top of a ``storefront.*`` stdlib logger.

    Each entry carries a timestamp, level, event_type, a human-readable
    message and an optional structured context (request_id, cache key, ...).
    """

    def __init__(self, name: str):
        self.name = f"storefront.{name}"
        self.logger = get_logger(name)

    def _log(
        self,
        level: int,
        event_type: str,
        message: str,
        context: Optional[Dict[str, Any]] = None
    ):
        if not self.logger.isEnabledFor(level):
            return
        log_entry = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": logging.getLevelName(level),
            "logger": self.name,
            "event_type": event_type,
            "message": message,
        }
        if context:
            log_entry["context"] = context
        self.logger.log(level, json.dumps(log_entry, default=str, ensure_ascii=False))

    def debug(self, event_type: str, message: str, context: Optional[Dict[str, Any]] = None):
        self._log(logging.DEBUG, event_type, message, context)

    def info(self, event_type: str, message: str, context: Optional[Dict[str, Any]] = None):
        self._log(logging.INFO, event_type, message, context)

    def warning(self, event_type: str, message: str, context: Optional[Dict[str, Any]] = None):
        self._log(logging.WARNING, event_type, message, context)

    def error(self, event_type: str, message: str, context: Optional[Dict[str, Any]] = None):
        self._log(logging.ERROR, event_type, message, context)

    # Specialized helpers

    def log_request(self, endpoint: str, request_id: str, params: Optional[Dict[str, Any]] = None):
        """Log an incoming request."""
        self.info(
            "request",
            f"GET {endpoint}",
            {"request_id": request_id, "endpoint": endpoint, "params": params or {}}
        )

    def log_response(
        self,
        endpoint: str,
        request_id: str,
        status: str,
        latency_ms: float,
        cache_hit: bool = False,
        total: Optional[int] = None,
    ):
        """Log a response."""
        context = {
            "request_id": request_id,
            "endpoint": endpoint,
            "status": status,
            "latency_ms": round(latency_ms, 2),
            "cache_hit": cache_hit,
        }
        if total is not None:
            context["total"] = total
        self.info("response", f"Response {status} for {endpoint}", context)

    def log_cache_event(self, event: str, key: str, hit: bool):
        """Log a cache lookup."""
        self.debug(
            "cache",
            f"Cache {event}: {'HIT' if hit else 'MISS'}",
            {"cache_key": key, "cache_hit": hit}
        )

    def log_error(self, error_type: str, error_message: str, request_id: Optional[str] = None):
        """Log an error."""
        context = {"error_type": error_type, "error_message": error_message}
        if request_id:
            context["request_id"] = request_id
        self.error("error", f"{error_type}: {error_message}", context)
