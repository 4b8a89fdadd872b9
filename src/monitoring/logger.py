"""Structured logging for orchestrator monitoring."""

import json
import logging
from typing import Any, Optional


class StructuredLogger:
    """Structured logger with uniform schema."""

    def __init__(self, name: str = "scrape_orchestrator", level: str = "INFO", structured: bool = True):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper()))
        self.structured = structured

        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter('%(message)s'))
            self.logger.addHandler(handler)

    def log(self, event: str, level: int = logging.INFO, **kwargs: Any) -> None:
        """
        Log structured event.

        Standard keys: event, vendor, job_id, method, status, attempt, cost,
                      elapsed_ms, period, health, queue_size, workers
        """
        log_data = {"event": event, **kwargs}
        if self.structured:
            self.logger.log(level, json.dumps(log_data, default=str))
        else:
            fields = " ".join(f"{k}={v}" for k, v in kwargs.items())
            self.logger.log(level, f"{event} {fields}".rstrip())

    def job_start(self, job_id: str, vendor: str, method: Optional[str]) -> None:
        self.log("job_start", job_id=job_id, vendor=vendor, method=method)

    def job_finished(self, job_id: str, vendor: str, status: str, cost: float, attempts: int) -> None:
        self.log("job_finished", job_id=job_id, vendor=vendor, status=status, cost=cost, attempts=attempts)

    def attempt(self, job_id: str, vendor: str, method: str, status: str, attempt: int, elapsed_ms: int) -> None:
        self.log("attempt", job_id=job_id, vendor=vendor, method=method, status=status,
                 attempt=attempt, elapsed_ms=elapsed_ms)

    def allocation(self, vendor: str, method: str, cost: float, success: bool) -> None:
        self.log("budget_allocation", vendor=vendor, method=method, cost=cost, success=success)

    def allocation_anomaly(self, vendor: str, method: str, cost: float, reason: str) -> None:
        self.log("budget_anomaly", level=logging.WARNING, vendor=vendor, method=method,
                 cost=cost, reason=reason)

    def budget_reset(self, period: str) -> None:
        self.log("budget_reset", period=period)

    def budget_alert(self, alert_level: str, message: str, utilization: float) -> None:
        level = logging.CRITICAL if alert_level == "shutdown" else logging.WARNING
        self.log("budget_alert", level=level, alert=alert_level, message=message,
                 utilization=round(utilization, 4))

    def escalation(self, vendor: str, from_method: str, action: str, to_method: Optional[str], reason: str) -> None:
        self.log("escalation", vendor=vendor, method=from_method, action=action,
                 next_method=to_method, reason=reason)

    def circuit_breaker(self, vendor: str, consecutive_failures: int) -> None:
        self.log("circuit_breaker", level=logging.WARNING, vendor=vendor,
                 consecutive_failures=consecutive_failures)

    def queue_depth(self, size: int) -> None:
        self.log("queue_depth", queue_size=size)

    def batch_start(self, session_id: str, vendors: int, workers: int) -> None:
        self.log("batch_start", session_id=session_id, vendors=vendors, workers=workers)

    def batch_finished(self, session_id: str, completed: int, failed: int, cost: float, elapsed_ms: int) -> None:
        self.log("batch_finished", session_id=session_id, completed=completed, failed=failed,
                 cost=cost, elapsed_ms=elapsed_ms)

    def error(self, event: str, error: str, **kwargs: Any) -> None:
        self.log(event, level=logging.ERROR, error=error, **kwargs)
