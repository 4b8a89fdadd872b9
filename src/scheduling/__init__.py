"""Scheduling service and vendor loading."""

from .service import InMemorySchedulingService, SchedulingService
from .vendors import apply_override, load_vendors

__all__ = ["InMemorySchedulingService", "SchedulingService", "apply_override", "load_vendors"]
