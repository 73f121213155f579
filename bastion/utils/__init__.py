"""
Bastion - Utilities Package
===========================

Clock, TTL cache and async helpers shared by the services.

Author: Bastion Maintainers
"""

from .async_utils import create_safe_task, has_running_loop, run_blocking
from .cache import TTLCache
from .clock import Clock, ManualClock, SYSTEM_CLOCK

__all__ = [
    "Clock",
    "ManualClock",
    "SYSTEM_CLOCK",
    "TTLCache",
    "create_safe_task",
    "has_running_loop",
    "run_blocking",
]
