"""
Bastion - Action & Alert Dispatch
=================================

Hands outbound action requests and alerts to the platform collaborators
without blocking the event path.

DESIGN:
    submit() schedules the call as a safe background task and returns at
    once. Failures are logged and counted; nothing is retried, because a
    retried ban or delete seconds later is usually wrong (the target may
    already be gone, or an admin may have stepped in).

    drain() awaits everything in flight. Shutdown and tests use it.

Author: Bastion Maintainers
"""

import asyncio
from typing import TYPE_CHECKING, Dict, List, Optional, Protocol, Sequence, Set

from bastion.core.logger import logger
from bastion.core.models import ActionRequest, Alert
from bastion.utils.async_utils import create_safe_task, has_running_loop

if TYPE_CHECKING:
    from bastion.services.community_config import CommunityConfigProvider


class ActionExecutor(Protocol):
    async def execute(self, request: ActionRequest) -> None: ...


class Notifier(Protocol):
    async def send(self, alert: Alert) -> None: ...


class _Dispatcher:

    kind = "dispatch"

    def __init__(self) -> None:
        self._in_flight: Set[asyncio.Task] = set()
        self._stats: Dict[str, int] = {"submitted": 0, "succeeded": 0, "failed": 0, "dropped": 0}

    def _schedule(self, coro, name: str) -> Optional[asyncio.Task]:
        if not has_running_loop():
            coro.close()
            self._stats["dropped"] += 1
            logger.warning("Dispatch Dropped", [
                ("Kind", self.kind),
                ("Task", name),
                ("Reason", "No running event loop"),
            ])
            return None

        self._stats["submitted"] += 1
        task = create_safe_task(coro, name)
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return task

    async def drain(self) -> None:
        """Wait for every in-flight call to finish."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def get_stats(self) -> Dict[str, int]:
        return dict(self._stats)


# =============================================================================
# Actions
# =============================================================================

class ActionDispatcher(_Dispatcher):
    """Fire-and-forget execution of ActionRequests."""

    kind = "action"

    def __init__(self, executor: ActionExecutor) -> None:
        super().__init__()
        self.executor = executor

    def submit(self, request: ActionRequest) -> Optional[asyncio.Task]:
        name = f"Action: {request.action.value} {request.target_type} {request.target_id}"
        return self._schedule(self._execute(request), name)

    def submit_all(self, requests: Sequence[ActionRequest]) -> List[asyncio.Task]:
        tasks = [self.submit(request) for request in requests]
        return [t for t in tasks if t is not None]

    async def _execute(self, request: ActionRequest) -> None:
        try:
            await self.executor.execute(request)
            self._stats["succeeded"] += 1
        except Exception as e:
            self._stats["failed"] += 1
            logger.error("Action Failed", [
                ("Community", str(request.community_id)),
                ("Action", request.action.value),
                ("Target", f"{request.target_type} {request.target_id}"),
                ("Error", str(e)[:100]),
                ("Type", type(e).__name__),
            ])


# =============================================================================
# Alerts
# =============================================================================

class AlertDispatcher(_Dispatcher):
    """
    Fans alerts out to every notifier.

    Correlation alerts are only delivered to communities that opted in
    with `correlation_alerts`.
    """

    kind = "alert"

    def __init__(
        self,
        notifiers: Sequence[Notifier],
        config_provider: Optional["CommunityConfigProvider"] = None,
    ) -> None:
        super().__init__()
        self.notifiers = list(notifiers)
        self.config_provider = config_provider

    def add_notifier(self, notifier: Notifier) -> None:
        self.notifiers.append(notifier)

    def submit(self, alert: Alert) -> List[asyncio.Task]:
        if alert.kind == "threat_correlation" and self.config_provider is not None:
            config = self.config_provider.get_community_config(alert.community_id)
            if not config.correlation_alerts:
                return []

        tasks = []
        for notifier in self.notifiers:
            name = f"Alert: {alert.kind} -> {type(notifier).__name__}"
            task = self._schedule(self._send(notifier, alert), name)
            if task is not None:
                tasks.append(task)
        return tasks

    async def _send(self, notifier: Notifier, alert: Alert) -> None:
        try:
            await notifier.send(alert)
            self._stats["succeeded"] += 1
        except Exception as e:
            self._stats["failed"] += 1
            logger.error("Alert Delivery Failed", [
                ("Community", str(alert.community_id)),
                ("Kind", alert.kind),
                ("Notifier", type(notifier).__name__),
                ("Error", str(e)[:100]),
            ])


__all__ = [
    "ActionExecutor",
    "Notifier",
    "ActionDispatcher",
    "AlertDispatcher",
]
