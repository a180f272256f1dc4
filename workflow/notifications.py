"""
Best-effort real-time notification fanout.

Events go to global listeners, to per-role channels (department heads,
administrators) and to a per-user channel. Delivery is at-most-once and
fire-and-forget: a missing subscriber is not an error, a failing listener is
logged and ignored, and no workflow rule depends on a notification having
been received.

Operations queue their events in an ``EventBuffer`` and flush it only after
their transaction commits, so a rolled-back operation notifies nobody.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from models.status import Department
from utils.validation import get_current_utc_timestamp

logger = logging.getLogger(__name__)

Listener = Callable[[str, Dict[str, Any]], None]

ADMIN_ROLE = "ADMIN"

# Roles notified about a department's jobs besides administrators
DEPARTMENT_HEAD_ROLES = {
    Department.PREPRESS: "HOD_PREPRESS",
    Department.CUTTING: "HOD_CUTTING",
    Department.OFFSET_PRINTING: "HOD_OFFSET",
    Department.DIGITAL_PRINTING: "HOD_DIGITAL",
    Department.PRODUCTION: "HEAD_OF_PRODUCTION",
    Department.FINISHING: "HEAD_OF_PRODUCTION",
    Department.QA: "QA_MANAGER",
    Department.LOGISTICS: "LOGISTICS_MANAGER",
    Department.INVENTORY: "INVENTORY_MANAGER",
    Department.EXTERNAL: "PRODUCTION_MANAGER",
}


def roles_for_department(department) -> List[str]:
    """Role channels interested in a department's events."""
    try:
        head = DEPARTMENT_HEAD_ROLES[Department(department)]
    except ValueError:
        return [ADMIN_ROLE]
    return [head, ADMIN_ROLE]


class NotificationFanout:
    """
    Broadcasts workflow events to subscribed listeners.

    Usage:
        fanout = NotificationFanout(async_delivery=False)
        fanout.subscribe(lambda name, payload: print(name, payload))
        fanout.subscribe_role("HOD_CUTTING", on_cutting_event)
        fanout.emit("cutting:status_updated", {"job_id": 7}, roles=["HOD_CUTTING"])
    """

    def __init__(self, async_delivery: bool = True, max_workers: int = 4):
        """
        Args:
            async_delivery: Deliver on a worker pool instead of the caller's thread
            max_workers: Worker pool size for async delivery
        """
        self.async_delivery = async_delivery
        self.max_workers = max_workers
        self._global: List[Listener] = []
        self._roles: Dict[str, List[Listener]] = {}
        self._users: Dict[str, List[Listener]] = {}
        self._lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._pending: List[Future] = []

    def subscribe(self, listener: Listener) -> None:
        with self._lock:
            self._global.append(listener)

    def subscribe_role(self, role: str, listener: Listener) -> None:
        with self._lock:
            self._roles.setdefault(role, []).append(listener)

    def subscribe_user(self, user: str, listener: Listener) -> None:
        with self._lock:
            self._users.setdefault(str(user), []).append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        """Remove a listener from every channel it is subscribed to."""
        with self._lock:
            self._global = [item for item in self._global if item is not listener]
            for channel in (self._roles, self._users):
                for key, listeners in channel.items():
                    channel[key] = [item for item in listeners if item is not listener]

    def emit(
        self,
        event_name: str,
        payload: Dict[str, Any],
        roles: Optional[Iterable[str]] = None,
        user: Optional[str] = None,
    ) -> int:
        """
        Broadcast an event without waiting for delivery.

        Global listeners always receive the event; role and user listeners
        receive it when their channel is addressed.

        Returns:
            Number of listeners the event was dispatched to
        """
        targets = self._targets(roles, user)
        if not targets:
            logger.debug("No listeners for %s", event_name)
            return 0

        event = dict(payload)
        event.setdefault("timestamp", get_current_utc_timestamp())

        for listener in targets:
            if self.async_delivery:
                future = self._get_executor().submit(self._deliver, listener, event_name, event)
                with self._lock:
                    self._pending = [f for f in self._pending if not f.done()]
                    self._pending.append(future)
            else:
                self._deliver(listener, event_name, event)
        return len(targets)

    def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for queued deliveries to finish."""
        with self._lock:
            pending, self._pending = self._pending, []
        if pending:
            wait(pending, timeout=timeout)

    def shutdown(self) -> None:
        """Finish queued deliveries and stop the worker pool."""
        executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)

    def _targets(self, roles: Optional[Iterable[str]], user: Optional[str]) -> List[Listener]:
        with self._lock:
            targets = list(self._global)
            for role in roles or ():
                targets.extend(self._roles.get(role, ()))
            if user is not None:
                targets.extend(self._users.get(str(user), ()))

        # A listener subscribed on several addressed channels hears the event once
        unique: List[Listener] = []
        for listener in targets:
            if not any(listener is seen for seen in unique):
                unique.append(listener)
        return unique

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.max_workers, thread_name_prefix="notify"
                )
            return self._executor

    @staticmethod
    def _deliver(listener: Listener, event_name: str, event: Dict[str, Any]) -> None:
        try:
            listener(event_name, event)
        except Exception:
            logger.warning("Notification listener failed for %s", event_name, exc_info=True)


class EventBuffer:
    """Events collected during an operation, emitted once it has committed."""

    def __init__(self):
        self._events: List[Tuple[str, Dict[str, Any], Tuple[str, ...], Optional[str]]] = []

    def add(
        self,
        event_name: str,
        payload: Dict[str, Any],
        roles: Optional[Iterable[str]] = None,
        user: Optional[str] = None,
    ) -> None:
        self._events.append((event_name, payload, tuple(roles or ()), user))

    def __len__(self) -> int:
        return len(self._events)

    def names(self) -> List[str]:
        return [event[0] for event in self._events]

    def flush(self, fanout: Optional[NotificationFanout]) -> None:
        """Emit and clear the buffered events; without a fanout they are dropped."""
        events, self._events = self._events, []
        if fanout is None:
            return
        for event_name, payload, roles, user in events:
            fanout.emit(event_name, payload, roles=roles, user=user)

    def clear(self) -> None:
        self._events = []
