"""
Scoped One-Shot Subscriptions.

Wraps the substrate's callback registration in an async context manager:
acquire listeners on entry, resolve a single future on the first matching
notification, and deregister on every exit path (success, timeout, error
and cancellation). Sustained request volume therefore never accumulates
listeners in the process-wide registry.

Usage:
    async with OneShotSubscription(substrate, names, predicate) as sub:
        await substrate.submit_request(request)
        notification = await sub.wait(Deadline(30.0))
"""

import asyncio
import logging
from typing import Callable, List, Optional, Sequence

from ..reliability.timeout import Deadline
from .models import CompletionNotification
from .substrate import ExecutionSubstrate

logger = logging.getLogger(__name__)

NotificationPredicate = Callable[[CompletionNotification], bool]


class OneShotSubscription:
    """Listener set that resolves once, on the first notification accepted by ``predicate``."""

    def __init__(
        self,
        substrate: ExecutionSubstrate,
        event_names: Sequence[str],
        predicate: NotificationPredicate,
        name: Optional[str] = None,
    ):
        if not event_names:
            raise ValueError("At least one event name is required")
        self._substrate = substrate
        self._event_names = tuple(event_names)
        self._predicate = predicate
        self.name = name or ",".join(self._event_names)

        self._future: Optional[asyncio.Future] = None
        self._listener_ids: List[int] = []

    @property
    def active(self) -> bool:
        """True while listeners are registered."""
        return bool(self._listener_ids)

    @property
    def resolved(self) -> bool:
        return self._future is not None and self._future.done()

    async def __aenter__(self) -> "OneShotSubscription":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.close()
        return False

    async def open(self) -> None:
        if self._future is not None:
            raise RuntimeError(f"Subscription {self.name} already opened")
        self._future = asyncio.get_running_loop().create_future()
        try:
            for event_name in self._event_names:
                listener_id = await self._substrate.add_listener(event_name, self._on_notification)
                self._listener_ids.append(listener_id)
        except BaseException:
            await self.close()
            raise

    def _on_notification(self, notification: CompletionNotification) -> None:
        if self._future is None or self._future.done():
            return
        try:
            matched = self._predicate(notification)
        except Exception as e:
            self._future.set_exception(e)
            return
        if matched:
            self._future.set_result(notification)

    async def wait(self, deadline: Deadline) -> CompletionNotification:
        """
        Wait for the first matching notification within ``deadline``.

        Deregisters the listeners as soon as a match is delivered. A timed
        out wait leaves the subscription open so the caller may wait again.

        Raises:
            DeadlineExceeded: If nothing matched in time
        """
        if self._future is None:
            raise RuntimeError(f"Subscription {self.name} is not open")
        notification = await deadline.wait_for(asyncio.shield(self._future))
        await self.close()
        return notification

    async def close(self) -> None:
        """Deregister all listeners. Safe to call repeatedly."""
        listener_ids, self._listener_ids = self._listener_ids, []
        for listener_id in listener_ids:
            try:
                await self._substrate.remove_listener(listener_id)
            except Exception as e:
                logger.warning(
                    f"Failed to remove listener {listener_id} for {self.name}: {e}",
                    extra={"subscription": self.name, "listener_id": listener_id},
                )
