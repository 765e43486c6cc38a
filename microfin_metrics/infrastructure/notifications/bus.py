"""In-process publish/subscribe for metrics-changed notifications"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Set
from microfin_metrics.infrastructure.clients.webhook import DashboardWebhookClient
from microfin_metrics.infrastructure.observability.metrics import notification_failure_counter

logger = logging.getLogger(__name__)

Subscriber = Callable[[List[Dict[str, Any]]], None]


class MetricsEventBus:
    """Fan-out of freshly recorded ledger events to interested listeners"""

    def __init__(self):
        self._subscribers: List[Subscriber] = []

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """Register a listener; returns a callable that removes it again"""
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    def publish(self, events: List[Dict[str, Any]]) -> None:
        """
        Deliver events to every subscriber.

        A failing subscriber is logged and counted; it never fails the write
        that triggered the notification, nor the remaining subscribers.
        """
        if not events:
            return
        for subscriber in list(self._subscribers):
            try:
                subscriber(events)
            except Exception as e:
                notification_failure_counter.inc()
                logger.warning(
                    "Metrics subscriber failed",
                    extra={"step": "notify", "error": str(e), "event_count": len(events)},
                )

    def clear(self) -> None:
        self._subscribers.clear()


class WebhookForwarder:
    """Subscriber that pushes batches to the dashboard webhook in the background"""

    def __init__(self, client: DashboardWebhookClient):
        self.client = client
        self._tasks: Set[asyncio.Task] = set()

    def __call__(self, events: List[Dict[str, Any]]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop, dashboard notification dropped", extra={"step": "notify"})
            return
        task = loop.create_task(self._deliver({"type": "metrics_changed", "events": events}))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(self, payload: Dict[str, Any]) -> None:
        try:
            await self.client.send_metrics_changed(payload)
        except Exception as e:
            notification_failure_counter.inc()
            logger.error("Dashboard webhook delivery failed", extra={"step": "notify", "error": str(e)})


metrics_bus = MetricsEventBus()
