"""Dashboard webhook client with exponential backoff retry logic"""

import asyncio
import httpx
from typing import Any, Dict, Optional
from microfin_metrics.config import settings
from microfin_metrics.infrastructure.observability.metrics import webhook_latency_histogram, webhook_failure_counter


class DashboardWebhookClient:
    """Client for pushing metrics-changed notifications to live dashboards"""

    def __init__(
        self,
        webhook_url: str | None = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_retries: int | None = None,
        backoff_base: float | None = None,
    ):
        self.webhook_url = webhook_url or settings.dashboard_webhook_url
        self.max_retries = max_retries if max_retries is not None else settings.webhook_max_retries
        self.backoff_base = backoff_base if backoff_base is not None else settings.webhook_backoff_base
        self.transport = transport

    async def send_metrics_changed(self, payload: Dict[str, Any]) -> None:
        """
        Deliver a metrics-changed notification with retry logic.

        Retry strategy:
        - Exponential backoff: base, 2*base, 4*base, ...
        - Retries on 5xx responses and network failures; 4xx fails at once
        - Tracks latency histogram and failure counter

        Args:
            payload: {"type": "metrics_changed", "events": [...]}

        Raises:
            httpx.HTTPError: When the final attempt still fails
        """
        attempt = 0
        async with httpx.AsyncClient(transport=self.transport, timeout=settings.http_timeout_seconds) as client:
            while attempt < self.max_retries:
                try:
                    with webhook_latency_histogram.time():
                        response = await client.post(self.webhook_url, json=payload)
                        response.raise_for_status()
                        return

                except (httpx.HTTPStatusError, httpx.RequestError) as e:
                    attempt += 1
                    webhook_failure_counter.inc()

                    # 4xx is final
                    client_error = isinstance(e, httpx.HTTPStatusError) and e.response.status_code < 500
                    if client_error or attempt >= self.max_retries:
                        raise

                    backoff = self.backoff_base * (2 ** (attempt - 1))
                    await asyncio.sleep(backoff)
