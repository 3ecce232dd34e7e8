"""
Prometheus series for Derepute processes and the ``/metrics`` endpoint.

All series live in the default ``prometheus_client`` registry under the
``derepute`` namespace:

* ``derepute_service_info`` / ``_service_gauge`` / ``_service_counter`` /
  ``_cycle_duration_seconds``: generic per-service values written by
  [BaseService][derepute.core.base_service.BaseService] (``cycles_success``,
  ``consecutive_failures``...) and by the services themselves
  (``records_applied``, ``chunks_failed``...).
* ``derepute_channel_writes_total{operation, outcome}``: every submission
  through the [WriteChannel][derepute.core.channel.WriteChannel], with
  outcome ``committed``, ``rejected``, ``timeout`` or ``rate_limited``.
* ``derepute_registry_records``: record count after the last committed write.

[MetricsServer][derepute.core.metrics.MetricsServer] serves the registry
over aiohttp when ``MetricsConfig.enabled`` is set; the CLI starts it next to
a continuously running service.
"""

from __future__ import annotations

from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)
from pydantic import BaseModel, Field


NAMESPACE = "derepute"


class MetricsConfig(BaseModel):
    """Where to serve metrics; nothing is served or recorded unless ``enabled``."""

    enabled: bool = False
    host: str = Field(default="127.0.0.1", description="Listen address for /metrics")
    port: int = Field(default=8000, ge=1024, le=65535, description="Listen port")
    path: str = Field(default="/metrics", description="Scrape path")


# ---------------------------------------------------------------------------
# Service Series
# ---------------------------------------------------------------------------

SERVICE_INFO = Info("service", "Running Derepute service", namespace=NAMESPACE)

SERVICE_GAUGE = Gauge(
    "service_gauge",
    "Named point-in-time value reported by a service",
    ["service", "name"],
    namespace=NAMESPACE,
)

SERVICE_COUNTER = Counter(
    "service_counter",
    "Named running total reported by a service",
    ["service", "name"],
    namespace=NAMESPACE,
)

CYCLE_DURATION_SECONDS = Histogram(
    "cycle_duration_seconds",
    "Wall time of successful service cycles",
    ["service"],
    namespace=NAMESPACE,
    buckets=(0.1, 0.5, 1, 5, 15, 60, 300, 900, 1800, 3600),
)


# ---------------------------------------------------------------------------
# Registry Series
# ---------------------------------------------------------------------------

CHANNEL_WRITES = Counter(
    "channel_writes",
    "Write channel submissions by operation and outcome",
    ["operation", "outcome"],
    namespace=NAMESPACE,
)

REGISTRY_RECORDS = Gauge(
    "registry_records",
    "Relay records held by the registry after the last committed write",
    namespace=NAMESPACE,
)


# ---------------------------------------------------------------------------
# Exposition
# ---------------------------------------------------------------------------


class MetricsServer:
    """aiohttp site serving ``generate_latest()`` at ``config.path``.

    ``start`` does nothing when metrics are disabled; ``stop`` may be called
    any number of times.
    """

    def __init__(self, config: MetricsConfig) -> None:
        self._config = config
        self._runner: web.AppRunner | None = None

    @property
    def running(self) -> bool:
        return self._runner is not None

    async def start(self) -> None:
        """Bind and start serving.

        Raises:
            OSError: If ``host:port`` cannot be bound.
        """
        if not self._config.enabled or self.running:
            return
        app = web.Application()
        app.router.add_get(self._config.path, self._handle_metrics)
        runner = web.AppRunner(app, access_log=None)
        await runner.setup()
        try:
            await web.TCPSite(runner, self._config.host, self._config.port).start()
        except BaseException:
            await runner.cleanup()
            raise
        self._runner = runner

    async def stop(self) -> None:
        runner, self._runner = self._runner, None
        if runner is not None:
            await runner.cleanup()

    @staticmethod
    async def _handle_metrics(_request: web.Request) -> web.Response:
        return web.Response(body=generate_latest(), headers={"Content-Type": CONTENT_TYPE_LATEST})
