"""
Service lifecycle shared by the synchronizer and the API.

A service wraps the process-wide
[RegistryStore][derepute.core.registry.RegistryStore] and does its work in
cycles: [run()][derepute.core.base_service.BaseService.run] performs one
bounded cycle, and
[run_forever()][derepute.core.base_service.BaseService.run_forever] repeats
it every ``interval`` seconds until shutdown is requested or too many cycles
fail in a row. Between cycles the service sleeps on an ``asyncio.Event`` so
SIGINT/SIGTERM handlers can wake it immediately.

Cycle outcomes are exported through the generic Prometheus series in
[derepute.core.metrics][] when ``metrics.enabled`` is set.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from types import TracebackType
from typing import Any, ClassVar, Generic, Self, TypeVar, cast

from pydantic import BaseModel, Field

from derepute.models.constants import ServiceName

from .logger import Logger
from .metrics import (
    CYCLE_DURATION_SECONDS,
    SERVICE_COUNTER,
    SERVICE_GAUGE,
    SERVICE_INFO,
    MetricsConfig,
)
from .registry import RegistryStore
from .yaml import load_yaml


class BaseServiceConfig(BaseModel):
    """Cycle timing, failure tolerance and metrics settings common to services."""

    interval: float = Field(default=3600.0, ge=1.0, description="Seconds between cycles")
    max_consecutive_failures: int = Field(
        default=5, ge=0, description="Failed cycles in a row before stopping (0 = never stop)"
    )
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)


ConfigT = TypeVar("ConfigT", bound=BaseServiceConfig)


class BaseService(ABC, Generic[ConfigT]):
    """Base class for cycle-driven services bound to a registry.

    Subclasses declare ``SERVICE_NAME`` (logger name and metrics label) and
    ``CONFIG_CLASS`` (parsed by ``from_dict``/``from_yaml``), and implement
    ``run``. Typical use::

        async with Synchronizer(store, config) as service:
            await service.run_forever()
    """

    SERVICE_NAME: ClassVar[ServiceName]
    CONFIG_CLASS: ClassVar[type[BaseModel]]

    def __init__(self, store: RegistryStore, config: ConfigT | None = None) -> None:
        if config is None:
            config = cast("ConfigT", self.CONFIG_CLASS())
        self._store = store
        self._config: ConfigT = config
        self._logger = Logger(self.SERVICE_NAME)
        self._shutdown_event = asyncio.Event()

    @classmethod
    def from_dict(cls, data: dict[str, Any], store: RegistryStore, **kwargs: Any) -> Self:
        """Build the service with ``CONFIG_CLASS(**data)`` as its config."""
        return cls(store=store, config=cast("ConfigT", cls.CONFIG_CLASS(**data)), **kwargs)

    @classmethod
    def from_yaml(cls, config_path: str, store: RegistryStore, **kwargs: Any) -> Self:
        return cls.from_dict(load_yaml(config_path), store=store, **kwargs)

    @property
    def config(self) -> ConfigT:
        return self._config

    @property
    def store(self) -> RegistryStore:
        return self._store

    @property
    def is_running(self) -> bool:
        """False once shutdown has been requested or the context has exited."""
        return not self._shutdown_event.is_set()

    @abstractmethod
    async def run(self) -> None:
        """Perform one cycle. Long cycles should stop early when not ``is_running``."""

    def request_shutdown(self) -> None:
        """Ask the service to stop after the current unit of work (signal-safe)."""
        self._shutdown_event.set()

    async def wait(self, timeout: float) -> bool:  # noqa: ASYNC109
        """Sleep up to *timeout* seconds; return True if woken by shutdown."""
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=timeout)
        except TimeoutError:
            return False
        return True

    async def __aenter__(self) -> Self:
        self._shutdown_event.clear()
        self._logger.info("service_started")
        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: TracebackType | None,
    ) -> None:
        self._shutdown_event.set()
        self._logger.info("service_stopped")

    # -------------------------------------------------------------------------
    # Cycle Loop
    # -------------------------------------------------------------------------

    async def _run_cycle(self) -> Exception | None:
        """Run one cycle and record its outcome; return the failure, if any."""
        started = time.monotonic()
        try:
            await self.run()
        except (asyncio.CancelledError, KeyboardInterrupt, SystemExit):
            raise
        except Exception as e:  # every other failure counts against the cycle budget
            self.inc_counter("cycles_failed")
            self.inc_counter(f"errors_{type(e).__name__}")
            return e

        self.inc_counter("cycles_success")
        if self._config.metrics.enabled:
            CYCLE_DURATION_SECONDS.labels(service=self.SERVICE_NAME).observe(
                time.monotonic() - started
            )
        self.set_gauge("last_cycle_timestamp", time.time())
        return None

    async def run_forever(self) -> None:
        """Repeat ``run`` every ``interval`` seconds until told to stop.

        The loop ends when shutdown is requested (including from inside a
        cycle) or after ``max_consecutive_failures`` failed cycles in a row.
        Cancellation is never treated as a cycle failure.
        """
        interval = self._config.interval
        limit = self._config.max_consecutive_failures
        if self._config.metrics.enabled:
            SERVICE_INFO.info({"service": self.SERVICE_NAME})
        self._logger.info("run_forever_started", interval=interval, max_failures=limit)

        failures = 0
        while self.is_running:
            error = await self._run_cycle()
            if error is None:
                failures = 0
                self._logger.info("cycle_completed", next_cycle_s=interval)
            else:
                failures += 1
                self._logger.error(
                    "run_cycle_error",
                    error=str(error),
                    error_type=type(error).__name__,
                    consecutive_failures=failures,
                )
            self.set_gauge("consecutive_failures", failures)

            if limit and failures >= limit:
                self._logger.critical(
                    "max_consecutive_failures_reached", failures=failures, limit=limit
                )
                break
            if await self.wait(interval):
                break

        self._logger.info("run_forever_stopped")

    # -------------------------------------------------------------------------
    # Service Metrics
    # -------------------------------------------------------------------------

    def set_gauge(self, name: str, value: float) -> None:
        """Set ``derepute_service_gauge{service, name}``; ignored with metrics off."""
        if self._config.metrics.enabled:
            SERVICE_GAUGE.labels(service=self.SERVICE_NAME, name=name).set(value)

    def inc_counter(self, name: str, value: float = 1) -> None:
        """Add to ``derepute_service_counter{service, name}``; ignored with metrics off."""
        if self._config.metrics.enabled:
            SERVICE_COUNTER.labels(service=self.SERVICE_NAME, name=name).inc(value)
