"""REST API service exposing the registry read-only via FastAPI.

Serves the [RegistryReader][derepute.services.reader.RegistryReader]
surface (count, existence, lookup, index-ordered pages and search) to the
presentation layer. Nothing here can mutate the registry.

The HTTP server runs as a background ``asyncio.Task`` alongside the
standard ``run_forever()`` cycle. Each ``run()`` cycle reloads the
registry snapshot written by the synchronizer, logs request statistics
and updates Prometheus metrics.

Lookup failures carry distinct ``reason`` codes: ``not_found`` (404) for
an unknown fingerprint, ``offset_out_of_bounds`` and
``index_out_of_bounds`` (400) for positions outside the registry.

See Also:
    [ApiConfig][derepute.services.api.ApiConfig]: Configuration model.
    [BaseService][derepute.core.base_service.BaseService]: Abstract
        base class providing lifecycle and metrics.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from typing import TYPE_CHECKING, Any, ClassVar

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from derepute.core.base_service import BaseService
from derepute.core.exceptions import (
    IndexOutOfBoundsError,
    NotFoundError,
    OffsetOutOfBoundsError,
    StateError,
)
from derepute.models.constants import ServiceName
from derepute.services.reader import RegistryReader, SearchProgress

from .configs import ApiConfig


if TYPE_CHECKING:
    from types import TracebackType

    from derepute.core.registry import RegistryStore

_HTTP_ERROR_THRESHOLD = 400

# Any other StateError maps to 400 invalid_request.
_ERROR_RESPONSES: tuple[tuple[type[StateError], int, str], ...] = (
    (NotFoundError, 404, "not_found"),
    (OffsetOutOfBoundsError, 400, "offset_out_of_bounds"),
    (IndexOutOfBoundsError, 400, "index_out_of_bounds"),
)


def _error_response(error: StateError) -> JSONResponse:
    for error_type, status, reason in _ERROR_RESPONSES:
        if isinstance(error, error_type):
            return JSONResponse({"error": str(error), "reason": reason}, status_code=status)
    return JSONResponse({"error": str(error), "reason": "invalid_request"}, status_code=400)


def _invalid_params(message: str) -> JSONResponse:
    return JSONResponse({"error": message, "reason": "invalid_parameter"}, status_code=400)


class Api(BaseService[ApiConfig]):
    """Read-only HTTP front end for the relay registry.

    Entering the context starts uvicorn as a background task serving
    ``_build_app()``; each ``run()`` cycle checks that task is alive, reloads
    the registry snapshot if the synchronizer rewrote it, and publishes the
    request counters accumulated by the middleware. Leaving the context
    cancels the server. Rate limiting belongs to the reverse proxy.
    """

    SERVICE_NAME: ClassVar[ServiceName] = ServiceName.API
    CONFIG_CLASS: ClassVar[type[ApiConfig]] = ApiConfig

    def __init__(self, store: RegistryStore, config: ApiConfig | None = None) -> None:
        super().__init__(store, config)
        self._reader = RegistryReader(store)
        self._server_task: asyncio.Task[None] | None = None
        self._requests_total = 0
        self._requests_failed = 0

    @property
    def reader(self) -> RegistryReader:
        return self._reader

    async def __aenter__(self) -> Api:
        await super().__aenter__()
        self._server_task = asyncio.create_task(
            self._run_server(self._build_app()), name="derepute-api-http"
        )
        self._logger.info(
            "http_server_started",
            host=self._config.host,
            port=self._config.port,
            prefix=self._config.route_prefix,
        )
        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: TracebackType | None,
    ) -> None:
        task, self._server_task = self._server_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            self._logger.info("http_server_stopped")
        await super().__aexit__(_exc_type, _exc_val, _exc_tb)

    def _check_server(self) -> None:
        task = self._server_task
        if task is None or not task.done():
            return
        error = None if task.cancelled() else task.exception()
        self._logger.error("http_server_crashed", error=str(error) if error else "cancelled")
        raise RuntimeError("HTTP server task has stopped unexpectedly") from error

    async def run(self) -> None:
        """Pick up snapshot changes and flush the request counters.

        Raises:
            RuntimeError: If the uvicorn task has exited, so that
                ``run_forever`` counts the cycle as failed.
        """
        self._check_server()
        if self._store.refresh():
            self._logger.info("registry_reloaded", records=self._store.count())

        served, failed = self._requests_total, self._requests_failed
        self._requests_total = self._requests_failed = 0
        records = self._store.count()

        self._logger.info(
            "cycle_stats", requests_total=served, requests_failed=failed, registry_size=records
        )
        self.inc_counter("requests_total", served)
        self.inc_counter("requests_failed", failed)
        self.set_gauge("registry_size", records)

    def _build_app(self) -> FastAPI:
        """Construct the FastAPI application with the registry routes."""
        app = FastAPI(title="Derepute API")
        prefix = self._config.route_prefix
        reader = self._reader

        if self._config.cors_origins:
            app.add_middleware(
                CORSMiddleware,
                allow_origins=self._config.cors_origins,
                allow_methods=["GET"],
                allow_headers=["*"],
            )

        @app.middleware("http")
        async def count_requests(request: Request, call_next: Any) -> Response:
            started = time.monotonic()
            try:
                response: Response = await call_next(request)
            except Exception as e:  # request error boundary
                self._logger.error("unhandled_error", error=str(e), path=request.url.path)
                response = JSONResponse({"error": "Internal server error"}, status_code=500)

            failed = response.status_code >= _HTTP_ERROR_THRESHOLD
            self._requests_total += 1
            self._requests_failed += int(failed)
            log = self._logger.warning if failed else self._logger.debug
            log(
                "request_failed" if failed else "request_completed",
                method=request.method,
                path=request.url.path,
                status=response.status_code,
                duration_ms=round((time.monotonic() - started) * 1000, 1),
            )
            return response

        @app.get("/health")
        async def health() -> dict[str, str]:
            return {"status": "ok"}

        @app.get(f"{prefix}/relays")
        async def list_relays(request: Request) -> JSONResponse:
            params = request.query_params
            try:
                limit = int(params.get("limit", self._config.default_page_size))
                offset = int(params.get("offset", 0))
            except ValueError:
                return _invalid_params("Invalid limit or offset")
            if limit < 1:
                return _invalid_params("limit must be >= 1")
            limit = min(limit, self._config.max_page_size)

            try:
                records = reader.page(offset, limit)
            except StateError as e:
                return _error_response(e)
            return JSONResponse(
                {
                    "data": [r.to_dict() for r in records],
                    "meta": {"total": reader.count(), "limit": limit, "offset": offset},
                }
            )

        # Registered before the {fingerprint} routes so the literal paths win.
        @app.get(f"{prefix}/relays/count")
        async def count_relays() -> JSONResponse:
            return JSONResponse({"data": {"count": reader.count()}})

        @app.get(f"{prefix}/relays/index/{{index}}")
        async def relay_at_index(index: str) -> JSONResponse:
            try:
                position = int(index)
            except ValueError:
                return _invalid_params(f"Invalid index: {index}")
            try:
                fingerprint = reader.get_by_index(position)
            except StateError as e:
                return _error_response(e)
            return JSONResponse({"data": {"index": position, "fingerprint": fingerprint}})

        @app.get(f"{prefix}/relays/{{fingerprint}}")
        async def get_relay(fingerprint: str) -> JSONResponse:
            try:
                record = reader.get(fingerprint)
            except StateError as e:
                return _error_response(e)
            return JSONResponse({"data": record.to_dict()})

        @app.get(f"{prefix}/relays/{{fingerprint}}/exists")
        async def relay_exists(fingerprint: str) -> JSONResponse:
            return JSONResponse(
                {"data": {"fingerprint": fingerprint.upper(), "exists": reader.exists(fingerprint)}}
            )

        @app.get(f"{prefix}/search")
        async def search(q: str = "") -> JSONResponse:
            if not q.strip():
                return _invalid_params("Query parameter 'q' must not be empty")
            progress = SearchProgress((), 0, reader.count(), True)
            for progress in reader.search(q, page_size=self._config.search_page_size):
                pass
            return JSONResponse(
                {
                    "data": [r.to_dict() for r in progress.matches],
                    "meta": {
                        "query": q,
                        "scanned": progress.scanned,
                        "total": progress.total,
                        "complete": progress.complete,
                    },
                }
            )

        return app

    async def _run_server(self, app: FastAPI) -> None:
        server = uvicorn.Server(
            uvicorn.Config(
                app,
                host=self._config.host,
                port=self._config.port,
                log_level="warning",
                access_log=False,
            )
        )
        await server.serve()
