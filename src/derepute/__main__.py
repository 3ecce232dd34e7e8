"""Command-line interface for Derepute.

Three kinds of command share one entry point:

* services (``synchronizer``, ``api``): one cycle with ``--once``, otherwise
  run until SIGINT/SIGTERM with the Prometheus endpoint from the service's
  ``metrics`` config;
* registry administration (``transfer-ownership``, ``add-updater``,
  ``remove-updater``): one owner-only call through the same serialized
  [WriteChannel][derepute.core.channel.WriteChannel] the synchronizer uses,
  saved to the registry snapshot;
* ``fetch``: download the ranked Onionoo details document for offline
  inspection or replay through ``feed.source_file``.

Examples:
    ```bash
    derepute synchronizer --once
    derepute api --log-level DEBUG
    derepute add-updater --identity operator --target sync-bot
    derepute fetch --output data/details.json --limit 500
    ```
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
import time
from pathlib import Path
from typing import Any, NamedTuple

from derepute.core.base_service import BaseService
from derepute.core.channel import WriteChannel
from derepute.core.exceptions import DereputeError
from derepute.core.logger import Logger, StructuredFormatter
from derepute.core.metrics import MetricsServer
from derepute.core.registry import RegistryStore
from derepute.core.yaml import load_yaml
from derepute.models.constants import ServiceName
from derepute.services.api import Api
from derepute.services.common.configs import FeedConfig
from derepute.services.common.feed import OnionooClient
from derepute.services.common.transform import summarize_records, transform_entries
from derepute.services.synchronizer import Synchronizer


CONFIG_BASE = Path("config")
REGISTRY_CONFIG = CONFIG_BASE / "registry.yaml"


class ServiceEntry(NamedTuple):
    cls: type[BaseService[Any]]
    config_path: Path


SERVICE_REGISTRY: dict[str, ServiceEntry] = {
    name: ServiceEntry(cls, CONFIG_BASE / "services" / f"{name}.yaml")
    for name, cls in ((ServiceName.SYNCHRONIZER, Synchronizer), (ServiceName.API, Api))
}

ADMIN_COMMANDS = ("transfer-ownership", "add-updater", "remove-updater")
FETCH_COMMAND = "fetch"

logger = Logger("cli")


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


async def _run_once(service: BaseService[Any], name: str) -> int:
    try:
        async with service:
            await service.run()
    except Exception as e:  # CLI error boundary: report and exit non-zero
        logger.error(f"{name}_failed", error=str(e), error_type=type(e).__name__)
        return 1
    logger.info(f"{name}_completed")
    return 0


async def _run_continuously(service: BaseService[Any], name: str) -> int:
    metrics = service.config.metrics
    server = MetricsServer(metrics)
    try:
        await server.start()
        if server.running:
            logger.info(
                "metrics_server_started", host=metrics.host, port=metrics.port, path=metrics.path
            )

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, _on_signal, service, sig)

        async with service:
            await service.run_forever()
    except Exception as e:  # CLI error boundary: report and exit non-zero
        logger.error(f"{name}_failed", error=str(e), error_type=type(e).__name__)
        return 1
    finally:
        if server.running:
            await server.stop()
            logger.info("metrics_server_stopped")
    return 0


def _on_signal(service: BaseService[Any], sig: signal.Signals) -> None:
    logger.info("shutdown_signal", signal=sig.name)
    service.request_shutdown()


async def run_service(
    service_name: str,
    service_class: type[BaseService[Any]],
    store: RegistryStore,
    service_dict: dict[str, Any],
    *,
    once: bool,
) -> int:
    """Build *service_class* around *store* and run it.

    An empty *service_dict* (missing YAML) falls back to the config defaults.

    Returns:
        Process exit code, 0 on success and 1 on failure.
    """
    if service_dict:
        service = service_class.from_dict(service_dict, store=store)
    else:
        service = service_class(store=store)
    if once:
        return await _run_once(service, service_name)
    return await _run_continuously(service, service_name)


# ---------------------------------------------------------------------------
# Administration and Fetch
# ---------------------------------------------------------------------------


async def run_admin(command: str, store: RegistryStore, identity: str, target: str) -> int:
    """Submit one owner-only call through the write channel and save the snapshot.

    Returns:
        0 if the call was committed, 1 if the registry rejected it.
    """
    channel = WriteChannel(store)
    submit = {
        "transfer-ownership": channel.transfer_ownership,
        "add-updater": channel.add_updater,
        "remove-updater": channel.remove_updater,
    }[command]
    try:
        receipt = await submit(identity, target)
    except DereputeError as e:
        logger.error("admin_failed", command=command, error=str(e), error_type=type(e).__name__)
        return 1

    persisted = store.persist()
    logger.info(
        "admin_completed",
        command=command,
        target=target,
        sequence=receipt.sequence,
        persisted=persisted,
    )
    if not persisted:
        logger.warning("registry_not_persisted", reason="snapshot.path is not configured")
    return 0


async def run_fetch(feed_dict: dict[str, Any], output: Path, *, limit: int, order: str) -> int:
    """Save the top *limit* relays by *order* to *output* and log a summary."""
    try:
        async with OnionooClient(FeedConfig(**feed_dict)) as client:
            entries = await client.fetch_top_relays(limit=limit, order=order)
    except (DereputeError, TimeoutError, OSError) as e:
        logger.error("fetch_failed", error=str(e), error_type=type(e).__name__)
        return 1

    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(json.dumps({"relays": entries}, indent=2), encoding="utf-8")

    stats = summarize_records(transform_entries(entries, now=int(time.time())))
    logger.info(
        "fetch_completed",
        output=str(output),
        relays=len(entries),
        valid=stats.total,
        running=stats.running,
        total_bandwidth=stats.total_bandwidth,
        top_countries=dict(stats.top_countries(5)),
        top_flags=dict(stats.top_flags(5)),
    )
    return 0


# ---------------------------------------------------------------------------
# Entry Point
# ---------------------------------------------------------------------------


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config", type=Path, help="Service YAML (default: config/services/<service>.yaml)"
    )
    common.add_argument(
        "--registry-config",
        type=Path,
        default=REGISTRY_CONFIG,
        help=f"Registry YAML (default: {REGISTRY_CONFIG})",
    )
    common.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], default="INFO"
    )

    parser = argparse.ArgumentParser(prog="derepute", description="Tor relay reputation registry")
    commands = parser.add_subparsers(dest="command", required=True, metavar="command")

    for name in SERVICE_REGISTRY:
        sub = commands.add_parser(name, parents=[common], help=f"Run the {name} service")
        sub.add_argument("--once", action="store_true", help="Run a single cycle and exit")

    for name in ADMIN_COMMANDS:
        sub = commands.add_parser(name, parents=[common], help="Owner-only registry call")
        sub.add_argument("--identity", required=True, help="Calling identity (the owner)")
        sub.add_argument("--target", required=True, help="Identity the call applies to")

    fetch = commands.add_parser(
        FETCH_COMMAND, parents=[common], help="Download the ranked relay feed"
    )
    fetch.add_argument("--output", type=Path, default=Path("data") / "details.json")
    fetch.add_argument("--limit", type=int, default=100, help="Relays to fetch")
    fetch.add_argument("--order", default="-consensus_weight", help="Onionoo order parameter")

    args = parser.parse_args(argv)
    args.once = getattr(args, "once", False)
    return args


def setup_logging(level: str) -> None:
    """Send all records to stderr through the structured formatter."""
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter())
    logging.root.addHandler(handler)
    logging.root.setLevel(level)


def _load_yaml_dict(path: Path) -> dict[str, Any]:
    if path.exists():
        return load_yaml(path)
    logger.warning("config_not_found", path=str(path))
    return {}


async def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)

    if args.command == FETCH_COMMAND:
        config_path = args.config or SERVICE_REGISTRY[ServiceName.SYNCHRONIZER].config_path
        feed_dict = _load_yaml_dict(config_path).get("feed", {})
        return await run_fetch(feed_dict, args.output, limit=args.limit, order=args.order)

    registry_dict = _load_yaml_dict(args.registry_config)
    if not registry_dict:
        logger.error("registry_config_missing", path=str(args.registry_config))
        return 1
    try:
        store = RegistryStore.from_dict(registry_dict)
    except (DereputeError, ValueError) as e:
        logger.error("registry_load_failed", error=str(e))
        return 1

    try:
        if args.command in ADMIN_COMMANDS:
            return await run_admin(args.command, store, args.identity, args.target)
        entry = SERVICE_REGISTRY[args.command]
        return await run_service(
            args.command,
            entry.cls,
            store,
            _load_yaml_dict(args.config or entry.config_path),
            once=args.once,
        )
    except KeyboardInterrupt:
        logger.info("interrupted")
        return 130


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
