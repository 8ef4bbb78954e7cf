"""Main entry point for the GCP bastion operator.

Loads the cluster context and every Bastion intent from SPECS_DIR, then
reconciles them until SIGTERM or SIGINT.
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from datetime import UTC, datetime

from .client import GoogleComputeClient
from .config import Config, ConfigurationError
from .controller import BastionController
from .reconciler import BastionActuator
from .spec_loader import SpecLoadError, load_cluster, load_intents
from .status import InMemoryStatusStore, StatusStore, YamlStatusStore

LOG_HANDLER_NAME = "gcp-bastion"

# LogRecord attributes that are not user supplied extra fields
_RESERVED_RECORD_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class JsonFormatter(logging.Formatter):
    """One JSON object per record, extra fields inlined."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(json_output: bool = True, level: int = logging.INFO) -> None:
    """Configure root logging, JSON for production or plain text for terminals."""
    handler = logging.StreamHandler(sys.stdout)
    if json_output:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )

    handler.set_name(LOG_HANDLER_NAME)

    root_logger = logging.getLogger()
    # Replace our handler on repeated setup (CLI invocations in one process)
    for existing in list(root_logger.handlers):
        if existing.get_name() == LOG_HANDLER_NAME:
            root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Reduce noise from the Google client libraries
    logging.getLogger("google").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def build_status_store(config: Config) -> StatusStore:
    if config.status_dir is not None:
        return YamlStatusStore(config.status_dir)
    return InMemoryStatusStore()


async def main() -> int:
    """Run the operator.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    try:
        config = Config.from_env()
    except ConfigurationError as e:
        setup_logging()
        logging.getLogger(__name__).error("Configuration error", extra={"error": str(e)})
        return 1

    setup_logging(json_output=config.enable_json_logging)
    logger = logging.getLogger(__name__)

    try:
        cluster = load_cluster(config.cluster_file)
        intents = load_intents(config.specs_dir, config.cluster_file)
    except SpecLoadError as e:
        logger.error(
            "Spec loading failed",
            extra={"error": str(e), "specs_dir": str(config.specs_dir)},
        )
        return 1

    if not intents:
        logger.warning("No bastion intents found", extra={"specs_dir": str(config.specs_dir)})
        return 0

    logger.info(
        "Starting GCP bastion operator",
        extra={
            "project_id": config.project_id,
            "cluster": cluster.name,
            "region": cluster.region,
            "bastions": len(intents),
        },
    )

    try:
        client = GoogleComputeClient(operation_timeout_seconds=config.operation_timeout_seconds)
        store = build_status_store(config)
    except Exception as e:
        logger.error(
            "Failed to initialize operator",
            extra={"error": str(e), "error_type": type(e).__name__},
        )
        return 1

    controller = BastionController(BastionActuator(config, client, store), store, cluster)

    # Stop scheduling new work; in-flight reconciles finish
    loop = asyncio.get_running_loop()

    def signal_handler(sig: signal.Signals) -> None:
        logger.info("Received signal", extra={"signal": sig.name})
        controller.shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))

    try:
        await controller.run(intents)
    except Exception as e:
        logger.exception("Unhandled exception", extra={"error": str(e)})
        return 1

    logger.info("Operator stopped")
    return 0


def run() -> None:
    """Entry point for the operator."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
