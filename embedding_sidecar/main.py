"""Embedding sidecar entry point.

Starts a ``grpc.aio`` server exposing ``sidecar.LLMService`` on
``[::]:50051`` by default, optionally preloading a model, and runs until
SIGINT or SIGTERM.
"""

import argparse
import asyncio
import signal
import sys
from typing import List, Optional, Set, Tuple

import grpc
import structlog

from embedding_sidecar import __version__
from embedding_sidecar.api.servicer import SERVICE_NAME, EmbeddingServicer
from embedding_sidecar.common.config import SidecarConfig
from embedding_sidecar.common.logging import configure_logging
from embedding_sidecar.encoders.model_store import BACKEND
from embedding_sidecar.protos import sidecar_pb2_grpc
from embedding_sidecar.runtime.metrics import get_metrics_collector

logger = structlog.get_logger("embedding_sidecar.main")

SHUTDOWN_GRACE_SECONDS = 5.0

# Pending signal-driven stops, held until they finish.
_shutdown_tasks: Set[asyncio.Task] = set()


class BindError(RuntimeError):
    """The server could not bind its listening address."""


def build_server(config: SidecarConfig, servicer: EmbeddingServicer) -> Tuple[grpc.aio.Server, int]:
    """Create the server, register ``servicer`` and bind the configured address.

    Returns the server and the bound port (useful when ``port`` is 0).
    """
    server = grpc.aio.server()
    sidecar_pb2_grpc.add_LLMServiceServicer_to_server(servicer, server)

    try:
        port = server.add_insecure_port(config.bind_address)
    except RuntimeError as e:
        raise BindError(f"failed to bind {config.bind_address}: {e}") from e
    if port == 0:
        raise BindError(f"failed to bind {config.bind_address}")
    return server, port


async def serve(config: SidecarConfig) -> int:
    """Run the sidecar until terminated; returns the process exit status."""
    metrics = get_metrics_collector(SERVICE_NAME)
    servicer = EmbeddingServicer(config=config, metrics=metrics)

    try:
        server, port = build_server(config, servicer)
    except BindError as e:
        logger.error("Server bind failed", address=config.bind_address, error=str(e))
        return 1

    if config.metrics_port:
        metrics.start_exporter(config.metrics_port)

    if config.model_path:
        success, message = await servicer.initialize(config.model_path)
        if not success:
            logger.warning("Model preload failed; starting without a model", message=message)

    await server.start()
    logger.info(
        "Embedding sidecar listening",
        address=config.bind_address,
        port=port,
        backend=BACKEND,
        version=__version__,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(
                sig, lambda s=sig: _schedule_shutdown(server, s)
            )
        except NotImplementedError:  # pragma: no cover - Windows event loops
            pass

    await server.wait_for_termination()
    logger.info("Embedding sidecar stopped")
    return 0


async def _shutdown(server: grpc.aio.Server, sig: signal.Signals) -> None:
    logger.info("Shutting down embedding sidecar", signal=sig.name)
    await server.stop(SHUTDOWN_GRACE_SECONDS)


def _schedule_shutdown(server: grpc.aio.Server, sig: signal.Signals) -> asyncio.Task:
    """Start a graceful stop from a signal handler, keeping the task referenced."""
    task = asyncio.get_running_loop().create_task(_shutdown(server, sig))
    _shutdown_tasks.add(task)
    task.add_done_callback(_shutdown_tasks.discard)
    return task


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="embedding-sidecar",
        description="gRPC sidecar serving BERT-class sentence embeddings",
    )
    parser.add_argument("--host", help="Bind host (default: [::])")
    parser.add_argument("--port", type=int, help="Bind port (default: 50051)")
    parser.add_argument("--model", dest="model_path", help="Model to load at startup (hub id or local directory)")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR (default: INFO)")
    parser.add_argument("--log-format", choices=["console", "json"], help="Log renderer (default: console)")
    parser.add_argument("--metrics-port", type=int, help="Expose Prometheus metrics on this port (default: off)")
    parser.add_argument("--chunk-delay", dest="chunk_delay_seconds", type=float,
                        help="Pause between Generate chunks in seconds (default: 0.001)")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Parse arguments, configure logging and serve."""
    args = parse_args(argv)
    config = SidecarConfig(**{key: value for key, value in vars(args).items() if value is not None})
    configure_logging(SERVICE_NAME, config.log_level, config.log_format)

    try:
        return asyncio.run(serve(config))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
