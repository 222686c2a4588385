"""gRPC servicer for the embedding sidecar.

Implements the five ``LLMService`` RPCs on top of a single ``ModelStore``.
One ``asyncio.Lock`` guards the store: every RPC takes it before touching
the model, so a load never races an embedding. ``Generate`` computes its
embedding under the lock and releases it before streaming.
"""

import asyncio
import time
from contextlib import contextmanager, suppress
from typing import AsyncIterator, Iterator, List, Optional, Tuple

import grpc
import numpy as np
import structlog

from embedding_sidecar.api import presentation
from embedding_sidecar.common.config import SidecarConfig
from embedding_sidecar.common.errors import SidecarError
from embedding_sidecar.encoders.model_store import (
    BACKEND,
    DEFAULT_CONTEXT_SIZE,
    DEFAULT_VOCAB_SIZE,
    ModelStore,
)
from embedding_sidecar.protos import sidecar_pb2, sidecar_pb2_grpc
from embedding_sidecar.runtime.metrics import MetricsCollector, get_metrics_collector

logger = structlog.get_logger("embedding_sidecar.api")

SERVICE_NAME = "embedding-sidecar"
NOT_LOADED_NAME = "Not loaded"
NOT_INITIALIZED_MESSAGE = "Model not initialized"


class EmbeddingServicer(sidecar_pb2_grpc.LLMServiceServicer):
    """Service facade over the model store.

    Parameters
    - store: ``ModelStore`` to serve; a fresh empty store by default
    - config: ``SidecarConfig`` for stream pacing and buffering
    - metrics: ``MetricsCollector``; the process-wide one by default
    """

    def __init__(
        self,
        store: Optional[ModelStore] = None,
        config: Optional[SidecarConfig] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.store = store or ModelStore()
        self.config = config or SidecarConfig()
        self.metrics = metrics or get_metrics_collector(SERVICE_NAME)
        self._lock = asyncio.Lock()

    @contextmanager
    def _observe(self, method: str) -> Iterator[None]:
        start_time = time.perf_counter()
        status = "ok"
        try:
            yield
        except (asyncio.CancelledError, GeneratorExit):
            status = "cancelled"
            raise
        except BaseException:
            status = "error"
            raise
        finally:
            self.metrics.record_rpc(method, status, time.perf_counter() - start_time)

    async def initialize(self, model_path: str) -> Tuple[bool, str]:
        """Load ``model_path`` under the lock; never raises for load errors."""
        async with self._lock:
            try:
                await self.store.load(model_path)
            except Exception as e:
                self.metrics.record_model_load(False)
                return False, f"Failed to load model: {e}"

        self.metrics.record_model_load(True)
        return True, f"Embedding model loaded from {model_path}"

    def _embed_locked(self, text: str) -> np.ndarray:
        start_time = time.perf_counter()
        vector = self.store.embed(text)
        self.metrics.record_embedding(self.store.source, time.perf_counter() - start_time)
        return vector

    async def InitModel(self, request, context):
        """Load a model; failures are reported in the response body."""
        with self._observe("InitModel"):
            success, message = await self.initialize(request.model_path)
            return sidecar_pb2.InitResponse(success=success, message=message)

    async def Embed(self, request, context):
        """Embed one text and return the vector with its dimension."""
        with self._observe("Embed"):
            async with self._lock:
                if not self.store.is_loaded:
                    await context.abort(grpc.StatusCode.FAILED_PRECONDITION, NOT_INITIALIZED_MESSAGE)
                try:
                    vector = self._embed_locked(request.text)
                except SidecarError as e:
                    logger.error("Embedding failed", error=str(e))
                    await context.abort(grpc.StatusCode.INTERNAL, f"Embedding error: {e}")
                dim = self.store.embedding_dim

            return sidecar_pb2.EmbedResponse(vector=vector.tolist(), dim=dim)

    async def Generate(self, request, context) -> AsyncIterator:
        """Stream a readable rendering of the prompt's embedding."""
        with self._observe("Generate"):
            async with self._lock:
                if not self.store.is_loaded:
                    await context.abort(grpc.StatusCode.FAILED_PRECONDITION, NOT_INITIALIZED_MESSAGE)
                try:
                    vector = self._embed_locked(request.prompt)
                except SidecarError as e:
                    logger.error("Embedding failed", error=str(e))
                    await context.abort(grpc.StatusCode.INTERNAL, f"Embedding error: {e}")

            chunks = presentation.render_chunks(request.prompt, vector)
            queue: asyncio.Queue = asyncio.Queue(maxsize=self.config.stream_buffer_size)
            producer = asyncio.create_task(self._produce(chunks, len(vector), queue))

            try:
                while True:
                    response = await queue.get()
                    yield response
                    if response.done:
                        break
            finally:
                if not producer.done():
                    producer.cancel()
                    logger.info("Generate stream closed before completion")
                with suppress(asyncio.CancelledError):
                    await producer

    async def _produce(self, chunks: List[Tuple[str, int]], length: int, queue: asyncio.Queue) -> None:
        delay = self.config.chunk_delay_seconds
        for text, counter in chunks:
            await queue.put(sidecar_pb2.GenerateResponse(text=text, done=False, tokens_generated=counter))
            if delay:
                await asyncio.sleep(delay)
        await queue.put(sidecar_pb2.GenerateResponse(text="", done=True, tokens_generated=length))

    async def ModelInfo(self, request, context):
        """Describe the loaded model, or report that none is loaded."""
        with self._observe("ModelInfo"):
            async with self._lock:
                loaded = self.store.loaded
                if loaded is None:
                    return sidecar_pb2.ModelInfoResponse(
                        model_name=NOT_LOADED_NAME,
                        vocab_size=DEFAULT_VOCAB_SIZE,
                        context_size=DEFAULT_CONTEXT_SIZE,
                        backend=BACKEND,
                        embedding_dim=self.store.embedding_dim,
                    )
                return sidecar_pb2.ModelInfoResponse(
                    model_name=f"{loaded.source} ({BACKEND} BERT)",
                    vocab_size=loaded.vocab_size,
                    context_size=loaded.context_size,
                    backend=BACKEND,
                    embedding_dim=loaded.embedding_dim,
                )

    async def Health(self, request, context):
        """Always healthy while the process answers."""
        with self._observe("Health"):
            async with self._lock:
                is_loaded = self.store.is_loaded
            if is_loaded:
                message = "Embedding service is healthy (model loaded)"
            else:
                message = "Embedding service is healthy (no model)"
            return sidecar_pb2.HealthResponse(healthy=True, message=message)
