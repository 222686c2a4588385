"""Async client for the embedding sidecar.

Applications that want embeddings without linking an ML runtime talk to the
sidecar through ``SidecarClient``:

>>> client = await SidecarClient.connect(model_path="TaylorAI/bge-micro-v2")
>>> vector = await client.embed("fix the flaky test")
>>> await client.close()

``connect`` checks health first and optionally initializes a model. Every
call carries the configured timeout.
"""

from typing import Any, AsyncIterator, Dict, List, Optional

import grpc
import numpy as np
import structlog

from embedding_sidecar.api.presentation import decode_hex_vector
from embedding_sidecar.common.errors import (
    InvalidInputError,
    ModelNotLoadedError,
    SidecarError,
    SidecarUnavailableError,
)
from embedding_sidecar.protos import sidecar_pb2, sidecar_pb2_grpc

logger = structlog.get_logger("embedding_sidecar.client")

DEFAULT_ADDRESS = "localhost:50051"
DEFAULT_MODEL_NAME = "TaylorAI/bge-micro-v2"
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_DIMENSION = 384
DEFAULT_CONTEXT_SIZE = 2048


def _to_sidecar_error(error: grpc.aio.AioRpcError, operation: str) -> SidecarError:
    if error.code() == grpc.StatusCode.FAILED_PRECONDITION:
        return ModelNotLoadedError(error.details() or "Model not initialized")
    if error.code() == grpc.StatusCode.UNAVAILABLE:
        return SidecarUnavailableError(f"{operation} failed: {error.details()}")
    return SidecarError(f"{operation} failed: {error.details()}")


class SidecarClient:
    """Embedding provider backed by a running sidecar.

    Parameters
    - channel: open ``grpc.aio.Channel`` to the sidecar
    - timeout: per-call deadline in seconds
    - dimension: expected embedding size, corrected from server responses
    - model_name: label reported by ``model_name``
    """

    def __init__(
        self,
        channel: grpc.aio.Channel,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        dimension: int = DEFAULT_DIMENSION,
        model_name: str = DEFAULT_MODEL_NAME,
    ):
        self._channel = channel
        self._stub = sidecar_pb2_grpc.LLMServiceStub(channel)
        self._timeout = timeout
        self._dimension = dimension
        self._model_name = model_name

    @classmethod
    async def connect(
        cls,
        address: str = DEFAULT_ADDRESS,
        model_path: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        dimension: int = DEFAULT_DIMENSION,
        model_name: str = DEFAULT_MODEL_NAME,
    ) -> "SidecarClient":
        """Open a channel, verify health and optionally initialize a model."""
        channel = grpc.aio.insecure_channel(address)
        client = cls(channel, timeout=timeout, dimension=dimension, model_name=model_name)

        try:
            health = await client.health()
            if not health["healthy"]:
                raise SidecarUnavailableError("embedding provider unavailable")
            if model_path:
                await client.initialize(model_path)
        except BaseException:
            await channel.close()
            raise

        logger.info("Connected to embedding sidecar", address=address, model_path=model_path)
        return client

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def model_name(self) -> str:
        return self._model_name

    async def health(self) -> Dict[str, Any]:
        try:
            response = await self._stub.Health(sidecar_pb2.HealthRequest(), timeout=self._timeout)
        except grpc.aio.AioRpcError as e:
            raise SidecarUnavailableError(f"sidecar health check failed: {e.details()}") from e
        return {"healthy": response.healthy, "message": response.message}

    async def initialize(self, model_path: str, context_size: int = DEFAULT_CONTEXT_SIZE) -> str:
        """Ask the sidecar to load ``model_path``; raises when it reports failure."""
        request = sidecar_pb2.InitRequest(model_path=model_path, context_size=context_size)
        try:
            response = await self._stub.InitModel(request, timeout=self._timeout)
        except grpc.aio.AioRpcError as e:
            raise _to_sidecar_error(e, "model initialization") from e

        if not response.success:
            raise SidecarError(response.message)
        return response.message

    async def embed(self, text: str) -> List[float]:
        """Embed a single text."""
        if not text:
            raise InvalidInputError("invalid input text")

        try:
            response = await self._stub.Embed(sidecar_pb2.EmbedRequest(text=text), timeout=self._timeout)
        except grpc.aio.AioRpcError as e:
            raise _to_sidecar_error(e, "embedding request") from e

        if response.dim > 0 and response.dim != self._dimension:
            self._dimension = response.dim
        return list(response.vector)

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Embed several texts, one request each, in order."""
        return [await self.embed(text) for text in texts]

    async def model_info(self) -> Dict[str, Any]:
        try:
            response = await self._stub.ModelInfo(sidecar_pb2.ModelInfoRequest(), timeout=self._timeout)
        except grpc.aio.AioRpcError as e:
            raise _to_sidecar_error(e, "model info") from e
        return {
            "model_name": response.model_name,
            "vocab_size": response.vocab_size,
            "context_size": response.context_size,
            "backend": response.backend,
            "embedding_dim": response.embedding_dim,
        }

    async def generate(self, prompt: str) -> AsyncIterator[str]:
        """Yield the text chunks of a ``Generate`` stream until it is done."""
        call = self._stub.Generate(sidecar_pb2.GenerateRequest(prompt=prompt), timeout=self._timeout)
        try:
            async for chunk in call:
                if chunk.done:
                    break
                yield chunk.text
        except grpc.aio.AioRpcError as e:
            raise _to_sidecar_error(e, "generate") from e
        finally:
            call.cancel()

    async def generate_vector(self, prompt: str) -> np.ndarray:
        """Collect a ``Generate`` stream and decode the vector it renders."""
        text = "".join([chunk async for chunk in self.generate(prompt)])
        return decode_hex_vector(text)

    async def close(self) -> None:
        await self._channel.close()

    async def __aenter__(self) -> "SidecarClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
