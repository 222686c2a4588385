"""Tests for the async sidecar client."""

import numpy as np
import pytest

from embedding_sidecar.client import SidecarClient
from embedding_sidecar.common.errors import (
    InvalidInputError,
    ModelNotLoadedError,
    SidecarError,
    SidecarUnavailableError,
)

from .conftest import TINY_HIDDEN_SIZE


@pytest.mark.asyncio
async def test_connect_without_model(sidecar_address):
    async with await SidecarClient.connect(sidecar_address, timeout=10.0) as client:
        assert client.dimension == 384
        assert client.model_name == "TaylorAI/bge-micro-v2"
        health = await client.health()
        assert health == {"healthy": True, "message": "Embedding service is healthy (no model)"}

        with pytest.raises(ModelNotLoadedError):
            await client.embed("hello")


@pytest.mark.asyncio
async def test_connect_initializes_model(sidecar_address, tiny_model_dir):
    client = await SidecarClient.connect(sidecar_address, model_path=str(tiny_model_dir), timeout=10.0)
    try:
        vector = await client.embed("hello")
        assert len(vector) == TINY_HIDDEN_SIZE
        assert client.dimension == TINY_HIDDEN_SIZE

        info = await client.model_info()
        assert info["embedding_dim"] == TINY_HIDDEN_SIZE
        assert info["backend"] == "transformers"
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_connect_with_bad_model_fails(sidecar_address):
    with pytest.raises(SidecarError) as exc_info:
        await SidecarClient.connect(sidecar_address, model_path="./no-such-dir", timeout=10.0)
    assert "not found" in str(exc_info.value)


@pytest.mark.asyncio
async def test_connect_unreachable_sidecar():
    with pytest.raises(SidecarUnavailableError):
        await SidecarClient.connect("127.0.0.1:1", timeout=0.5)


@pytest.mark.asyncio
async def test_embed_rejects_empty_text(sidecar_address, tiny_model_dir):
    async with await SidecarClient.connect(sidecar_address, model_path=str(tiny_model_dir)) as client:
        with pytest.raises(InvalidInputError):
            await client.embed("")


@pytest.mark.asyncio
async def test_embed_batch_preserves_order(sidecar_address, tiny_model_dir):
    async with await SidecarClient.connect(sidecar_address, model_path=str(tiny_model_dir)) as client:
        texts = ["fix the bug", "add a new feature", "review code"]
        batch = await client.embed_batch(texts)
        singles = [await client.embed(text) for text in texts]
        assert batch == singles


@pytest.mark.asyncio
async def test_generate_vector_matches_embed(sidecar_address, tiny_model_dir):
    async with await SidecarClient.connect(sidecar_address, model_path=str(tiny_model_dir)) as client:
        vector = await client.embed("memory leak in pool")
        generated = await client.generate_vector("memory leak in pool")
        assert generated.tobytes() == np.array(vector, dtype=np.float32).tobytes()
