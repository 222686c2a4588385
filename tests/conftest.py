"""Shared fixtures: an offline tiny BERT model and an in-process sidecar."""

from pathlib import Path

import grpc
import pytest
import pytest_asyncio
import torch
from prometheus_client import CollectorRegistry
from safetensors.torch import save_file
from tokenizers import Tokenizer
from tokenizers.models import WordPiece
from tokenizers.normalizers import BertNormalizer
from tokenizers.pre_tokenizers import BertPreTokenizer
from tokenizers.processors import TemplateProcessing
from transformers import BertConfig, BertModel

from embedding_sidecar.api.servicer import EmbeddingServicer
from embedding_sidecar.common.config import SidecarConfig
from embedding_sidecar.common.metrics import MetricsCollector
from embedding_sidecar.encoders.model_store import ModelStore
from embedding_sidecar.main import build_server
from embedding_sidecar.protos import sidecar_pb2_grpc

TINY_VOCAB = [
    "[PAD]", "[UNK]", "[CLS]", "[SEP]", "[MASK]",
    "hello", "world", "fix", "the", "bug", "add", "a", "new", "feature",
    "test", "code", "review", "memory", "leak", "in", "pool", "##s", "##ing",
]
TINY_HIDDEN_SIZE = 32
TINY_CONTEXT_SIZE = 16


def build_tiny_model(directory: Path, hidden_size: int = TINY_HIDDEN_SIZE, seed: int = 0) -> Path:
    """Write tokenizer.json, config.json and model.safetensors for a tiny BERT."""
    directory.mkdir(parents=True, exist_ok=True)
    vocab = {token: index for index, token in enumerate(TINY_VOCAB)}

    tokenizer = Tokenizer(WordPiece(vocab, unk_token="[UNK]"))
    tokenizer.normalizer = BertNormalizer(lowercase=True)
    tokenizer.pre_tokenizer = BertPreTokenizer()
    tokenizer.post_processor = TemplateProcessing(
        single="[CLS] $A [SEP]",
        pair="[CLS] $A [SEP] $B:1 [SEP]:1",
        special_tokens=[("[CLS]", vocab["[CLS]"]), ("[SEP]", vocab["[SEP]"])],
    )
    tokenizer.save(str(directory / "tokenizer.json"))

    config = BertConfig(
        vocab_size=len(vocab),
        hidden_size=hidden_size,
        num_hidden_layers=2,
        num_attention_heads=2,
        intermediate_size=hidden_size * 2,
        max_position_embeddings=TINY_CONTEXT_SIZE,
    )
    config.to_json_file(str(directory / "config.json"))

    torch.manual_seed(seed)
    model = BertModel(config, add_pooling_layer=False)
    state = {name: tensor.contiguous() for name, tensor in model.state_dict().items()}
    save_file(state, str(directory / "model.safetensors"))
    return directory


@pytest.fixture(scope="session")
def tiny_model_dir(tmp_path_factory) -> Path:
    """Tiny model with the default hidden size."""
    return build_tiny_model(tmp_path_factory.mktemp("tiny-bert"))


@pytest.fixture(scope="session")
def wide_model_dir(tmp_path_factory) -> Path:
    """A second tiny model with a different hidden size."""
    return build_tiny_model(tmp_path_factory.mktemp("wide-bert"), hidden_size=48, seed=1)


@pytest.fixture
def config() -> SidecarConfig:
    return SidecarConfig(host="127.0.0.1", port=0, chunk_delay_seconds=0.0)


@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector("test-sidecar", registry=CollectorRegistry())


@pytest.fixture
def servicer(config, metrics) -> EmbeddingServicer:
    return EmbeddingServicer(store=ModelStore(), config=config, metrics=metrics)


@pytest_asyncio.fixture
async def sidecar_address(config, servicer):
    """Run the sidecar on an ephemeral port and yield its address."""
    server, port = build_server(config, servicer)
    await server.start()
    yield f"127.0.0.1:{port}"
    await server.stop(None)


@pytest_asyncio.fixture
async def stub(sidecar_address):
    async with grpc.aio.insecure_channel(sidecar_address) as channel:
        yield sidecar_pb2_grpc.LLMServiceStub(channel)
