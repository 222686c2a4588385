"""Model store for the embedding sidecar.

Owns the single BERT-class encoder the process serves: resolves the three
model artifacts (locally or from the Hugging Face Hub), builds the encoder
and tokenizer, and swaps them in atomically. A failed load never disturbs
the model that is already being served.
"""

import asyncio
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

import numpy as np
import structlog
import torch
from huggingface_hub import hf_hub_download
from huggingface_hub.errors import EntryNotFoundError, RepositoryNotFoundError
from safetensors import SafetensorError, safe_open
from tokenizers import Tokenizer
from transformers import BertConfig, BertModel

from embedding_sidecar.common.errors import ArtifactMissingError, ModelNotLoadedError, ModelParseError
from embedding_sidecar.encoders import pipeline

logger = structlog.get_logger("embedding_sidecar.model_store")

BACKEND = "transformers"
DEFAULT_EMBEDDING_DIM = 384
DEFAULT_VOCAB_SIZE = 30522
DEFAULT_CONTEXT_SIZE = 512
DEFAULT_REVISION = "main"

TOKENIZER_FILE = "tokenizer.json"
CONFIG_FILE = "config.json"
WEIGHTS_FILE = "model.safetensors"
ARTIFACT_FILES = (TOKENIZER_FILE, CONFIG_FILE, WEIGHTS_FILE)

_LOCAL_PREFIXES = (".", "/", "~")


@dataclass(frozen=True)
class ModelArtifacts:
    """Resolved local paths of the three files a model is built from."""

    tokenizer_path: Path
    config_path: Path
    weights_path: Path


@dataclass(frozen=True)
class LoadedModel:
    """Everything that becomes visible together after a successful load.

    The encoder and tokenizer live in one immutable record so the store can
    never hold one without the other.
    """

    model: BertModel
    tokenizer: Tokenizer
    config: BertConfig
    source: str
    loaded_at: float

    @property
    def embedding_dim(self) -> int:
        return int(self.config.hidden_size)

    @property
    def num_layers(self) -> int:
        return int(self.config.num_hidden_layers)

    @property
    def vocab_size(self) -> int:
        return int(getattr(self.config, "vocab_size", None) or DEFAULT_VOCAB_SIZE)

    @property
    def context_size(self) -> int:
        return int(getattr(self.config, "max_position_embeddings", None) or DEFAULT_CONTEXT_SIZE)


def is_remote_source(source: str) -> bool:
    """Return True when ``source`` names a hub repository (``namespace/name``).

    Anything that looks like a filesystem path (``./x``, ``/x``, ``~/x``) or
    points at an existing directory is treated as local.
    """
    if "/" not in source:
        return False
    if source.startswith(_LOCAL_PREFIXES):
        return False
    return not os.path.isdir(source)


def resolve_local_artifacts(source: str) -> ModelArtifacts:
    """Locate the artifacts directly under a local directory."""
    base_path = Path(source).expanduser()
    paths: Dict[str, Path] = {}
    for filename in ARTIFACT_FILES:
        path = base_path / filename
        if not path.is_file() or not os.access(path, os.R_OK):
            raise ArtifactMissingError(filename, source)
        paths[filename] = path

    return ModelArtifacts(
        tokenizer_path=paths[TOKENIZER_FILE],
        config_path=paths[CONFIG_FILE],
        weights_path=paths[WEIGHTS_FILE],
    )


def resolve_remote_artifacts(repo_id: str, revision: str = DEFAULT_REVISION) -> ModelArtifacts:
    """Download (or reuse cached copies of) the artifacts from the hub."""
    logger.info("Downloading model from Hugging Face Hub", repo_id=repo_id, revision=revision)
    paths: Dict[str, Path] = {}
    for filename in ARTIFACT_FILES:
        try:
            local_path = hf_hub_download(repo_id=repo_id, filename=filename, revision=revision)
        except (EntryNotFoundError, RepositoryNotFoundError) as e:
            raise ArtifactMissingError(filename, repo_id, detail=str(e)) from e
        paths[filename] = Path(local_path)

    return ModelArtifacts(
        tokenizer_path=paths[TOKENIZER_FILE],
        config_path=paths[CONFIG_FILE],
        weights_path=paths[WEIGHTS_FILE],
    )


def resolve_artifacts(source: str) -> ModelArtifacts:
    """Resolve ``source`` to local artifact paths, downloading if remote."""
    if is_remote_source(source):
        return resolve_remote_artifacts(source)
    logger.info("Loading model from local path", path=source)
    return resolve_local_artifacts(source)


def read_config(path: Path) -> BertConfig:
    """Parse ``config.json`` into a BERT configuration."""
    try:
        config = BertConfig.from_json_file(str(path))
    except (OSError, ValueError) as e:
        raise ModelParseError(f"invalid {CONFIG_FILE}: {e}") from e

    hidden_size = getattr(config, "hidden_size", None)
    if not isinstance(hidden_size, int) or hidden_size <= 0:
        raise ModelParseError(f"invalid {CONFIG_FILE}: hidden_size must be a positive integer")
    return config


def read_weights(path: Path, device: torch.device) -> Dict[str, torch.Tensor]:
    """Map a safetensors file into float32 tensors on ``device``.

    A leading ``bert.`` prefix (checkpoints saved with a task head) is
    stripped so names match a bare ``BertModel``.
    """
    state: Dict[str, torch.Tensor] = {}
    try:
        with safe_open(str(path), framework="pt", device=str(device)) as weights:
            for name in weights.keys():
                tensor = weights.get_tensor(name)
                if tensor.is_floating_point():
                    tensor = tensor.to(torch.float32)
                state[name[len("bert."):] if name.startswith("bert.") else name] = tensor
    except (SafetensorError, OSError) as e:
        raise ModelParseError(f"invalid {WEIGHTS_FILE}: {e}") from e
    return state


def build_encoder(config: BertConfig, state: Dict[str, torch.Tensor], device: torch.device) -> BertModel:
    """Construct the encoder from its configuration and parameters."""
    model = BertModel(config, add_pooling_layer=False)

    expected = {name for name, _ in model.named_parameters()}
    missing = sorted(expected - state.keys())
    if missing:
        raise ModelParseError(
            f"{WEIGHTS_FILE} is missing {len(missing)} encoder weights (first: {missing[0]})"
        )

    try:
        model.load_state_dict(state, strict=False)
    except RuntimeError as e:
        raise ModelParseError(f"{WEIGHTS_FILE} does not match {CONFIG_FILE}: {e}") from e

    model.to(device=device, dtype=torch.float32)
    model.eval()
    return model


def read_tokenizer(path: Path) -> Tokenizer:
    """Parse ``tokenizer.json``."""
    try:
        return Tokenizer.from_file(str(path))
    except Exception as e:  # the Rust binding raises bare Exception
        raise ModelParseError(f"invalid {TOKENIZER_FILE}: {e}") from e


class ModelStore:
    """Holds the optional loaded model and performs loads and embeddings.

    Notes
    - The device is fixed to CPU
    - ``embedding_dim`` reports 384 until a model is loaded
    - The store does no locking; callers serialize access to it
    """

    def __init__(self):
        self.device = torch.device("cpu")
        self._loaded: Optional[LoadedModel] = None

    @property
    def loaded(self) -> Optional[LoadedModel]:
        return self._loaded

    @property
    def is_loaded(self) -> bool:
        return self._loaded is not None

    @property
    def source(self) -> str:
        return self._loaded.source if self._loaded else ""

    @property
    def embedding_dim(self) -> int:
        return self._loaded.embedding_dim if self._loaded else DEFAULT_EMBEDDING_DIM

    def require_loaded(self) -> LoadedModel:
        """Return the loaded model or raise ``ModelNotLoadedError``."""
        if self._loaded is None:
            raise ModelNotLoadedError()
        return self._loaded

    async def load(self, source: str) -> LoadedModel:
        """Load the model named by ``source`` and make it current.

        Resolution, download and encoder construction all run in a worker
        thread so the event loop keeps serving. On any failure the previously
        loaded model, if any, stays in place and the error propagates.
        """
        logger.info("Loading embedding model", source=source)
        start_time = time.perf_counter()

        try:
            loaded = await asyncio.to_thread(self._resolve_and_build, source)
        except Exception as e:
            logger.error("Failed to load embedding model", source=source, error=str(e))
            raise

        self._loaded = loaded
        logger.info(
            "Embedding model loaded successfully",
            source=source,
            embedding_dim=loaded.embedding_dim,
            duration_ms=(time.perf_counter() - start_time) * 1000,
        )
        return loaded

    def _resolve_and_build(self, source: str) -> LoadedModel:
        return self._build(resolve_artifacts(source), source)

    def _build(self, artifacts: ModelArtifacts, source: str) -> LoadedModel:
        config = read_config(artifacts.config_path)
        logger.info(
            "Model config",
            hidden_size=config.hidden_size,
            num_layers=config.num_hidden_layers,
        )
        state = read_weights(artifacts.weights_path, self.device)
        model = build_encoder(config, state, self.device)
        tokenizer = read_tokenizer(artifacts.tokenizer_path)

        return LoadedModel(
            model=model,
            tokenizer=tokenizer,
            config=config,
            source=source,
            loaded_at=time.time(),
        )

    def embed(self, text: str) -> np.ndarray:
        """Embed ``text`` with the current model.

        Raises ``ModelNotLoadedError`` when empty, otherwise whatever the
        pipeline raises (``TokenizationError``, ``InferenceError``).
        """
        loaded = self.require_loaded()
        return pipeline.embed_text(loaded.model, loaded.tokenizer, text, self.device)
