"""Embedding pipeline: tokenize, forward, mean-pool, squeeze.

Turns one string into one float32 vector of the encoder's hidden size.
Inputs are never padded or truncated here, so the mean over the sequence
axis is a plain average; batching inputs would require a masked mean.
"""

from dataclasses import dataclass
from typing import List, Tuple

import numpy as np
import structlog
import torch
from tokenizers import Tokenizer
from transformers import BertModel

from embedding_sidecar.common.errors import InferenceError, TokenizationError

logger = structlog.get_logger("embedding_sidecar.pipeline")


@dataclass(frozen=True)
class TokenizationRecord:
    """Token ids and the parallel attention mask for one input."""

    ids: List[int]
    attention_mask: List[int]

    def __len__(self) -> int:
        return len(self.ids)


def tokenize(tokenizer: Tokenizer, text: str) -> TokenizationRecord:
    """Tokenize ``text`` with the model's special tokens added."""
    try:
        encoding = tokenizer.encode(text, add_special_tokens=True)
    except Exception as e:  # the Rust binding raises bare Exception
        raise TokenizationError(f"Tokenization failed: {e}") from e

    ids = list(encoding.ids)
    if not ids:
        raise TokenizationError("Tokenization failed: tokenizer produced no tokens")

    attention_mask = list(encoding.attention_mask) or [1] * len(ids)
    return TokenizationRecord(ids=ids, attention_mask=attention_mask)


def to_tensors(record: TokenizationRecord, device: torch.device) -> Tuple[torch.Tensor, torch.Tensor]:
    """Build ``[1, L]`` int64 input ids and ``[1, L]`` uint8 attention mask."""
    input_ids = torch.tensor([record.ids], dtype=torch.int64, device=device)
    attention_mask = torch.tensor([record.attention_mask], dtype=torch.uint8, device=device)
    return input_ids, attention_mask


def mean_pool(hidden_states: torch.Tensor) -> torch.Tensor:
    """Uniform mean over the sequence axis: ``[B, L, H] -> [B, H]``."""
    return hidden_states.mean(dim=1)


def forward(model: BertModel, input_ids: torch.Tensor, attention_mask: torch.Tensor) -> torch.Tensor:
    """Run the encoder and return hidden states of shape ``[1, L, H]``."""
    with torch.inference_mode():
        # transformers builds its additive mask from an integer mask.
        output = model(
            input_ids=input_ids,
            attention_mask=attention_mask.to(torch.int64),
            token_type_ids=None,
        )
    return output.last_hidden_state


def embed_text(model: BertModel, tokenizer: Tokenizer, text: str, device: torch.device) -> np.ndarray:
    """Embed a single string into a flat float32 vector.

    Raises
    - ``TokenizationError`` when the tokenizer rejects the text
    - ``InferenceError`` when the forward pass fails, e.g. for inputs longer
      than the model's position embeddings
    """
    record = tokenize(tokenizer, text)
    input_ids, attention_mask = to_tensors(record, device)

    try:
        hidden_states = forward(model, input_ids, attention_mask)
        pooled = mean_pool(hidden_states)
        vector = pooled.squeeze(0).to(torch.float32).cpu().numpy()
    except (RuntimeError, IndexError, ValueError) as e:
        logger.warning("Forward pass failed", tokens=len(record), error=str(e))
        raise InferenceError(f"Inference failed: {e}") from e

    return np.ascontiguousarray(vector, dtype=np.float32)
