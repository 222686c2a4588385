"""Error types raised by the sidecar and its client."""

from typing import Optional


class SidecarError(Exception):
    """Base class for embedding sidecar errors."""


class ModelNotLoadedError(SidecarError):
    """An operation needs a loaded model but the store is empty."""

    def __init__(self, message: str = "Model not loaded"):
        super().__init__(message)


class ArtifactMissingError(SidecarError):
    """One of the model artifacts could not be found or read."""

    def __init__(self, filename: str, source: str, detail: Optional[str] = None):
        self.filename = filename
        self.source = source
        message = f"{filename} not found in {source}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class ModelParseError(SidecarError):
    """The model configuration or tokenizer description is malformed."""


class TokenizationError(SidecarError):
    """The tokenizer rejected the input text."""


class InferenceError(SidecarError):
    """The forward pass or pooling failed."""


class SidecarUnavailableError(SidecarError):
    """The sidecar did not answer its health check or reported unhealthy."""


class InvalidInputError(SidecarError):
    """Client-side rejection of input that would never embed usefully."""
