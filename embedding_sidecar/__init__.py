"""Embedding sidecar package.

Layout:
- ``api``: gRPC servicer and the text presentation used by ``Generate``.
- ``encoders``: ``ModelStore`` that loads a BERT encoder and the embedding pipeline.
- ``protos``: the ``sidecar.proto`` service definition, loaded at import time.
- ``runtime``: service-local metrics.
- ``client``: async client for applications talking to the sidecar.

Import convenience:
- from embedding_sidecar.encoders.model_store import ModelStore
"""

__version__ = "0.1.0"
