"""RPC layer of the sidecar.

- ``servicer``: ``EmbeddingServicer`` implementing ``sidecar.LLMService``.
- ``presentation``: text rendering streamed by ``Generate``.
"""
