"""Common utilities shared across the sidecar.

Includes:
- ``config``: pydantic-settings configuration for the process.
- ``logging``: structured logging setup with structlog.
- ``metrics``: Prometheus metrics helpers.
- ``errors``: exception hierarchy shared by server and client.

Import pattern:
- from embedding_sidecar.common.config import SidecarConfig
- from embedding_sidecar.common.logging import configure_logging
"""
