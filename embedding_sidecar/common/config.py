"""Configuration management for the embedding sidecar.

Settings are modelled with ``pydantic-settings`` so every knob is typed and
has an explicit default. The sidecar reads no environment variables or
``.env`` files: values arrive as keyword arguments, normally built from the
command line in ``embedding_sidecar.main``.

Usage
- ``config = SidecarConfig()`` for the defaults
- ``config = SidecarConfig(port=50052, log_format="json")`` to override
"""

from typing import Optional, Tuple

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

DEFAULT_HOST = "[::]"
DEFAULT_PORT = 50051


class SidecarConfig(BaseSettings):
    """Configuration for the embedding sidecar process.

    Notes
    - ``model_path`` is optional; when set the model is loaded at startup
    - ``metrics_port`` of ``0`` keeps the Prometheus exporter switched off
    - ``chunk_delay_seconds`` and ``stream_buffer_size`` only shape how
      ``Generate`` paces its output; clients must not depend on them
    """

    model_config = SettingsConfigDict(case_sensitive=False, protected_namespaces=())

    # Transport
    host: str = Field(default=DEFAULT_HOST, description="Bind host, dual-stack by default")
    port: int = Field(default=DEFAULT_PORT, ge=0, le=65535, description="Bind port")

    # Model
    model_path: Optional[str] = Field(default=None, description="Model to preload at startup")

    # Logging
    log_level: str = Field(default="INFO", description="DEBUG, INFO, WARNING or ERROR")
    log_format: str = Field(default="console", description="console or json")

    # Streaming presentation
    chunk_delay_seconds: float = Field(default=0.001, ge=0.0)
    stream_buffer_size: int = Field(default=4, ge=1)

    # Observability
    metrics_port: int = Field(default=0, ge=0, le=65535)

    @field_validator("log_level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {value}")
        return level

    @field_validator("log_format")
    @classmethod
    def _check_format(cls, value: str) -> str:
        if value not in {"console", "json"}:
            raise ValueError(f"unknown log format: {value}")
        return value

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        # Explicit arguments only; the process environment is ignored.
        return (init_settings,)

    @property
    def bind_address(self) -> str:
        """Address string handed to ``server.add_insecure_port``."""
        return f"{self.host}:{self.port}"
