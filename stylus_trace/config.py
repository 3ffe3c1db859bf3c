"""
CLI configuration.

Values here only provide defaults for the command line; they are read
once in ``runner.main`` and passed down explicitly.
"""
from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from stylus_trace.errors import ConfigError


class Settings(BaseSettings):
    """stylus-trace settings (env prefix ``STYLUS_TRACE_``)"""

    model_config = SettingsConfigDict(
        env_prefix="STYLUS_TRACE_",
        env_file=".env",
        extra="ignore",
    )

    # Node
    RPC_URL: str = "http://localhost:8547"
    TRACER: str = "stylusTracer"
    RPC_TIMEOUT: float = 30.0  # seconds

    # Artifacts
    ARTIFACTS_DIR: str = "artifacts"

    # Reporting
    TOP_PATHS: int = 20
    FLAMEGRAPH_WIDTH: int = 1200


def get_settings() -> Settings:
    """Load settings; invalid ``STYLUS_TRACE_*`` values raise ConfigError."""
    try:
        return Settings()
    except ValidationError as exc:
        raise ConfigError(f"invalid environment settings: {exc}") from exc
