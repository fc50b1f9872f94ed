"""
Configuration for the entgen compiler.

Settings are read from environment variables with the ENTGEN_ prefix.
All settings have defaults suitable for local use.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Compiler configuration."""

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="text", description="text or json")

    # Option decoding
    extension_prefix: str = Field(default="entgen.")
    strict_options: bool = Field(
        default=True,
        description="Reject unknown extensions under the entgen prefix",
    )

    # Pagination defaults baked into query plans
    default_page_size: int = Field(default=20, gt=0)
    max_page_size: int = Field(default=100, gt=0)

    model_config = {"env_prefix": "ENTGEN_"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the process-wide settings instance."""
    return Settings()
