"""
Configuration for the Kolam HTTP front-end.

Uses pydantic-settings for environment variable loading. Storage, bridge and
logging settings live in kolam_server.config and are shared with the CLI.
"""

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """HTTP front-end configuration loaded from environment."""

    host: str = Field(default="127.0.0.1", description="Bind host")
    port: int = Field(default=8765, description="Bind port")

    cors_origins: list[str] = Field(
        default=["http://localhost:1420", "http://localhost:5173", "tauri://localhost"],
        description="Allowed CORS origins",
    )

    model_config = {"env_prefix": "KOLAM_API_"}

    @property
    def bind_address(self) -> str:
        return f"{self.host}:{self.port}"
