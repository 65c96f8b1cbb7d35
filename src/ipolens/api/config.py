"""API Configuration."""

from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings


class APISettings(BaseSettings):
    """API configuration settings."""

    # API Settings
    api_title: str = Field(default="IPO Lens API", description="API title")
    api_version: str = Field(default="0.1.0", description="API version")
    api_prefix: str = Field(default="/api/v1", description="API prefix")

    # Server Settings
    host: str = Field(default="0.0.0.0", description="API host")
    port: int = Field(default=8000, description="API port")

    # CORS Settings
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:8000"],
        description="Allowed CORS origins",
    )

    # Admin
    admin_token: str | None = Field(
        default=None,
        description="Bearer token for /admin endpoints; unset leaves them open for local use",
    )

    # Pagination
    default_page_size: int = Field(default=50, description="Default page size")
    max_page_size: int = Field(default=500, description="Maximum page size")

    model_config = ConfigDict(
        env_file=".env",
        env_prefix="IPOLENS_",
        case_sensitive=False,
        extra="ignore",
    )


def get_api_settings() -> APISettings:
    """Get API settings instance."""
    return APISettings()
