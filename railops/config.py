"""
Configuration management for the operations backend.
"""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Configuration
    api_title: str = "Railops Operations Backend"
    api_version: str = "0.1.0"
    api_description: str = "Switch lists, car orders and operating sessions for model railroad layouts"

    # Database Configuration
    database_url: str = "sqlite:///railops.db"
    sql_echo: bool = False  # Set to True for SQL debugging

    # Server Configuration
    host: str = "0.0.0.0"
    port: int = 3002
    debug: bool = False
    log_level: str = "INFO"

    # CORS Configuration - comma-separated list from .env or default
    allowed_origins: str = "http://localhost:*"

    # Operations
    switch_list_max_attempts: int = 3  # Plan/commit attempts before giving up with a conflict
    return_empties_to_home_yard: bool = False
    session_description_max_length: int = 500

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False

    def get_allowed_origins(self) -> list:
        """
        Parse allowed origins from config string.

        Supports:
        - Specific origins: "http://localhost:3000,http://example.com"
        - All origins: "*"

        Returns:
            List of allowed origins for CORS middleware
        """
        if self.allowed_origins == "*":
            return ["*"]

        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]


settings = Settings()
