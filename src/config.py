"""
Application Configuration Module.

Manages reader settings and environment variables using Pydantic for validation.
Values can be overridden from the environment or from a local ``.env`` file.

Features:
- Environment variable loading and validation
- Logging configuration (directory, level, development console output)
- Default nesting depth limit for readers
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from logger import LogManager


class Settings(BaseSettings):
    """
    Application configuration settings with validation.

    Attributes:
        app_name (str): Name of the application, also used as the logger name
        dev (bool): Development mode flag, enables console logging
        log_dir (str): Directory for log files
        log_level (int): Logging level (default: info)
        max_depth (int): Default maximum nesting depth of objects/arrays
    """

    # Application settings
    app_name: str = Field(default="JsonChunkReader", description="Application name")
    dev: bool = Field(default=False, description="Development mode")
    log_dir: str = Field(default="logs", description="Logging directory")

    # Optional configuration with defaults
    log_level: int = Field(default=20, description="Logging level, default info")

    # Reader settings
    max_depth: int = Field(
        default=256,
        gt=0,
        description="Maximum nesting depth of objects and arrays",
    )

    # Configure env file loading
    model_config = SettingsConfigDict(
        env_prefix="JSON_READER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra fields in .env file
    )


# Create global settings instance
settings = Settings()

# Initialize logging configuration
logger = LogManager(
    app_name=settings.app_name.lower(),
    log_dir=settings.log_dir,
    development=settings.dev,
    level=settings.log_level,
).logger
