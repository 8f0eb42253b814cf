"""Logging configuration."""

import logging

from pydantic import Field
from pydantic_settings import BaseSettings


class LoggingConfig(BaseSettings):
    """Logging settings for the deploy step.

    Logs go to stderr so stdout stays free for the step's result output.
    """

    level: str = Field(default="INFO", alias="log_level")
    format: str = Field(default="json", alias="log_format")
    file: str | None = Field(default=None, alias="log_file")
    max_size_mb: int = Field(default=100, ge=1, alias="log_max_size_mb")
    backup_count: int = Field(default=5, ge=1, alias="log_backup_count")

    # Floor for kubernetes, urllib3 and google client loggers
    third_party_level: str = Field(default="WARNING", alias="log_third_party_level")

    class Config:
        env_prefix = ""
        extra = "ignore"

    @property
    def level_number(self) -> int:
        return getattr(logging, self.level.upper(), logging.INFO)

    @property
    def third_party_level_number(self) -> int:
        return getattr(logging, self.third_party_level.upper(), logging.WARNING)
