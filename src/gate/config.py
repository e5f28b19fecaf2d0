"""Configuration management."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Push gate settings from environment."""
    
    # Lease store
    lock_store_root: Path
    lock_ttl_seconds: int = Field(default=300, ge=1)
    max_retry_attempts: int = Field(default=15, ge=1)
    enable_global_lease: bool = True
    enable_per_reference_lease: bool = True
    
    # Backoff between attempts, in seconds
    backoff_base_seconds: float = Field(default=1.0, gt=0)
    backoff_cap_seconds: float = Field(default=30.0, gt=0)
    
    # Git
    refresh_remote: bool = True
    git_executable: str = "git"
    git_timeout_seconds: float = Field(default=60.0, gt=0)
    
    # Owner identity recorded beside each lease
    user_id: str | None = None
    
    # Logging
    log_level: str = "INFO"
    log_file: Path | None = None
    
    dry_run: bool = False
    
    class Config:
        env_prefix = "PUSHGATE_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"
