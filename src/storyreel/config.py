"""Application configuration via environment variables."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = Field(
        default="sqlite:///./storyreel.db",
        description="SQLAlchemy connection string for the local story store",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: Literal["json", "console"] = Field(
        default="console",
        description="Log output format",
    )

    # API Server
    api_host: str = Field(default="0.0.0.0", description="API server host")
    api_port: int = Field(default=8000, description="API server port")
    api_reload: bool = Field(default=False, description="Enable auto-reload for development")
    seed_demo_story: bool = Field(
        default=False,
        description="Generate the demo story on startup when the store is empty",
    )

    # Remote generation service
    pipeline_client: Literal["http", "stub"] = Field(
        default="http",
        description="Pipeline client implementation (http, stub)",
    )
    pipeline_base_url: str = Field(
        default="http://localhost:8001",
        description="Base address of the storyboard/video generation service",
    )
    pipeline_timeout: float = Field(
        default=20.0,
        description="Timeout in seconds for JSON calls to the generation service",
    )
    download_timeout: float = Field(
        default=300.0,
        description="Timeout in seconds for artifact and segment downloads",
    )

    # Polling
    storyboard_poll_interval: float = Field(
        default=1.0,
        description="Seconds between storyboard status polls",
    )
    storyboard_max_attempts: int = Field(
        default=60,
        description="Maximum storyboard status polls before giving up",
    )
    video_poll_interval: float = Field(
        default=1.0,
        description="Seconds between shot video status polls",
    )
    video_max_attempts: int = Field(
        default=120,
        description="Maximum shot video status polls before giving up",
    )

    # Concurrency
    io_max_workers: int = Field(
        default=8,
        description="Size of the worker pool used for blocking file, database and subprocess work",
    )
    video_max_concurrency: int = Field(
        default=3,
        description="Maximum shot video jobs in flight during a generate-all request",
    )

    # FFmpeg settings
    ffmpeg_path: str | None = Field(
        default=None,
        description="Path to FFmpeg binary (PATH lookup, then imageio-ffmpeg if not specified)",
    )
    ffmpeg_timeout: int = Field(
        default=600,
        description="FFmpeg invocation timeout in seconds",
    )
    export_audio_codec: str = Field(
        default="aac",
        description="Audio codec used when muxing narration onto the assembled video",
    )

    # Directories
    work_dir: Path = Field(
        default=Path("./storage/work"),
        description="Scratch directory for segment downloads and intermediates",
    )
    preview_dir: Path = Field(
        default=Path("./storage/previews"),
        description="Directory for merged preview audio",
    )
    export_root: Path = Field(
        default=Path("./storage/exports"),
        description="Root of the shared media storage that exports land in",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()


# Convenience alias
settings = get_settings()
