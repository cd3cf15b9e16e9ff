from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    environment: str = "dev"
    request_timeout_seconds: float = Field(default=30.0, gt=0)

    # Seedance image-to-video, routed through the webhook gateway.
    video_generation_url: str = "http://localhost:5678/webhook/higgsfield/video-seedance-v1-pro/image-to-video"
    video_status_url: str = "http://localhost:5678/webhook/higgsfield/check/video-seedance-v1-pro/image-to-video"
    image_generation_url: str = "http://localhost:5678/webhook/higgsfield/edit-nano-banana-pro"
    image_status_url: str = "http://localhost:5678/webhook/higgsfield/check/edit-nano-banana-pro"
    image_upload_url: str = "http://localhost:5678/webhook/ai-studio/image-upload-google-bucket"

    poll_interval_seconds: float = Field(default=5.0, ge=0)
    max_poll_attempts: int = Field(default=60, ge=1)

    video_concurrency: int = Field(default=8, ge=1)
    image_concurrency: int = Field(default=3, ge=1)

    default_aspect_ratio: str = "auto"
    default_resolution: str = "720p"
    default_duration: str = "5"

    otel_enabled: bool = True
    otel_service_name: str = "studio-jobs"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="STUDIO_JOBS_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
