from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration.

    You can override any setting via environment variables using DEMO_ prefix.
    Example: DEMO_DEFAULT_THRESHOLD=0.5
    """

    model_config = SettingsConfigDict(env_prefix="DEMO_", env_file=".env", extra="ignore", protected_namespaces=())

    # Storage
    project_root: Path = Path(__file__).resolve().parents[1]
    uploads_dir: Path = project_root / "uploads"
    model_cache_dir: Path = project_root / "models"

    # Model loading
    model_task: str = "object-detection"
    model_id: str = "Xenova/yolos-tiny"
    fallback_weights: str = "yolov8n.pt"  # ultralytics will download weights if missing
    max_retries: int = 3
    retry_delay_s: float = 2.0
    probe_endpoint: bool = True
    preload_model: bool = True
    reload_on_demand: bool = False

    # Detection
    detection_timeout_s: float = 30.0
    default_threshold: float = 0.9
    default_max_objects: int = 10
    max_objects_limit: int = 50

    # Limits
    max_upload_mb: int = 20

    debug: bool = True


settings = Settings()

# Ensure directories exist
settings.uploads_dir.mkdir(parents=True, exist_ok=True)
