"""GreenSnap configuration, loaded from environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {"env_prefix": "GREENSNAP_", "env_file": ".env"}

    # Database
    database_path: str = "greensnap.db"

    # Waste classifier (Gradio two-step predict endpoint)
    classifier_url: str = "https://avatar77-mobilenetv3.hf.space/gradio_api/call/predict"
    classifier_token: str = ""
    classifier_timeout: float = 45.0
    classifier_max_attempts: int = 3
    classifier_backoff_base: float = 1.0
    model_version: str = "mobilenetv3-1.0"

    # Classification gate thresholds
    waste_accept_threshold: float = 0.65
    non_waste_reject_threshold: float = 0.75
    high_confidence_threshold: float = 0.85
    allow_force_submit: bool = True

    # Images
    max_image_bytes: int = 5 * 1024 * 1024
    upload_timeout: float = 15.0
    upload_max_attempts: int = 3
    upload_backoff_base: float = 1.0
    cloudinary_cloud_name: str = ""
    cloudinary_api_key: str = ""
    cloudinary_api_secret: str = ""

    # Permanent resolution geofence
    geofence_radius_m: float = 10.0

    # Server
    cors_origins: list[str] = ["*"]
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"


settings = Settings()
