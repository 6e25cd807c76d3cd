from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    PROJECT_NAME: str = "Face Presence Attendance Kiosk"
    VERSION: str = "1.0.0"
    DEBUG: bool = False
    HOST: str = "127.0.0.1"
    PORT: int = 8000
    LOCAL_ONLY: bool = True

    # sqlite+aiosqlite:///path/to/file.db
    DATABASE_URL: str = "sqlite+aiosqlite:///./attendance.db"

    # Tried in order, first one that loads wins.
    # A source is a local path or an http(s) URL of an ONNX detector (or a zip holding one).
    MODEL_SOURCES: List[str] = [
        "models/det_500m.onnx",
        "https://github.com/deepinsight/insightface/releases/download/v0.7/buffalo_s.zip",
    ]
    MODEL_CACHE_DIR: str = "models"
    MODEL_LOAD_TIMEOUT_SECONDS: float = 30.0
    DETECTION_INPUT_SIZE: int = 640
    MIN_DETECTION_CONFIDENCE: float = 0.5
    MODEL_SAMPLE_INTERVAL_SECONDS: float = 0.5
    SIMULATED_SAMPLE_INTERVAL_SECONDS: float = 1.0
    SIMULATED_PRESENCE_PROBABILITY: float = 0.7

    CAMERA_INDEX: int = 0
    CAMERA_AUTOSTART: bool = True
    SNAPSHOT_JPEG_QUALITY: int = 85

    LOCATION_TIMEOUT_SECONDS: float = 10.0
    LOCATION_MAX_AGE_SECONDS: float = 300.0
    LOCATION_REFRESH_SECONDS: float = 300.0
    LOCATION_HIGH_ACCURACY: bool = True
    # Either a JSON endpoint returning latitude/longitude/accuracy,
    # or a fixed position for a wall-mounted kiosk.
    GEOLOCATION_URL: str = ""
    STATIC_LATITUDE: Optional[float] = None
    STATIC_LONGITUDE: Optional[float] = None
    STATIC_ACCURACY_METERS: float = 50.0

    CONNECTIVITY_CHECK_URL: str = "https://github.com"
    CONNECTIVITY_CHECK_SECONDS: float = 30.0
    CONNECTIVITY_TIMEOUT_SECONDS: float = 5.0

    HISTORY_LIMIT: int = 50

    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "app.log"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
