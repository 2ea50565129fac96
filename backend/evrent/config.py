# backend/evrent/config.py

from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parents[2]  # repository root


class Settings(BaseSettings):
    database_url: str
    redis_url: str = "redis://localhost:6379/0"

    log_level: str = "INFO"
    currency: str = "USD"

    # Peak pricing window, local wall-clock hours [start, end)
    local_timezone: str = "UTC"
    peak_start_hour: int = 18
    peak_end_hour: int = 21

    # Booking policy
    pending_grace_minutes: int = 10
    emergency_duration_minutes: int = 480
    walkup_window_minutes: int = 60
    early_start_minutes: int = 10

    # Background loops
    sweeps_enabled: bool = True
    sweep_interval_seconds: int = 300
    rate_limit_cleanup_seconds: int = 1800

    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        extra="ignore",
    )

    @property
    def resolved_database_url(self) -> str:
        url = self.database_url
        if url.startswith("sqlite:///./"):
            # Relative sqlite path is resolved against the repository root
            relative_path = url.replace("sqlite:///./", "")
            absolute_path = BASE_DIR / relative_path
            return f"sqlite:///{absolute_path}"
        return url


settings = Settings()
