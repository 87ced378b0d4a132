"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "racesafe"
    debug: bool = False
    log_level: str = "INFO"

    # Historical data API credentials
    iracing_email: str = ""
    iracing_password: str = ""
    iracing_client_id: str = ""
    iracing_client_secret: str = ""
    token_refresh_minutes: float = 10.0

    # Local participant
    local_cust_id: int = 0
    user_sr_floor: float = 2.0

    # Risk profile windows
    history_window_days: int = 30
    recent_window_days: int = 7
    deep_analysis_races: int = 10
    final_lap_window: int = 2
    sr_trend_races: int = 5
    sr_trend_min_races: int = 3
    sr_trend_threshold: float = 5.0

    # Field analysis batching
    analysis_batch_size: int = 4
    analysis_batch_pause_ms: int = 100

    # Proximity detection
    danger_zone_seconds: float = 1.5
    nearby_window_seconds: float = 5.0
    estimated_lap_seconds: float = 90.0
    warn_on_moderate: bool = True

    # Monitor lifecycle
    reconnect_delay_seconds: float = 5.0
    persistent: bool = True

    # Display
    extreme_threshold: float = 8.0

    # Alert switches: session type x category
    alerts_practice_danger: bool = True
    alerts_practice_incident: bool = True
    alerts_qualify_danger: bool = True
    alerts_qualify_incident: bool = True
    alerts_race_danger: bool = True
    alerts_race_incident: bool = True
    alerts_warmup_danger: bool = True
    alerts_warmup_incident: bool = True

    model_config = {"env_prefix": "RACESAFE_"}


settings = Settings()
