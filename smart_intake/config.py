# smart_intake/config.py
from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ---- App ----
    app_env: str = "local"  # local|dev|prod
    app_version: str = "2026-10-18.v1"
    database_url: str = "sqlite:///./smart_intake.db"

    # ---- CORS (used by main.py) ----
    cors_allow_origins: list[str] | str = ["*"]

    # ---- Event channel ----
    pipeline_history_limit: int = 200
    pipeline_heartbeat_seconds: float = 15.0
    pipeline_subscriber_buffer: int = 1000

    # ---- Upload / text handling ----
    max_upload_bytes: int = 50 * 1024 * 1024
    max_raw_text_chars: int = 50_000
    analyzer_text_chars: int = 30_000

    # ---- Clarification rules ----
    facility_confidence_floor: int = 50
    noi_margin_band_min: float = 0.02
    noi_margin_band_max: float = 0.30
    noi_margin_benchmark_median: float = 0.15

    # ---- Red-flag thresholds ----
    noi_margin_high: float = 0.25
    noi_margin_low: float = 0.05
    labor_ratio_min: float = 0.45
    agency_ratio_max: float = 0.15
    occupancy_min: float = 0.75
    medicaid_share_max: float = 0.60
    cms_rating_critical_max: int = 2
    bed_mismatch_tolerance: int = 5

    # ---- Recommendation ----
    pass_critical_flag_count: int = 3
    pursue_confidence_min: float = 70.0

    # ---- External: CMS provider data ----
    cms_base_url: str = "https://data.cms.gov/provider-data/api/1"
    cms_dataset_id: str = "4pq5-n9py"  # nursing home provider information
    cms_timeout_seconds: float = 20.0
    cms_enabled: bool = True

    # ---- External: LLM (OpenAI-compatible chat completions) ----
    llm_base_url: str | None = None
    llm_api_key: str | None = None
    llm_model: str = "gpt-4o-mini"
    llm_timeout_seconds: float = 60.0

    # ---- Persistence ----
    persist_snapshots: bool = True

    def model_post_init(self, __context) -> None:
        env = (self.app_env or "local").strip().lower()
        is_prod = env in ("prod", "production")

        if is_prod:
            origins = self.cors_allow_origins
            if origins == "*" or origins == ["*"] or (isinstance(origins, str) and "*" in origins):
                raise ValueError("SECURITY: cors_allow_origins wildcard is not allowed in prod")

        if self.pipeline_history_limit < 1:
            raise ValueError("pipeline_history_limit must be >= 1")


settings = Settings()
