"""
Default configuration for the decision engine. One place for values shared by API, services and tests.
Environment overrides come through Settings (SCHOOLPOOL_ prefix or .env).
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from schoolpool.domain.constraints import (
    GeoDataConfig,
    GroupFormationConfig,
    MatchingConfig,
    RetryPolicy,
    RiskScoringConfig,
    ScheduleConfig,
    SequencingConfig,
)

DEFAULT_MATCHING_CONFIG = MatchingConfig()
DEFAULT_RISK_SCORING_CONFIG = RiskScoringConfig()
DEFAULT_GEO_DATA_CONFIG = GeoDataConfig()
DEFAULT_SEQUENCING_CONFIG = SequencingConfig()
DEFAULT_SCHEDULE_CONFIG = ScheduleConfig()
DEFAULT_GROUP_FORMATION_CONFIG = GroupFormationConfig()
DEFAULT_RETRY_POLICY = RetryPolicy()


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""
    model_config = SettingsConfigDict(
        env_prefix="SCHOOLPOOL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- App ---
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    log_level: str = "INFO"
    enable_scheduler: bool = True

    # --- Matching ---
    max_search_radius_m: float = DEFAULT_MATCHING_CONFIG.max_search_radius_m
    min_compatibility_score: float = DEFAULT_MATCHING_CONFIG.min_compatibility_score
    matching_workers: int = DEFAULT_MATCHING_CONFIG.max_workers

    # --- Safety ---
    max_acceptable_risk: float = DEFAULT_RISK_SCORING_CONFIG.max_acceptable_risk
    geo_data_max_age_min: float = DEFAULT_GEO_DATA_CONFIG.max_age_min

    # --- Open data (schools / accidents) ---
    open_data_schools_url: str = ""
    open_data_accidents_url: str = ""
    open_data_timeout_s: float = 10.0

    # --- Schedule coordination ---
    proposal_lifetime_h: float = DEFAULT_SCHEDULE_CONFIG.proposal_lifetime_h
    proposal_sweep_interval_s: float = DEFAULT_SCHEDULE_CONFIG.sweep_interval_s

    # --- Groups ---
    max_group_members: int = DEFAULT_GROUP_FORMATION_CONFIG.max_members
    require_acceptable_route: bool = DEFAULT_GROUP_FORMATION_CONFIG.require_acceptable_route

    # --- Provider calls ---
    retry_max_attempts: int = DEFAULT_RETRY_POLICY.max_attempts
    retry_base_delay_s: float = DEFAULT_RETRY_POLICY.base_delay_s
    retry_timeout_s: float = DEFAULT_RETRY_POLICY.timeout_s

    # --- Derived ---
    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def open_data_enabled(self) -> bool:
        return bool(self.open_data_schools_url and self.open_data_accidents_url)

    def matching_config(self) -> MatchingConfig:
        return MatchingConfig(
            max_search_radius_m=self.max_search_radius_m,
            min_compatibility_score=self.min_compatibility_score,
            max_workers=self.matching_workers,
        )

    def risk_scoring_config(self) -> RiskScoringConfig:
        return RiskScoringConfig(max_acceptable_risk=self.max_acceptable_risk)

    def geo_data_config(self) -> GeoDataConfig:
        return GeoDataConfig(max_age_min=self.geo_data_max_age_min)

    def schedule_config(self) -> ScheduleConfig:
        return ScheduleConfig(
            proposal_lifetime_h=self.proposal_lifetime_h,
            sweep_interval_s=self.proposal_sweep_interval_s,
        )

    def group_formation_config(self) -> GroupFormationConfig:
        return GroupFormationConfig(
            max_members=self.max_group_members,
            require_acceptable_route=self.require_acceptable_route,
        )

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.retry_max_attempts,
            base_delay_s=self.retry_base_delay_s,
            timeout_s=self.retry_timeout_s,
        )


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()
