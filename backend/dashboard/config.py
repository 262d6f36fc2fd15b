import os
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    record_backend: Literal["airtable", "database"] = Field("airtable", alias="DASHBOARD_RECORD_BACKEND")
    airtable_api_key: Optional[str] = Field(None, alias="AIRTABLE_API_KEY")
    airtable_base_id: Optional[str] = Field(None, alias="AIRTABLE_BASE_ID")
    airtable_api_url: str = Field("https://api.airtable.com/v0", alias="AIRTABLE_API_URL")
    airtable_timeout_seconds: float = Field(30.0, alias="AIRTABLE_TIMEOUT_SECONDS")
    airtable_max_retries: int = Field(5, alias="AIRTABLE_MAX_RETRIES")

    contacts_table_id: str = Field("Contacts", alias="AIRTABLE_CONTACTS_TABLE_ID")
    participation_table_id: str = Field("Participation", alias="AIRTABLE_PARTICIPATION_TABLE_ID")
    cohorts_table_id: str = Field("Cohorts", alias="AIRTABLE_COHORTS_TABLE_ID")
    initiatives_table_id: str = Field("Initiatives", alias="AIRTABLE_INITIATIVES_TABLE_ID")
    teams_table_id: str = Field("Teams", alias="AIRTABLE_TEAMS_TABLE_ID")
    members_table_id: str = Field("Members", alias="AIRTABLE_MEMBERS_TABLE_ID")
    invites_table_id: str = Field("Invites", alias="AIRTABLE_INVITES_TABLE_ID")
    milestones_table_id: str = Field("Milestones", alias="AIRTABLE_MILESTONES_TABLE_ID")
    submissions_table_id: str = Field("Submissions", alias="AIRTABLE_SUBMISSIONS_TABLE_ID")
    education_table_id: str = Field("Education", alias="AIRTABLE_EDUCATION_TABLE_ID")

    database_url: Optional[str] = Field(None, alias="DASHBOARD_DATABASE_URL")
    database_pool_size: int = Field(10, alias="DASHBOARD_DATABASE_POOL_SIZE")
    database_max_overflow: int = Field(10, alias="DASHBOARD_DATABASE_MAX_OVERFLOW")
    database_echo: bool = Field(False, alias="DASHBOARD_DATABASE_ECHO")

    profile_cache_ttl_seconds: int = Field(300, alias="DASHBOARD_PROFILE_CACHE_TTL")
    participation_cache_ttl_seconds: int = Field(600, alias="DASHBOARD_PARTICIPATION_CACHE_TTL")
    submissions_cache_ttl_seconds: int = Field(60, alias="DASHBOARD_SUBMISSIONS_CACHE_TTL")
    prefetch_batch_size: int = Field(2, ge=1, alias="DASHBOARD_PREFETCH_BATCH_SIZE")
    prefetch_batch_delay_seconds: float = Field(0.5, ge=0.0, alias="DASHBOARD_PREFETCH_BATCH_DELAY")
    prefetch_initial_delay_seconds: float = Field(1.0, ge=0.0, alias="DASHBOARD_PREFETCH_INITIAL_DELAY")

    class Config:
        env_file = os.getenv("ENV_FILE", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache
def get_settings() -> Settings:
    try:
        return Settings()  # type: ignore[arg-type]
    except ValidationError as exc:
        raise RuntimeError(f"Invalid backend configuration: {exc}") from exc
