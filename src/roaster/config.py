from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Resume Roaster"
    app_env: str = "development"
    app_host: str = "127.0.0.1"
    app_port: int = 8000
    log_level: str = "INFO"

    database_url: str = "sqlite:///./data/roaster.db"
    data_dir: Path = Path("./data")

    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    openai_timeout_sec: int = 60

    anthropic_api_key: str = ""
    anthropic_timeout_sec: int = 120

    pdf_converter_service_url: str = ""
    pdf_converter_timeout_sec: int = 60
    vision_max_pages: int = 3

    default_provider: str = "openai"
    default_model: str = "mini"
    default_template_id: str = "modern-professional"
    bonus_credit_policy: str = "after_quota"

    anonymous_retention_days: int = 30
    max_resume_chars: int = 8000
    max_job_chars: int = 20000

    cors_origins: str = "http://localhost:3000"

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, value: str) -> str:
        allowed = {"development", "staging", "production", "test"}
        if value not in allowed:
            raise ValueError(f"app_env must be one of {sorted(allowed)}")
        return value

    @field_validator("bonus_credit_policy")
    @classmethod
    def validate_bonus_policy(cls, value: str) -> str:
        allowed = {"after_quota", "before_quota"}
        if value not in allowed:
            raise ValueError(f"bonus_credit_policy must be one of {sorted(allowed)}")
        return value

    @field_validator("vision_max_pages")
    @classmethod
    def validate_vision_pages(cls, value: int) -> int:
        if value < 1 or value > 3:
            raise ValueError("vision_max_pages must be between 1 and 3")
        return value

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
