"""tenantguard configuration via environment / .env file."""

from __future__ import annotations

from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="TENANTGUARD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Scoping ---
    TENANT_FILTER_NAME: str = "multitenant"

    # --- Request boundary ---
    TENANT_HEADER: str = "X-Tenant-ID"

    # --- Fallback when no tenant is set ---
    TENANT_FALLBACK: Literal["none", "first"] = "none"

    # --- Database (CLI audit) ---
    DATABASE_URL: str = "sqlite:///tenantguard.db"

    @field_validator("TENANT_FILTER_NAME")
    @classmethod
    def _check_filter_name(cls, v: str) -> str:
        v = v.strip()
        if not v.isidentifier():
            raise ValueError("TENANT_FILTER_NAME must be a valid identifier")
        return v

    @field_validator("TENANT_HEADER")
    @classmethod
    def _check_header(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("TENANT_HEADER must not be empty")
        return v


settings = Settings()
