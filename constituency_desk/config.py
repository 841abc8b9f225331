from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, List

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_JWT_SECRET = "change-me-in-production"
DEFAULT_DB_PATH = "./data/constituency_desk.sqlite"


def _origins(raw: Any) -> List[str]:
    """
    CORS_ALLOW_ORIGINS may arrive as a list, "*", or "https://a.in, https://b.in".
    Anything empty collapses to ["*"].
    """
    if isinstance(raw, (list, tuple)):
        values = [str(x).strip() for x in raw]
    else:
        values = str(raw or "").split(",")
    values = [v.strip() for v in values if v and v.strip()]
    return values or ["*"]


def _sqlite_url(path: str) -> str:
    if path.startswith("sqlite:"):
        return path
    p = Path(path)
    if p.is_absolute():
        # sqlite:////abs/path
        return "sqlite:///" + p.as_posix()
    rel = p.as_posix()
    return "sqlite:///" + (rel if rel.startswith("./") else f"./{rel}")


class Settings(BaseSettings):
    """
    Office service settings, read from the environment or a local .env file.

    DATABASE_URL wins over DB_PATH. Office hours and slot size drive the
    appointment calendar; OFFICE_TIMEZONE is the clock every stamp uses.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
    )

    # ---- Identity ----
    env: str = Field(default="local", alias="APP_ENV")
    app_name: str = Field(default="constituency-desk", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # ---- uvicorn ----
    host: str = Field(default="127.0.0.1", alias="HOST")
    port: int = Field(default=8000, alias="PORT")
    reload: bool = Field(default=False, alias="RELOAD")
    cors_allow_origins: Annotated[List[str], NoDecode] = Field(default_factory=lambda: ["*"], alias="CORS_ALLOW_ORIGINS")

    # ---- Storage ----
    database_url: str = Field(default="", alias="DATABASE_URL")
    db_path: str = Field(default=DEFAULT_DB_PATH, alias="DB_PATH")

    # ---- Bearer tokens ----
    jwt_secret: str = Field(default=DEFAULT_JWT_SECRET, alias="JWT_SECRET")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(default=360, ge=1, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    # ---- Office calendar ----
    office_timezone: str = Field(default="Asia/Kolkata", alias="OFFICE_TIMEZONE")
    workday_start_hour: int = Field(default=9, ge=0, le=23, alias="WORKDAY_START_HOUR")
    workday_end_hour: int = Field(default=17, ge=1, le=24, alias="WORKDAY_END_HOUR")
    slot_minutes: int = Field(default=30, ge=5, le=240, alias="SLOT_MINUTES")

    default_state: str = Field(default="Maharashtra", alias="DEFAULT_STATE")

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _parse_origins(cls, v: Any) -> List[str]:
        return _origins(v)

    @field_validator("host", "database_url", "db_path", "office_timezone", "log_level", mode="before")
    @classmethod
    def _strip_text(cls, v: Any, info) -> str:  # noqa: ANN001
        s = "" if v is None else str(v).strip()
        if info.field_name == "log_level":
            return s.upper() or "INFO"
        if s:
            return s
        return {"host": "127.0.0.1", "db_path": DEFAULT_DB_PATH, "office_timezone": "Asia/Kolkata"}.get(
            info.field_name, ""
        )

    @model_validator(mode="after")
    def _check_workday(self) -> "Settings":
        if self.workday_end_hour <= self.workday_start_hour:
            raise ValueError("WORKDAY_END_HOUR must be after WORKDAY_START_HOUR")
        return self

    @property
    def is_prod(self) -> bool:
        return self.env.strip().lower() in ("prod", "production")

    @property
    def working_hours(self) -> tuple[int, int]:
        return (self.workday_start_hour, self.workday_end_hour)

    @property
    def resolved_database_url(self) -> str:
        return self.database_url or _sqlite_url(self.db_path)


settings = Settings()
