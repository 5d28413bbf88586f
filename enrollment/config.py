from __future__ import annotations

from pathlib import Path
from typing import Any, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_origins(raw: Any) -> List[str]:
    """
    Normalize CORS allow origins from env.

    Supports:
      - list[str] (already parsed)
      - "*"
      - comma-separated string: "https://a.com, https://b.com"
    """
    if raw is None:
        return ["*"]

    if isinstance(raw, list):
        items = [str(x).strip() for x in raw]
        items = [x for x in items if x]
        return items or ["*"]

    s = str(raw).strip()
    if not s or s == "*":
        return ["*"]

    if "," in s:
        parts = [p.strip() for p in s.split(",")]
        parts = [p for p in parts if p]
        return parts or ["*"]

    return [s]


class Settings(BaseSettings):
    """
    Central settings for the enrollment backend.

    The core services never read this object directly. build_services() and the
    job runner pull values from here and pass them into constructors, so tests
    can build the same services with plain arguments.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # App identity
    env: str = Field(default="local", alias="APP_ENV")
    app_name: str = Field(default="voter-enrollment", alias="APP_NAME")
    app_version: str = Field(default="1.0.0", alias="APP_VERSION")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Server runtime (uvicorn)
    host: str = Field(default="127.0.0.1", alias="HOST")
    port: int = Field(default=8000, alias="PORT")
    reload: bool = Field(default=False, alias="RELOAD")

    cors_allow_origins: list[str] = Field(default_factory=lambda: ["*"], alias="CORS_ALLOW_ORIGINS")

    # Canonical store: a real SQLAlchemy URL, or DB_PATH for local SQLite
    database_url: str = Field(default="", alias="DATABASE_URL")
    db_path: str = Field(default="./data/enrollment.sqlite", alias="DB_PATH")

    # Search index
    search_backend: str = Field(default="elasticsearch", alias="SEARCH_BACKEND")
    elasticsearch_node: str = Field(default="http://localhost:9200", alias="ELASTICSEARCH_NODE")
    elasticsearch_username: str = Field(default="", alias="ELASTICSEARCH_USERNAME")
    elasticsearch_password: str = Field(default="", alias="ELASTICSEARCH_PASSWORD")
    elasticsearch_index_prefix: str = Field(default="voter_management", alias="ELASTICSEARCH_INDEX_PREFIX")
    search_timeout_s: float = Field(default=5.0, alias="SEARCH_TIMEOUT_S")
    reindex_batch_size: int = Field(default=200, alias="REINDEX_BATCH_SIZE")

    # Reconciliation sweep
    sweep_interval_s: float = Field(default=300.0, alias="SWEEP_INTERVAL_S")
    sweep_page_size: int = Field(default=200, alias="SWEEP_PAGE_SIZE")
    sweep_lock_path: str = Field(default="./data/reconcile.lock", alias="SWEEP_LOCK_PATH")

    # Messaging channel (WhatsApp Cloud API)
    whatsapp_api_url: str = Field(default="", alias="WHATSAPP_API_URL")
    whatsapp_access_token: str = Field(default="", alias="WHATSAPP_ACCESS_TOKEN")
    whatsapp_phone_number_id: str = Field(default="", alias="WHATSAPP_PHONE_NUMBER_ID")
    whatsapp_template_name: str = Field(default="voter_reference_notification", alias="WHATSAPP_TEMPLATE_NAME")
    whatsapp_template_language: str = Field(default="en_US", alias="WHATSAPP_TEMPLATE_LANGUAGE")
    whatsapp_country_code: str = Field(default="91", alias="WHATSAPP_COUNTRY_CODE")
    notify_timeout_s: float = Field(default=10.0, alias="NOTIFY_TIMEOUT_S")
    # how long a send claim blocks other workers; keep well above NOTIFY_TIMEOUT_S
    notify_claim_lease_s: float = Field(default=300.0, alias="NOTIFY_CLAIM_LEASE_S")

    # -------------------------
    # Validators / normalizers
    # -------------------------

    @field_validator("log_level", mode="before")
    @classmethod
    def _norm_log_level(cls, v: Any) -> str:
        s = ("" if v is None else str(v)).strip().upper()
        return s or "INFO"

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _norm_cors_allow_origins(cls, v: Any) -> list[str]:
        return _split_origins(v)

    @field_validator("search_backend", mode="before")
    @classmethod
    def _norm_search_backend(cls, v: Any) -> str:
        s = ("" if v is None else str(v)).strip().lower()
        return s if s in ("elasticsearch", "memory") else "elasticsearch"

    @field_validator("elasticsearch_node", "whatsapp_api_url", mode="before")
    @classmethod
    def _norm_url(cls, v: Any) -> str:
        return ("" if v is None else str(v)).strip().rstrip("/")

    @field_validator("reindex_batch_size", "sweep_page_size", mode="before")
    @classmethod
    def _clamp_batch(cls, v: Any) -> int:
        # Bounded batches cap memory and bulk request payload size
        try:
            n = int(v)
        except (TypeError, ValueError):
            return 200
        return max(1, min(n, 1000))

    @field_validator("database_url", mode="before")
    @classmethod
    def _norm_database_url(cls, v: Any) -> str:
        return ("" if v is None else str(v)).strip()

    @field_validator("db_path", mode="before")
    @classmethod
    def _norm_db_path(cls, v: Any) -> str:
        s = ("" if v is None else str(v)).strip()
        return s or "./data/enrollment.sqlite"

    # -------------------------
    # Derived helpers
    # -------------------------

    @property
    def is_prod(self) -> bool:
        return str(self.env).strip().lower() in ("prod", "production")

    @property
    def whatsapp_configured(self) -> bool:
        return bool(self.whatsapp_api_url and self.whatsapp_access_token and self.whatsapp_phone_number_id)

    @property
    def resolved_database_url(self) -> str:
        """
        Priority:
        1) DATABASE_URL if provided
        2) Build sqlite:/// URL from DB_PATH
        """
        if self.database_url:
            return self.database_url

        path = (self.db_path or "").strip() or "./data/enrollment.sqlite"

        if path.startswith("sqlite:"):
            return path

        p = Path(path)
        if not p.is_absolute():
            if str(p).startswith("./"):
                return f"sqlite:///{p.as_posix()}"
            return f"sqlite:///./{p.as_posix()}"

        # Absolute path needs 4 slashes after scheme (sqlite:////abs/path)
        return f"sqlite:////{p.as_posix().lstrip('/')}"


settings = Settings()
