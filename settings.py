from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

MIB = 1024 * 1024


class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///./crystal_ball.db"
    auto_create_tables: bool = False

    storage_backend: str = "s3"
    s3_endpoint: str = "http://localhost:9000"
    s3_bucket: str = "character-sheets"
    s3_access_key_id: str = "minioadmin"
    s3_secret_access_key: str = "minioadmin"
    s3_region: str = "us-east-1"

    pdf_title_rewrite_max_bytes: int = 50 * MIB
    sheet_max_upload_bytes: int = 10 * MIB
    document_max_upload_mb: int = 5000

    session_ttl_hours: int = 24 * 30
    session_cookie_secure: bool = False
    app_url: str = "http://localhost:8000"
    cors_origins: str = "*"

    email_provider: str = "console"
    resend_api_key: str | None = None
    email_from: str = "Merlin's Crystal Ball <system@localhost>"
    environment: str = "production"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="",
        extra="ignore",
    )

    @property
    def is_development(self) -> bool:
        return self.environment.strip().lower() in {"dev", "development"}

    @property
    def cors_origin_list(self) -> list[str]:
        return [part.strip() for part in self.cors_origins.split(",") if part.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
