from pathlib import Path
from pydantic_settings import BaseSettings
from pydantic import Field, model_validator, field_validator
import secrets

BASE_DIR = Path(__file__).resolve().parent.parent  # backend/

class Settings(BaseSettings):
    # ===== ENTORNO =====
    environment: str = Field(default="development")
    debug: bool = Field(default=False)

    # ===== DATABASE =====
    database_url: str = Field(default="sqlite:///./data/stockledger.db")
    # Ej: SERIALIZABLE en PostgreSQL para builds concurrentes sobre los mismos lotes
    database_isolation_level: str | None = Field(default=None)

    # ===== SECURITY =====
    secret_key: str = Field(default_factory=lambda: secrets.token_urlsafe(32))
    access_token_expire_minutes: int = Field(default=120)

    # ===== CORS =====
    allowed_origins: str = Field(default="http://localhost:5173,http://localhost:3000")

    # ===== LOGGING =====
    log_dir: str = Field(default="logs")
    log_level: str = Field(default="INFO")

    # ===== ALERTAS =====
    alert_tenant_timeout_seconds: float = Field(default=30.0)
    alert_base_url: str = Field(default="http://localhost:3000")
    cron_secret: str | None = Field(default=None)

    # ===== SMTP =====
    smtp_host: str | None = Field(default=None)
    smtp_port: int = Field(default=587)
    smtp_username: str | None = Field(default=None)
    smtp_password: str | None = Field(default=None)
    smtp_from: str = Field(default="alerts@stockledger.local")
    smtp_use_tls: bool = Field(default=True)

    class Config:
        env_file = ".env"
        case_sensitive = False

    @field_validator("database_isolation_level", mode="after")
    @classmethod
    def empty_to_none(cls, v: str | None) -> str | None:
        return v.strip().upper() if v and v.strip() else None

    @model_validator(mode="after")
    def validate_secret_key(self):
        if self.environment == "production" and len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY debe tener al menos 32 caracteres en producción.")
        return self

    @property
    def allowed_origins_list(self) -> list[str]:
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


settings = Settings()
