import os
from pathlib import Path
from pydantic import BaseModel
from dotenv import load_dotenv

ENV_PATH = Path(__file__).resolve().parents[1] / ".env"
if ENV_PATH.exists():
    # .env wins over empty/previous env
    load_dotenv(ENV_PATH, override=True)
    # BOM-safe fallback: if key was \ufeffDATABASE_URL
    if not os.getenv("DATABASE_URL"):
        for line in ENV_PATH.read_text(encoding="utf-8").splitlines():
            line = line.lstrip("\ufeff")
            if line.startswith("DATABASE_URL="):
                os.environ["DATABASE_URL"] = line.split("=", 1)[1].strip()
                break


def _database_url() -> str:
    url = os.getenv("DATABASE_URL", "") or "sqlite:///./playengine.db"
    # Hosted Postgres hands out postgres://, SQLAlchemy wants an explicit driver
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+psycopg://", 1)
    elif url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


class Settings(BaseModel):
    database_url: str = _database_url()
    sqlite_busy_timeout_seconds: float = float(os.getenv("SQLITE_BUSY_TIMEOUT_SECONDS", "30"))
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    allowed_origins: list[str] = [
        o.strip() for o in os.getenv("ALLOWED_ORIGINS", "").split(",") if o.strip()
    ]
    allowed_origin_regex: str | None = os.getenv("ALLOWED_ORIGIN_REGEX") or None

    # admin
    jwt_secret: str = os.getenv("JWT_SECRET", "dev_change_me")
    admin_password: str = os.getenv("ADMIN_PASSWORD", "")
    admin_token_hours: int = int(os.getenv("ADMIN_TOKEN_HOURS", "24"))
    admin_password_hash: str = os.getenv("ADMIN_PASSWORD_HASH", "")  # bcrypt hash

    # commerce platform
    shopify_api_version: str = os.getenv("SHOPIFY_API_VERSION", "2025-10")
    shopify_api_secret: str = os.getenv("SHOPIFY_API_SECRET", "")
    shopify_timeout_seconds: float = float(os.getenv("SHOPIFY_TIMEOUT_SECONDS", "10"))

    # play engine
    code_suffix_length: int = int(os.getenv("CODE_SUFFIX_LENGTH", "6"))
    code_max_attempts: int = int(os.getenv("CODE_MAX_ATTEMPTS", "6"))
    play_conflict_retries: int = int(os.getenv("PLAY_CONFLICT_RETRIES", "3"))


settings = Settings()
