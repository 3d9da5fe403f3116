import os
from pathlib import Path
from pydantic import BaseModel
from dotenv import load_dotenv

ENV_PATH = Path(__file__).resolve().parents[1] / ".env"
if ENV_PATH.exists():
    # .env values win over empty/previous env
    load_dotenv(ENV_PATH, override=True)
    # BOM-safe fallback: if key was \ufeffDATABASE_URL
    if not os.getenv("DATABASE_URL"):
        for line in ENV_PATH.read_text(encoding="utf-8").splitlines():
            line = line.lstrip("\ufeff")
            if line.startswith("DATABASE_URL="):
                os.environ["DATABASE_URL"] = line.split("=", 1)[1].strip()
                break

class Settings(BaseModel):
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./spinwheel.db")
    jwt_secret: str = os.getenv("JWT_SECRET", "dev_change_me")
    allowed_origins: list[str] = [
        o.strip() for o in os.getenv("ALLOWED_ORIGINS", "").split(",") if o.strip()
    ]
    allowed_origin_regex: str | None = os.getenv("ALLOWED_ORIGIN_REGEX") or None

    admin_password: str = os.getenv("ADMIN_PASSWORD", "")
    admin_token_hours: int = int(os.getenv("ADMIN_TOKEN_HOURS", "24"))
    admin_password_hash: str = os.getenv("ADMIN_PASSWORD_HASH", "")  # bcrypt hash

    # coupons
    coupon_expiry_days: int = int(os.getenv("COUPON_EXPIRY_DAYS", "30"))
    coupon_code_prefix: str = os.getenv("COUPON_CODE_PREFIX", "GATEWAY")
    code_generation_attempts: int = int(os.getenv("CODE_GENERATION_ATTEMPTS", "10"))

    # allocation retries
    allocation_max_attempts: int = int(os.getenv("ALLOCATION_MAX_ATTEMPTS", "3"))
    allocation_timeout_seconds: float = float(os.getenv("ALLOCATION_TIMEOUT_SECONDS", "10"))

    # per source address, across all campaigns
    rate_limit_max_spins: int = int(os.getenv("RATE_LIMIT_MAX_SPINS", "5"))
    rate_limit_window_minutes: int = int(os.getenv("RATE_LIMIT_WINDOW_MINUTES", "60"))

    default_timezone: str = os.getenv("DEFAULT_TIMEZONE", "America/New_York")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

settings = Settings()
