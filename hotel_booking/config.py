# hotel_booking/config.py

from dataclasses import dataclass
import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    hold_ttl_minutes: int = 15
    draft_ttl_hours: int = 24
    max_verify_attempts: int = 3
    reaper_interval_seconds: float = 60.0
    reaper_enabled: bool = True
    razorpay_key_id: str | None = None
    razorpay_key_secret: str | None = None
    razorpay_base_url: str | None = None
    gateway_timeout_seconds: float = 10.0
    currency: str = "INR"
    display_name: str = "Sojourn"
    db_connect_max_retries: int = 30
    db_connect_retry_delay: float = 1.5

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            hold_ttl_minutes=int(os.getenv("HOLD_TTL_MINUTES", "15")),
            draft_ttl_hours=int(os.getenv("DRAFT_TTL_HOURS", "24")),
            max_verify_attempts=int(os.getenv("MAX_VERIFY_ATTEMPTS", "3")),
            reaper_interval_seconds=float(os.getenv("REAPER_INTERVAL_SECONDS", "60")),
            reaper_enabled=_env_bool("REAPER_ENABLED", True),
            razorpay_key_id=os.getenv("RAZORPAY_KEY_ID"),
            razorpay_key_secret=os.getenv("RAZORPAY_KEY_SECRET"),
            razorpay_base_url=os.getenv("RAZORPAY_BASE_URL"),
            gateway_timeout_seconds=float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "10")),
            currency=os.getenv("PAYMENT_CURRENCY", "INR"),
            display_name=os.getenv("PAYMENT_DISPLAY_NAME", "Sojourn"),
            db_connect_max_retries=int(os.getenv("DB_CONNECT_MAX_RETRIES", "30")),
            db_connect_retry_delay=float(os.getenv("DB_CONNECT_RETRY_DELAY", "1.5")),
        )


settings = Settings.from_env()
