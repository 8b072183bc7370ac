import logging
import os
from typing import Optional


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    def __init__(self):
        self.app_name = "QuickBill"
        self.database_url = os.getenv("QUICKBILL_DATABASE_URL", "sqlite:///./quickbill.db")
        self.secret_key = os.getenv("QUICKBILL_SECRET_KEY", "CHANGE_ME")
        self.access_token_expire_minutes = int(
            os.getenv("QUICKBILL_ACCESS_TOKEN_EXPIRE_MINUTES", "60")
        )
        self.smtp_host: Optional[str] = os.getenv("QUICKBILL_SMTP_HOST") or None
        self.smtp_port = int(os.getenv("QUICKBILL_SMTP_PORT", "587"))
        self.smtp_user: Optional[str] = os.getenv("QUICKBILL_SMTP_USER") or None
        self.smtp_password: Optional[str] = os.getenv("QUICKBILL_SMTP_PASSWORD") or None
        self.smtp_use_tls = _env_bool("QUICKBILL_SMTP_USE_TLS", True)
        self.smtp_timeout = float(os.getenv("QUICKBILL_SMTP_TIMEOUT", "10"))
        self.mail_from = os.getenv("QUICKBILL_MAIL_FROM") or self.smtp_user or "noreply@quickbill.local"
        self.log_level = os.getenv("QUICKBILL_LOG_LEVEL", "INFO").upper()
        self.currency_symbol = os.getenv("QUICKBILL_CURRENCY_SYMBOL", "$")


_settings_instance = None


def get_settings() -> Settings:
    """Return a singleton Settings instance."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance


def reset_settings() -> None:
    global _settings_instance
    _settings_instance = None


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=level or get_settings().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
