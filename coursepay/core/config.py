from decimal import Decimal
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings

# .env at the project root: coursepay/core/config.py -> coursepay/core -> coursepay -> root
_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _ROOT / ".env"


class Settings(BaseSettings):
    secret_key: str = "change-me-in-production"
    database_url: str = "sqlite:///./coursepay.db"
    # CORS: comma separated origins; "*" in development
    cors_origins: str = "*"
    rate_limit_per_minute: int = 60
    # /payments/verify is replayed by the success page on reload
    rate_limit_verify_per_minute: int = 20
    admin_secret: str = ""             # X-Admin-Secret for manual grant / commission settings
    environment: str = "development"
    frontend_url: str = "http://localhost:8080"
    # eSewa ePay v2 (sandbox defaults)
    esewa_secret_key: str = ""
    esewa_product_code: str = "EPAYTEST"
    esewa_payment_url: str = "https://rc-epay.esewa.com.np/api/epay/main/v2/form"
    # Khalti ePayment
    khalti_secret_key: str = ""
    khalti_initiate_url: str = "https://a.khalti.com/api/v2/epayment/initiate/"
    khalti_lookup_url: str = "https://a.khalti.com/api/v2/epayment/lookup/"
    khalti_timeout_seconds: float = 15.0
    # Platform cut when neither the order nor platformsetting carries a rate
    default_commission_percentage: Decimal = Decimal("20")
    # Sum of resolved orders vs provider amount, in paisa (100 = 1 NPR)
    amount_tolerance_paisa: int = 100
    # Off: signature/amount mismatches are logged only. On: they reject the payment.
    payment_strict_verification: bool = False

    model_config = {
        "env_file": _ENV_FILE if _ENV_FILE.is_file() else ".env",
        "extra": "ignore",
    }

    @field_validator("esewa_secret_key", "khalti_secret_key", "admin_secret", mode="before")
    @classmethod
    def strip_secret(cls, v: str | None) -> str:
        """Copy/paste whitespace around secrets breaks HMAC and Authorization headers."""
        return (v or "").strip()


settings = Settings()


def is_esewa_configured() -> bool:
    return bool(settings.esewa_secret_key and settings.esewa_product_code)


def is_khalti_configured() -> bool:
    return bool(settings.khalti_secret_key)
