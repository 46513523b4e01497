# storefront/config.py
import os
import logging
from dataclasses import dataclass, field
from typing import List


def _env_list(name: str) -> List[str]:
    return [item.strip() for item in os.getenv(name, "").split(",") if item.strip()]


@dataclass
class Settings:
    """eSewa integration and settlement settings.

    Defaults point at the eSewa UAT sandbox (product code EPAYTEST and its
    published test secret). Production deployments must set every ESEWA_*
    variable explicitly.
    """

    secret_key: str = "8gBm/:&EnhH.1/q"
    product_code: str = "EPAYTEST"
    form_url: str = "https://rc-epay.esewa.com.np/api/epay/main/v2/form"
    status_url: str = "https://rc.esewa.com.np/api/epay/transaction/status/"
    success_url: str = "http://localhost:8000/api/orders/esewa/callback"
    failure_url: str = "http://localhost:3000/failure"
    success_page_url: str = "http://localhost:3000/success"
    failure_page_url: str = "http://localhost:3000/failure"

    # pending orders older than this can no longer be settled from a callback
    settlement_ttl_seconds: int = 30 * 60
    message_max_age_seconds: int = 5 * 60
    gateway_timeout_seconds: float = 10.0

    webhook_allowed_ips: List[str] = field(default_factory=list)

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            secret_key=os.getenv("ESEWA_SECRET_KEY", cls.secret_key),
            product_code=os.getenv("ESEWA_PRODUCT_CODE", cls.product_code),
            form_url=os.getenv("ESEWA_FORM_URL", cls.form_url),
            status_url=os.getenv("ESEWA_STATUS_URL", cls.status_url),
            success_url=os.getenv("ESEWA_SUCCESS_URL", cls.success_url),
            failure_url=os.getenv("ESEWA_FAILURE_URL", cls.failure_url),
            success_page_url=os.getenv("ESEWA_SUCCESS_PAGE_URL", cls.success_page_url),
            failure_page_url=os.getenv("ESEWA_FAILURE_PAGE_URL", cls.failure_page_url),
            settlement_ttl_seconds=int(os.getenv("SETTLEMENT_TTL_SECONDS", str(cls.settlement_ttl_seconds))),
            message_max_age_seconds=int(os.getenv("ESEWA_MESSAGE_MAX_AGE_SECONDS", str(cls.message_max_age_seconds))),
            gateway_timeout_seconds=float(os.getenv("GATEWAY_TIMEOUT_SECONDS", str(cls.gateway_timeout_seconds))),
            webhook_allowed_ips=_env_list("ESEWA_WEBHOOK_ALLOWED_IPS"),
        )


settings = Settings.from_env()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
CORS_ORIGINS = _env_list("CORS_ORIGINS") or ["http://localhost:3000"]


def get_settings() -> Settings:
    return settings


def setup_logging():
    """Configure logging settings"""
    log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
        format=log_format,
    )
    # SQL echo is controlled by SQL_ECHO; keep the engine logger quiet otherwise
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
