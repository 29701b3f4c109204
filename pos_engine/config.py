"""
Configuration management for the POS sale engine.
Loads settings from environment variables and AWS Secrets Manager.
"""
import os
import json
import logging
import boto3
from typing import Optional, List

from pos_engine.models import PaymentMethod, TerminalSettings

logger = logging.getLogger(__name__)


def _split_env(value: str) -> List[str]:
    return [part.strip().upper() for part in value.split(",") if part.strip()]


class Config:
    """Application configuration"""

    # Application settings
    APP_PORT: int = int(os.getenv("APP_PORT", "8000"))
    PROJECT_NAME: str = os.getenv("PROJECT_NAME", "pos-engine")
    REGION: str = os.getenv("REGION", "ap-southeast-2")
    TERMINAL_ID: str = os.getenv("TERMINAL_ID", "terminal-1")

    # Backend REST API (catalog, loyalty, sales)
    BACKEND_URL: str = os.getenv("BACKEND_URL", "http://localhost:5000/api")
    BACKEND_API_TOKEN: Optional[str] = os.getenv("BACKEND_API_TOKEN")
    BACKEND_TIMEOUT_SECONDS: float = float(os.getenv("BACKEND_TIMEOUT_SECONDS", "10"))

    # Redis settings (parked sale storage)
    REDIS_HOST: str = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT: int = int(os.getenv("REDIS_PORT", "6379"))
    REDIS_AUTH_TOKEN: Optional[str] = os.getenv("REDIS_AUTH_TOKEN")
    REDIS_DB: int = int(os.getenv("REDIS_DB", "0"))
    REDIS_USE_TLS: bool = os.getenv("REDIS_USE_TLS", "false").lower() == "true"

    # Redis connection settings
    REDIS_SOCKET_CONNECT_TIMEOUT: int = 5
    REDIS_SOCKET_TIMEOUT: int = 5
    REDIS_RETRY_ON_TIMEOUT: bool = True
    REDIS_MAX_CONNECTIONS: int = 50

    # Parked sales
    PARKED_SALE_STORE: str = os.getenv("PARKED_SALE_STORE", "redis")  # 'redis' or 'memory'
    PARKED_SALE_TTL_DAYS: int = int(os.getenv("PARKED_SALE_TTL_DAYS", "7"))
    RESUMED_STOCK_PLACEHOLDER: int = int(os.getenv("RESUMED_STOCK_PLACEHOLDER", "999"))

    # Currency and payment settings
    CURRENCY_CODE: str = os.getenv("CURRENCY_CODE", "USD")
    CURRENCY_SYMBOL: str = os.getenv("CURRENCY_SYMBOL", "$")
    CURRENCY_EXPONENT: int = int(os.getenv("CURRENCY_EXPONENT", "2"))
    ENABLED_PAYMENT_METHODS: List[str] = _split_env(
        os.getenv("ENABLED_PAYMENT_METHODS", "CASH,CARD,MOBILE_PAYMENT,STORE_CREDIT")
    )
    MAX_PAYMENT_SPLITS: int = int(os.getenv("MAX_PAYMENT_SPLITS", "4"))

    @classmethod
    def terminal_settings(cls) -> TerminalSettings:
        """Build the settings object injected into pricing and payment calls"""
        return TerminalSettings(
            currency_code=cls.CURRENCY_CODE,
            currency_symbol=cls.CURRENCY_SYMBOL,
            currency_exponent=cls.CURRENCY_EXPONENT,
            enabled_payment_methods=[PaymentMethod(m) for m in cls.ENABLED_PAYMENT_METHODS],
            max_payment_splits=cls.MAX_PAYMENT_SPLITS,
            parked_sale_ttl_days=cls.PARKED_SALE_TTL_DAYS,
            resumed_stock_placeholder=cls.RESUMED_STOCK_PLACEHOLDER,
        )

    @classmethod
    def load_redis_secrets(cls) -> None:
        """Load Redis authentication token from AWS Secrets Manager"""
        if cls.REDIS_AUTH_TOKEN:
            return  # Already loaded from environment

        secret_name = os.getenv("REDIS_SECRET_NAME")
        if not secret_name:
            return  # No secret name provided, use no auth

        try:
            client = boto3.client("secretsmanager", region_name=cls.REGION)
            response = client.get_secret_value(SecretId=secret_name)
            secret_data = json.loads(response["SecretString"])

            cls.REDIS_AUTH_TOKEN = secret_data.get("auth_token")
            if "endpoint" in secret_data:
                cls.REDIS_HOST = secret_data["endpoint"]
        except Exception as e:
            logger.warning(f"Could not load Redis secrets from Secrets Manager: {e}")
            # Continue without auth token (may fail on connection)

# Load secrets at module import
Config.load_redis_secrets()
