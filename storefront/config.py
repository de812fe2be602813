"""
Configuration management for the storefront service.
Loads settings from environment variables and AWS Secrets Manager.
"""
import os
import json
import logging
import boto3
from typing import Optional

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Application configuration"""

    # Application settings
    APP_PORT: int = int(os.getenv("APP_PORT", "8000"))
    PROJECT_NAME: str = os.getenv("PROJECT_NAME", "storefront")
    REGION: str = os.getenv("REGION", "ap-southeast-2")

    # Upstream order API
    UPSTREAM_BASE_URL: str = os.getenv(
        "UPSTREAM_BASE_URL", "https://api.livedatanow.com/api/online-order"
    ).rstrip("/")
    UPSTREAM_TIMEOUT_SECONDS: float = float(os.getenv("UPSTREAM_TIMEOUT_SECONDS", "30"))
    WEB_ORDER_TOKEN: Optional[str] = os.getenv("WEB_ORDER_TOKEN")

    # Payment gateway (DCAP) credentials never live in code
    PAYMENT_GATEWAY_URL: str = os.getenv(
        "PAYMENT_GATEWAY_URL", "https://pay-cert.dcap.com/v2/AcquireInitialApiKey"
    )
    PAYMENT_USERNAME: Optional[str] = os.getenv("PAYMENT_USERNAME")
    PAYMENT_PASSWORD: Optional[str] = os.getenv("PAYMENT_PASSWORD")

    # Storage settings ("redis" or "memory")
    STORAGE_BACKEND: str = os.getenv("STORAGE_BACKEND", "redis")
    REDIS_HOST: str = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT: int = int(os.getenv("REDIS_PORT", "6379"))
    REDIS_AUTH_TOKEN: Optional[str] = os.getenv("REDIS_AUTH_TOKEN")
    REDIS_DB: int = int(os.getenv("REDIS_DB", "0"))
    REDIS_SSL: bool = _env_bool("REDIS_SSL", "true")

    # Session settings
    SESSION_TTL_SECONDS: int = int(os.getenv("SESSION_TTL_SECONDS", str(30 * 24 * 60 * 60)))  # 30 days default
    OTP_LOGIN_ENABLED: bool = _env_bool("OTP_LOGIN_ENABLED", "true")

    # Cart settings
    CART_NORMALIZE_MODIFIER_ORDER: bool = _env_bool("CART_NORMALIZE_MODIFIER_ORDER")

    # Store resolution
    DEFAULT_STORE_SUBDOMAIN: str = os.getenv("DEFAULT_STORE_SUBDOMAIN", "flavors")
    DEFAULT_STORE_ID: str = os.getenv("DEFAULT_STORE_ID", "68c328b7a277614f117d8226")
    DEFAULT_STORE_NAME: str = os.getenv("DEFAULT_STORE_NAME", "Flavors Restaurant")

    # Redis connection settings
    REDIS_SOCKET_CONNECT_TIMEOUT: int = 5
    REDIS_SOCKET_TIMEOUT: int = 5
    REDIS_RETRY_ON_TIMEOUT: bool = True
    REDIS_MAX_CONNECTIONS: int = 50
    # A failed storage connect is remembered this long before Redis is tried again
    STORAGE_RETRY_SECONDS: float = float(os.getenv("STORAGE_RETRY_SECONDS", "30"))

    @classmethod
    def _read_secret(cls, secret_name: str) -> dict:
        client = boto3.client("secretsmanager", region_name=cls.REGION)
        response = client.get_secret_value(SecretId=secret_name)
        return json.loads(response["SecretString"])

    @classmethod
    def load_redis_secrets(cls) -> None:
        """Load Redis authentication token from AWS Secrets Manager"""
        if cls.REDIS_AUTH_TOKEN:
            return  # Already loaded from environment

        secret_name = os.getenv("REDIS_SECRET_NAME")
        if not secret_name:
            return

        try:
            secret_data = cls._read_secret(secret_name)
            cls.REDIS_AUTH_TOKEN = secret_data.get("auth_token")
            if "endpoint" in secret_data:
                cls.REDIS_HOST = secret_data["endpoint"]
        except Exception as e:
            logger.warning(f"Could not load Redis secrets from Secrets Manager: {e}")

    @classmethod
    def load_payment_secrets(cls) -> None:
        """Load payment gateway credentials from AWS Secrets Manager"""
        if cls.PAYMENT_USERNAME and cls.PAYMENT_PASSWORD:
            return

        secret_name = os.getenv("PAYMENT_SECRET_NAME")
        if not secret_name:
            return

        try:
            secret_data = cls._read_secret(secret_name)
            cls.PAYMENT_USERNAME = secret_data.get("username")
            cls.PAYMENT_PASSWORD = secret_data.get("password")
            if "gateway_url" in secret_data:
                cls.PAYMENT_GATEWAY_URL = secret_data["gateway_url"]
        except Exception as e:
            logger.warning(f"Could not load payment secrets from Secrets Manager: {e}")

    @classmethod
    def load_secrets(cls) -> None:
        cls.load_redis_secrets()
        cls.load_payment_secrets()


# Load secrets at module import
Config.load_secrets()
