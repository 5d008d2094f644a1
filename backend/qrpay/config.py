"""Application configuration management using Pydantic Settings."""

from typing import List, Optional
from decimal import Decimal
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str

    # API
    API_V1_PREFIX: str = "/api"

    # CORS
    CORS_ORIGINS: List[str] = ['http://localhost:3000']

    # Environment
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Payment sessions
    BASE_FIAT_CURRENCY: str = "ARS"
    TARGET_CRYPTO_CURRENCY: str = "USDT"
    PAYMENT_SESSION_TTL_SECONDS: int = 1800  # 30 minutes
    MAX_PAYMENT_AMOUNT: Decimal = Decimal("999999999.99")

    # Starknet price oracle
    STARKNET_RPC_URL: str = "https://starknet-sepolia.public.blastapi.io/rpc/v0_7"
    ORACLE_CONTRACT_ADDRESS: str = "0x01d5f1e352b69065229f872828a2ccaf9182302a34a326fe503df66c042e498c"
    ORACLE_QUOTE_FUNCTION: str = "quote_ars_to_usdt"
    ORACLE_SCALE: int = 10 ** 18  # Fixed-point scale used by the oracle contract
    ORACLE_TIMEOUT_SECONDS: float = 10.0
    ORACLE_CACHE_TTL_SECONDS: int = 30
    ORACLE_REFRESH_INTERVAL_SECONDS: int = 30
    ORACLE_REFRESH_ENABLED: bool = True
    ORACLE_FALLBACK_RATE: Optional[Decimal] = Decimal("1000")  # 1 USDT = 1000 ARS
    TARGET_AMOUNT_DECIMALS: int = 6  # USDT precision

    # Settlement
    REQUIRED_CONFIRMATIONS: int = 1
    SETTLEMENT_WEBHOOK_URL: str = ""  # Empty = log-only notifier
    SETTLEMENT_NOTIFY_TIMEOUT_SECONDS: float = 5.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v) -> List[str]:
        """Parse CORS_ORIGINS from JSON string to list."""
        if isinstance(v, str):
            return json.loads(v)
        return v

    @field_validator("MAX_PAYMENT_AMOUNT", "ORACLE_FALLBACK_RATE", mode="before")
    @classmethod
    def parse_decimal(cls, v) -> Optional[Decimal]:
        """Parse string to Decimal for precise arithmetic."""
        if isinstance(v, str):
            if not v.strip():
                return None
            return Decimal(v)
        return v


# Global settings instance
settings = Settings()
