# src/trips_web/config.py

import logging
from pathlib import Path
from typing import Any, List, Optional, Union

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# .env is at the project root, two levels up from src/trips_web/
CONFIG_FILE_DIR = Path(__file__).resolve().parent
PROJECT_ROOT_DIR = CONFIG_FILE_DIR.parent.parent
ENV_FILE_PATH = PROJECT_ROOT_DIR / ".env"

if ENV_FILE_PATH.exists():
    load_dotenv(dotenv_path=ENV_FILE_PATH, override=True)
    logger.info("Loaded .env file from: %s", ENV_FILE_PATH)
else:
    logger.info(".env file not found at %s. Relying on environment variables.", ENV_FILE_PATH)


def _split_csv(v: Any) -> List[str]:
    if isinstance(v, str):
        return [item.strip() for item in v.split(",") if item.strip()]
    if isinstance(v, (list, tuple)):
        return [str(item).strip() for item in v]
    raise TypeError(f"Expected a comma-separated string or a list, got {type(v)}")


class Settings(BaseSettings):
    # === Identity provider (web3 challenge/response) ===
    CLIENT_ID: str = ""
    DOMAIN: str = "http://localhost:3000"
    SCOPE: str = "openid email"
    RESPONSE_TYPE: str = "code"
    GRANT_TYPE: str = "authorization_code"
    AUTH_URL: str = "https://auth.dimo.zone/auth/web3/generate_challenge"
    SUBMIT_CHALLENGE_URL: str = "https://auth.dimo.zone/auth/web3/submit_challenge"

    # === Token validation for inbound bearer credentials ===
    JWKS_URL: str = "https://auth.dimo.zone/keys"
    JWT_ISSUER: Optional[str] = None
    JWT_AUDIENCE: Optional[str] = None
    ADDRESS_CLAIM: str = "ethereum_address"
    JWKS_MIN_REFETCH_SECONDS: float = 60.0

    # === Owner data services ===
    IDENTITY_API_URL: str = "https://identity-api.dimo.zone/query"
    TRIPS_API_BASE_URL: str = "https://trips-api.dimo.zone/v1"
    DEVICE_DATA_API_BASE_URL: str = "https://device-data-api.dimo.zone/v1"

    # === Privilege token exchange ===
    TOKEN_EXCHANGE_URL: str = "https://token-exchange-api.dimo.zone/v1/tokens/exchange"
    VEHICLE_NFT_CONTRACT_ADDRESS: str = "0xbA5738a18d83D41847dfFbDC6101d37C69c9B0cF"
    # Allow Pydantic to initially see this as a string from the env,
    # then the validator converts it to List[int]
    PRIVILEGES: Union[str, List[int]] = "1,3,4"

    # === Session management ===
    SESSION_TTL_SECONDS: int = 2 * 60 * 60
    TRIP_INDEX_TTL_SECONDS: int = 24 * 60 * 60
    CACHE_CLEANUP_INTERVAL_SECONDS: int = 10 * 60
    COOKIE_DOMAIN: Optional[str] = None
    COOKIE_SECURE: bool = False

    # === Server ===
    HTTP_TIMEOUT_SECONDS: float = 10.0
    ALLOWED_ORIGINS: Union[str, List[str]] = "http://localhost:3000"
    LOG_LEVEL: str = "INFO"
    HOST: str = "0.0.0.0"
    PORT: int = 8080

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    @field_validator("PRIVILEGES", mode="before")
    @classmethod
    def parse_privileges(cls, v: Any) -> List[int]:
        try:
            return [int(item) for item in _split_csv(v)]
        except ValueError as e:
            raise ValueError(f"PRIVILEGES must be comma-separated integers: {v!r}") from e

    @field_validator("ALLOWED_ORIGINS", mode="before")
    @classmethod
    def parse_allowed_origins(cls, v: Any) -> List[str]:
        return _split_csv(v)

    @field_validator("LOG_LEVEL")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        level = (v or "").strip().upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"could not parse LOG_LEVEL: {v}")
        return level

    @field_validator("COOKIE_DOMAIN", "JWT_ISSUER", "JWT_AUDIENCE", mode="before")
    @classmethod
    def empty_as_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v


try:
    settings = Settings()
except Exception as e:
    logger.error("Error instantiating Settings: %s", e)
    raise
