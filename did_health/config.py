"""
config.py - Central configuration for the DID healthcare core
"""
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class DIDSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="DID_HEALTH_",
        env_file=".env",
        extra="ignore",
    )

    # Identity
    DID_METHOD: str = "example"
    KEY_TYPE: str = "placeholder"  # placeholder | ed25519 | secp256k1
    SERVICE_ENDPOINT: str = "https://healthcare.example.com"

    # Credential policy
    VACCINATION_VALIDITY_YEARS: int = 5
    CHECK_REVOCATION: bool = True
    MAX_VC_PAYLOAD_BYTES: int = 64 * 1024

    # Store
    STORE_TIMEOUT_SECONDS: float = 5.0

    # Notifications
    NOTIFICATION_INBOX_LIMIT: int = 200
    NOTIFICATION_QUEUE_SIZE: int = 100

    # API / session collaborator
    JWT_SECRET: str = "did-healthcare-secret-key-change-me"
    JWT_EXPIRES_HOURS: int = 24
    CORS_ORIGINS: List[str] = ["*"]
    LOG_LEVEL: str = "INFO"


settings = DIDSettings()


def get_settings(**overrides) -> DIDSettings:
    """Return the shared settings, or a fresh copy with overrides applied"""
    if not overrides:
        return settings
    return settings.model_copy(update=overrides)
