"""Application configuration using Pydantic Settings."""

import json
from functools import lru_cache
from typing import Literal, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "ShipDesk"
    DEBUG: bool = False
    ENVIRONMENT: Literal["development", "production", "testing"] = "development"
    LOG_LEVEL: str = "INFO"

    # Chit Chats API
    CHIT_CHATS_BASE_URL: str = "https://chitchats.com/api/v1"
    CHIT_CHATS_CLIENT_ID: str = ""
    CHIT_CHATS_ACCESS_TOKEN: str = ""
    HTTP_TIMEOUT_SECONDS: float = 30.0

    # Shipment payload policy
    ALLOW_CC_VAT_REFERENCE: bool = False
    CC_FALLBACK_EMAIL: str = Field(
        default="shipping@example.com",
        validation_alias=AliasChoices("CC_FALLBACK_EMAIL", "CHITCHATS_DEFAULT_EMAIL"),
    )
    CC_FALLBACK_PHONE: str = "555-555-0100"
    CC_DEFAULT_ORIGIN_COUNTRY: str = "CA"

    # Rate limiting
    RATE_LIMIT_PER_SECOND: float = 5.0
    RATE_LIMIT_BURST: float = 5.0
    RATE_LIMIT_MAX_RETRIES: int = 5
    RATE_LIMIT_JITTER_MS: int = 50
    RATE_LIMIT_BUCKET: str = "chitchats-global"
    RATE_LIMIT_COLLECTION: str = "rate_limits"

    # Firestore (shared rate-limit store)
    FIREBASE_SERVICE_ACCOUNT: str = ""
    FIREBASE_PROJECT_ID: str = ""
    FIREBASE_CLIENT_EMAIL: str = ""
    FIREBASE_PRIVATE_KEY: str = ""
    FIREBASE_PRIVATE_KEY_ID: str = ""
    FIREBASE_CLIENT_ID: str = ""
    FIREBASE_TOKEN_URI: str = "https://oauth2.googleapis.com/token"

    # Search
    SEARCH_TIMEOUT_MS: int = 9000
    SEARCH_PAGE_SIZE: int = 500
    SEARCH_MAX_PAGES: int = 200
    OPEN_BATCH_CACHE_TTL_SECONDS: float = 30.0

    # Shipment replacement
    REPLACE_CONFIRM_ATTEMPTS: int = 4
    REPLACE_CONFIRM_DELAY_MS: int = 250

    # Smarty address verification
    SMARTY_AUTH_ID: str = ""
    SMARTY_AUTH_TOKEN: str = ""
    SMARTY_EMBEDDED_KEY: str = ""

    @property
    def chitchats_configured(self) -> bool:
        return bool(self.CHIT_CHATS_CLIENT_ID and self.CHIT_CHATS_ACCESS_TOKEN)

    def firebase_service_account(self) -> Optional[dict]:
        """Build the Firestore service-account info, if any is configured.

        Accepts either the whole JSON document in FIREBASE_SERVICE_ACCOUNT or
        the split FIREBASE_* variables. Escaped newlines in the private key
        are restored.

        Returns:
            Service account dict or None when no credential is configured
        """
        if self.FIREBASE_SERVICE_ACCOUNT:
            return json.loads(self.FIREBASE_SERVICE_ACCOUNT)

        if not (
            self.FIREBASE_PROJECT_ID
            and self.FIREBASE_CLIENT_EMAIL
            and self.FIREBASE_PRIVATE_KEY
        ):
            return None

        return {
            "type": "service_account",
            "project_id": self.FIREBASE_PROJECT_ID,
            "private_key_id": self.FIREBASE_PRIVATE_KEY_ID or None,
            "private_key": self.FIREBASE_PRIVATE_KEY.replace("\\n", "\n"),
            "client_email": self.FIREBASE_CLIENT_EMAIL,
            "client_id": self.FIREBASE_CLIENT_ID or None,
            "token_uri": self.FIREBASE_TOKEN_URI,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
