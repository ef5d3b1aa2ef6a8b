"""Configuration management for commlink."""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SmtpSecurity(str, Enum):
    """SMTP encryption mode."""

    STARTTLS = "starttls"  # usually port 587
    SMTPS = "smtps"  # implicit TLS, usually port 465


class SmtpConfig(BaseSettings):
    """SMTP transport configuration."""

    host: Optional[str] = Field(None, validation_alias="SMTP_HOST")
    port: int = Field(default=587, validation_alias="SMTP_PORT")
    use_auth: bool = Field(default=True, validation_alias="SMTP_AUTH")
    username: Optional[str] = Field(None, validation_alias="SMTP_USERNAME")
    password: Optional[str] = Field(None, validation_alias="SMTP_PASSWORD")
    security: SmtpSecurity = Field(
        default=SmtpSecurity.STARTTLS, validation_alias="SMTP_SECURITY"
    )
    timeout: float = Field(default=30.0, validation_alias="SMTP_TIMEOUT")

    from_address: Optional[str] = Field(None, validation_alias="MAIL_FROM_ADDRESS")
    from_name: str = Field(default="Commlink Mailer", validation_alias="MAIL_FROM_NAME")
    test_recipient: Optional[str] = Field(None, validation_alias="MAIL_TEST_RECIPIENT")
    test_recipient_name: Optional[str] = Field(
        None, validation_alias="MAIL_TEST_RECIPIENT_NAME"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        env_parse_none_str="",  # Treat empty string as None
        frozen=True,
    )


class GraphConfig(BaseSettings):
    """Microsoft Graph calendar configuration (client credentials)."""

    tenant_id: Optional[str] = Field(None, validation_alias="GRAPH_TENANT_ID")
    client_id: Optional[str] = Field(None, validation_alias="GRAPH_CLIENT_ID")
    client_secret: Optional[str] = Field(None, validation_alias="GRAPH_CLIENT_SECRET")
    authority: Optional[str] = Field(None, validation_alias="GRAPH_AUTHORITY")
    timeout: float = Field(default=30.0, validation_alias="GRAPH_TIMEOUT")

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        env_parse_none_str="",
        frozen=True,
    )


class RelayConfig(BaseSettings):
    """SOAP message relay configuration, including the debug test user."""

    platform: Optional[str] = Field(None, validation_alias="RELAY_PLATFORM")
    webservices_password: Optional[str] = Field(
        None, validation_alias="RELAY_WEBSERVICES_PASSWORD"
    )
    timeout: float = Field(default=30.0, validation_alias="RELAY_TIMEOUT")
    log_file: Optional[Path] = Field(None, validation_alias="RELAY_LOG_FILE")

    test_platform: Optional[str] = Field(None, validation_alias="RELAY_TEST_PLATFORM")
    test_password: Optional[str] = Field(None, validation_alias="RELAY_TEST_PASSWORD")
    test_username: Optional[str] = Field(None, validation_alias="RELAY_TEST_USERNAME")
    test_account: Optional[int] = Field(None, validation_alias="RELAY_TEST_ACCOUNT")

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        env_parse_none_str="",
        frozen=True,
    )


class AppConfig(BaseSettings):
    """Application configuration."""

    smtp: SmtpConfig = Field(default_factory=SmtpConfig)
    graph: GraphConfig = Field(default_factory=GraphConfig)
    relay: RelayConfig = Field(default_factory=RelayConfig)

    # Logging
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_file: Optional[Path] = Field(default=None, validation_alias="LOG_FILE")

    # Translations
    locale: str = Field(default="en", validation_alias="LOCALE")
    translations_file: Optional[Path] = Field(
        default=None, validation_alias="TRANSLATIONS_FILE"
    )

    # Calendar invites
    ics_timezone: str = Field(default="Europe/Brussels", validation_alias="ICS_TIMEZONE")

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        env_parse_none_str="",
        frozen=True,
    )


@lru_cache(maxsize=1)
def load_config() -> AppConfig:
    """Load .env and build the process-wide configuration once."""
    load_dotenv()
    return AppConfig()
