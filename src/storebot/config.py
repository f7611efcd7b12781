"""
Application configuration module using Pydantic BaseSettings v2.

This module provides centralized configuration management for StoreBot,
loading settings from environment variables and .env files.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be configured via environment variables or a .env file.
    Environment variable names are case-insensitive.
    """

    # WhatsApp Cloud API (Meta Graph API)
    meta_graph_base_url: str = "https://graph.facebook.com"
    meta_api_version: str = "v20.0"
    webhook_verify_token: str = ""  # Customer bot webhook verification token

    # Admin bot: a single WhatsApp number shared by every merchant
    admin_webhook_verify_token: str = ""
    admin_phone_number_id: str = ""
    admin_access_token: str = ""

    # Mercado Pago
    mercadopago_base_url: str = "https://api.mercadopago.com"
    pix_expiration_minutes: int = 30
    default_amount_options_cents: list[int] = [2500, 5000, 10000]

    # Payer e-mail domain; customers are identified by WhatsApp id only
    payer_email_domain: str = "clientes.storebot.app"

    # Public base URL used for payment notification callbacks
    app_base_url: str = "http://localhost:8000"

    # Currency display
    currency: str = "BRL"
    currency_symbol: str = "R$"

    # Conversation limits
    category_page_size: int = 9  # One list row is reserved for "next page"
    name_max_length: int = 80
    sku_max_length: int = 32

    # Optional SMTP for merchant purchase emails
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_sender: str | None = None

    # Database Configuration
    database_url: str = "sqlite+aiosqlite:///./storebot.db"

    # Application Configuration
    app_name: str = "StoreBot"
    debug: bool = False
    environment: str = "development"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


# Create singleton settings instance
settings = Settings()
