from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_nested_delimiter="__", frozen=True)

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8000
    root_path: str = ""

    debug: bool = False
    reload: bool = False

    contact_path: str = Field("/api/contact", pattern=r"^/.*$")

    sender_address: str = "noreply@example.com"
    sender_name: str = "Contact Form"
    recipient_address: str = "contact@example.com"
    recipient_name: str | None = None

    base_delay_seconds: int = 30

    turnstile_secret_key: str = ""
    turnstile_verify_url: str = "https://challenges.cloudflare.com/turnstile/v0/siteverify"
    turnstile_timeout: float = 10

    redis_url: str = Field("redis://redis:6379/0", pattern=r"^rediss?://.*$")
    queue_name: str = "contact_emails"
    queue_max_retries: int = 3
    queue_batch_size: int = 10
    queue_poll_interval: float = 1

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_tls: bool = False
    smtp_starttls: bool = True


settings = Settings()
