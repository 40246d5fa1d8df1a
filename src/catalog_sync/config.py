from typing import Dict, List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./catalog_sync.db"

    # HTTP surface, served from the worker process
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Pipeline
    event_type: str = "MenuSync"
    channel_prefix: str = "catalog.sync"
    schema_version: str = "catalog.sync.v1"
    max_attempts: int = 3
    retry_delays_seconds: List[int] = [60, 300, 900]
    idempotency_ttl_days: int = 30
    idempotency_sweep_hour: int = 4
    sync_handler: str = ""  # "package.module:callable"

    # Reconciler
    partial_error_limit: int = 50

    # Inbound webhook security
    webhook_security_enabled: bool = False
    webhook_security_mode: str = "signature"  # "signature", "secret", "either"
    webhook_secret_key: str = ""
    webhook_signature_header: str = "X-Signature"
    webhook_timestamp_header: str = "X-Timestamp"
    webhook_secret_header: str = "X-Webhook-Secret"
    webhook_require_timestamp: bool = False
    webhook_max_skew_seconds: int = 300
    allowed_ips: List[str] = []

    # vendor code -> POS account id, used by menu import requests
    vendor_accounts: Dict[str, str] = {}

    dlq_api_token: Optional[str] = None

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
