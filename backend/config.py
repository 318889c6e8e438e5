"""
Compose Backend Configuration

Manages all administrator settings with environment variable support.
Per-user preferences live on the request context, not here.
"""

import secrets
from functools import lru_cache
from pathlib import Path
from typing import Dict, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Webmail Compose Backend"
    app_version: str = "1.0.0"
    user_agent: str = "Webmail Compose 1.0.0"
    debug: bool = False

    # Server
    host: str = "127.0.0.1"
    port: int = 8000

    # Security
    secret_key: str = Field(default_factory=lambda: secrets.token_hex(32))
    api_token: str = Field(default_factory=lambda: secrets.token_urlsafe(32))
    token_expire_minutes: int = 1440

    # Addressing
    mail_domain: str = "localhost"
    max_recipients: int = 0
    max_timelimit: int = 0
    limit_period_hours: int = 24

    # Attachments
    attach_size_limit: int = 0
    attach_count_limit: int = 0
    file_upload_limit: int = 20 * 1024 * 1024
    attachment_storage: Literal["file", "vfs"] = "file"
    attachment_gc_seconds: int = 86400
    link_attachments: bool = False
    link_all_attachments: bool = False
    link_base_url: str = "http://127.0.0.1:8000/api/v1/attachments"

    # Message text
    append_trailer: bool = False
    vhosts: bool = False
    server_name: str = "localhost"
    config_dir: Path = Field(default_factory=lambda: Path("./config"))
    reply_limit: int = 0
    allow_receipts: bool = True
    email_charset: str = "us-ascii"
    extra_headers: Dict[str, str] = Field(default_factory=dict)

    # Delivery history
    sentmail_driver: Literal["sql", "none"] = "sql"
    use_maillog: bool = True

    # SMTP
    smtp_host: str = "127.0.0.1"
    smtp_port: int = 25
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_start_tls: bool = False
    smtp_timeout: int = 60

    # IMAP
    imap_host: str = "127.0.0.1"
    imap_port: int = 993
    imap_ssl: bool = True
    imap_username: str = ""
    imap_password: str = ""

    # S/MIME
    smime_certificate_file: Optional[Path] = None
    smime_key_file: Optional[Path] = None

    # Remote resources
    image_fetch_timeout: int = 10

    # Storage
    data_dir: Path = Field(default_factory=lambda: Path("./data"))

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    @field_validator("data_dir", mode="after")
    @classmethod
    def ensure_data_dir_exists(cls, v: Path) -> Path:
        """Create data directory if it doesn't exist."""
        v.mkdir(parents=True, exist_ok=True)
        return v

    @field_validator("host")
    @classmethod
    def validate_localhost_only(cls, v: str) -> str:
        """Ensure backend only binds to localhost."""
        if v not in ("127.0.0.1", "localhost", "::1"):
            raise ValueError("Backend must bind to localhost only")
        return v

    @property
    def db_path(self) -> Path:
        """Path to the SQLite database."""
        return self.data_dir / "compose.db"

    @property
    def attachment_dir(self) -> Path:
        """Directory holding file-backed attachment blobs."""
        return self.data_dir / "attachments"

    @property
    def trailer_file(self) -> Path:
        """Trailer file for this server (host-specific when vhosts is on)."""
        if self.vhosts:
            return self.config_dir / f"trailer-{self.server_name}.txt"
        return self.config_dir / "trailer.txt"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
