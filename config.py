from pydantic_settings import BaseSettings
from typing import Optional

class Settings(BaseSettings):
    # Security
    admin_api_key: Optional[str] = None
    api_key_name: str = "X-API-Key"
    cors_origin: str = "*"

    # Storage: auto, memory, file, database, sheets
    storage_backend: str = "auto"
    database_url: Optional[str] = None
    jobs_file: Optional[str] = None

    # Google Sheets
    google_sheets_id: Optional[str] = None
    google_sheets_range: str = "Jobs"
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    google_refresh_token: Optional[str] = None
    google_request_timeout: int = 30

    # Email: "server" sends from here, "worker" leaves it to Ares
    email_delivery: str = "server"
    mail_host: str = "smtp.gmail.com"
    mail_port: int = 587
    mail_username: Optional[str] = None
    mail_password: Optional[str] = None
    mail_encryption: str = "tls"
    mail_from_address: Optional[str] = None
    mail_from_name: str = "Website Optimizer"
    email_relay_url: Optional[str] = None
    email_relay_api_key: Optional[str] = None
    email_relay_timeout: int = 30

    # Lighthouse
    lighthouse_enabled: bool = False
    lighthouse_command: str = "npx lighthouse"
    lighthouse_timeout: int = 180

    # Netlify
    netlify_token: Optional[str] = None
    netlify_command: str = "npx netlify"
    netlify_timeout: int = 120

    # Rate Limiting
    rate_limit_jobs: str = "3/hour"
    rate_limit_api: str = "100/15minutes"
    rate_limit_storage_uri: str = "memory://"

    # Logging
    log_level: str = "INFO"
    log_file: str = "app.log"

    class Config:
        env_file = ".env"
        case_sensitive = False

settings = Settings()
