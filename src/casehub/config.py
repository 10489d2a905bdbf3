from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass
class Settings:
    """Centralized application settings.

    This keeps environment-variable handling in one place so other modules can
    depend on strongly-typed attributes instead of calling os.getenv
    directly.
    """

    # Optional database configuration for SQL-backed repositories.
    database_url: Optional[str] = os.getenv("DATABASE_URL")
    use_sql_repos: bool = os.getenv("USE_SQL_REPOS", "false").lower() == "true"

    # Root directory for the local blob store. Each bucket is a subdirectory.
    blob_storage_dir: Path = Path(os.getenv("BLOB_STORAGE_DIR", "storage"))
    documents_bucket: str = os.getenv("DOCUMENTS_BUCKET", "case-documents")
    reports_bucket: str = os.getenv("REPORTS_BUCKET", "reports")

    # Signed download URLs. The secret must be overridden outside development.
    signed_url_secret: str = os.getenv("SIGNED_URL_SECRET", "dev-signing-secret")
    signed_url_ttl_seconds: int = int(os.getenv("SIGNED_URL_TTL_SECONDS", "3600"))
    public_base_url: str = os.getenv("PUBLIC_BASE_URL", "")

    # Basic API authentication configuration.
    # When ENABLE_API_AUTH=true, protected endpoints require a valid API key.
    enable_api_auth: bool = os.getenv("ENABLE_API_AUTH", "false").lower() == "true"
    # Comma-separated list of allowed API keys when auth is enabled.
    api_keys: Optional[str] = os.getenv("API_KEYS")

    # Request size limits (in bytes).
    max_upload_bytes: int = int(os.getenv("MAX_UPLOAD_BYTES", str(20 * 1024 * 1024)))

    # CORS configuration: comma-separated origins (e.g. "https://app.example.com").
    # Default is "*" (allow all) which is acceptable for local development but
    # should be tightened in production.
    cors_allow_origins: str = os.getenv("CORS_ALLOW_ORIGINS", "*")

    # Logging. LOG_JSON=true switches the root handler to one JSON object per line.
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_json: bool = os.getenv("LOG_JSON", "false").lower() == "true"


settings = Settings()
