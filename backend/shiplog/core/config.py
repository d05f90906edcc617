"""
ShipLog — Backend Configuration
Loads .env automatically, then reads all settings from environment variables.
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

_env_path = Path(__file__).resolve().parent.parent.parent / ".env"
load_dotenv(_env_path)


@dataclass(frozen=True)
class GitHubConfig:
    """GitHub REST API, webhook and OAuth app settings."""
    api_base_url: str
    webhook_secret: str
    client_id: str
    client_secret: str
    oauth_redirect_url: str
    oauth_authorize_url: str
    oauth_token_url: str
    release_page_size: int
    max_pull_requests: int


@dataclass(frozen=True)
class GenerationConfig:
    """Gemini text-generation settings."""
    api_key: str
    model: str
    temperature: float


@dataclass(frozen=True)
class EmailConfig:
    """Resend transactional email settings."""
    api_key: str
    base_url: str
    sender: str


@dataclass(frozen=True)
class AppConfig:
    """Top-level application configuration."""
    host: str
    port: int
    debug: bool
    database_url: str
    secret_key: str
    http_timeout: float
    oauth_state_ttl: float
    github: GitHubConfig
    generation: GenerationConfig
    email: EmailConfig


def load_config() -> AppConfig:
    return AppConfig(
        host=os.getenv("APP_HOST", "0.0.0.0"),
        port=int(os.getenv("APP_PORT", "8000")),
        debug=os.getenv("APP_DEBUG", "false").lower() == "true",
        database_url=os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./shiplog.db"),
        secret_key=os.getenv("SHIPLOG_SECRET_KEY", ""),
        http_timeout=float(os.getenv("SHIPLOG_HTTP_TIMEOUT", "10.0")),
        oauth_state_ttl=float(os.getenv("OAUTH_STATE_TTL", "600")),
        github=GitHubConfig(
            api_base_url=os.getenv("GITHUB_API_BASE_URL", "https://api.github.com"),
            webhook_secret=os.getenv("GITHUB_WEBHOOK_SECRET", ""),
            client_id=os.getenv("GITHUB_CLIENT_ID", ""),
            client_secret=os.getenv("GITHUB_CLIENT_SECRET", ""),
            oauth_redirect_url=os.getenv("GITHUB_OAUTH_REDIRECT_URL", ""),
            oauth_authorize_url=os.getenv(
                "GITHUB_OAUTH_AUTHORIZE_URL",
                "https://github.com/login/oauth/authorize",
            ),
            oauth_token_url=os.getenv(
                "GITHUB_OAUTH_TOKEN_URL",
                "https://github.com/login/oauth/access_token",
            ),
            release_page_size=int(os.getenv("RELEASE_PAGE_SIZE", "10")),
            max_pull_requests=int(os.getenv("MAX_PULL_REQUESTS", "20")),
        ),
        generation=GenerationConfig(
            api_key=os.getenv("GOOGLE_API_KEY", ""),
            model=os.getenv("GEMINI_MODEL", "gemini-2.0-flash"),
            temperature=float(os.getenv("GENERATION_TEMPERATURE", "0.4")),
        ),
        email=EmailConfig(
            api_key=os.getenv("RESEND_API_KEY", ""),
            base_url=os.getenv("RESEND_BASE_URL", "https://api.resend.com"),
            sender=os.getenv("EMAIL_FROM", "ShipLog <releases@shiplog.io>"),
        ),
    )


def missing_credentials(cfg: AppConfig) -> list[str]:
    """Names of unset credentials. The service still starts without them."""
    missing: list[str] = []
    if not cfg.secret_key:
        missing.append("SHIPLOG_SECRET_KEY")
    if not cfg.github.webhook_secret:
        missing.append("GITHUB_WEBHOOK_SECRET")
    if not cfg.generation.api_key:
        missing.append("GOOGLE_API_KEY")
    if not cfg.email.api_key:
        missing.append("RESEND_API_KEY")
    return missing


settings = load_config()
