"""Unit tests for environment-driven configuration."""

from shiplog.core.config import load_config, missing_credentials


class TestConfig:
    def test_defaults(self, monkeypatch):
        for name in ("DATABASE_URL", "GEMINI_MODEL", "SHIPLOG_HTTP_TIMEOUT", "MAX_PULL_REQUESTS"):
            monkeypatch.delenv(name, raising=False)
        cfg = load_config()
        assert cfg.database_url == "sqlite+aiosqlite:///./shiplog.db"
        assert cfg.generation.model == "gemini-2.0-flash"
        assert cfg.http_timeout == 10.0
        assert cfg.github.max_pull_requests == 20

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("RELEASE_PAGE_SIZE", "25")
        monkeypatch.setenv("GENERATION_TEMPERATURE", "0.1")
        cfg = load_config()
        assert cfg.github.release_page_size == 25
        assert cfg.generation.temperature == 0.1

    def test_missing_credentials(self, monkeypatch):
        for name in ("SHIPLOG_SECRET_KEY", "GITHUB_WEBHOOK_SECRET", "GOOGLE_API_KEY", "RESEND_API_KEY"):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setenv("GOOGLE_API_KEY", "g-key")
        assert missing_credentials(load_config()) == [
            "SHIPLOG_SECRET_KEY", "GITHUB_WEBHOOK_SECRET", "RESEND_API_KEY",
        ]
