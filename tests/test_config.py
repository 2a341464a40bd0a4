"""Tests for settings sources and credential checks."""

from taleweaver.config import ArkConfig, ProviderConfig, Settings


def test_defaults(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    settings = Settings()
    assert settings.provider.name == "ark"
    assert settings.server.port == 9000
    assert settings.pipeline.retry_attempts == 3
    assert settings.store.task_ttl_seconds == 3600


def test_yaml_file_is_loaded(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "config.yaml").write_text("provider:\n  name: mock\nserver:\n  port: 9100\n")
    settings = Settings()
    assert settings.provider.name == "mock"
    assert settings.server.port == 9100


def test_environment_overrides_yaml(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "config.yaml").write_text("server:\n  port: 9100\n")
    monkeypatch.setenv("TALEWEAVER_SERVER__PORT", "9200")
    monkeypatch.setenv("TALEWEAVER_ARK__API_KEY", "secret")
    settings = Settings()
    assert settings.server.port == 9200
    assert settings.ark.api_key == "secret"


def test_missing_credentials(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    assert Settings(provider=ProviderConfig(name="mock")).missing_credentials() == []
    missing = Settings().missing_credentials()
    assert "ark.api_key" in missing
    assert "tts.api_key" in missing


def test_base_url_trailing_slash_stripped():
    assert ArkConfig(base_url="https://ark.test/v3/").base_url == "https://ark.test/v3"
