from estate_billing.core.config import Settings, get_cors_origins, settings


def test_server_address_is_read_from_environment(monkeypatch):
    monkeypatch.setenv("HOST", "127.0.0.1")
    monkeypatch.setenv("PORT", "9001")

    configured = Settings(_env_file=None)

    assert (configured.HOST, configured.PORT) == ("127.0.0.1", 9001)


def test_defaults_without_environment(monkeypatch):
    monkeypatch.delenv("HOST", raising=False)
    monkeypatch.delenv("PORT", raising=False)
    configured = Settings(_env_file=None)
    assert (configured.HOST, configured.PORT) == ("0.0.0.0", 8000)
    assert "FRONTEND_URL" not in Settings.model_fields
    assert "TESTING" not in Settings.model_fields


def test_cors_origins_come_from_settings():
    assert get_cors_origins() == settings.ALLOWED_ORIGINS
