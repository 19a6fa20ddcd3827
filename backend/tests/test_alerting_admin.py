from los_relay import alerting


def test_get_admin_recipients_prefers_dedicated_admin_addresses(monkeypatch):
    monkeypatch.setenv("ADMIN_EMAILS", "admin1@example.com, admin2@example.com")
    monkeypatch.setenv("SMTP_TO", "general@example.com")

    assert alerting.get_admin_recipients() == [
        "admin1@example.com",
        "admin2@example.com",
    ]


def test_get_admin_recipients_falls_back_to_smtp_recipients(monkeypatch):
    for env_var in ("ADMIN_EMAILS", "ADMIN_EMAIL", "SMTP_ADMIN_TO"):
        monkeypatch.delenv(env_var, raising=False)

    monkeypatch.setenv("SMTP_TO", "general@example.com, second@example.com")

    assert alerting.get_admin_recipients() == [
        "general@example.com",
        "second@example.com",
    ]


def test_smtp_settings_have_no_baked_in_credentials(monkeypatch):
    for env_var in ("SMTP_HOST", "SMTP_USER", "SMTP_PASSWORD", "SMTP_FROM"):
        monkeypatch.delenv(env_var, raising=False)

    settings = alerting.load_smtp_settings()
    assert settings.host == "localhost"
    assert settings.user == ""
    assert settings.password == ""


def test_invalid_smtp_numbers_fall_back_to_defaults(monkeypatch, caplog):
    monkeypatch.setenv("SMTP_PORT", "not-a-port")
    monkeypatch.setenv("SMTP_TIMEOUT", "soon")
    monkeypatch.delenv("SMTP_USE_SSL", raising=False)

    settings = alerting.load_smtp_settings()
    assert settings.port == 587
    assert settings.timeout == 15
    assert "Ignoring invalid SMTP_PORT" in caplog.text


def test_ssl_changes_the_default_port(monkeypatch):
    monkeypatch.delenv("SMTP_PORT", raising=False)
    monkeypatch.setenv("SMTP_USE_SSL", "true")
    assert alerting.load_smtp_settings().port == 465
