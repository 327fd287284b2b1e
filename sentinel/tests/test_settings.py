import pytest

from sentinel.config import ConfigurationError, SentinelSettings, get_settings


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch, tmp_path):
    for key in ("SENTINEL_CONFIG_FILE", "SENTINEL_BOT_NAME", "SENTINEL_OWNER_NUMBER", "SENTINEL_LOG_LEVEL"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_defaults_match_runtime_constants(settings):
    assert settings.reconnect_delay_seconds == 5.0
    assert settings.pairing_delay_seconds == 10.0
    assert settings.pairing_retry_delay_seconds == 3.0
    assert settings.pairing_max_attempts == 5
    assert settings.heartbeat_interval_seconds == 60.0
    assert settings.status_resubscribe_interval_seconds == 300.0
    assert settings.dedup_capacity == 1000
    assert settings.dedup_ttl_seconds == 3600.0
    assert settings.logged_out_status_code == 401


def test_owner_number_is_normalized(make_settings):
    settings = make_settings(owner_number="+254 700-000-001")

    assert settings.owner_number == "254700000001"
    assert settings.owner_jid == "254700000001@s.whatsapp.net"


def test_invalid_owner_number_is_rejected(make_settings):
    with pytest.raises(ValueError):
        make_settings(owner_number="12345")


def test_yaml_file_seeds_settings(monkeypatch, tmp_path):
    config = tmp_path / "sentinel.yaml"
    config.write_text(
        "bot_name: yaml-bot\n"
        "owner_number: '254711111111'\n"
        "heartbeat_interval_seconds: 15\n"
        "anti_call: true\n"
        "log_level: debug\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("SENTINEL_CONFIG_FILE", str(config))

    settings = get_settings()

    assert settings.bot_name == "yaml-bot"
    assert settings.heartbeat_interval_seconds == 15.0
    assert settings.anti_call is True
    assert settings.log_level == "DEBUG"
    assert settings.config_path == config
    assert settings.auth_dir.is_absolute()
    assert get_settings() is settings


def test_environment_variables_are_read(monkeypatch):
    monkeypatch.setenv("SENTINEL_BOT_NAME", "env-bot")
    monkeypatch.setenv("SENTINEL_OWNER_NUMBER", "254722222222")

    settings = get_settings()

    assert settings.bot_name == "env-bot"
    assert settings.owner_number == "254722222222"


def test_missing_required_settings_raise_configuration_error():
    with pytest.raises(ConfigurationError):
        get_settings()


def test_malformed_config_file_raises_configuration_error(monkeypatch, tmp_path):
    config = tmp_path / "sentinel.yaml"
    config.write_text("- just\n- a list\n", encoding="utf-8")
    monkeypatch.setenv("SENTINEL_CONFIG_FILE", str(config))

    with pytest.raises(ConfigurationError):
        get_settings()


def test_ensure_configured_rejects_blank_values():
    settings = SentinelSettings.model_construct(bot_name="", owner_number="")

    with pytest.raises(ConfigurationError):
        settings.ensure_configured()
