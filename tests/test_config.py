import pytest

from bonusmart.core.config import Settings, settings_from_args


@pytest.fixture
def clean_env(monkeypatch):
    for name in ("RUN_ADDRESS", "DATABASE_URI", "ACCRUAL_SYSTEM_ADDRESS", "DEBUG", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_env_variables(clean_env):
    clean_env.setenv("RUN_ADDRESS", "0.0.0.0:9090")
    clean_env.setenv("ACCRUAL_SYSTEM_ADDRESS", "http://accrual:8080")
    clean_env.setenv("LOG_LEVEL", "1")
    settings = Settings()
    assert settings.bind_host == "0.0.0.0"
    assert settings.bind_port == 9090
    assert settings.accrual_system_address == "http://accrual:8080"
    assert settings.log_level_name == "INFO"


def test_defaults(clean_env):
    settings = Settings(_env_file=None)
    assert settings.log_level == 3
    assert settings.log_level_name == "ERROR"
    assert settings.debug is False


def test_flags_override_env(clean_env):
    clean_env.setenv("RUN_ADDRESS", "0.0.0.0:9090")
    base = Settings()
    settings = settings_from_args(
        ["-a", "localhost:7000", "-d", "memory://", "-r", "http://calc:1"],
        base=base,
    )
    assert settings.bind_host == "localhost"
    assert settings.bind_port == 7000
    assert settings.database_uri == "memory://"
    assert settings.accrual_system_address == "http://calc:1"


def test_no_flags_keeps_env(clean_env):
    clean_env.setenv("RUN_ADDRESS", "0.0.0.0:9090")
    base = Settings()
    assert settings_from_args([], base=base) is base


def test_debug_flag_wins_over_level(clean_env):
    settings = settings_from_args(["-debug", "-l", "4"], base=Settings())
    assert settings.debug is True
    assert settings.log_level == 4
    assert settings.log_level_name == "DEBUG"


def test_level_flag_rejects_unknown_values(clean_env):
    with pytest.raises(SystemExit):
        settings_from_args(["-l", "9"], base=Settings())
