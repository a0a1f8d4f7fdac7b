import pytest
from sqlmodel_history.settings import Settings


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "HISTORY_DATABASE_URL",
        "DATABASE_URL",
        "LOG_LEVEL",
        "HISTORY_REVISION_MAX_ATTEMPTS",
        "HISTORY_ACTOR_TIMEOUT",
        "HISTORY_DB_POOL_MIN_SIZE",
        "HISTORY_DB_POOL_MAX_SIZE",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.mark.parametrize(
    "env_var, method_name, test_value, expected_value",
    [
        ("DATABASE_URL", "get_database_url", "postgresql://u:p@h/db", "postgresql://u:p@h/db"),
        ("HISTORY_DATABASE_URL", "get_database_url", "sqlite:///h.db", "sqlite:///h.db"),
        ("LOG_LEVEL", "get_log_level", "debug", "DEBUG"),
        ("HISTORY_REVISION_MAX_ATTEMPTS", "get_revision_max_attempts", "3", 3),
        ("HISTORY_ACTOR_TIMEOUT", "get_actor_timeout", "2.5", 2.5),
        ("HISTORY_ACTOR_TIMEOUT", "get_actor_timeout", "0", None),
        ("HISTORY_ACTOR_TIMEOUT", "get_actor_timeout", "", None),
        ("HISTORY_DB_POOL_MIN_SIZE", "get_db_pool_min_size", "2", 2),
        ("HISTORY_DB_POOL_MAX_SIZE", "get_db_pool_max_size", "20", 20),
    ],
)
def test_getter_set(settings, monkeypatch, env_var, method_name, test_value, expected_value):
    monkeypatch.setenv(env_var, test_value)
    assert getattr(settings, method_name)() == expected_value


@pytest.mark.parametrize(
    "method_name, expected_value",
    [
        ("get_database_url", None),
        ("get_log_level", "INFO"),
        ("get_revision_max_attempts", 5),
        ("get_actor_timeout", 10.0),
        ("get_db_pool_min_size", 1),
        ("get_db_pool_max_size", 10),
    ],
)
def test_getter_defaults(settings, method_name, expected_value):
    assert getattr(settings, method_name)() == expected_value


def test_history_database_url_wins(settings, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgresql://app/db")
    monkeypatch.setenv("HISTORY_DATABASE_URL", "postgresql://history/db")
    assert settings.get_database_url() == "postgresql://history/db"


@pytest.mark.parametrize(
    "env_var, method_name, bad_value",
    [
        ("HISTORY_REVISION_MAX_ATTEMPTS", "get_revision_max_attempts", "many"),
        ("HISTORY_REVISION_MAX_ATTEMPTS", "get_revision_max_attempts", "0"),
        ("HISTORY_ACTOR_TIMEOUT", "get_actor_timeout", "soon"),
        ("HISTORY_ACTOR_TIMEOUT", "get_actor_timeout", "-1"),
        ("HISTORY_DB_POOL_MIN_SIZE", "get_db_pool_min_size", "one"),
        ("HISTORY_DB_POOL_MAX_SIZE", "get_db_pool_max_size", "ten"),
    ],
)
def test_getter_invalid(settings, monkeypatch, env_var, method_name, bad_value):
    monkeypatch.setenv(env_var, bad_value)
    with pytest.raises(ValueError):
        getattr(settings, method_name)()
