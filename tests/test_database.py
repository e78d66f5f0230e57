import pytest

from heartf.database import DatabaseSettings, check_database_connection, engine_options, normalize_database_url


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("postgres://u:p@host:5432/heartf", "postgresql+psycopg2://u:p@host:5432/heartf"),
        ("postgresql://u:p@host/heartf", "postgresql+psycopg2://u:p@host/heartf"),
        ("postgresql+psycopg2://u:p@host/heartf", "postgresql+psycopg2://u:p@host/heartf"),
        (" sqlite:///./heartf.db ", "sqlite:///./heartf.db"),
    ],
)
def test_normalize_database_url(raw, expected):
    assert normalize_database_url(raw) == expected


def test_url_built_from_parts_when_no_database_url():
    settings = DatabaseSettings(
        database_url=None, db_user="app", db_password="pw", db_host="pg", db_port=6543, db_name="crm"
    )
    assert settings.resolved_database_url == "postgresql+psycopg2://app:pw@pg:6543/crm"


def test_engine_options_per_backend():
    settings = DatabaseSettings(db_pool_size=3, db_max_overflow=1)

    sqlite = engine_options("sqlite://", settings)
    assert sqlite["connect_args"] == {"check_same_thread": False}
    assert "pool_size" not in sqlite

    postgres = engine_options("postgresql+psycopg2://u:p@h/db", settings)
    assert postgres["pool_size"] == 3
    assert postgres["max_overflow"] == 1
    assert postgres["pool_pre_ping"] is True


def test_check_database_connection(engine):
    assert check_database_connection(engine) is True
