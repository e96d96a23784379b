"""Settings loading from the environment and profile files."""
from __future__ import annotations

import pytest
from sqlalchemy.engine import make_url

from position_ledger.config import DEFAULT_TRANSIENT_RETRIES, Settings, find_env_file

NO_PROFILE = {"POSITION_LEDGER_ENV": "does-not-exist"}


def test_explicit_database_url():
    settings = Settings.load({**NO_PROFILE, "POSITION_LEDGER_DATABASE_URL": "sqlite:///x.db"})
    assert settings.database_url == "sqlite:///x.db"
    assert settings.transient_retries == DEFAULT_TRANSIENT_RETRIES


def test_discrete_settings_are_quoted():
    settings = Settings.load(
        {
            **NO_PROFILE,
            "POSITION_LEDGER_DB_HOST": "db.internal",
            "POSITION_LEDGER_DB_USERNAME": "ledger",
            "POSITION_LEDGER_DB_PASSWORD": "p@ss:word",
            "POSITION_LEDGER_DB_NAME": "books",
        }
    )
    url = make_url(settings.database_url)
    assert url.drivername == "postgresql+psycopg"
    assert (url.username, url.password) == ("ledger", "p@ss:word")
    assert (url.host, url.port, url.database) == ("db.internal", 5432, "books")
    assert "p@ss:word" not in settings.database_url


def test_discrete_settings_reject_bad_port():
    with pytest.raises(RuntimeError, match="DB_PORT"):
        Settings.load(
            {
                **NO_PROFILE,
                "POSITION_LEDGER_DB_HOST": "db",
                "POSITION_LEDGER_DB_USERNAME": "u",
                "POSITION_LEDGER_DB_PASSWORD": "",
                "POSITION_LEDGER_DB_PORT": "fivefour",
            }
        )


def test_discrete_settings_require_credentials():
    with pytest.raises(RuntimeError, match="USERNAME"):
        Settings.load({**NO_PROFILE, "POSITION_LEDGER_DB_HOST": "db"})
    with pytest.raises(RuntimeError, match="PASSWORD"):
        Settings.load(
            {**NO_PROFILE, "POSITION_LEDGER_DB_HOST": "db", "POSITION_LEDGER_DB_USERNAME": "u"}
        )


def test_missing_database_settings():
    with pytest.raises(RuntimeError, match="POSITION_LEDGER_DATABASE_URL"):
        Settings.load(dict(NO_PROFILE))


def test_env_file_is_read_and_shell_wins(tmp_path):
    env_file = tmp_path / "ledger.env"
    env_file.write_text(
        "# local profile\n"
        "export POSITION_LEDGER_DATABASE_URL='sqlite:///from-file.db'\n"
        'POSITION_LEDGER_TRANSIENT_RETRIES="3"\n'
        "not a variable\n"
    )

    from_file = Settings.load({"POSITION_LEDGER_ENV_FILE": str(env_file)})
    overridden = Settings.load(
        {"POSITION_LEDGER_ENV_FILE": str(env_file), "POSITION_LEDGER_TRANSIENT_RETRIES": "0"}
    )

    assert from_file.database_url == "sqlite:///from-file.db"
    assert from_file.transient_retries == 3
    assert overridden.transient_retries == 0


@pytest.mark.parametrize("value", ["many", "-1"])
def test_bad_retry_count(value):
    with pytest.raises(RuntimeError, match="TRANSIENT_RETRIES"):
        Settings.load(
            {
                **NO_PROFILE,
                "POSITION_LEDGER_DATABASE_URL": "sqlite://",
                "POSITION_LEDGER_TRANSIENT_RETRIES": value,
            }
        )


def test_profile_file_is_found_from_working_directory(tmp_path, monkeypatch):
    (tmp_path / ".env.staging").write_text("POSITION_LEDGER_DATABASE_URL=sqlite:///staging.db\n")
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    monkeypatch.chdir(nested)

    assert find_env_file(".env.staging") == tmp_path / ".env.staging"
    settings = Settings.load({"POSITION_LEDGER_ENV": "staging"})
    assert settings.database_url == "sqlite:///staging.db"
