"""Runtime settings read from ``POSITION_LEDGER_*`` variables.

Values come from the process environment, layered over an optional env file:
``POSITION_LEDGER_ENV_FILE`` when set, otherwise ``.env.<POSITION_LEDGER_ENV>``
(profile ``local`` by default) looked up from the working directory upwards and
then beside the package.
"""
from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
from typing import Iterator, Mapping, Optional

from sqlalchemy.engine import URL

PREFIX = "POSITION_LEDGER_"
DEFAULT_TRANSIENT_RETRIES = 1
DEFAULT_DRIVER = "postgresql+psycopg"


def _search_dirs() -> Iterator[Path]:
    cwd = Path.cwd().resolve()
    here = Path(__file__).resolve().parent
    seen: set[Path] = set()
    for directory in (cwd, *cwd.parents, here, *here.parents):
        if directory not in seen:
            seen.add(directory)
            yield directory


def find_env_file(name: str) -> Optional[Path]:
    path = Path(name)
    if path.is_absolute():
        return path if path.is_file() else None
    return next((d / name for d in _search_dirs() if (d / name).is_file()), None)


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        return value[1:-1]
    return value


def read_env_file(path: Path) -> dict[str, str]:
    """Read ``KEY=value`` lines, tolerating ``export`` prefixes and comments."""

    entries: dict[str, str] = {}
    with path.open(encoding="utf-8") as handle:
        for line in handle:
            line = line.strip()
            if line.startswith("export "):
                line = line[len("export "):].lstrip()
            if line.startswith("#") or "=" not in line:
                continue
            name, _, raw = line.partition("=")
            entries[name.strip()] = _unquote(raw.strip())
    return entries


class _Env:
    """Prefixed view over the merged environment."""

    def __init__(self, values: Mapping[str, str]) -> None:
        self.values = values

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.values.get(PREFIX + name, default)

    @classmethod
    def load(cls, environ: Mapping[str, str]) -> "_Env":
        name = environ.get(PREFIX + "ENV_FILE") or f".env.{environ.get(PREFIX + 'ENV', 'local')}"
        path = find_env_file(name)
        from_file = read_env_file(path) if path is not None else {}
        # the shell wins over the file
        return cls({**from_file, **environ})


def _discrete_database_url(env: _Env) -> Optional[str]:
    host = env.get("DB_HOST")
    if not host:
        return None
    username = env.get("DB_USERNAME")
    if not username:
        raise RuntimeError(f"{PREFIX}DB_USERNAME must be set alongside {PREFIX}DB_HOST")
    password = env.get("DB_PASSWORD")
    if password is None:
        raise RuntimeError(f"{PREFIX}DB_PASSWORD must be set alongside {PREFIX}DB_HOST")

    port = env.get("DB_PORT", "5432")
    try:
        port_number = int(port) if port else None
    except ValueError as exc:
        raise RuntimeError(f"{PREFIX}DB_PORT must be a number, got {port!r}") from exc

    url = URL.create(
        env.get("DB_DRIVER", DEFAULT_DRIVER),
        username=username,
        password=password,
        host=host,
        port=port_number,
        database=env.get("DB_NAME", "ledger"),
    )
    return url.render_as_string(hide_password=False)


def _transient_retries(env: _Env) -> int:
    raw = (env.get("TRANSIENT_RETRIES") or "").strip()
    if not raw:
        return DEFAULT_TRANSIENT_RETRIES
    if not raw.isdigit():
        raise RuntimeError(f"{PREFIX}TRANSIENT_RETRIES must be a non-negative integer, got {raw!r}")
    return int(raw)


@dataclass(frozen=True)
class Settings:
    """Runtime configuration."""

    database_url: str
    transient_retries: int = DEFAULT_TRANSIENT_RETRIES

    @staticmethod
    def load(env: Mapping[str, str] | None = None) -> "Settings":
        merged = _Env.load(dict(os.environ if env is None else env))

        database_url = merged.get("DATABASE_URL") or _discrete_database_url(merged)
        if not database_url:
            raise RuntimeError(
                f"Set {PREFIX}DATABASE_URL, or {PREFIX}DB_HOST with credentials, "
                "in the environment or the env file"
            )
        return Settings(database_url=database_url, transient_retries=_transient_retries(merged))


__all__ = ["Settings", "DEFAULT_TRANSIENT_RETRIES", "find_env_file", "read_env_file"]
