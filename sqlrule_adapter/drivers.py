"""Turning driver names and data source names into SQLAlchemy engines."""

from __future__ import annotations

import re
import shlex
from urllib.parse import parse_qsl, unquote, urlsplit

from sqlalchemy import create_engine
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.pool import StaticPool

SUPPORTED_DRIVERS = ("mysql", "postgres", "sqlite3", "sqlserver")

UNSUPPORTED_MESSAGE = "database dialect is not supported"

_MYSQL_DSN = re.compile(
    r"^(?:(?P<user>[^:@/]*)(?::(?P<password>[^@]*))?@)?"
    r"(?:(?P<net>[A-Za-z0-9]+)(?:\((?P<addr>[^)]*)\))?)?"
    r"/(?P<database>[^?]*)"
    r"(?:\?(?P<params>.*))?$"
)


def _port(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"invalid port: {value!r}") from None


def _split_host_port(address: str) -> tuple[str | None, int | None]:
    if not address:
        return None, None
    if address.startswith("["):
        host, _, rest = address[1:].partition("]")
        port = rest[1:] if rest.startswith(":") else ""
        return host or None, _port(port) if port else None
    host, sep, port = address.rpartition(":")
    if not sep:
        return address, None
    return host or None, _port(port) if port else None


def _mysql_url(dsn: str) -> URL:
    match = _MYSQL_DSN.match(dsn)
    if match is None:
        raise ValueError(f"invalid mysql data source name: {dsn!r}")
    query = dict(parse_qsl(match["params"] or "", keep_blank_values=True))
    host = port = None
    net = match["net"] or "tcp"
    address = match["addr"] or ""
    if net == "unix":
        if address:
            query["unix_socket"] = address
    elif net == "tcp":
        host, port = _split_host_port(address)
    else:
        raise ValueError(f"unsupported mysql network: {net!r}")
    return URL.create(
        "mysql+pymysql",
        username=match["user"] or None,
        password=match["password"] or None,
        host=host,
        port=port,
        database=match["database"] or None,
        query=query,
    )


def _postgres_url(dsn: str) -> URL:
    if dsn.startswith(("postgres://", "postgresql://")):
        return make_url(dsn).set(drivername="postgresql")
    settings: dict[str, str] = {}
    for token in shlex.split(dsn):
        key, sep, value = token.partition("=")
        if not sep or not key:
            raise ValueError(f"invalid postgres setting: {token!r}")
        settings[key] = value
    host = settings.pop("host", None) or None
    port = settings.pop("port", None)
    return URL.create(
        "postgresql",
        username=settings.pop("user", None) or None,
        password=settings.pop("password", None) or None,
        host=host,
        port=_port(port) if port else None,
        database=settings.pop("dbname", None) or None,
        query=settings,
    )


def _sqlserver_url(dsn: str) -> URL:
    if "://" in dsn:
        parts = urlsplit(dsn)
        if parts.scheme != "sqlserver":
            raise ValueError(f"invalid sqlserver data source name: {dsn!r}")
        query = dict(parse_qsl(parts.query, keep_blank_values=True))
        return URL.create(
            "mssql+pymssql",
            username=unquote(parts.username) if parts.username else None,
            password=unquote(parts.password) if parts.password else None,
            host=parts.hostname,
            port=parts.port,
            database=query.pop("database", None) or None,
            query=query,
        )
    settings: dict[str, str] = {}
    for item in dsn.split(";"):
        if not item.strip():
            continue
        key, sep, value = item.partition("=")
        if not sep:
            raise ValueError(f"invalid sqlserver setting: {item!r}")
        settings[key.strip().lower()] = value.strip()
    server = settings.pop("server", "")
    host, _, port = server.partition(",")
    port = settings.pop("port", "") or port
    return URL.create(
        "mssql+pymssql",
        username=settings.pop("user id", None) or None,
        password=settings.pop("password", None) or None,
        host=host or None,
        port=_port(port) if port else None,
        database=settings.pop("database", None) or None,
        query=settings,
    )


def _sqlite_url(dsn: str) -> URL:
    if dsn.startswith("sqlite:"):
        return make_url(dsn)
    if dsn in ("", ":memory:"):
        return URL.create("sqlite", database=":memory:")
    if dsn.startswith("file:"):
        path, _, params = dsn.partition("?")
        query = dict(parse_qsl(params, keep_blank_values=True))
        query["uri"] = "true"
        return URL.create("sqlite", database=path, query=query)
    return URL.create("sqlite", database=dsn)


_BUILDERS = {
    "mysql": _mysql_url,
    "postgres": _postgres_url,
    "sqlite3": _sqlite_url,
    "sqlserver": _sqlserver_url,
}


def database_url(driver_name: str, data_source_name: str) -> URL:
    """The SQLAlchemy URL for a driver name and its native data source name."""
    try:
        builder = _BUILDERS[driver_name]
    except KeyError:
        raise ValueError(UNSUPPORTED_MESSAGE) from None
    return builder(data_source_name)


def _is_memory_sqlite(url: URL) -> bool:
    if not url.drivername.startswith("sqlite"):
        return False
    database = url.database or ""
    return database in ("", ":memory:") or url.query.get("mode") == "memory"


def open_engine(driver_name: str, data_source_name: str) -> Engine:
    """Create an engine for a supported driver; in-memory SQLite shares one connection."""
    url = database_url(driver_name, data_source_name)
    if _is_memory_sqlite(url):
        return create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    return create_engine(url)