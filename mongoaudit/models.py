"""Shared dataclasses used across the crawl and render modules."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Mapping

from .errors import ConfigurationError
from .redaction import redact_uri

SCHEMES = ("mongodb", "mongodb+srv")
DEFAULT_DATABASE = "test"
_INVALID_DATABASE_CHARS = frozenset('/\\. "$*<>:|?')
EXTERNAL_AUTH_MECHANISMS = frozenset({"GSSAPI", "MONGODB-AWS", "MONGODB-OIDC", "MONGODB-X509", "PLAIN"})


class CrawlMode(str, Enum):
    """Discovery step used by the server crawler."""

    SERVER = "server"
    DATABASE = "database"


@dataclass(frozen=True, slots=True)
class ConnectionTarget:
    """Structured connection string; composes URIs instead of rewriting them.

    ``username`` and ``password`` are stored exactly as they appear in the
    source URI (still percent-encoded) so ``uri`` round-trips them unchanged.
    """

    scheme: str
    hosts: str
    username: str | None = None
    password: str | None = None
    database: str | None = None
    options: str = ""

    @classmethod
    def from_uri(cls, uri: str) -> ConnectionTarget:
        """Parse a ``mongodb://`` or ``mongodb+srv://`` connection string."""

        scheme, sep, rest = uri.strip().partition("://")
        if not sep or scheme not in SCHEMES:
            raise ConfigurationError("Connection string must start with mongodb:// or mongodb+srv://.")
        end = len(rest)
        for separator in "/?":
            index = rest.find(separator)
            if index != -1:
                end = min(end, index)
        authority, remainder = rest[:end], rest[end:]
        userinfo, at, hosts = authority.rpartition("@")
        if not hosts:
            raise ConfigurationError(f"Connection string has no host: {redact_uri(uri)}")
        username: str | None = None
        password: str | None = None
        if at:
            user, colon, secret = userinfo.partition(":")
            if not user:
                raise ConfigurationError(f"Connection string has an empty username: {redact_uri(uri)}")
            username = user
            password = secret if colon else None
        path, _, options = remainder.partition("?")
        database = path.lstrip("/") or None
        return cls(
            scheme=scheme,
            hosts=hosts,
            username=username,
            password=password,
            database=database,
            options=options,
        )

    @property
    def uri(self) -> str:
        """Connection string composed from the fields (contains credentials)."""

        auth = ""
        if self.username is not None:
            auth = self.username
            if self.password is not None:
                auth += f":{self.password}"
            auth += "@"
        path = f"/{self.database}" if self.database else "/"
        query = f"?{self.options}" if self.options else ""
        return f"{self.scheme}://{auth}{self.hosts}{path}{query}"

    @property
    def display_uri(self) -> str:
        """Connection string safe to print or log."""

        return redact_uri(self.uri)

    @property
    def database_name(self) -> str:
        """Database the driver selects for this target."""

        return self.database or DEFAULT_DATABASE

    @property
    def has_credentials(self) -> bool:
        return self.username is not None

    def with_database(self, name: str) -> ConnectionTarget:
        """Return a copy pointed at ``name``, keeping the original auth database."""

        if not name or any(char in _INVALID_DATABASE_CHARS for char in name):
            raise ConfigurationError(f"Invalid database name: {name!r}")
        options = self.options
        mechanism = (_option(options, "authMechanism") or "").upper()
        # The path database doubles as authSource for plain URIs; pin it before swapping.
        # External mechanisms authenticate against $external and need no pin.
        if (
            self.has_credentials
            and self.scheme == "mongodb"
            and _option(options, "authSource") is None
            and mechanism not in EXTERNAL_AUTH_MECHANISMS
        ):
            pinned = f"authSource={self.database or 'admin'}"
            options = f"{options}&{pinned}" if options else pinned
        return replace(self, database=name, options=options)


@dataclass(frozen=True, slots=True)
class DatabaseInfo:
    """One entry of the server's database listing."""

    name: str
    size_on_disk: int | None = None


@dataclass(frozen=True, slots=True)
class CollectionSummary:
    """Count and redacted sample for one collection."""

    name: str
    count: int | None
    samples: tuple[str, ...] = ()
    truncated: bool = False
    error: str | None = None

    @property
    def accessible(self) -> bool:
        return self.error is None


@dataclass(frozen=True, slots=True)
class DatabaseReport:
    """Collections discovered in one database, in server listing order."""

    name: str
    collections: tuple[CollectionSummary, ...] = ()
    size_on_disk: int | None = None
    error: str | None = None
    accessible: bool = True

    @property
    def collection_count(self) -> int:
        return len(self.collections)

    @property
    def total_documents(self) -> int:
        """Sum of the counts that could be read."""

        return sum(summary.count for summary in self.collections if summary.count is not None)

    @property
    def counts_complete(self) -> bool:
        return all(summary.count is not None for summary in self.collections)


@dataclass(frozen=True, slots=True)
class ServerReport:
    """Result of one crawl; consumed by renderers, never persisted."""

    databases: tuple[DatabaseReport, ...]
    total_databases: int
    mode: CrawlMode = CrawlMode.SERVER
    server: str | None = None
    total_size: int | None = None
    server_version: str | None = None
    error: str | None = None

    @property
    def sizes(self) -> Mapping[str, int | None]:
        """On-disk size per database, keyed by name."""

        return {report.name: report.size_on_disk for report in self.databases}


def _option(options: str, key: str) -> str | None:
    """Value of a query option, matched case-insensitively like the driver does."""

    for pair in options.split("&"):
        name, _, value = pair.partition("=")
        if name.lower() == key.lower():
            return value
    return None


__all__ = [
    "CollectionSummary",
    "ConnectionTarget",
    "CrawlMode",
    "DatabaseInfo",
    "DatabaseReport",
    "DEFAULT_DATABASE",
    "EXTERNAL_AUTH_MECHANISMS",
    "SCHEMES",
    "ServerReport",
]
