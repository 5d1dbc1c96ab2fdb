"""Connection backends that open handles against a MongoDB server."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, Mapping, Protocol, Sequence, runtime_checkable

from bson.errors import BSONError
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import PyMongoError

from .errors import ConnectionBackendError, ListingError, ProbeError
from .models import ConnectionTarget, DatabaseInfo
from .redaction import redact_text

LOG = logging.getLogger(__name__)

Document = Mapping[str, Any]

# Undecodable documents raise BSONError, which is not a PyMongoError.
DRIVER_ERRORS = (PyMongoError, BSONError)


@runtime_checkable
class ConnectionHandle(Protocol):
    """One live connection to a named database; closed exactly once by its opener."""

    @property
    def target(self) -> ConnectionTarget:
        """Target the handle was opened against."""

    @property
    def closed(self) -> bool:
        """Whether ``close`` has run."""

    async def list_databases(self) -> tuple[DatabaseInfo, ...]:
        """Databases hosted on the server, in server order."""

    async def list_collections(self) -> tuple[str, ...]:
        """Collection names of the handle's database, in server order."""

    async def count(self, collection: str) -> int:
        """Exact document count of a collection."""

    async def sample(self, collection: str, limit: int) -> list[Document]:
        """Up to ``limit`` raw documents from a collection."""

    async def server_version(self) -> str | None:
        """Server version string, if the server reports it."""

    async def close(self) -> None:
        """Release the connection; safe to call more than once."""


@runtime_checkable
class ConnectionBackend(Protocol):
    """Protocol implemented by connection backends."""

    async def open(self, target: ConnectionTarget) -> ConnectionHandle:
        """Open a handle or raise ``ConnectionBackendError``."""


class MotorConnectionHandle:
    """Handle backed by a dedicated ``AsyncIOMotorClient``."""

    def __init__(self, client: AsyncIOMotorClient, target: ConnectionTarget) -> None:
        self._client = client
        self._target = target
        self._closed = False

    @property
    def target(self) -> ConnectionTarget:
        return self._target

    @property
    def closed(self) -> bool:
        return self._closed

    async def list_databases(self) -> tuple[DatabaseInfo, ...]:
        try:
            result = await self._client.admin.command("listDatabases")
        except DRIVER_ERRORS as exc:
            raise ListingError(f"Failed to list databases: {self._scrub(exc)}") from exc
        return tuple(
            DatabaseInfo(
                name=str(entry["name"]),
                size_on_disk=_as_int(entry.get("sizeOnDisk")),
            )
            for entry in result.get("databases", ())
        )

    async def list_collections(self) -> tuple[str, ...]:
        try:
            names = await self._database.list_collection_names()
        except DRIVER_ERRORS as exc:
            raise ListingError(
                f"Failed to list collections of '{self._target.database_name}': {self._scrub(exc)}"
            ) from exc
        return tuple(str(name) for name in names)

    async def count(self, collection: str) -> int:
        try:
            return int(await self._database[collection].count_documents({}))
        except DRIVER_ERRORS as exc:
            raise ProbeError(f"Failed to count '{collection}': {self._scrub(exc)}") from exc

    async def sample(self, collection: str, limit: int) -> list[Document]:
        try:
            cursor = self._database[collection].find({}).limit(limit)
            return await cursor.to_list(length=limit)
        except DRIVER_ERRORS as exc:
            raise ProbeError(f"Failed to sample '{collection}': {self._scrub(exc)}") from exc

    async def server_version(self) -> str | None:
        try:
            info = await self._client.server_info()
        except DRIVER_ERRORS as exc:
            LOG.debug("Server version unavailable", extra={"error": self._scrub(exc)})
            return None
        version = info.get("version")
        return str(version) if version is not None else None

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._client.close()
        LOG.debug("Closed connection", extra={"target": self._target.display_uri})

    @property
    def _database(self):
        return self._client[self._target.database_name]

    def _scrub(self, exc: BaseException) -> str:
        return redact_text(str(exc), (self._target.uri,))


class MotorConnectionBackend:
    """Connection backend that opens one motor client per handle."""

    def __init__(self, *, connect_timeout: float = 10.0, app_name: str = "mongoaudit") -> None:
        self._connect_timeout = connect_timeout
        self._app_name = app_name

    async def open(self, target: ConnectionTarget) -> MotorConnectionHandle:
        timeout_ms = int(self._connect_timeout * 1000)
        try:
            client = AsyncIOMotorClient(
                target.uri,
                serverSelectionTimeoutMS=timeout_ms,
                connectTimeoutMS=timeout_ms,
                appname=self._app_name,
            )
        except (PyMongoError, ValueError, TypeError) as exc:
            raise ConnectionBackendError(
                f"Failed to connect to {target.display_uri}: {redact_text(str(exc), (target.uri,))}"
            ) from exc
        try:
            await asyncio.wait_for(client.admin.command("ping"), timeout=self._connect_timeout)
        except (PyMongoError, asyncio.TimeoutError) as exc:
            client.close()
            reason = redact_text(str(exc), (target.uri,)) or "timed out"
            raise ConnectionBackendError(f"Failed to connect to {target.display_uri}: {reason}") from exc
        except asyncio.CancelledError:
            client.close()
            raise
        LOG.debug("Opened connection", extra={"target": target.display_uri})
        return MotorConnectionHandle(client, target)


DEMO_SERVER_PRESET: Mapping[str, Mapping[str, Any]] = {
    "admin": {
        "size_on_disk": 40960,
        "collections": {
            "system.version": [{"_id": "featureCompatibilityVersion", "version": "7.0"}],
        },
    },
    "inventory": {
        "size_on_disk": 8388608,
        "collections": {
            "products": [
                {"sku": "BOLT-M8", "name": "M8 hex bolt", "stock": 1200},
                {"sku": "NUT-M8", "name": "M8 nut", "stock": 950},
                {"sku": "WASH-M8", "name": "M8 washer", "stock": 3000},
            ],
            "movements": 4200,
            "suppliers": [],
        },
    },
    "shop": {
        "size_on_disk": 2097152,
        "collections": {
            "users": [
                {"username": "ann", "email": "a@x.com", "password": "$2b$12$demo"},
                {"username": "bob", "email": "b@x.com", "password": "$2b$12$demo"},
            ],
            "logs": 1000,
        },
    },
}


class DemoConnectionHandle:
    """Handle over the in-memory demo server."""

    def __init__(self, backend: DemoConnectionBackend, target: ConnectionTarget) -> None:
        self._backend = backend
        self._target = target
        self._closed = False
        self.close_calls = 0

    @property
    def target(self) -> ConnectionTarget:
        return self._target

    @property
    def closed(self) -> bool:
        return self._closed

    async def list_databases(self) -> tuple[DatabaseInfo, ...]:
        await asyncio.sleep(0)
        return tuple(
            DatabaseInfo(name=name, size_on_disk=int(spec.get("size_on_disk", 0)))
            for name, spec in self._backend.server.items()
        )

    async def list_collections(self) -> tuple[str, ...]:
        await asyncio.sleep(0)
        name = self._target.database_name
        if name in self._backend.unlistable:
            raise ListingError(f"Failed to list collections of '{name}': not authorized")
        return tuple(self._collections())

    async def count(self, collection: str) -> int:
        await asyncio.sleep(0)
        self._check_readable(collection)
        documents = self._collections().get(collection, ())
        return documents if isinstance(documents, int) else len(documents)

    async def sample(self, collection: str, limit: int) -> list[Document]:
        await asyncio.sleep(0)
        self._check_readable(collection)
        documents = self._collections().get(collection, ())
        if isinstance(documents, int):
            return [{"_id": index, "seq": index} for index in range(min(limit, documents))]
        return [dict(document) for document in documents[:limit]]

    async def server_version(self) -> str | None:
        return self._backend.version

    async def close(self) -> None:
        self.close_calls += 1
        self._closed = True

    def _collections(self) -> Mapping[str, Sequence[Document] | int]:
        spec = self._backend.server.get(self._target.database_name, {})
        return spec.get("collections", {})

    def _check_readable(self, collection: str) -> None:
        if f"{self._target.database_name}.{collection}" in self._backend.unreadable:
            raise ProbeError(f"Failed to count '{collection}': not authorized")


class DemoConnectionBackend:
    """Stub backend serving a preset server from memory.

    ``unreachable`` databases refuse to open, ``unlistable`` databases refuse
    to list collections, ``unreadable`` entries (``"db.collection"``) refuse
    counts and samples, and ``delays`` stalls ``open`` per database.
    """

    def __init__(
        self,
        server: Mapping[str, Mapping[str, Any]] | None = None,
        *,
        unreachable: Iterable[str] = (),
        unlistable: Iterable[str] = (),
        unreadable: Iterable[str] = (),
        delays: Mapping[str, float] | None = None,
        version: str | None = "7.0.0",
    ) -> None:
        self.server = server if server is not None else DEMO_SERVER_PRESET
        self.unreachable = frozenset(unreachable)
        self.unlistable = frozenset(unlistable)
        self.unreadable = frozenset(unreadable)
        self.delays = dict(delays or {})
        self.version = version
        self.handles: list[DemoConnectionHandle] = []

    @property
    def open_handles(self) -> tuple[DemoConnectionHandle, ...]:
        """Handles opened and not yet closed."""

        return tuple(handle for handle in self.handles if not handle.closed)

    async def open(self, target: ConnectionTarget) -> DemoConnectionHandle:
        name = target.database_name
        delay = self.delays.get(name)
        if delay:
            await asyncio.sleep(delay)
        if name in self.unreachable:
            raise ConnectionBackendError(f"Failed to connect to {target.display_uri}: server unreachable")
        handle = DemoConnectionHandle(self, target)
        self.handles.append(handle)
        return handle


def _as_int(value: object) -> int | None:
    if value is None:
        return None
    try:
        return int(value)  # type: ignore[call-overload]
    except (TypeError, ValueError):
        return None


__all__ = [
    "ConnectionBackend",
    "ConnectionHandle",
    "DEMO_SERVER_PRESET",
    "DemoConnectionBackend",
    "DemoConnectionHandle",
    "Document",
    "MotorConnectionBackend",
    "MotorConnectionHandle",
]
