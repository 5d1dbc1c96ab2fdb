"""Database and server crawlers that turn live handles into reports."""

from __future__ import annotations

import asyncio
import logging

from .config import AuditConfig
from .connections import ConnectionBackend, ConnectionHandle
from .errors import ConfigurationError, ConnectionBackendError, ListingError
from .models import ConnectionTarget, CrawlMode, DatabaseInfo, DatabaseReport, ServerReport
from .probe import probe_collection
from .redaction import redact_text

LOG = logging.getLogger(__name__)

ADMIN_DATABASE = "admin"
SYSTEM_DATABASES = frozenset({"admin", "local", "config"})


class DatabaseCrawler:
    """Lists one database's collections and probes each in listing order."""

    def __init__(self, config: AuditConfig) -> None:
        self._config = config

    async def crawl(self, handle: ConnectionHandle, *, size_on_disk: int | None = None) -> DatabaseReport:
        """Build a report for the handle's database; listing failures stay inline."""

        name = handle.target.database_name
        timeout = self._config.operation_timeout
        try:
            collections = await asyncio.wait_for(handle.list_collections(), timeout=timeout)
        except ListingError as exc:
            LOG.warning("Could not list collections", extra={"database": name, "error": str(exc)})
            return DatabaseReport(name=name, size_on_disk=size_on_disk, error=str(exc))
        except asyncio.TimeoutError:
            LOG.warning("Timed out listing collections", extra={"database": name, "timeout": timeout})
            return DatabaseReport(
                name=name,
                size_on_disk=size_on_disk,
                error=f"timed out listing collections after {timeout:g}s",
            )
        summaries = []
        for collection in collections:
            summary = await probe_collection(
                handle,
                collection,
                sampling=self._config.sampling,
                redaction=self._config.redaction,
                timeout=timeout,
            )
            summaries.append(summary)
        LOG.info("Crawled database", extra={"database": name, "collections": len(summaries)})
        return DatabaseReport(name=name, collections=tuple(summaries), size_on_disk=size_on_disk)


class ServerCrawler:
    """Runs a whole-server or single-database crawl.

    Every database gets its own short-lived handle, opened and closed inside
    the worker that crawls it. At most ``max_concurrency`` workers run at once
    and their reports are merged in the order the server listed the databases.
    Only a failure to open the first handle (``admin`` for a server crawl, the
    target database otherwise) escapes as ``ConnectionBackendError``.
    """

    def __init__(self, backend: ConnectionBackend, config: AuditConfig | None = None) -> None:
        self._backend = backend
        self._config = config or AuditConfig()
        self._database_crawler = DatabaseCrawler(self._config)

    async def crawl(self, target: ConnectionTarget, mode: CrawlMode = CrawlMode.SERVER) -> ServerReport:
        if mode is CrawlMode.DATABASE:
            return await self._crawl_database(target)
        return await self._crawl_server(target)

    async def _crawl_database(self, target: ConnectionTarget) -> ServerReport:
        handle = await self._open(target)
        try:
            version = await self._server_version(handle)
            report = await self._database_crawler.crawl(handle)
        finally:
            await handle.close()
        return ServerReport(
            databases=(report,),
            total_databases=1,
            mode=CrawlMode.DATABASE,
            server=target.display_uri,
            server_version=version,
        )

    async def _crawl_server(self, target: ConnectionTarget) -> ServerReport:
        admin = await self._open(target.with_database(ADMIN_DATABASE))
        version: str | None = None
        try:
            version = await self._server_version(admin)
            listing = await asyncio.wait_for(admin.list_databases(), timeout=self._config.operation_timeout)
        except (ListingError, asyncio.TimeoutError) as exc:
            error = str(exc) or f"timed out listing databases after {self._config.operation_timeout:g}s"
            LOG.warning("Could not list databases", extra={"server": target.display_uri, "error": error})
            return ServerReport(
                databases=(),
                total_databases=0,
                server=target.display_uri,
                server_version=version,
                error=error,
            )
        finally:
            await admin.close()

        selected = [
            info
            for info in listing
            if not (self._config.skip_system_databases and info.name in SYSTEM_DATABASES)
        ]
        semaphore = asyncio.Semaphore(self._config.max_concurrency)
        results = await asyncio.gather(
            *(self._crawl_listed(target, info, semaphore) for info in selected),
            return_exceptions=True,
        )
        reports = [
            self._failed_report(target, info, result) if isinstance(result, BaseException) else result
            for info, result in zip(selected, results)
        ]
        sizes = [info.size_on_disk for info in listing if info.size_on_disk is not None]
        return ServerReport(
            databases=tuple(reports),
            total_databases=len(listing),
            server=target.display_uri,
            total_size=sum(sizes) if sizes else None,
            server_version=version,
        )

    async def _crawl_listed(
        self,
        root: ConnectionTarget,
        info: DatabaseInfo,
        semaphore: asyncio.Semaphore,
    ) -> DatabaseReport:
        async with semaphore:
            try:
                handle = await self._open(root.with_database(info.name))
            except (ConnectionBackendError, ConfigurationError) as exc:
                LOG.warning("Could not access database", extra={"database": info.name, "error": str(exc)})
                return DatabaseReport(
                    name=info.name,
                    size_on_disk=info.size_on_disk,
                    error=str(exc),
                    accessible=False,
                )
            try:
                return await self._database_crawler.crawl(handle, size_on_disk=info.size_on_disk)
            finally:
                await handle.close()

    def _failed_report(self, root: ConnectionTarget, info: DatabaseInfo, exc: BaseException) -> DatabaseReport:
        """Turn an unexpected worker failure into an inaccessible entry."""

        if not isinstance(exc, Exception):
            raise exc
        error = redact_text(f"unexpected error: {exc}", (root.uri,))
        LOG.error("Database crawl failed", extra={"database": info.name, "error": error}, exc_info=exc)
        return DatabaseReport(
            name=info.name,
            size_on_disk=info.size_on_disk,
            error=error,
            accessible=False,
        )

    async def _open(self, target: ConnectionTarget) -> ConnectionHandle:
        timeout = self._config.connect_timeout
        try:
            return await asyncio.wait_for(self._backend.open(target), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise ConnectionBackendError(
                f"Timed out connecting to {target.display_uri} after {timeout:g}s"
            ) from exc

    async def _server_version(self, handle: ConnectionHandle) -> str | None:
        try:
            return await asyncio.wait_for(handle.server_version(), timeout=self._config.operation_timeout)
        except asyncio.TimeoutError:
            return None


__all__ = ["ADMIN_DATABASE", "DatabaseCrawler", "SYSTEM_DATABASES", "ServerCrawler"]
