"""Client import: fetches every client's status report and merges it into the store.

One import pass:

1. Select the clients that are neither deleted nor hidden (optionally just one).
2. Per client: fetch, decode, then reconcile core version, extensions and
   backend users and update the client row, all in one transaction.
3. A failing client gets its error_message written and is counted as an
   error; the pass carries on with the next client.
4. Refresh catalog usage flags and record the import time.

Clients are independent units of work. With importer.max_concurrency > 1
units run concurrently, each with its own session; the only shared state
is the pass's CoreVersionRegistry.
"""

import asyncio
from dataclasses import dataclass

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from t3monitor.config import BackendUserMatchScope, settings
from t3monitor.db.models import Client, utc_now
from t3monitor.db.session import get_session_factory
from t3monitor.logging_config import get_logger
from t3monitor.services import backend_user_reconciler, extension_reconciler, report_decoder
from t3monitor.services.client_fetcher import ClientFetcher
from t3monitor.services.core_version_registry import CoreVersionRegistry
from t3monitor.services.data_integrity import DataIntegrity, DataIntegrityHook
from t3monitor.services.errors import ClientImportError, ReconciliationError
from t3monitor.services.import_registry import CLIENT_IMPORT, set_import_time
from t3monitor.services.report_decoder import EXTRA_BUCKETS, Report

logger = get_logger(__name__)


@dataclass(frozen=True)
class ClientTarget:
    """The client columns an import needs, detached from any session."""

    id: int
    title: str
    domain: str
    secret: str

    @property
    def label(self) -> str:
        return self.title or self.domain


@dataclass(frozen=True)
class ImportSuccess:
    client_id: int
    core_version_id: int
    extension_count: int
    backend_user_count: int


@dataclass(frozen=True)
class ImportFailure:
    client_id: int
    kind: str
    message: str


ClientImportResult = ImportSuccess | ImportFailure


class ClientImport:
    """One import pass. Create a fresh instance per pass."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: CoreVersionRegistry,
        fetcher: ClientFetcher,
        data_integrity: DataIntegrityHook | None = None,
        *,
        max_concurrency: int | None = None,
        match_scope: BackendUserMatchScope | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.registry = registry
        self.fetcher = fetcher
        self.data_integrity = data_integrity or DataIntegrity()
        self.max_concurrency = max_concurrency or settings.importer.max_concurrency
        self.match_scope = match_scope or settings.importer.backend_user_match_scope
        self.cancel_event = cancel_event
        self._response_count = {"error": 0, "success": 0}

    @classmethod
    async def create(
        cls,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        fetcher: ClientFetcher | None = None,
        data_integrity: DataIntegrityHook | None = None,
        **kwargs,
    ) -> "ClientImport":
        """Build a pass with its core version cache loaded from the store."""
        session_factory = session_factory or get_session_factory()
        async with session_factory() as db:
            registry = await CoreVersionRegistry.load(db)
        return cls(
            session_factory,
            registry,
            fetcher or ClientFetcher(),
            data_integrity,
            **kwargs,
        )

    @property
    def response_count(self) -> dict[str, int]:
        return dict(self._response_count)

    async def run(self, client_id: int | None = None) -> dict[str, int]:
        """Import all eligible clients, or only `client_id`.

        Returns the {"success": n, "error": m} tally.
        """
        clients = await self._select_clients(client_id)
        logger.info(
            "Client import started",
            client_count=len(clients),
            client_id=client_id,
            concurrency=self.max_concurrency,
        )

        if self.max_concurrency <= 1:
            for client in clients:
                if self._cancelled():
                    break
                self._record(await self.import_single_client(client))
        else:
            semaphore = asyncio.Semaphore(self.max_concurrency)

            async def _unit(client: ClientTarget) -> None:
                async with semaphore:
                    if self._cancelled():
                        return
                    self._record(await self.import_single_client(client))

            await asyncio.gather(*(_unit(client) for client in clients))

        async with self._session_factory() as db, db.begin():
            await self.data_integrity.invoke_after_client_import(db)
            await set_import_time(db, CLIENT_IMPORT)

        logger.info(
            "Client import finished",
            success=self._response_count["success"],
            error=self._response_count["error"],
            cancelled=self._cancelled(),
        )
        return self.response_count

    async def _select_clients(self, client_id: int | None) -> list[ClientTarget]:
        stmt = select(Client.id, Client.title, Client.domain, Client.secret).where(
            Client.deleted.is_(False),
            Client.hidden.is_(False),
        )
        if client_id is not None:
            stmt = stmt.where(Client.id == client_id)

        async with self._session_factory() as db:
            result = await db.execute(stmt.order_by(Client.id))
            return [ClientTarget(*row) for row in result.all()]

    def _cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def _record(self, result: ClientImportResult) -> None:
        if isinstance(result, ImportSuccess):
            self._response_count["success"] += 1
        else:
            self._response_count["error"] += 1

    async def import_single_client(self, client: ClientTarget) -> ClientImportResult:
        """Fetch, decode and store one client. Never raises."""
        try:
            raw = await self.fetcher.fetch(client.domain, client.secret, label=client.label)
            report = report_decoder.decode(raw)
            result: ClientImportResult = await self._store_report(client, report)
        except ClientImportError as e:
            result = ImportFailure(client.id, e.kind, str(e))
        except Exception as e:
            logger.error(
                "Unexpected error importing client",
                client_id=client.id,
                client=client.label,
                error=str(e),
                exc_info=e,
            )
            result = ImportFailure(client.id, "internal", str(e) or e.__class__.__name__)

        if isinstance(result, ImportFailure):
            logger.warning(
                "Client import failed",
                client_id=client.id,
                client=client.label,
                kind=result.kind,
                error=result.message,
            )
            await self._store_error(client, result.message)
        else:
            logger.info(
                "Client imported",
                client_id=client.id,
                client=client.label,
                extensions=result.extension_count,
                backend_users=result.backend_user_count,
            )
        return result

    async def _store_report(self, client: ClientTarget, report: Report) -> ImportSuccess:
        """Merge a decoded report in a single transaction.

        Everything staged for this client is rolled back together when any
        step fails, including core versions first seen in this report.
        """
        staged: dict[str, int] = {}
        try:
            async with self._session_factory() as db, db.begin():
                core_id = await self.registry.resolve(db, report.core_version, staged)
                extension_count = await extension_reconciler.reconcile(
                    db, client.id, report.extensions
                )
                backend_user_count = await backend_user_reconciler.reconcile(
                    db, client.id, report.backend_users, self.match_scope
                )

                now = utc_now()
                values = {
                    "last_successful_import": now,
                    "error_message": "",
                    "php_version": report.php_version,
                    "mysql_version": report.mysql_version,
                    "core_version_id": core_id,
                    "extension_count": extension_count,
                    "backend_user_count": backend_user_count,
                    "updated_at": now,
                }
                for bucket in EXTRA_BUCKETS:
                    values[f"extra_{bucket}"] = report.extra_data(bucket)
                await db.execute(update(Client).where(Client.id == client.id).values(**values))
        except SQLAlchemyError as e:
            raise ReconciliationError(f"Could not store client data: {e}") from e

        self.registry.confirm(staged)
        return ImportSuccess(client.id, core_id, extension_count, backend_user_count)

    async def _store_error(self, client: ClientTarget, message: str) -> None:
        try:
            async with self._session_factory() as db, db.begin():
                await db.execute(
                    update(Client)
                    .where(Client.id == client.id)
                    # keep updated_at: a failed import changes nothing but the message
                    .values(error_message=message, updated_at=Client.updated_at)
                )
        except SQLAlchemyError as e:
            logger.error(
                "Could not record client error",
                client_id=client.id,
                error=str(e),
                exc_info=e,
            )


async def import_clients(
    client_id: int | None = None,
    *,
    cancel_event: asyncio.Event | None = None,
) -> dict[str, int]:
    """Run one import pass against the configured database."""
    async with ClientFetcher() as fetcher:
        importer = await ClientImport.create(fetcher=fetcher, cancel_event=cancel_event)
        return await importer.run(client_id)


async def run_importer() -> None:
    """Import loop: runs a pass every importer.interval_seconds until cancelled."""
    interval = settings.importer.interval_seconds
    logger.info("Client importer started", interval_seconds=interval)

    while True:
        try:
            await import_clients()
        except Exception as e:
            logger.error("Client import pass failed", error=str(e), exc_info=e)

        try:
            await asyncio.sleep(interval)
        except asyncio.CancelledError:
            logger.info("Client importer stopping")
            return
