"""Post-import consistency pass.

After an import pass the catalog tables may hold core versions and
extensions no client references any more (clients upgraded or removed an
extension). They are kept for history but flagged via is_used so reports
can filter them out.
"""

from typing import Protocol

from sqlalchemy import exists, update
from sqlalchemy.ext.asyncio import AsyncSession

from t3monitor.db.models import Client, ClientExtension, CoreVersion, Extension
from t3monitor.logging_config import get_logger

logger = get_logger(__name__)


class DataIntegrityHook(Protocol):
    """Collaborator notified once an import pass has finished."""

    async def invoke_after_client_import(self, db: AsyncSession) -> None: ...


class DataIntegrity:
    async def invoke_after_client_import(self, db: AsyncSession) -> None:
        await self.flag_used_core_versions(db)
        await self.flag_used_extensions(db)

    async def flag_used_core_versions(self, db: AsyncSession) -> None:
        referenced = (
            exists()
            .where(Client.core_version_id == CoreVersion.id, Client.deleted.is_(False))
            .correlate(CoreVersion)
        )
        await db.execute(
            update(CoreVersion)
            .values(is_used=referenced)
            .execution_options(synchronize_session=False)
        )
        logger.debug("Core version usage flags refreshed")

    async def flag_used_extensions(self, db: AsyncSession) -> None:
        referenced = (
            exists()
            .where(
                ClientExtension.extension_id == Extension.id,
                ClientExtension.client_id == Client.id,
                Client.deleted.is_(False),
            )
            .correlate(Extension)
        )
        await db.execute(
            update(Extension)
            .values(is_used=referenced)
            .execution_options(synchronize_session=False)
        )
        logger.debug("Extension usage flags refreshed")
